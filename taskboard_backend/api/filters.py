from __future__ import annotations

import django_filters
from django.db.models import Q

from .models import Category, Project, Task


class TextSearchMixin:
    """`?q=` matches title or description, case-insensitively."""

    def filter_q(self, queryset, name, value):
        if not value:
            return queryset
        return queryset.filter(Q(title__icontains=value) | Q(description__icontains=value))


class ProjectFilter(TextSearchMixin, django_filters.FilterSet):
    quarter = django_filters.CharFilter(field_name="quarter", lookup_expr="exact")
    kind = django_filters.ChoiceFilter(choices=Project.Kind.choices)
    status = django_filters.ChoiceFilter(choices=Project.Status.choices)
    visibility = django_filters.ChoiceFilter(choices=Project.Visibility.choices)
    owner = django_filters.NumberFilter(field_name="owner_id", lookup_expr="exact")
    q = django_filters.CharFilter(method="filter_q")

    class Meta:
        model = Project
        fields = ["quarter", "kind", "status", "visibility", "owner", "q"]


class TaskFilter(TextSearchMixin, django_filters.FilterSet):
    """Narrowing filters. These run on top of the visibility filter, never instead of it."""
    status = django_filters.ChoiceFilter(choices=Task.Status.choices)
    priority = django_filters.ChoiceFilter(choices=Task.Priority.choices)
    visibility = django_filters.ChoiceFilter(choices=Task.Visibility.choices)
    category = django_filters.ModelChoiceFilter(
        field_name="category",
        to_field_name="name",
        queryset=Category.objects.all(),
    )
    assignee = django_filters.NumberFilter(field_name="assignee_id", lookup_expr="exact")
    project = django_filters.NumberFilter(field_name="project_id", lookup_expr="exact")
    group = django_filters.NumberFilter(method="filter_group")
    due_before = django_filters.DateFilter(field_name="due_date", lookup_expr="lte")
    due_after = django_filters.DateFilter(field_name="due_date", lookup_expr="gte")
    q = django_filters.CharFilter(method="filter_q")

    def filter_group(self, queryset, name, value):
        if value is None:
            return queryset
        return queryset.filter(group_assignments__group_id=value).distinct()

    class Meta:
        model = Task
        fields = [
            "status",
            "priority",
            "visibility",
            "category",
            "assignee",
            "project",
            "group",
            "due_before",
            "due_after",
            "q",
        ]

from django.db import migrations

DEFAULT_CATEGORIES = [
    ("Sales", "Sales", "bg-purple-50 border-purple-200"),
    ("ProductDev", "Product Dev", "bg-blue-50 border-blue-200"),
    ("Operations", "Operations", "bg-emerald-50 border-emerald-200"),
    ("Finance", "Finance", "bg-amber-50 border-amber-200"),
    ("Other", "Other", "bg-slate-50 border-slate-200"),
]


def seed_categories(apps, schema_editor):
    Category = apps.get_model("api", "Category")
    for order, (name, display_name, color) in enumerate(DEFAULT_CATEGORIES, start=1):
        Category.objects.get_or_create(
            name=name,
            defaults={"display_name": display_name, "color": color, "sort_order": order},
        )


def remove_categories(apps, schema_editor):
    Category = apps.get_model("api", "Category")
    Category.objects.filter(name__in=[name for name, _, _ in DEFAULT_CATEGORIES], tasks__isnull=True).delete()


class Migration(migrations.Migration):

    dependencies = [
        ("api", "0001_initial"),
    ]

    operations = [
        migrations.RunPython(seed_categories, remove_categories),
    ]

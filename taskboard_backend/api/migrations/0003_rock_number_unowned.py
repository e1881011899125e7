from django.db import migrations, models
from django.db.models.functions import Coalesce


class Migration(migrations.Migration):

    dependencies = [
        ("api", "0002_default_categories"),
    ]

    operations = [
        migrations.RemoveConstraint(
            model_name="project",
            name="unique_rock_number_per_owner_quarter",
        ),
        migrations.AddConstraint(
            model_name="project",
            constraint=models.UniqueConstraint(
                Coalesce("owner", models.Value(0), output_field=models.BigIntegerField()),
                "quarter",
                "rock_number",
                condition=models.Q(("quarter__isnull", False)),
                name="unique_rock_number_per_owner_quarter",
            ),
        ),
    ]

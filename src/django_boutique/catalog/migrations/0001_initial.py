from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Event",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("slug", models.SlugField(max_length=200, unique=True)),
                ("title", models.CharField(max_length=300)),
                ("subtitle", models.CharField(blank=True, default="", max_length=300)),
                ("description", models.TextField(blank=True, default="")),
                (
                    "event_type",
                    models.CharField(
                        choices=[("tasting", "Tasting"), ("dinner", "Dinner"), ("tour", "Tour"), ("other", "Other")],
                        default="tasting",
                        max_length=20,
                    ),
                ),
                ("venue", models.CharField(blank=True, default="", max_length=300)),
                ("venue_address", models.JSONField(blank=True, default=dict)),
                ("start_datetime", models.DateTimeField()),
                ("end_datetime", models.DateTimeField(blank=True, null=True)),
                ("max_capacity", models.PositiveIntegerField(default=0)),
                (
                    "current_capacity",
                    models.PositiveIntegerField(default=0, help_text="Number of tickets issued so far."),
                ),
                ("price", models.DecimalField(decimal_places=2, default=0, max_digits=10)),
                (
                    "status",
                    models.CharField(
                        choices=[("draft", "Draft"), ("published", "Published"), ("cancelled", "Cancelled")],
                        default="draft",
                        max_length=20,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["start_datetime"],
            },
        ),
    ]

import uuid

import django.utils.timezone
from django.db import migrations, models

import conversions.models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="ConversionJob",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("original_file_name", models.CharField(max_length=255)),
                ("original_file_size", models.BigIntegerField(default=0)),
                ("conversion_type", models.CharField(default="multi_step", max_length=32)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=16,
                    ),
                ),
                ("progress", models.PositiveSmallIntegerField(default=0)),
                ("options", models.JSONField(default=dict)),
                ("converted_files", models.JSONField(blank=True, default=list)),
                ("compressed_file_name", models.CharField(blank=True, max_length=255, null=True)),
                ("compressed_file_size", models.BigIntegerField(blank=True, null=True)),
                ("audio_removed", models.BooleanField(default=False)),
                ("audio_removed_file", models.JSONField(blank=True, null=True)),
                ("poster_file_name", models.CharField(blank=True, max_length=255, null=True)),
                ("poster_file_size", models.BigIntegerField(blank=True, null=True)),
                ("error_message", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ("started_at", models.DateTimeField(blank=True, null=True)),
                ("ended_at", models.DateTimeField(blank=True, null=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("expires_at", models.DateTimeField(db_index=True, default=conversions.models.default_expiry)),
            ],
            options={
                "ordering": ["created_at", "id"],
            },
        ),
    ]

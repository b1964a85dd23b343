from django.db import models, migrations


class Migration(migrations.Migration):
    """ Initial migrations """

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="LoginAttempt",
            fields=[
                (
                    "id",
                    models.AutoField(
                        verbose_name="ID",
                        serialize=False,
                        auto_created=True,
                        primary_key=True,
                    ),
                ),
                ("user_id", models.PositiveIntegerField(default=0)),
                ("username", models.CharField(max_length=128)),
                (
                    "user_agent",
                    models.CharField(max_length=256, null=True, blank=True),
                ),
                ("user_agent_features", models.TextField(null=True, blank=True)),
                ("login_was_successful", models.BooleanField(default=False)),
                (
                    "login_timestamp",
                    models.DateTimeField(auto_now_add=True, db_index=True),
                ),
            ],
            options={
                "db_table": "process_login_history",
                "ordering": ["-login_timestamp", "-id"],
            },
            bases=(models.Model,),
        ),
    ]

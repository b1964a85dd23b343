from django.db import models, migrations


class Migration(migrations.Migration):
    """ IP addresses are only stored when LOGIN_HISTORY_LOG_IP_ADDRESSES is on """

    dependencies = [
        ("login_history", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="loginattempt",
            name="ip_address",
            field=models.GenericIPAddressField(
                null=True, blank=True, verbose_name="IP Address"
            ),
        ),
    ]

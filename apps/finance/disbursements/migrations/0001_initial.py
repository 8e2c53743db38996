import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


def _actor(related_name):
    return models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name=related_name, to=settings.AUTH_USER_MODEL)


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('aid_requests', '0001_initial'),
        ('facilities', '0001_initial'),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Disbursement',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('amount', models.DecimalField(decimal_places=2, max_digits=12)),
                ('status', models.CharField(choices=[('finance_disbursed', 'Disbursed by finance'), ('caseworker_received', 'Received by caseworker'), ('caseworker_disbursed', 'Handed to beneficiary'), ('beneficiary_received', 'Received by beneficiary')], default='finance_disbursed', max_length=30)),
                ('notes', models.TextField(blank=True)),
                ('finance_disbursed_at', models.DateTimeField(blank=True, null=True)),
                ('caseworker_received_at', models.DateTimeField(blank=True, null=True)),
                ('caseworker_disbursed_at', models.DateTimeField(blank=True, null=True)),
                ('beneficiary_received_at', models.DateTimeField(blank=True, null=True)),
                ('liquidated_amount', models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ('remaining_to_liquidate', models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ('fully_liquidated', models.BooleanField(default=False)),
                ('fully_liquidated_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('aid_request', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='disbursement', to='aid_requests.aidrequest')),
                ('facility', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='disbursements', to='facilities.facility')),
                ('finance_disbursed_by', _actor('finance_disbursements')),
                ('caseworker_received_by', _actor('caseworker_received_disbursements')),
                ('caseworker_disbursed_by', _actor('caseworker_handed_disbursements')),
                ('beneficiary_received_by', _actor('confirmed_disbursements')),
            ],
            options={
                'ordering': ['-created_at', '-id'],
                'indexes': [
                    models.Index(fields=['facility', 'status'], name='disburseme_facilit_2b3c4d_idx'),
                ],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('amount__gt', 0)), name='disbursement_amount_positive'),
                ],
            },
        ),
    ]

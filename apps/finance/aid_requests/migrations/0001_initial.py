import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


def _decision_fields(level):
    return [
        (f'{level}_decision', models.CharField(choices=[('pending', 'Pending'), ('approved', 'Approved'), ('rejected', 'Rejected')], default='pending', max_length=10)),
        (f'{level}_decided_at', models.DateTimeField(blank=True, null=True)),
        (f'{level}_notes', models.TextField(blank=True)),
        (f'{level}_decided_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name=f'{level}_aid_decisions', to=settings.AUTH_USER_MODEL)),
    ]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('facilities', '0001_initial'),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='AidRequest',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('fund_type', models.CharField(choices=[('tuition', 'Tuition'), ('cola', 'COLA'), ('other', 'Other')], max_length=20)),
                ('amount', models.DecimalField(decimal_places=2, max_digits=12)),
                ('purpose', models.TextField(blank=True)),
                ('month', models.PositiveIntegerField(blank=True, null=True)),
                ('year', models.PositiveIntegerField(blank=True, null=True)),
                ('state', models.CharField(choices=[('pending_caseworker', 'Pending caseworker review'), ('pending_finance', 'Pending finance review'), ('pending_director', 'Pending director review'), ('approved', 'Approved'), ('rejected', 'Rejected')], default='pending_caseworker', max_length=30)),
                ('rejected_at_level', models.CharField(blank=True, max_length=20)),
                *_decision_fields('caseworker'),
                *_decision_fields('finance'),
                *_decision_fields('director'),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('beneficiary', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='aid_requests', to=settings.AUTH_USER_MODEL)),
                ('facility', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='aid_requests', to='facilities.facility')),
            ],
            options={
                'ordering': ['-created_at', '-id'],
                'indexes': [
                    models.Index(fields=['facility', 'state'], name='aid_request_facilit_5e6f7a_idx'),
                    models.Index(fields=['beneficiary', 'fund_type', 'state'], name='aid_request_benefic_8b9c0d_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('month__isnull', False), models.Q(('state', 'rejected'), _negated=True)), fields=('beneficiary', 'fund_type', 'year', 'month'), name='unique_open_aid_request_per_period'),
                    models.CheckConstraint(condition=models.Q(('amount__gte', 0)), name='aid_request_amount_non_negative'),
                ],
            },
        ),
    ]

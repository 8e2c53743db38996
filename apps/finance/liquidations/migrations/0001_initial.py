import django.db.models.deletion
from decimal import Decimal

from django.conf import settings
from django.db import migrations, models


def _review_fields(level):
    return [
        (f'{level}_reviewed_at', models.DateTimeField(blank=True, null=True)),
        (f'{level}_notes', models.TextField(blank=True)),
        (f'{level}_reviewed_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name=f'{level}_liquidation_reviews', to=settings.AUTH_USER_MODEL)),
    ]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('disbursements', '0001_initial'),
        ('facilities', '0001_initial'),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Liquidation',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('status', models.CharField(choices=[('in_progress', 'In progress'), ('complete', 'Complete'), ('pending_caseworker_approval', 'Pending caseworker approval'), ('pending_finance_approval', 'Pending finance approval'), ('pending_director_approval', 'Pending director approval'), ('approved', 'Approved'), ('rejected', 'Rejected')], default='in_progress', max_length=30)),
                ('total_disbursed_amount', models.DecimalField(decimal_places=2, max_digits=12)),
                ('total_receipt_amount', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=12)),
                ('remaining_amount', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=12)),
                ('is_complete', models.BooleanField(default=False)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('submitted_at', models.DateTimeField(blank=True, null=True)),
                ('rejected_at_level', models.CharField(blank=True, max_length=20)),
                ('rejection_reason', models.TextField(blank=True)),
                *_review_fields('caseworker'),
                *_review_fields('finance'),
                *_review_fields('director'),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('disbursement', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='liquidations', to='disbursements.disbursement')),
                ('facility', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='liquidations', to='facilities.facility')),
            ],
            options={
                'ordering': ['-created_at', '-id'],
                'indexes': [
                    models.Index(fields=['disbursement', 'status'], name='liquidatio_disburs_7c8d9e_idx'),
                    models.Index(fields=['facility', 'status'], name='liquidatio_facilit_0f1a2b_idx'),
                ],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('remaining_amount__gte', 0)), name='liquidation_remaining_non_negative'),
                ],
            },
        ),
        migrations.CreateModel(
            name='LiquidationReceipt',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('amount', models.DecimalField(decimal_places=2, max_digits=12)),
                ('receipt_date', models.DateField()),
                ('receipt_number', models.CharField(blank=True, max_length=100)),
                ('description', models.CharField(blank=True, max_length=255)),
                ('file_reference', models.CharField(max_length=500)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('liquidation', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='receipts', to='liquidations.liquidation')),
                ('uploaded_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='uploaded_receipts', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['receipt_date', 'id'],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('amount__gt', 0)), name='liquidation_receipt_amount_positive'),
                ],
            },
        ),
    ]

import django.db.models.deletion
from decimal import Decimal

from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('facilities', '0001_initial'),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='FundAllocation',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('fund_type', models.CharField(choices=[('tuition', 'Tuition'), ('cola', 'COLA'), ('other', 'Other'), ('general', 'General')], max_length=20)),
                ('sponsor_name', models.CharField(max_length=255)),
                ('description', models.TextField(blank=True)),
                ('allocated_amount', models.DecimalField(decimal_places=2, max_digits=12)),
                ('utilized_amount', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=12)),
                ('remaining_amount', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=12)),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='created_fund_allocations', to=settings.AUTH_USER_MODEL)),
                ('facility', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='fund_allocations', to='facilities.facility')),
            ],
            options={
                'ordering': ['fund_type', '-remaining_amount', 'id'],
                'indexes': [
                    models.Index(fields=['facility', 'fund_type', 'is_active'], name='funds_funda_facilit_9a8b7c_idx'),
                ],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('allocated_amount__gte', 0)), name='fund_allocation_allocated_non_negative'),
                    models.CheckConstraint(condition=models.Q(('utilized_amount__gte', 0)), name='fund_allocation_utilized_non_negative'),
                    models.CheckConstraint(condition=models.Q(('remaining_amount__gte', 0)), name='fund_allocation_remaining_non_negative'),
                ],
            },
        ),
    ]

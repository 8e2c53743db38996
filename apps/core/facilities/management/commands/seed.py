import random
from datetime import timedelta
from decimal import Decimal

from django.core.management.base import BaseCommand
from django.db import transaction
from django.utils import timezone
from faker import Faker

from apps.core.attendance.models import AttendanceRecord
from apps.core.enrollment.models import EnrollmentVerification
from apps.core.facilities.models import Facility
from apps.core.facilities.services import assign_director
from apps.core.users.models import User
from apps.finance.funds.models import FundAllocation
from apps.finance.subscriptions.models import SubscriptionPlan

SEED_PASSWORD = 'password'

PLANS = (
    ('Monthly', Decimal('499.00'), 1, 0),
    ('Semester', Decimal('2499.00'), 6, 0),
    ('Annual', Decimal('4499.00'), 12, 0),
    ('Two-week trial', Decimal('1.00'), 0, 14),
)


class Command(BaseCommand):
    help = 'Seeds the database with demo data.'

    def add_arguments(self, parser):
        parser.add_argument('--beneficiaries', type=int, default=10)
        parser.add_argument('--facility-name', default='')

    def _user(self, username, role, facility, **extra):
        user, created = User.objects.get_or_create(
            username=username,
            defaults={'role': role, 'facility': facility, **extra},
        )
        if created:
            user.set_password(SEED_PASSWORD)
            user.save()
            self.stdout.write(self.style.SUCCESS(f'Successfully created {role} user: {username}'))
        return user

    @transaction.atomic
    def handle(self, *args, **options):
        self.stdout.write('Seeding database...')

        fake = Faker()
        today = timezone.localdate()

        facility, created = Facility.objects.get_or_create(
            name=options['facility_name'] or fake.city() + ' Aid Center',
            defaults={
                'address': fake.address(),
                'phone': fake.msisdn()[:20],
                'email': fake.company_email(),
            },
        )
        if created:
            self.stdout.write(self.style.SUCCESS(f'Successfully created facility: {facility.name}'))

        if not User.objects.filter(username='superadmin').exists():
            User.objects.create_superuser('superadmin', 'superadmin@example.com', SEED_PASSWORD)
            self.stdout.write(self.style.SUCCESS('Successfully created superadmin user.'))

        prefix = facility.code
        director = self._user(f'{prefix}_director', User.ROLE_DIRECTOR, facility, email=fake.email())
        if facility.director_id != director.pk:
            assign_director(facility=facility, director=director)
        self._user(f'{prefix}_finance', User.ROLE_FINANCE, facility, email=fake.email())
        caseworkers = [
            self._user(f'{prefix}_caseworker_{index}', User.ROLE_CASEWORKER, facility, email=fake.email())
            for index in (1, 2)
        ]

        for fund_type, _ in FundAllocation.TYPE_CHOICES:
            allocation, created = FundAllocation.objects.get_or_create(
                facility=facility,
                fund_type=fund_type,
                sponsor_name=fake.company(),
                defaults={'allocated_amount': Decimal(random.randrange(20000, 100000, 500))},
            )
            if created:
                self.stdout.write(self.style.SUCCESS(f'Successfully created {fund_type} allocation: {allocation.sponsor_name}'))

        sundays = [
            today - timedelta(days=offset)
            for offset in range(today.day)
            if (today - timedelta(days=offset)).weekday() == 6
        ]
        for index in range(options['beneficiaries']):
            beneficiary = self._user(
                f'{prefix}_beneficiary_{index + 1}',
                User.ROLE_BENEFICIARY,
                facility,
                first_name=fake.first_name(),
                last_name=fake.last_name(),
                caseworker=caseworkers[index % len(caseworkers)],
                is_scholar=random.random() < 0.4,
            )
            EnrollmentVerification.objects.get_or_create(
                beneficiary=beneficiary,
                defaults={
                    'enrollment_date': today.replace(day=1),
                    'is_scholar': beneficiary.is_scholar,
                    'document_reference': f'enrollment/{fake.uuid4()}.pdf',
                    'status': EnrollmentVerification.STATUS_APPROVED,
                    'reviewed_by': beneficiary.caseworker,
                    'reviewed_at': timezone.now(),
                },
            )
            for sunday in sundays:
                AttendanceRecord.objects.get_or_create(
                    beneficiary=beneficiary,
                    date=sunday,
                    defaults={
                        'recorded_by': beneficiary.caseworker,
                        'status': random.choice(
                            [AttendanceRecord.STATUS_PRESENT] * 4 + [AttendanceRecord.STATUS_ABSENT]
                        ),
                    },
                )

        for name, price, months, days in PLANS:
            plan, created = SubscriptionPlan.objects.get_or_create(
                name=name,
                defaults={'price': price, 'duration_in_months': months, 'duration_in_days': days},
            )
            if created:
                self.stdout.write(self.style.SUCCESS(f'Successfully created plan: {plan.name}'))

        self.stdout.write(self.style.SUCCESS('Database seeding complete!'))

from django.core.management.base import BaseCommand, CommandError

from apps.core.users.models import User
from apps.finance.aid_requests.models import AidRequest
from apps.finance.aid_requests.services import recalculate_cola_amounts


class Command(BaseCommand):
    help = 'Recalculate pending COLA request amounts from current attendance.'

    def add_arguments(self, parser):
        parser.add_argument('--beneficiary-id', type=int, help='Only recalculate for this beneficiary.')

    def handle(self, *args, **options):
        pending = AidRequest.objects.filter(
            fund_type=AidRequest.FUND_COLA,
            state__in=AidRequest.PENDING_STATES,
        )
        beneficiary_id = options.get('beneficiary_id')
        if beneficiary_id:
            if not User.objects.filter(pk=beneficiary_id, role=User.ROLE_BENEFICIARY).exists():
                raise CommandError(f'Beneficiary {beneficiary_id} does not exist.')
            pending = pending.filter(beneficiary_id=beneficiary_id)

        beneficiary_ids = sorted(set(pending.values_list('beneficiary_id', flat=True)))
        if not beneficiary_ids:
            self.stdout.write('No pending COLA requests found.')
            return

        updated = 0
        for beneficiary in User.objects.filter(pk__in=beneficiary_ids).order_by('pk'):
            changed = recalculate_cola_amounts(beneficiary=beneficiary)
            if changed:
                self.stdout.write(f'{beneficiary.username}: {changed} request(s) updated.')
            updated += changed

        self.stdout.write(self.style.SUCCESS(f'Successfully updated {updated} COLA request(s).'))

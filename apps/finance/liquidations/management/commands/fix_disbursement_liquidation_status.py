from django.core.management.base import BaseCommand

from apps.finance.disbursements.models import Disbursement
from apps.finance.liquidations.services import recompute_disbursement_liquidation


class Command(BaseCommand):
    help = 'Recompute liquidation totals on received disbursements from their approved liquidations.'

    def handle(self, *args, **options):
        received = Disbursement.objects.filter(status=Disbursement.STATUS_BENEFICIARY_RECEIVED).order_by('pk')
        fixed = 0
        for disbursement in received:
            before = (disbursement.liquidated_amount, disbursement.remaining_to_liquidate, disbursement.fully_liquidated)
            disbursement = recompute_disbursement_liquidation(disbursement)
            after = (disbursement.liquidated_amount, disbursement.remaining_to_liquidate, disbursement.fully_liquidated)
            if before != after:
                fixed += 1
                self.stdout.write(f'Disbursement {disbursement.pk}: {before} -> {after}')

        self.stdout.write(self.style.SUCCESS(f'Fixed {fixed} of {received.count()} disbursement(s).'))

from django.core.management.base import BaseCommand
from django.utils import timezone

from apps.finance.subscriptions.models import Subscription
from apps.finance.subscriptions.services import expire_lapsed_subscriptions


class Command(BaseCommand):
    help = 'Mark active subscriptions past their end date as expired.'

    def add_arguments(self, parser):
        parser.add_argument('--dry-run', action='store_true', help='List lapsed subscriptions without changing them.')

    def handle(self, *args, **options):
        today = timezone.localdate()
        if options['dry_run']:
            lapsed = Subscription.objects.filter(
                status=Subscription.STATUS_ACTIVE,
                end_date__lt=today,
            ).select_related('user', 'plan').order_by('pk')
            for subscription in lapsed:
                self.stdout.write(
                    f'[DRY-RUN] Would expire subscription {subscription.pk} '
                    f'for {subscription.user.username} ({subscription.plan.name}).'
                )
            self.stdout.write(f'Found {lapsed.count()} lapsed subscription(s).')
            return

        expired = expire_lapsed_subscriptions(today=today).instance
        for subscription in expired:
            self.stdout.write(f'Subscription {subscription.pk}: expired on {subscription.end_date}.')
        self.stdout.write(self.style.SUCCESS(f'Expired {len(expired)} subscription(s).'))

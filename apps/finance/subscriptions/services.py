"""
Subscription payment reconciliation.

Payment confirmations can arrive more than once for the same intent, from the
provider webhook and from the client polling. ``finalize_paid_transaction``
records at most one paid transaction per intent and extends or creates the
subscription in the same transaction.
"""
import logging

from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.utils import timezone

from apps.core.users.models import User
from apps.core.utils.effects import (
    PRIORITY_HIGH,
    RISK_MEDIUM,
    TransitionResult,
    audit_effect,
    notify_effect,
    transition,
)

from .models import Subscription, SubscriptionTransaction

logger = logging.getLogger(__name__)


def active_subscription_for(user, *, lock=False):
    queryset = Subscription.objects.filter(
        user=user,
        status=Subscription.STATUS_ACTIVE,
        end_date__gte=timezone.localdate(),
    ).order_by('-end_date', '-id')
    if lock:
        queryset = queryset.select_for_update()
    return queryset.first()


def _paid_transaction(payment_intent_id):
    return (
        SubscriptionTransaction.objects.select_related('subscription')
        .filter(payment_intent_id=payment_intent_id, status=SubscriptionTransaction.STATUS_PAID)
        .first()
    )


def _ensure_purchasable(plan):
    if plan.is_archived:
        raise ValidationError({'plan': f'The {plan.name} plan is no longer available.'})
    if plan.has_zero_duration:
        raise ValidationError({'plan': f'The {plan.name} plan has no duration.'})


def _activate(user, plan, payment_intent_id, payment_method, provider_txn_id):
    current = active_subscription_for(user, lock=True)
    old_plan = None
    if current is not None:
        old_plan = current.plan
        current.plan = plan
        current.end_date = plan.end_from(current.end_date)
        current.save(update_fields=['plan', 'end_date', 'updated_at'])
        subscription = current
    else:
        today = timezone.localdate()
        subscription = Subscription.objects.create(
            user=user,
            plan=plan,
            start_date=today,
            end_date=plan.end_from(today),
        )

    paid = SubscriptionTransaction.objects.create(
        user=user,
        subscription=subscription,
        old_plan=old_plan,
        new_plan=plan,
        payment_method=payment_method,
        amount_paid=plan.price,
        payment_intent_id=payment_intent_id,
        provider_txn_id=provider_txn_id,
        status=SubscriptionTransaction.STATUS_PAID,
        start_date=subscription.start_date,
        end_date=subscription.end_date,
        notes=f'Payment {provider_txn_id}'.strip(),
    )
    return subscription, paid


@transition
def finalize_paid_transaction(*, user, plan, payment_intent_id, payment_method='', provider_txn_id=''):
    if not payment_intent_id:
        raise ValidationError({'payment_intent_id': 'A payment intent id is required.'})

    # Serialises finalisation for one payer.
    user = User.objects.select_for_update().get(pk=user.pk)

    existing = _paid_transaction(payment_intent_id)
    if existing is not None:
        logger.info('Payment intent %s already finalized.', payment_intent_id)
        return TransitionResult(existing.subscription, [])

    _ensure_purchasable(plan)

    try:
        with transaction.atomic():
            subscription, paid = _activate(user, plan, payment_intent_id, payment_method, provider_txn_id)
    except IntegrityError:
        existing = _paid_transaction(payment_intent_id)
        if existing is None:
            raise
        logger.info('Payment intent %s finalized concurrently.', payment_intent_id)
        return TransitionResult(existing.subscription, [])

    logger.info(
        'Payment intent %s finalized: subscription %s now ends %s.',
        payment_intent_id,
        subscription.pk,
        subscription.end_date,
    )
    payload = {
        'subscription_id': subscription.pk,
        'transaction_id': paid.pk,
        'plan_id': plan.pk,
        'old_plan_id': paid.old_plan_id,
        'amount_paid': str(paid.amount_paid),
        'end_date': subscription.end_date.isoformat(),
    }
    return TransitionResult(
        subscription,
        [
            audit_effect(
                'subscription_payment_finalized',
                'Subscription payment recorded.',
                entity=paid,
                actor=user,
                payload=payload,
                risk_level=RISK_MEDIUM,
            ),
            notify_effect(
                [user.pk],
                'subscription_payment_received',
                'Payment received',
                f'Your {plan.name} subscription is active until {subscription.end_date:%B %d, %Y}.',
                payload=payload,
            ),
        ],
    )


@transition
def expire_lapsed_subscriptions(*, today=None):
    """Mark active subscriptions whose end date has passed as expired."""
    today = today or timezone.localdate()
    lapsed = list(
        Subscription.objects.select_for_update()
        .select_related('plan')
        .filter(status=Subscription.STATUS_ACTIVE, end_date__lt=today)
        .order_by('pk')
    )

    effects = []
    for subscription in lapsed:
        subscription.status = Subscription.STATUS_EXPIRED
        subscription.save(update_fields=['status', 'updated_at'])
        payload = {
            'subscription_id': subscription.pk,
            'plan_id': subscription.plan_id,
            'end_date': subscription.end_date.isoformat(),
        }
        effects.append(
            audit_effect(
                'subscription_expired',
                'Subscription expired.',
                entity=subscription,
                payload=payload,
                risk_level=RISK_MEDIUM,
            )
        )
        effects.append(
            notify_effect(
                [subscription.user_id],
                'subscription_expired',
                'Subscription expired',
                f'Your {subscription.plan.name} subscription ended on {subscription.end_date:%B %d, %Y}.',
                payload=payload,
                priority=PRIORITY_HIGH,
            )
        )

    if lapsed:
        logger.info('Expired %s subscription(s) ending before %s.', len(lapsed), today)
    return TransitionResult(lapsed, effects)

from datetime import date, datetime, timedelta

from conftest import NOW, WEEKDAYS

from app.models import Credit, Cycle, Invoice, Order, Refund, Subscription
from app.services import billing
from app.services.checkout import create_subscription
from app.services.lifecycle import SubscriptionLifecycleManager
from app.services.orders import find_order


def _orders(db, subscription, status=None):
    query = db.query(Order).filter(Order.subscription_id == subscription.id)
    if status:
        query = query.filter(Order.status == status)
    return query.order_by(Order.service_date.asc()).all()


def test_checkout_schedules_paid_cycle(db, subscribe):
    subscription = subscribe()

    assert subscription.status == 'active'
    assert subscription.renewal_date == date(2025, 1, 13)
    assert float(subscription.price_per_cycle) == 740.0
    orders = _orders(db, subscription)
    assert [o.service_date for o in orders] == [date(2025, 1, d) for d in (7, 8, 9, 10)]
    assert all(float(o.unit_price) == 185.0 for o in orders)


def test_resume_succeeds_only_from_paused(db, customer, subscribe):
    subscription = subscribe()
    manager = SubscriptionLifecycleManager(db, NOW)

    result = manager.resume(subscription.id, customer)
    assert not result.success
    assert result.error_code == 'InvalidTransition'

    assert manager.pause(subscription.id, customer).success
    result = manager.resume(subscription.id, customer)
    assert result.success, result.error
    assert result.data['scenario'] == 'same_cycle'

    db.refresh(subscription)
    assert subscription.status == 'active'
    assert subscription.paused_at is None

    assert manager.cancel(subscription.id, customer, refund_choice='credit').success
    result = manager.resume(subscription.id, customer)
    assert result.error_code == 'InvalidTransition'


def test_pause_cancels_orders_and_mints_credits(db, customer, subscribe):
    subscription = subscribe()
    manager = SubscriptionLifecycleManager(db, NOW)

    result = manager.pause(subscription.id, customer)

    assert result.success, result.error
    assert result.data['orders_cancelled'] == 4
    assert result.data['credit_amount'] == 740.0
    db.refresh(subscription)
    assert subscription.status == 'paused'
    assert subscription.paused_from == date(2025, 1, 7)
    assert len(_orders(db, subscription, 'cancelled')) == 4
    credits = db.query(Credit).filter(Credit.reason == 'pause').all()
    assert len(credits) == 4
    assert all(c.expires_at == NOW + timedelta(days=90) for c in credits)


def test_pause_one_hour_before_delivery_is_rejected(db, customer, subscribe):
    subscription = subscribe()
    # Tuesday lunch starts 07:00 UTC
    manager = SubscriptionLifecycleManager(db, datetime(2025, 1, 7, 6, 0))

    result = manager.pause(subscription.id, customer)

    assert not result.success
    assert result.error_code == 'NoticeViolation'
    db.refresh(subscription)
    assert subscription.status == 'active'
    assert db.query(Credit).count() == 0


def test_pause_with_later_start_respects_notice(db, customer, subscribe):
    subscription = subscribe()
    manager = SubscriptionLifecycleManager(db, datetime(2025, 1, 7, 6, 0))

    result = manager.pause(subscription.id, customer, pause_from=date(2025, 1, 9))

    assert result.success, result.error
    assert result.data['orders_cancelled'] == 2
    assert len(_orders(db, subscription, 'scheduled')) == 2


def test_pause_rejects_until_before_start(db, customer, subscribe):
    subscription = subscribe()
    manager = SubscriptionLifecycleManager(db, NOW)

    result = manager.pause(subscription.id, customer, pause_from=date(2025, 1, 9), until=date(2025, 1, 8))

    assert result.error_code == 'ValidationError'


def test_three_skips_with_limit_two(db, customer, subscribe):
    subscription = subscribe()
    manager = SubscriptionLifecycleManager(db, NOW)

    outcomes = [
        manager.apply_skip(subscription.id, customer, date(2025, 1, day), 'lunch')
        for day in (7, 8, 9)
    ]

    assert [r.success for r in outcomes] == [True, True, False]
    assert outcomes[2].error_code == 'LimitExceeded'
    cycle = db.query(Cycle).filter(Cycle.subscription_id == subscription.id).one()
    assert cycle.skips_used == {'lunch': 2}
    assert len(_orders(db, subscription, 'skipped_by_customer')) == 2
    assert db.query(Credit).filter(Credit.reason == 'skip').count() == 2


def test_skip_after_cutoff_is_rejected(db, customer, subscribe):
    subscription = subscribe()
    # 07:00 UTC delivery, 3 hour cutoff
    manager = SubscriptionLifecycleManager(db, datetime(2025, 1, 7, 4, 30))

    result = manager.apply_skip(subscription.id, customer, date(2025, 1, 7), 'lunch')

    assert result.error_code == 'NoticeViolation'


def test_skip_of_unknown_order_is_not_found(db, customer, subscribe):
    subscription = subscribe()
    manager = SubscriptionLifecycleManager(db, NOW)

    result = manager.apply_skip(subscription.id, customer, date(2025, 1, 11), 'lunch')

    assert result.error_code == 'NotFound'


def test_cancel_refund_only_never_creates_credit(db, customer, subscribe, platform):
    platform.cancel_refund_policy = 'refund_only'
    db.commit()
    subscription = subscribe()
    manager = SubscriptionLifecycleManager(db, NOW)

    result = manager.cancel(subscription.id, customer, reason='moving', refund_choice='credit')

    assert result.success, result.error
    assert result.data['settled_as'] == 'refund'
    assert db.query(Credit).count() == 0
    refund = db.query(Refund).one()
    assert float(refund.amount) == 740.0
    assert refund.status == 'pending'
    assert refund.invoice_id is not None


def test_cancel_customer_choice_credit(db, customer, subscribe):
    subscription = subscribe()
    manager = SubscriptionLifecycleManager(db, NOW)

    result = manager.cancel(subscription.id, customer, reason='too spicy', refund_choice='credit')

    assert result.success, result.error
    db.refresh(subscription)
    assert subscription.status == 'cancelled'
    assert subscription.cancelled_at == NOW
    assert subscription.cancellation_reason == 'too spicy'
    credits = db.query(Credit).all()
    assert len(credits) == 1
    assert credits[0].reason == 'cancellation'
    assert float(credits[0].amount) == 740.0
    assert credits[0].vendor_id is None
    assert len(_orders(db, subscription, 'cancelled')) == 4
    assert db.query(Refund).count() == 0


def test_cancel_customer_choice_requires_choice(db, customer, subscribe):
    subscription = subscribe()
    manager = SubscriptionLifecycleManager(db, NOW)

    result = manager.cancel(subscription.id, customer)

    assert result.error_code == 'ValidationError'
    db.refresh(subscription)
    assert subscription.status == 'active'


def test_cancel_folds_existing_credits_into_balance(db, customer, subscribe):
    subscription = subscribe()
    manager = SubscriptionLifecycleManager(db, NOW)
    assert manager.apply_skip(subscription.id, customer, date(2025, 1, 7), 'lunch').success

    preview = manager.cancel_preview(subscription.id, customer)
    assert preview.data['remaining_meals_value'] == 555.0
    assert preview.data['existing_credits_value'] == 185.0
    assert preview.data['total_refund_credit'] == 740.0

    result = manager.cancel(subscription.id, customer, refund_choice='credit')
    assert result.data['balance'] == 740.0
    statuses = sorted(c.status for c in db.query(Credit).all())
    assert statuses == ['available', 'void']


def test_actions_require_owner(db, make_user, subscribe):
    subscription = subscribe()
    stranger = make_user('ravi@example.com')
    manager = SubscriptionLifecycleManager(db, NOW)

    assert manager.pause(subscription.id, stranger).error_code == 'Unauthorized'
    assert manager.pause(subscription.id, None).error_code == 'NotAuthenticated'
    assert manager.pause('not-a-uuid', stranger).error_code == 'NotFound'


def test_previews_do_not_write(db, customer, subscribe):
    subscription = subscribe()
    manager = SubscriptionLifecycleManager(db, NOW)

    pause = manager.pause_preview(subscription.id, customer)
    skip = manager.skip_preview(subscription.id, customer, date(2025, 1, 8), 'lunch')

    assert pause.data['orders_count'] == 4
    assert pause.data['total_amount'] == 740.0
    assert pause.data['notice_ok'] is True
    assert skip.data['can_skip'] is True
    assert skip.data['skips_remaining'] == 2
    db.refresh(subscription)
    assert subscription.status == 'active'
    assert db.query(Credit).count() == 0


def test_resume_after_renewal_date_bills_new_cycle_with_credits(db, customer, subscribe):
    subscription = subscribe()
    assert SubscriptionLifecycleManager(db, NOW).pause(subscription.id, customer).success

    later = datetime(2025, 1, 14, 0, 0)
    result = SubscriptionLifecycleManager(db, later).resume(subscription.id, customer)

    assert result.success, result.error
    assert result.data['scenario'] == 'new_cycle'
    assert result.data['resume_on'] == '2025-01-16'
    invoice = db.query(Invoice).filter(Invoice.kind == 'resume').one()
    assert float(invoice.credits_applied) == 370.0
    assert invoice.status == 'paid'
    scheduled = _orders(db, subscription, 'scheduled')
    assert [o.service_date for o in scheduled] == [date(2025, 1, 16), date(2025, 1, 17)]
    db.refresh(subscription)
    assert subscription.renewal_date == date(2025, 1, 20)


def test_update_preferences_applies_next_cycle(db, customer, subscribe):
    subscription = subscribe()
    manager = SubscriptionLifecycleManager(db, NOW)

    result = manager.update_preferences(
        subscription.id, customer, {'dinner': {'weekdays': [5, 6]}, 'lunch': {'weekdays': [0]}}
    )

    assert result.success, result.error
    db.refresh(subscription)
    assert subscription.preferences == {'lunch': {'weekdays': WEEKDAYS, 'instructions': None}}
    assert list(subscription.pending_preferences) == ['lunch', 'dinner']


def test_auto_cancel_after_max_pause(db, customer, subscribe):
    subscription = subscribe()
    assert SubscriptionLifecycleManager(db, NOW).pause(subscription.id, customer).success

    early = SubscriptionLifecycleManager(db, NOW + timedelta(days=30))
    assert not early.is_auto_cancel_eligible(db.get(Subscription, subscription.id))
    assert early.force_cancel(subscription.id).error_code == 'InvalidTransition'

    later = SubscriptionLifecycleManager(db, NOW + timedelta(days=61))
    result = later.force_cancel(subscription.id)

    assert result.success, result.error
    db.refresh(subscription)
    assert subscription.status == 'cancelled'
    assert subscription.cancellation_reason == 'auto_cancelled_after_pause'
    credit = db.query(Credit).filter(Credit.reason == 'pause_auto_cancel').one()
    assert float(credit.amount) == 740.0
    assert db.query(Credit).filter(Credit.reason == 'pause', Credit.status == 'void').count() == 4


def test_expire_only_from_active(db, customer, subscribe):
    subscription = subscribe()
    manager = SubscriptionLifecycleManager(db, NOW)
    assert manager.pause(subscription.id, customer).success

    assert manager.expire(subscription.id).error_code == 'InvalidTransition'


def test_cancel_refund_is_capped_at_cash_paid(db, customer, subscribe, platform):
    db.add(
        Credit(
            consumer_id=customer.id,
            amount=300,
            reason='cancellation',
            status='available',
            expires_at=NOW + timedelta(days=90),
        )
    )
    platform.cancel_refund_policy = 'refund_only'
    db.commit()
    subscription = subscribe()
    invoice = db.query(Invoice).filter(Invoice.subscription_id == subscription.id).one()
    assert float(invoice.credits_applied) == 300.0
    assert float(invoice.total_amount) == 440.0
    manager = SubscriptionLifecycleManager(db, NOW)

    preview = manager.cancel_preview(subscription.id, customer)
    assert preview.data['total_refund_credit'] == 740.0
    assert preview.data['refundable_cash'] == 440.0

    result = manager.cancel(subscription.id, customer)

    assert result.success, result.error
    assert result.data['refund_amount'] == 440.0
    assert result.data['credits_reinstated'] == 300.0
    assert result.data['credit_id'] is None
    refund = db.query(Refund).one()
    assert float(refund.amount) == 440.0
    assert refund.invoice_id == invoice.id
    credit = db.query(Credit).one()
    assert credit.status == 'available'
    assert float(credit.amount) == 300.0
    assert credit.used_invoice_id is None


def test_cancel_too_close_to_delivery_is_rejected(db, customer, subscribe):
    subscription = subscribe()
    manager = SubscriptionLifecycleManager(db, datetime(2025, 1, 7, 6, 0))

    result = manager.cancel(subscription.id, customer, refund_choice='credit')

    assert result.error_code == 'NoticeViolation'
    db.refresh(subscription)
    assert subscription.status == 'active'
    assert len(_orders(db, subscription, 'scheduled')) == 4
    assert db.query(Credit).count() == 0


def test_resume_too_close_to_delivery_is_rejected(db, customer, subscribe):
    subscription = subscribe()
    assert SubscriptionLifecycleManager(db, NOW).pause(subscription.id, customer).success

    # Wednesday lunch is 07:00 UTC, 19 hours away with 24 hours notice
    manager = SubscriptionLifecycleManager(db, datetime(2025, 1, 7, 12, 0))
    result = manager.resume(subscription.id, customer, resume_on=date(2025, 1, 8))

    assert result.error_code == 'NoticeViolation'
    db.refresh(subscription)
    assert subscription.status == 'paused'
    assert len(_orders(db, subscription, 'scheduled')) == 0


def test_cancel_credit_only_from_paused(db, customer, subscribe, platform):
    platform.cancel_refund_policy = 'credit_only'
    db.commit()
    subscription = subscribe()
    manager = SubscriptionLifecycleManager(db, NOW)
    assert manager.pause(subscription.id, customer).success

    result = manager.cancel(subscription.id, customer, refund_choice='refund')

    assert result.success, result.error
    assert result.data['settled_as'] == 'credit'
    assert result.data['balance'] == 740.0
    assert db.query(Refund).count() == 0
    credit = db.query(Credit).filter(Credit.status == 'available').one()
    assert credit.reason == 'cancellation'
    assert float(credit.amount) == 740.0
    assert db.query(Credit).filter(Credit.reason == 'pause', Credit.status == 'void').count() == 4
    db.refresh(subscription)
    assert subscription.status == 'cancelled'


def test_cancel_trial_credits_remaining_meals(db, customer, vendor, plan, address, trial_type):
    subscription, invoice = create_subscription(
        db,
        customer,
        vendor.id,
        plan.id,
        address.id,
        {'lunch': {'weekdays': WEEKDAYS}},
        start_date=date(2025, 1, 7),
        trial_type_id=trial_type.id,
        now=NOW,
    )
    billing.settle_invoice(db, invoice, NOW, payment_id='pay_trial')
    db.commit()
    assert subscription.status == 'trial'

    result = SubscriptionLifecycleManager(db, NOW).cancel(subscription.id, customer, refund_choice='credit')

    assert result.success, result.error
    assert result.data['balance'] == 444.0
    db.refresh(subscription)
    assert subscription.status == 'cancelled'
    assert len(_orders(db, subscription, 'cancelled')) == 3


def test_cancel_of_closed_subscription_is_invalid(db, customer, subscribe):
    manager = SubscriptionLifecycleManager(db, NOW)
    cancelled = subscribe()
    assert manager.cancel(cancelled.id, customer, refund_choice='credit').success

    result = manager.cancel(cancelled.id, customer, refund_choice='credit')
    assert result.error_code == 'InvalidTransition'

    expired = subscribe(start_date=date(2025, 1, 14))
    assert manager.expire(expired.id).success
    result = manager.cancel(expired.id, customer, refund_choice='credit')
    assert result.error_code == 'InvalidTransition'


def test_skip_after_bounded_pause(db, customer, subscribe):
    subscription = subscribe()
    manager = SubscriptionLifecycleManager(db, NOW)
    assert manager.pause(subscription.id, customer, pause_from=date(2025, 1, 8), until=date(2025, 1, 8)).success

    inside = manager.apply_skip(subscription.id, customer, date(2025, 1, 8), 'lunch')
    after = manager.apply_skip(subscription.id, customer, date(2025, 1, 9), 'lunch')

    assert inside.error_code == 'InvalidTransition'
    assert after.success, after.error
    order = find_order(db, subscription.id, date(2025, 1, 9), 'lunch')
    assert order.status == 'skipped_by_customer'

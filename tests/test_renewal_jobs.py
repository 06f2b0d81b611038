from datetime import date, datetime, timedelta

import pytest

from conftest import NOW

from app.core.exceptions import ValidationError
from app.models import Credit, Cycle, Invoice, JobRun, Order, Subscription
from app.services import billing, jobs
from app.services.cycles import utcnow
from app.services.jobs import auto_cancel_paused, end_elapsed_pauses, run_job
from app.services.lifecycle import SubscriptionLifecycleManager
from app.services.renewal import fail_overdue_invoices, renew_due_subscriptions

RENEWAL_DAY = datetime(2025, 1, 13, 0, 0)


def test_renewal_opens_next_cycle(db, subscribe):
    subscription = subscribe()

    assert renew_due_subscriptions(db, NOW)['due'] == 0
    counts = renew_due_subscriptions(db, RENEWAL_DAY)

    assert counts == {'due': 1, 'renewed': 1, 'paid_by_credits': 0, 'failed': 0}
    db.refresh(subscription)
    assert subscription.renewal_date == date(2025, 1, 20)
    cycle = db.query(Cycle).filter(Cycle.cycle_start == date(2025, 1, 13)).one()
    assert cycle.cycle_end == date(2025, 1, 19)
    assert cycle.skips_used == {}
    invoice = db.query(Invoice).filter(Invoice.kind == 'renewal').one()
    assert invoice.status == 'pending_payment'
    assert float(invoice.total_amount) == 925.0

    assert renew_due_subscriptions(db, RENEWAL_DAY)['due'] == 0


def test_renewal_spends_skip_credit(db, customer, subscribe):
    subscription = subscribe()
    assert SubscriptionLifecycleManager(db, NOW).apply_skip(subscription.id, customer, date(2025, 1, 8), 'lunch').success

    renew_due_subscriptions(db, RENEWAL_DAY)

    invoice = db.query(Invoice).filter(Invoice.kind == 'renewal').one()
    assert float(invoice.credits_applied) == 185.0
    assert float(invoice.total_amount) == 740.0
    assert db.query(Credit).filter(Credit.status == 'used').count() == 1

    billing.settle_invoice(db, invoice, RENEWAL_DAY, payment_id='pay_renewal')
    db.commit()
    new_orders = (
        db.query(Order)
        .filter(Order.subscription_id == subscription.id, Order.service_date >= date(2025, 1, 13))
        .count()
    )
    assert new_orders == 5


def test_renewal_applies_pending_preferences(db, customer, subscribe):
    subscription = subscribe()
    manager = SubscriptionLifecycleManager(db, NOW)
    assert manager.update_preferences(subscription.id, customer, {'lunch': {'weekdays': [0, 2]}}).success

    renew_due_subscriptions(db, RENEWAL_DAY)

    db.refresh(subscription)
    assert subscription.pending_preferences is None
    assert subscription.preferences['lunch']['weekdays'] == [0, 2]
    invoice = db.query(Invoice).filter(Invoice.kind == 'renewal').one()
    assert float(invoice.total_amount) == 370.0


def test_overdue_invoice_expires_subscription(db, subscribe):
    subscription = subscribe(paid=False)

    assert fail_overdue_invoices(db, utcnow())['overdue'] == 0
    counts = fail_overdue_invoices(db, utcnow() + timedelta(days=4))

    assert counts == {'overdue': 1, 'failed': 1, 'expired': 1}
    db.refresh(subscription)
    assert subscription.status == 'expired'
    assert subscription.cancellation_reason == 'renewal_payment_failed'
    assert db.query(Invoice).one().status == 'failed'


def test_elapsed_pause_returns_to_active(db, customer, subscribe):
    subscription = subscribe()
    manager = SubscriptionLifecycleManager(db, NOW)
    result = manager.pause(subscription.id, customer, pause_from=date(2025, 1, 8), until=date(2025, 1, 8))
    assert result.data['orders_cancelled'] == 1

    assert end_elapsed_pauses(db, NOW) == {'elapsed': 0, 'resumed': 0}
    counts = end_elapsed_pauses(db, datetime(2025, 1, 9, 0, 0))

    assert counts == {'elapsed': 1, 'resumed': 1}
    db.refresh(subscription)
    assert subscription.status == 'active'
    scheduled = db.query(Order).filter(Order.status == 'scheduled').count()
    assert scheduled == 3


def test_auto_cancel_job_only_touches_long_pauses(db, customer, subscribe):
    subscription = subscribe()
    assert SubscriptionLifecycleManager(db, NOW).pause(subscription.id, customer).success

    assert auto_cancel_paused(db, NOW + timedelta(days=10)) == {'paused': 1, 'eligible': 0, 'cancelled': 0}
    counts = auto_cancel_paused(db, NOW + timedelta(days=61))

    assert counts == {'paused': 1, 'eligible': 1, 'cancelled': 1}
    assert db.get(Subscription, subscription.id).status == 'cancelled'


@pytest.mark.asyncio
async def test_run_job_records_run(db, subscribe):
    subscribe()

    run = await run_job(db, 'renewals', now=RENEWAL_DAY)

    assert run.status == 'success'
    assert run.result['renewed'] == 1
    assert run.finished_at is not None
    assert db.query(JobRun).count() == 1


@pytest.mark.asyncio
async def test_run_job_records_failure(db, platform, monkeypatch):
    def boom(db, now):
        raise RuntimeError('disk full')

    monkeypatch.setitem(jobs.JOB_HANDLERS, 'credit_expiry', boom)

    run = await run_job(db, 'credit_expiry', now=NOW)

    assert run.status == 'failed'
    assert run.error == 'disk full'


@pytest.mark.asyncio
async def test_run_job_rejects_unknown_job(db, platform):
    with pytest.raises(ValidationError):
        await run_job(db, 'compact_everything', now=NOW)
    assert db.query(JobRun).count() == 0

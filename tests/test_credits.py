import uuid
from datetime import date, timedelta

import pytest

from conftest import NOW

from app.core.exceptions import InvalidTransitionError, ValidationError
from app.models import Credit, Invoice, Order
from app.services.credits import (
    apply_credits_to_invoice,
    available_credits,
    credit_summary,
    expire_credits,
    mint_credit,
    reinstate_spent_credits,
)
from app.services.orders import update_order_status


def _invoice(db, subscription, total):
    invoice = Invoice(
        subscription_id=subscription.id,
        consumer_id=subscription.consumer_id,
        vendor_id=subscription.vendor_id,
        kind='renewal',
        status='pending_payment',
        total_amount=total,
        lines=[],
    )
    db.add(invoice)
    db.flush()
    return invoice


def test_credits_apply_fifo_and_split(db, subscribe, platform):
    subscription = subscribe()
    older = mint_credit(db, subscription, 100, 'skip', platform, NOW - timedelta(days=5))
    newer = mint_credit(db, subscription, 50, 'skip', platform, NOW)
    invoice = _invoice(db, subscription, 120)

    applied = apply_credits_to_invoice(db, invoice, NOW)

    assert applied == 120.0
    assert float(invoice.total_amount) == 0.0
    assert float(invoice.credits_applied) == 120.0
    assert older.status == 'used'
    assert newer.status == 'used'
    assert float(newer.amount) == 20.0
    leftover = available_credits(db, subscription.consumer_id, NOW)
    assert [float(c.amount) for c in leftover] == [30.0]
    assert leftover[0].expires_at == newer.expires_at


def test_reinstate_spent_credits_newest_first(db, subscribe, platform):
    subscription = subscribe()
    first = mint_credit(db, subscription, 100, 'skip', platform, NOW)
    invoice = _invoice(db, subscription, 100)
    apply_credits_to_invoice(db, invoice, NOW - timedelta(days=1))
    second = mint_credit(db, subscription, 80, 'skip', platform, NOW)
    later = _invoice(db, subscription, 80)
    apply_credits_to_invoice(db, later, NOW)

    reinstated = reinstate_spent_credits(db, [invoice.id, later.id], 120, NOW)

    assert reinstated == [second, first]
    assert second.status == 'available'
    assert float(second.amount) == 80.0
    assert float(first.amount) == 40.0
    assert first.used_invoice_id is None
    assert db.query(Credit).count() == 2
    assert reinstate_spent_credits(db, [invoice.id], 0, NOW) == []

def test_vendor_credits_stay_with_vendor(db, subscribe, platform):
    subscription = subscribe()
    mint_credit(db, subscription, 80, 'skip', platform, NOW)
    mint_credit(db, subscription, 40, 'cancellation', platform, NOW, vendor_scoped=False)

    other_vendor = available_credits(db, subscription.consumer_id, NOW, vendor_id=uuid.uuid4())
    same_vendor = available_credits(db, subscription.consumer_id, NOW, vendor_id=subscription.vendor_id)

    assert [c.reason for c in other_vendor] == ['cancellation']
    assert len(same_vendor) == 2


def test_mint_rejects_non_positive_amount(db, subscribe, platform):
    subscription = subscribe()
    with pytest.raises(ValidationError):
        mint_credit(db, subscription, 0, 'skip', platform, NOW)


def test_expire_credits_and_summary(db, subscribe, platform):
    subscription = subscribe()
    mint_credit(db, subscription, 60, 'skip', platform, NOW - timedelta(days=100))
    mint_credit(db, subscription, 25, 'skip', platform, NOW)
    db.commit()

    assert expire_credits(db, NOW) == 1
    summary = credit_summary(db, subscription.consumer_id, NOW)

    assert summary['available_total'] == 25.0
    assert summary['expired_total'] == 60.0
    assert len(summary['items']) == 2


def test_vendor_ops_failure_mints_credit(db, subscribe, vendor):
    subscription = subscribe()
    order = db.query(Order).filter(Order.service_date == date(2025, 1, 7)).one()

    update_order_status(db, vendor, order.id, 'failed_ops', NOW, reason='gas ran out')

    assert order.status == 'failed_ops'
    credit = db.query(Credit).one()
    assert credit.reason == 'ops_failure'
    assert float(credit.amount) == 185.0
    assert credit.source_order_id == order.id


def test_delivered_order_cannot_change_again(db, subscribe, vendor):
    subscribe()
    order = db.query(Order).filter(Order.service_date == date(2025, 1, 8)).one()
    update_order_status(db, vendor, order.id, 'delivered', NOW)

    with pytest.raises(InvalidTransitionError):
        update_order_status(db, vendor, order.id, 'no_show', NOW)
    assert db.query(Credit).count() == 0

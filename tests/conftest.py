import os
import sys
from datetime import datetime, time
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault('DATABASE_URL', 'sqlite://')
os.environ.setdefault('APP_ENV', 'test')
os.environ.setdefault('SECRET_KEY', 'test-secret-key')
os.environ.setdefault('CRON_SECRET', 'test-cron-secret')

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.security import create_access_token, hash_password
from app.database import get_db
from app.models import Address, Base, Plan, PlatformSetting, TrialType, User, Vendor, VendorSlot
from app.services import billing
from app.services.checkout import create_subscription

# Monday 2025-01-06, 05:30 in Asia/Kolkata. Lunch on Tuesday 2025-01-07 starts at 07:00 UTC.
NOW = datetime(2025, 1, 6, 0, 0)
WEEKDAYS = [0, 1, 2, 3, 4]


@pytest.fixture
def engine():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def platform(db):
    row = PlatformSetting(
        id=1,
        delivery_fee_per_meal=20,
        commission_pct=0.1,
        skip_cutoff_hours=3,
        credit_expiry_days=90,
        pause_notice_hours=24,
        resume_notice_hours=24,
        cancel_notice_hours=24,
        max_pause_days=60,
        cancel_refund_policy='customer_choice',
        timezone='Asia/Kolkata',
    )
    db.add(row)
    db.commit()
    return row


@pytest.fixture
def make_user(db):
    def factory(email, roles=('customer',), password='password123'):
        user = User(
            email=email,
            full_name=email.split('@')[0].title(),
            password_hash=hash_password(password, iterations=1000),
            roles=list(roles),
            is_active=True,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return factory


@pytest.fixture
def customer(make_user):
    return make_user('asha@example.com')


@pytest.fixture
def admin(make_user):
    return make_user('admin@example.com', roles=('admin',))


@pytest.fixture
def vendor(db, make_user, platform):
    owner = make_user('chef@example.com', roles=('customer', 'vendor'))
    vendor = Vendor(
        owner_id=owner.id,
        display_name="Meera's Kitchen",
        slug='meeras-kitchen',
        zone='indiranagar',
        cuisine='South Indian',
        veg_only=True,
        status='active',
    )
    db.add(vendor)
    db.flush()
    for slot, start, end, price in (
        ('breakfast', time(8, 0), time(9, 0), 100),
        ('lunch', time(12, 30), time(13, 30), 150),
        ('dinner', time(19, 30), time(20, 30), 120),
    ):
        db.add(
            VendorSlot(
                vendor_id=vendor.id,
                slot=slot,
                delivery_window_start=start,
                delivery_window_end=end,
                base_price=price,
                is_enabled=True,
            )
        )
    db.commit()
    db.refresh(vendor)
    return vendor


@pytest.fixture
def plan(db):
    row = Plan(
        name='Weekly',
        period_type='weekly',
        allowed_slots=['breakfast', 'lunch', 'dinner'],
        skip_limits={'breakfast': 2, 'lunch': 2, 'dinner': 2},
        skip_credit=True,
        active=True,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


@pytest.fixture
def trial_type(db):
    row = TrialType(
        name='3-day taster',
        duration_days=3,
        max_meals=3,
        allowed_slots=['lunch', 'dinner'],
        pricing_mode='per_meal',
        discount_pct=0.2,
        cooldown_days=30,
        active=True,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


@pytest.fixture
def address(db, customer):
    row = Address(
        user_id=customer.id,
        label='Home',
        line1='12 CMH Road',
        city='Bengaluru',
        pincode='560038',
        is_default=True,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


@pytest.fixture
def subscribe(db, customer, vendor, plan, address):
    """Create a paid weekly lunch subscription starting Tuesday 2025-01-07."""

    def factory(preferences=None, start_date=None, paid=True):
        preferences = preferences or {'lunch': {'weekdays': WEEKDAYS}}
        subscription, invoice = create_subscription(
            db,
            customer,
            vendor.id,
            plan.id,
            address.id,
            preferences,
            start_date=start_date or NOW.date().replace(day=7),
            now=NOW,
        )
        if paid:
            billing.settle_invoice(db, invoice, NOW, payment_id='pay_test_1')
            db.commit()
        db.refresh(subscription)
        return subscription

    return factory


@pytest.fixture
def client(db):
    from app.main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    test_client = TestClient(app)
    yield test_client
    app.dependency_overrides.clear()


def auth_headers(user):
    return {'Authorization': f'Bearer {create_access_token(user.email)}'}

"""
Pytest fixtures for marketpay backend tests.

Provides the app on an in-memory database, market entities (stores,
contracts, stalls, attendances), and helpers for gateway credentials.
"""

import base64
from datetime import date, timedelta
from decimal import Decimal

import pytest
from marketpay import create_app
from marketpay.extensions import db
from marketpay.models import Attendance, Contract, Owner, Section, Stall, Store, Transaction
from marketpay.models.payments import STATE_PENDING, STATUS_PENDING
from marketpay.time_utils import utcnow


CLICK_TENANT = "bozor"
CLICK_SERVICE_ID = "84296"
CLICK_SECRET = "click-secret"
PAYME_LOGIN = "Paycom"
PAYME_KEY = "payme-test-key"
OPERATOR_TOKEN = "operator-test-token"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'CLICK_TENANTS': {
            CLICK_TENANT: {
                'service_id': CLICK_SERVICE_ID,
                'merchant_id': '46927',
                'secret_key': CLICK_SECRET,
            },
        },
        'CLICK_TENANT_ID': CLICK_TENANT,
        'PAYME_LOGIN': PAYME_LOGIN,
        'PAYME_KEY': PAYME_KEY,
        'OPERATOR_API_TOKEN': OPERATOR_TOKEN,
        'PENDING_EXPIRY_MINUTES': 720,
        'MAX_PREPAID_MONTHS': 24,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def section(db_session):
    section = Section(name="Row A")
    db_session.add(section)
    db_session.commit()
    return section


@pytest.fixture(scope='function')
def owner(db_session):
    owner = Owner(full_name="Karimov Aziz", tin="301234567")
    db_session.add(owner)
    db_session.commit()
    return owner


def make_contract(store_number, fee="500000", issue_date=date(2024, 1, 15), section=None, owner=None,
                  is_active=True):
    """Create a store plus an active contract on it."""
    store = Store(store_number=store_number, section_id=section.id if section else None)
    db.session.add(store)
    db.session.flush()
    contract = Contract(
        store_id=store.id,
        owner_id=owner.id if owner else None,
        shop_monthly_fee=Decimal(fee) if fee is not None else None,
        issue_date=issue_date,
        is_active=is_active,
    )
    db.session.add(contract)
    db.session.commit()
    return contract


def make_attendance(amount="15000", day=None, stall=None, attendance_id=None):
    """Create an unpaid attendance (and a stall when none is given)."""
    if stall is None:
        stall = Stall(stall_number="S-1", daily_fee=Decimal(amount))
        db.session.add(stall)
        db.session.flush()
    attendance = Attendance(
        id=attendance_id,
        stall_id=stall.id,
        date=day or utcnow().date(),
        amount=Decimal(amount),
    )
    db.session.add(attendance)
    db.session.commit()
    return attendance


def make_pending(external_reference, amount, method, contract=None, attendance=None, age_minutes=0):
    """Insert a PENDING transaction directly, optionally backdated."""
    txn = Transaction(
        external_reference=external_reference,
        amount=Decimal(amount),
        status=STATUS_PENDING,
        payment_method=method,
        contract_id=contract.id if contract else None,
        attendance_id=attendance.id if attendance else None,
        gateway_state=STATE_PENDING,
        created_at=utcnow() - timedelta(minutes=age_minutes),
    )
    db.session.add(txn)
    db.session.commit()
    return txn


@pytest.fixture(scope='function')
def contract(db_session, section, owner):
    """Contract 7: 500 000 a month, issued 2024-01-15, store A-12."""
    store = Store(store_number="A-12", section_id=section.id)
    db_session.add(store)
    db_session.flush()
    contract = Contract(
        id=7,
        store_id=store.id,
        owner_id=owner.id,
        shop_monthly_fee=Decimal("500000"),
        issue_date=date(2024, 1, 15),
        is_active=True,
    )
    db_session.add(contract)
    db_session.commit()
    return contract


@pytest.fixture(scope='function')
def stall(db_session, section):
    stall = Stall(stall_number="B-3", section_id=section.id, daily_fee=Decimal("15000"))
    db_session.add(stall)
    db_session.commit()
    return stall


@pytest.fixture(scope='function')
def attendance(db_session, stall):
    """Attendance 42: today, 15 000, unpaid."""
    return make_attendance("15000", stall=stall, attendance_id=42)


def click_fields(app, click_trans_id, merchant_trans_id, amount, action=0, merchant_prepare_id=None,
                 error=0, sign_time="2024-06-01 10:00:00", sign=True):
    """Click webhook form, signed with the test tenant's secret."""
    fields = {
        'click_trans_id': str(click_trans_id),
        'service_id': CLICK_SERVICE_ID,
        'click_paydoc_id': f"PD{click_trans_id}",
        'merchant_trans_id': str(merchant_trans_id),
        'amount': str(amount),
        'action': str(action),
        'error': str(error),
        'error_note': 'Success' if error == 0 else 'Failed',
        'sign_time': sign_time,
    }
    if merchant_prepare_id is not None:
        fields['merchant_prepare_id'] = str(merchant_prepare_id)
    if sign:
        fields['sign_string'] = app.extensions['click_signatures'].sign(CLICK_TENANT, fields)
    return fields


def payme_headers(login: str = PAYME_LOGIN, key: str = PAYME_KEY) -> dict:
    """Helper to create Payme Basic auth headers."""
    token = base64.b64encode(f"{login}:{key}".encode("utf-8")).decode("ascii")
    return {'Authorization': f'Basic {token}'}


def auth_headers(token: str = OPERATOR_TOKEN) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}

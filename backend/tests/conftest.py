import uuid
from datetime import datetime, timedelta, timezone

import httpx
import jwt
import pytest
import pytest_asyncio
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from notifier.core.config import get_settings
from notifier.models.notification import Base
from notifier.utils.alerting import alert_tracker

TENANT_ID = "11111111-1111-1111-1111-111111111111"
OTHER_TENANT_ID = "22222222-2222-2222-2222-222222222222"

JWT_SECRET = "test-jwt-secret-with-at-least-32-bytes!"
SCHEDULER_TOKEN = "scheduler-top-secret"


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    # Tests mutate env vars; never leak a cached Settings instance across tests.
    get_settings.cache_clear()
    alert_tracker.reset()
    yield
    get_settings.cache_clear()


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def build_auth_header(role: str = "ADMIN", tenant_id: str | None = TENANT_ID) -> dict:
    """Mint an HS256 token the way the identity provider does (role/tenant in app_metadata)."""
    app_meta = {"role": role}
    if tenant_id is not None:
        app_meta["tenant_id"] = tenant_id
    payload = {
        "sub": "00000000-0000-0000-0000-000000000001",
        "email": "tests@example.com",
        "app_metadata": app_meta,
        "aud": "authenticated",
        "iat": int(datetime.now(timezone.utc).timestamp()),
        "exp": int((datetime.now(timezone.utc) + timedelta(hours=1)).timestamp()),
    }
    return {"Authorization": f"Bearer {jwt.encode(payload, JWT_SECRET, algorithm='HS256')}"}


@pytest_asyncio.fixture
async def client(session_factory, monkeypatch):
    """In-process ASGI client with get_db bound to the test engine."""
    from notifier.core.dependencies import get_db
    from notifier.main import app

    monkeypatch.setenv("SUPABASE_JWT_SECRET", JWT_SECRET)
    monkeypatch.setenv("SUPABASE_JWT_AUDIENCE", "authenticated")
    monkeypatch.setenv("SCHEDULER_TOKEN", SCHEDULER_TOKEN)
    get_settings.cache_clear()

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app)
    try:
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
            yield c
    finally:
        app.dependency_overrides.pop(get_db, None)


def now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def make_rule(db, **overrides):
    from notifier.models.notification import NotificationRule

    values = {
        "id": uuid.uuid4(),
        "tenant_id": TENANT_ID,
        "name": "Pagamento aprovado",
        "is_enabled": True,
        "priority": 0,
        "rule_type": "payment",
        "trigger_condition": "payment_approved",
        "channels": ["email"],
        "email_subject": "Pedido {{order_number}} aprovado",
        "email_body": "Oi {{customer_first_name}}, recebemos {{order_total}}.",
        "whatsapp_message": "Oi {{customer_first_name}}! Pedido {{order_number}} aprovado.",
        "delay_amount": 0,
        "delay_unit": "minutes",
        "product_scope": "all",
        "effective_from": now_naive() - timedelta(days=1),
    }
    values.update(overrides)
    rule = NotificationRule(**values)
    db.add(rule)
    db.commit()
    return rule


def make_event(db, **overrides):
    from notifier.models.notification import EventInbox

    now = now_naive()
    payload = overrides.pop("payload", None)
    values = {
        "id": uuid.uuid4(),
        "tenant_id": TENANT_ID,
        "event_type": "payment_status_changed",
        "payload_normalized": payload
        if payload is not None
        else {
            "order_id": "ord-1001",
            "order_number": "1001",
            "customer_name": "Ana Souza",
            "customer_email": "ana@example.com",
            "customer_phone": "(11) 98765-4321",
            "order_total": 149.9,
            "new_status": "approved",
            "payment_method": "credit_card",
        },
        "occurred_at": now,
        "received_at": now,
        "status": "new",
    }
    values.update(overrides)
    event = EventInbox(**values)
    db.add(event)
    db.commit()
    return event

import hashlib
import hmac
import json
import uuid

import httpx
import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from campus_market.db import models
from campus_market.db.session import Base, get_db
from campus_market.main import app
from campus_market.services.auth import AuthenticationFailed, Identity, get_identity_verifier
from campus_market.services.payment_gateway import CheckoutSession, PaymentGateway, get_payment_gateway

KEY_SECRET = "test_key_secret"
WEBHOOK_SECRET = "test_webhook_secret"


class FakeIdentityVerifier:
    """Accepts ``Bearer <user id>`` for every registered identity."""

    def __init__(self):
        self.identities = {}

    def register(self, user_id: str, email: str):
        self.identities[user_id] = Identity(subject_id=user_id, email=email)

    async def verify(self, token: str) -> Identity:
        try:
            return self.identities[token]
        except KeyError:
            raise AuthenticationFailed("unknown token")


class FakeGateway(PaymentGateway):
    """Real signature checks, canned checkout sessions."""

    def __init__(self):
        super().__init__(key_id="rzp_test_key", key_secret=KEY_SECRET, webhook_secret=WEBHOOK_SECRET)
        self.sessions = []
        self.error = None

    async def create_checkout_session(self, amount: int, order_id: str) -> CheckoutSession:
        if self.error is not None:
            raise self.error
        session = CheckoutSession(
            gateway_order_id=f"order_gw_{len(self.sessions) + 1}",
            amount=amount,
            currency=self.currency,
        )
        self.sessions.append(session)
        return session


def checkout_signature(gateway_order_id: str, gateway_payment_id: str, secret: str = KEY_SECRET) -> str:
    message = f"{gateway_order_id}|{gateway_payment_id}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()

def webhook_signature(raw_body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return hmac.new(secret.encode(), raw_body, hashlib.sha256).hexdigest()

def webhook_body(event: str, gateway_order_id: str, gateway_payment_id: str = "pay_hook_1") -> bytes:
    envelope = {
        "entity": "event",
        "event": event,
        "payload": {"payment": {"entity": {"id": gateway_payment_id, "order_id": gateway_order_id}}},
    }
    return json.dumps(envelope).encode()

def auth(user) -> dict:
    return {"Authorization": f"Bearer {user.id}"}


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine.sync_engine, "connect")
    def enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()

@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session

@pytest.fixture
def verifier():
    return FakeIdentityVerifier()

@pytest.fixture
def gateway():
    return FakeGateway()

@pytest.fixture
async def client(session_factory, verifier, gateway):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_identity_verifier] = lambda: verifier
    app.dependency_overrides[get_payment_gateway] = lambda: gateway

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client

    app.dependency_overrides.clear()

@pytest.fixture
def fetch(session_factory):
    """Load a row through a fresh session so assertions see committed state."""
    async def _fetch(model, row_id):
        async with session_factory() as session:
            return await session.get(model, row_id)
    return _fetch

@pytest.fixture
def make_user(db, verifier):
    async def _make_user(name="Student", email=None, is_admin=False):
        user_id = str(uuid.uuid4())
        email = email or f"{user_id[:8]}@gmail.com"
        user = models.User(id=user_id, name=name, email=email, is_admin=is_admin)
        db.add(user)
        await db.commit()
        verifier.register(user_id, email)
        return user
    return _make_user

@pytest.fixture
def make_product(db):
    async def _make_product(owner, price_cents=45000, status=models.ProductStatus.AVAILABLE, title="Engineering Drawing Kit"):
        product_id = str(uuid.uuid4())
        product = models.Product(
            id=product_id,
            user_id=owner.id,
            title=title,
            slug=f"product-{product_id[:8]}",
            price_cents=price_cents,
            condition="good",
            status=status,
        )
        db.add(product)
        await db.commit()
        return product
    return _make_product

@pytest.fixture
async def seller(make_user):
    return await make_user(name="Seller")

@pytest.fixture
async def buyer(make_user):
    return await make_user(name="Buyer")

@pytest.fixture
async def admin(make_user):
    return await make_user(name="Admin", is_admin=True)

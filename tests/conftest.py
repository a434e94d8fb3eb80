import os
import sys
from decimal import Decimal
from pathlib import Path
from uuid import uuid4

os.environ.setdefault("OTEL_ENABLED", "false")
os.environ.setdefault("ENVIRONMENT", "test")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from storefront_api.app import create_app  # noqa: E402
from storefront_api.db.base import Base  # noqa: E402
from storefront_api.db.session import get_session, get_session_factory  # noqa: E402
from storefront_api.models.cart import CartLine  # noqa: E402
from storefront_api.models.product import Product  # noqa: E402
from storefront_api.models.subscription import Subscription  # noqa: E402
from storefront_api.models.user import User, UserRoleEnum  # noqa: E402
from storefront_api.models.voucher import DiscountMode, Voucher, VoucherKind, VoucherScope  # noqa: E402
from storefront_api.models.wallet import WalletEntryType  # noqa: E402
from storefront_api.observability.payments import get_settlement_store  # noqa: E402
from storefront_api.services.wallet.ledger import BalanceLedger, LedgerMeta  # noqa: E402


@pytest.fixture(autouse=True)
def reset_settlement_store():
    get_settlement_store().reset()
    yield
    get_settlement_store().reset()


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def app_with_db(session_factory):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def make_user(session_factory):
    async def _make(*, role: UserRoleEnum = UserRoleEnum.CLIENT, email: str | None = None) -> User:
        async with session_factory() as session:
            user = User(email=email or f"{uuid4().hex[:10]}@example.com", role=role.value)
            session.add(user)
            await session.commit()
            return user

    return _make


@pytest.fixture
def make_product(session_factory):
    async def _make(price: str = "100.00", *, stock: int = 10, title: str = "Cold brew kit") -> Product:
        async with session_factory() as session:
            product = Product(title=title, category="coffee", price=Decimal(price), stock_quantity=stock)
            session.add(product)
            await session.commit()
            return product

    return _make


@pytest.fixture
def make_voucher(session_factory):
    async def _make(code: str, **terms) -> Voucher:
        values = {
            "kind": VoucherKind.INSTANCE,
            "discount_mode": DiscountMode.FIXED,
            "discount_value": Decimal("10.00"),
            "min_spend": Decimal("0"),
            "stackable": False,
            "auto_apply": False,
            "is_active": True,
            "scope": VoucherScope.GENERAL,
        }
        values.update(terms)
        async with session_factory() as session:
            voucher = Voucher(code=code, **values)
            session.add(voucher)
            await session.commit()
            return voucher

    return _make


@pytest.fixture
def add_to_cart(session_factory):
    async def _add(user_id, product_id, quantity: int = 1) -> None:
        async with session_factory() as session:
            session.add(CartLine(user_id=user_id, product_id=product_id, quantity=quantity))
            await session.commit()

    return _add


@pytest.fixture
def fund_wallet(session_factory):
    async def _fund(user_id, amount: str) -> Decimal:
        async with session_factory() as session:
            balance = await BalanceLedger(session).credit(
                user_id,
                Decimal(amount),
                LedgerMeta(entry_type=WalletEntryType.TOPUP, reference_type="test_seed", reference_id=uuid4().hex),
            )
            await session.commit()
            return balance

    return _fund


@pytest.fixture
def subscribe(session_factory):
    async def _subscribe(user_id, *, first_delivery_used: bool = False) -> None:
        async with session_factory() as session:
            session.add(Subscription(user_id=user_id, is_active=True, first_delivery_used=first_delivery_used))
            await session.commit()

    return _subscribe

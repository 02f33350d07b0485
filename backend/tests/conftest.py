# backend/tests/conftest.py
"""
Pytest configuration and fixtures.

This module provides shared fixtures for all tests:
- Database session fixtures (in-memory SQLite via aiosqlite)
- Fake price, FX and dividend services
- Mock market data provider
- Sample data factories
- HTTP client with a signed bearer token
"""

import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("APP_NAME", "Test App")
os.environ.setdefault("MARKET_DATA_ENABLED", "false")

from collections.abc import AsyncIterator, Iterable, Sequence
from datetime import date, timedelta
from decimal import Decimal

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from tracker.models import (
    Base,
    PortfolioRecord,
    Position,
    PositionCategory,
    PositionType,
    RecordType,
    User,
)
from tracker.services.currency import rate_key
from tracker.services.exceptions import TickerNotFoundError
from tracker.services.ledger.recalculation import SnapshotRecalculator
from tracker.services.market_data.base import (
    DividendSummary,
    HistoricalPricesResult,
    MarketDataProvider,
    OHLCVData,
)
from tracker.services.records_service import RecordInput, RecordService
from tracker.utils.date_utils import utc_today


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest.fixture(scope="function")
async def db_engine():
    """Create an in-memory SQLite database engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture(scope="function")
async def db(db_engine) -> AsyncIterator[AsyncSession]:
    """Create a database session for testing."""
    session_factory = async_sessionmaker(
        bind=db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.rollback()


# =============================================================================
# FAKE SERVICES
# =============================================================================

class FakePriceService:
    """
    In-memory PositionPriceServiceProtocol.

    Prices are configured per symbol or domain and date. A date without an
    exact price resolves to the latest configured price before it, like the
    quote cache does for weekends.
    """

    def __init__(self):
        self._prices: dict[str, dict[date, Decimal]] = {}
        self.calls: list[tuple[tuple[int, ...], tuple[date, ...]]] = []

    def set_price(self, identifier: str, on: date, price: Decimal | str) -> None:
        self._prices.setdefault(identifier.upper(), {})[on] = Decimal(str(price))

    def _lookup(self, identifier: str, on: date) -> Decimal | None:
        prices = self._prices.get(identifier.upper(), {})
        eligible = [d for d in prices if d <= on]
        return prices[max(eligible)] if eligible else None

    async def get_position_prices(
            self,
            db: AsyncSession,
            positions: Sequence[Position],
            dates: Iterable[date],
    ) -> dict[tuple[int, date], Decimal]:
        dates = list(dates)
        self.calls.append((tuple(p.id for p in positions), tuple(dates)))
        result = {}
        for position in positions:
            identifier = position.symbol or position.domain
            if not identifier:
                continue
            for on in dates:
                price = self._lookup(identifier, on)
                if price is not None:
                    result[(position.id, on)] = price
        return result


class FakeFXService:
    """In-memory FXRateServiceProtocol with one rate per currency for every date."""

    def __init__(self, rates: dict[str, Decimal | str] | None = None):
        self._rates = {k.upper(): Decimal(str(v)) for k, v in (rates or {}).items()}

    def set_rate(self, currency: str, rate: Decimal | str) -> None:
        self._rates[currency.upper()] = Decimal(str(rate))

    async def get_rates(self, db: AsyncSession, requests: Iterable[tuple[str, date]]) -> dict[str, Decimal]:
        result = {}
        for currency, on in requests:
            currency = currency.upper()
            if currency == "USD":
                result[rate_key(currency, on)] = Decimal("1")
            elif currency in self._rates:
                result[rate_key(currency, on)] = self._rates[currency]
        return result


class FakeDividendService:
    """In-memory DividendServiceProtocol."""

    def __init__(self, summaries: dict[str, DividendSummary] | None = None):
        self._summaries = {k.upper(): v for k, v in (summaries or {}).items()}

    def add(self, summary: DividendSummary) -> None:
        self._summaries[summary.symbol.upper()] = summary

    async def get_dividend_summaries(self, symbols: Iterable[str], today: date | None = None):
        return {s.upper(): self._summaries[s.upper()] for s in symbols if s.upper() in self._summaries}


# =============================================================================
# MOCK MARKET DATA PROVIDER
# =============================================================================

class MockMarketDataProvider(MarketDataProvider):
    """
    Mock implementation of MarketDataProvider for testing.

    Allows configuring daily closes per symbol and simulating errors.
    """

    RETRY_MIN_WAIT = 0
    RETRY_MAX_WAIT = 0

    def __init__(self):
        self._closes: dict[str, dict[date, Decimal]] = {}
        self._dividends: dict[str, DividendSummary] = {}
        self._errors: dict[str, Exception] = {}
        self.history_calls: list[tuple[str, date, date]] = []

    @property
    def name(self) -> str:
        return "mock"

    def add_close(self, symbol: str, on: date, close: Decimal | str) -> None:
        """Configure one daily close for a symbol (FX pairs too, e.g. "USDEUR=X")."""
        self._closes.setdefault(symbol.upper(), {})[on] = Decimal(str(close))

    def add_dividends(self, summary: DividendSummary) -> None:
        self._dividends[summary.symbol.upper()] = summary

    def add_error(self, symbol: str, error: Exception) -> None:
        """Configure an error response for a symbol."""
        self._errors[symbol.upper()] = error

    def get_historical_prices(self, symbol: str, start_date: date, end_date: date) -> HistoricalPricesResult:
        key = symbol.upper()
        self.history_calls.append((key, start_date, end_date))
        if key in self._errors:
            raise self._errors[key]
        if key not in self._closes:
            raise TickerNotFoundError(ticker=symbol, provider=self.name)

        prices = [
            OHLCVData(date=d, open=close, high=close, low=close, close=close)
            for d, close in sorted(self._closes[key].items())
            if start_date <= d <= end_date
        ]
        return HistoricalPricesResult(symbol=key, prices=prices, from_date=start_date, to_date=end_date)

    def get_dividend_summary(self, symbol: str, start_date: date) -> DividendSummary:
        key = symbol.upper()
        if key in self._errors:
            raise self._errors[key]
        return self._dividends.get(key, DividendSummary(symbol=key, currency="USD"))


@pytest.fixture
def price_service() -> FakePriceService:
    return FakePriceService()


@pytest.fixture
def fx_service() -> FakeFXService:
    return FakeFXService({"EUR": "0.9", "GBP": "0.8"})


@pytest.fixture
def mock_provider() -> MockMarketDataProvider:
    return MockMarketDataProvider()


@pytest.fixture
def recalculator() -> SnapshotRecalculator:
    """Engine without market data: snapshots take the record unit value."""
    return SnapshotRecalculator()


@pytest.fixture
def record_service(recalculator) -> RecordService:
    return RecordService(recalculator)


# =============================================================================
# SAMPLE DATA FACTORIES
# =============================================================================

async def create_user(db: AsyncSession, email: str = "test@example.com", display_currency: str = "USD") -> User:
    """Create a test user."""
    user = User(email=email, display_currency=display_currency, is_active=True)
    db.add(user)
    await db.flush()
    return user


async def create_category(
        db: AsyncSession,
        name: str = "Stocks",
        user_id: int | None = None,
        position_type: PositionType = PositionType.ASSET,
) -> PositionCategory:
    category = PositionCategory(user_id=user_id, name=name, position_type=position_type)
    db.add(category)
    await db.flush()
    return category


async def create_position(
        db: AsyncSession,
        user: User,
        name: str = "Test Fund",
        currency: str = "USD",
        position_type: PositionType = PositionType.ASSET,
        symbol: str | None = None,
        domain: str | None = None,
        category_id: int | None = None,
        capital_gains_tax_rate: Decimal | None = None,
) -> Position:
    """Create a position without any records."""
    position = Position(
        user_id=user.id,
        name=name,
        currency=currency,
        type=position_type,
        symbol=symbol,
        domain=domain,
        category_id=category_id,
        capital_gains_tax_rate=capital_gains_tax_rate,
    )
    db.add(position)
    await db.flush()
    return position


async def add_record(
        service: RecordService,
        db: AsyncSession,
        position: Position,
        record_type: RecordType,
        on: date,
        quantity: Decimal | str,
        unit_value: Decimal | str = "0",
        cost_basis_override: Decimal | str | None = None,
) -> PortfolioRecord:
    """Create a record through the service so snapshots are recalculated."""
    return await service.create_record(db, position.user_id, RecordInput(
        position_id=position.id,
        type=record_type,
        date=on,
        quantity=Decimal(str(quantity)),
        unit_value=Decimal(str(unit_value)),
        cost_basis_override=Decimal(str(cost_basis_override)) if cost_basis_override is not None else None,
    ))


def days_ago(n: int) -> date:
    return utc_today() - timedelta(days=n)


# =============================================================================
# HTTP CLIENT
# =============================================================================

def auth_headers(user: User) -> dict[str, str]:
    """Bearer header with a real signed access token for the user."""
    from tracker.security import JWTHandler

    token = JWTHandler.create_access_token(user_id=user.id, email=user.email)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def user(db) -> User:
    return await create_user(db)


@pytest.fixture
async def client(db: AsyncSession) -> AsyncIterator[httpx.AsyncClient]:
    """
    AsyncClient against the app, with the request session replaced by the
    test session. Market data stays disabled; rate limits are off.
    """
    from tracker.database import get_db
    from tracker.dependencies import clear_service_caches
    from tracker.main import app
    from tracker.middleware import limiter

    async def override_get_db():
        # Fixture data is committed first so a failed request only rolls back its own work
        await db.commit()
        # The request runs in a savepoint; rolling it back only expires objects it changed
        savepoint = await db.begin_nested()
        try:
            yield db
            if savepoint.is_active:
                await savepoint.commit()
            await db.commit()
        except Exception:
            if savepoint.is_active:
                await savepoint.rollback()
            raise

    clear_service_caches()
    app.dependency_overrides[get_db] = override_get_db
    limiter.enabled = False

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    limiter.enabled = True
    app.dependency_overrides.clear()
    clear_service_caches()

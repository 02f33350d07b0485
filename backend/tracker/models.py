# backend/tracker/models.py
import enum
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    # Persist the lowercase values ("buy"), not the member names ("BUY")
    return [member.value for member in enum_cls]


# Enums help enforce data integrity at the database level
class PositionType(str, enum.Enum):
    ASSET = "asset"
    LIABILITY = "liability"


class RecordType(str, enum.Enum):
    """
    Ledger event types.

    BUY and SELL are deltas against the running quantity.
    UPDATE is an absolute reset of quantity and cost basis.
    """
    BUY = "buy"
    SELL = "sell"
    UPDATE = "update"


class PriceSourceType(str, enum.Enum):
    """Where a position's market value comes from."""
    SYMBOL = "symbol"
    DOMAIN = "domain"
    MANUAL = "manual"


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    email: Mapped[str] = mapped_column(String, unique=True, index=True)
    display_currency: Mapped[str] = mapped_column(String(3), default="USD")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class PositionCategory(Base):
    """
    Grouping used by allocation breakdowns.

    Rows with user_id NULL are shared defaults (e.g. "Stocks", "Cash",
    "Real Estate"); users may add their own.
    """
    __tablename__ = "position_categories"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(100))
    position_type: Mapped[PositionType] = mapped_column(
        Enum(PositionType, values_callable=_enum_values, name="position_type")
    )
    display_order: Mapped[int] = mapped_column(Integer, default=0)


class Position(Base):
    """
    A tracked asset or liability owned by one user.

    Market-data linkage is a symbol (e.g. "AAPL", "VWCE.DE") XOR a domain
    name, or neither for manually valued positions. Positions are archived
    (archived_at set) rather than deleted while their history is still
    relevant; a hard delete cascades to records and snapshots.
    """
    __tablename__ = "positions"
    __table_args__ = (
        CheckConstraint(
            "NOT (symbol IS NOT NULL AND domain IS NOT NULL)",
            name="ck_position_single_price_source",
        ),
        Index("ix_positions_user_archived", "user_id", "archived_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    category_id: Mapped[int | None] = mapped_column(
        ForeignKey("position_categories.id", ondelete="SET NULL"), nullable=True
    )
    name: Mapped[str] = mapped_column(String(200))
    description: Mapped[str | None] = mapped_column(String, nullable=True)
    currency: Mapped[str] = mapped_column(String(3))  # Valuation currency of the position (e.g. "USD")
    type: Mapped[PositionType] = mapped_column(
        Enum(PositionType, values_callable=_enum_values, name="position_type"),
        default=PositionType.ASSET,
    )

    # Market data linkage (mutually exclusive)
    symbol: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    domain: Mapped[str | None] = mapped_column(String(253), nullable=True)

    # Decimal fraction, e.g. 0.26 for 26%
    capital_gains_tax_rate: Mapped[Decimal | None] = mapped_column(Numeric(6, 4), nullable=True)

    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    @property
    def price_source(self) -> PriceSourceType:
        if self.symbol:
            return PriceSourceType.SYMBOL
        if self.domain:
            return PriceSourceType.DOMAIN
        return PriceSourceType.MANUAL

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None


class PortfolioRecord(Base):
    """
    One ledger event (buy / sell / update) for a position.

    Ordering within a position is (date, created_at, id); created_at breaks
    ties between events on the same day, so it is never rewritten when a
    record is edited.
    """
    __tablename__ = "portfolio_records"
    __table_args__ = (
        Index("ix_portfolio_records_position_date", "position_id", "date", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    position_id: Mapped[int] = mapped_column(ForeignKey("positions.id", ondelete="CASCADE"), index=True)
    type: Mapped[RecordType] = mapped_column(
        Enum(RecordType, values_callable=_enum_values, name="record_type")
    )
    date: Mapped[date] = mapped_column(Date)
    quantity: Mapped[Decimal] = mapped_column(Numeric(18, 8))
    unit_value: Mapped[Decimal] = mapped_column(Numeric(18, 8))  # Price per unit in position currency
    description: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class PositionSnapshot(Base):
    """
    Derived valuation of a position at one date.

    Written only by the snapshot recalculation engine (record-linked rows)
    and by price refreshes (portfolio_record_id NULL, cost basis NULL).

    cost_basis_per_unit NULL means "inherit from the most recent earlier
    snapshot with an explicit value" - it is never the same as zero.
    """
    __tablename__ = "position_snapshots"
    __table_args__ = (
        # At most one snapshot per ledger event
        UniqueConstraint("position_id", "portfolio_record_id", name="uq_snapshot_position_record"),
        Index("ix_position_snapshots_position_date", "position_id", "date", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    position_id: Mapped[int] = mapped_column(ForeignKey("positions.id", ondelete="CASCADE"), index=True)
    portfolio_record_id: Mapped[int | None] = mapped_column(
        ForeignKey("portfolio_records.id", ondelete="CASCADE"), nullable=True, index=True
    )
    date: Mapped[date] = mapped_column(Date)
    quantity: Mapped[Decimal] = mapped_column(Numeric(18, 8))
    unit_value: Mapped[Decimal] = mapped_column(Numeric(18, 8))
    cost_basis_per_unit: Mapped[Decimal | None] = mapped_column(Numeric(18, 8), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class Quote(Base):
    """
    Daily closing price cache for market symbols.

    The price stored for a date is the latest close on or before that date,
    so weekend and holiday dates resolve to the previous trading day.
    """
    __tablename__ = "quotes"
    __table_args__ = (
        UniqueConstraint("symbol", "date", name="uq_quote_symbol_date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    symbol: Mapped[str] = mapped_column(String(32), index=True)
    date: Mapped[date] = mapped_column(Date, index=True)
    price: Mapped[Decimal] = mapped_column(Numeric(18, 8))
    provider: Mapped[str] = mapped_column(String(50), default="yahoo")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class DomainValuation(Base):
    """Estimated value of a domain name on a given date."""
    __tablename__ = "domain_valuations"
    __table_args__ = (
        UniqueConstraint("domain", "date", name="uq_domain_valuation_domain_date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    domain: Mapped[str] = mapped_column(String(253), index=True)
    date: Mapped[date] = mapped_column(Date, index=True)
    price: Mapped[Decimal] = mapped_column(Numeric(18, 8))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class ExchangeRate(Base):
    """
    Historical USD-based exchange rates.

    Convention: rate represents "1 base_currency = X target_currency"
    with base_currency always "USD".
    Example: base=USD, target=EUR, rate=0.92 means 1 USD = 0.92 EUR

    Data is fetched from Yahoo Finance using symbols like "USDEUR=X"
    """
    __tablename__ = "exchange_rates"
    __table_args__ = (
        UniqueConstraint("base_currency", "target_currency", "date",
                         name="uq_exchange_rate_pair_date"),
        Index("ix_exchange_rate_target_date", "target_currency", "date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    base_currency: Mapped[str] = mapped_column(String(3), default="USD")
    target_currency: Mapped[str] = mapped_column(String(3))
    date: Mapped[date] = mapped_column(Date)
    rate: Mapped[Decimal] = mapped_column(Numeric(18, 8))
    provider: Mapped[str] = mapped_column(String(50), default="yahoo")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

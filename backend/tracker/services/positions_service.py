# backend/tracker/services/positions_service.py
"""
Position Service for managing tracked assets and liabilities.

This service handles:
- Creating positions, optionally with an initial holding
- Listing positions valued as of a date, with unrealized P/L
- Updating position details and relinking market data
- Archiving, restoring and deleting positions
- The record boundary date (earliest date records may be entered for)

An initial holding is written as an update record (absolute quantity and
cost basis) followed by a snapshot recalculation, the same path every other
ledger mutation takes.

Changing a position's symbol or domain changes the market prices its
snapshots are valued at, so every segment of its timeline is recalculated.

Usage:
    from tracker.services.positions_service import PositionService, PositionInput

    service = PositionService(recalculator, valuation, price_service)
    position = await service.create_position(db, user_id, PositionInput(
        name="Vanguard FTSE All-World", currency="EUR", symbol="VWCE.DE",
        quantity=Decimal("12"), unit_value=Decimal("101.20"),
    ))
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from tracker.models import (
    PortfolioRecord,
    Position,
    PositionCategory,
    PositionSnapshot,
    PositionType,
    RecordType,
)
from tracker.services.analytics.capital_gains import normalize_tax_rate
from tracker.services.constants import MAX_BATCH_SIZE
from tracker.services.exceptions import (
    DuplicatePositionError,
    LedgerValidationError,
    MarketDataError,
    PositionNotFoundError,
    ValidationError,
)
from tracker.services.ledger.recalculation import SnapshotRecalculator
from tracker.services.ledger.segments import recalculate_segments
from tracker.services.ledger.store import LedgerStore
from tracker.services.ledger.types import LedgerEvent, RecalculationOptions
from tracker.services.ledger.validation import validate_record_quantity
from tracker.services.protocols import PositionPriceServiceProtocol
from tracker.services.valuation import PositionValuationService, ValuedPosition
from tracker.utils.date_utils import utc_today
from tracker.utils.sql import escape_like_pattern

logger = logging.getLogger(__name__)

# Fields update_position accepts
UPDATABLE_FIELDS = frozenset({
    "name",
    "description",
    "category_id",
    "capital_gains_tax_rate",
    "symbol",
    "domain",
})


# =============================================================================
# INPUT TYPES
# =============================================================================

@dataclass(frozen=True)
class PositionInput:
    """
    A new position.

    quantity / unit_value / cost_basis_override describe an optional
    initial holding dated holding_date (default today). unit_value may be
    omitted for market-linked positions; the market price is used then.
    """
    name: str
    currency: str
    type: PositionType = PositionType.ASSET
    description: str | None = None
    category_id: int | None = None
    symbol: str | None = None
    domain: str | None = None
    capital_gains_tax_rate: Decimal | float | None = None
    quantity: Decimal | None = None
    unit_value: Decimal | None = None
    cost_basis_override: Decimal | None = None
    holding_date: date | None = None


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


# =============================================================================
# SERVICE
# =============================================================================

class PositionService:
    """
    Position lifecycle and listing.

    Example:
        service = PositionService(recalculator, valuation)
        valued = await service.list_positions(db, user_id, as_of=date(2024, 6, 30))
        for v in valued:
            print(v.position.name, v.current_value, v.profit_loss.profit_loss)
    """

    def __init__(
            self,
            recalculator: SnapshotRecalculator,
            valuation: PositionValuationService,
            price_service: PositionPriceServiceProtocol | None = None,
    ) -> None:
        self._recalculator = recalculator
        self._valuation = valuation
        self._price_service = price_service

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create_position(self, db: AsyncSession, user_id: int, data: PositionInput) -> Position:
        """
        Create a position and its optional initial holding.

        Raises:
            ValidationError: Bad name, currency, price source, category or tax rate
            DuplicatePositionError: An active position already has this name
            LedgerValidationError: Invalid initial quantity
            RecalculationError: Snapshot recalculation failed
        """
        name = _clean(data.name)
        if not name:
            raise ValidationError("Name is required", field="name")
        currency = self._validate_currency(data.currency)
        symbol, domain = self._validate_price_source(data.symbol, data.domain)
        await self._ensure_unique_name(db, user_id, name)
        if data.category_id is not None:
            await self._ensure_category(db, user_id, data.category_id)

        position = Position(
            user_id=user_id,
            name=name,
            description=_clean(data.description),
            currency=currency,
            type=PositionType(data.type),
            category_id=data.category_id,
            symbol=symbol,
            domain=domain,
            capital_gains_tax_rate=normalize_tax_rate(data.capital_gains_tax_rate),
        )
        db.add(position)
        await db.flush()
        logger.info(f"Created position {position.id} ({position.price_source.value}) for user {user_id}")

        if data.quantity is not None:
            await self._create_initial_holding(db, user_id, position, data)
        return position

    async def _create_initial_holding(
            self,
            db: AsyncSession,
            user_id: int,
            position: Position,
            data: PositionInput,
    ) -> None:
        check = validate_record_quantity(RecordType.UPDATE, data.quantity)
        if not check.valid:
            raise LedgerValidationError(check.code, check.message)

        on = data.holding_date or utc_today()
        unit_value = data.unit_value
        if unit_value is None:
            unit_value = await self._market_price(db, position, on)
        if unit_value is None:
            raise ValidationError("Unit value is required when no market price is available", field="unit_value")
        if unit_value < 0:
            raise ValidationError("Unit value must be 0 or greater", field="unit_value")

        store = LedgerStore(db, user_id)
        event = LedgerEvent(
            position_id=position.id,
            type=RecordType.UPDATE,
            date=on,
            quantity=data.quantity,
            unit_value=unit_value,
            description="Initial holding",
            cost_basis_override=data.cost_basis_override,
        )
        record = (await store.insert_records([event]))[0]
        overrides = {record.id: data.cost_basis_override} if data.cost_basis_override is not None else {}
        await recalculate_segments(
            self._recalculator, db, user_id, position.id, [on],
            RecalculationOptions(cost_basis_overrides=overrides),
        )

    async def _market_price(self, db: AsyncSession, position: Position, on: date) -> Decimal | None:
        if self._price_service is None or (not position.symbol and not position.domain):
            return None
        try:
            prices = await self._price_service.get_position_prices(db, [position], [on])
        except MarketDataError as e:
            logger.warning(f"No market price for new position {position.id}: {e}")
            return None
        return prices.get((position.id, on))

    # =========================================================================
    # READ
    # =========================================================================

    async def get_position(self, db: AsyncSession, user_id: int, position_id: int) -> Position:
        """
        Raises:
            PositionNotFoundError: Missing or owned by another user
        """
        position = await LedgerStore(db, user_id).get_position(position_id)
        if position is None:
            raise PositionNotFoundError(position_id)
        return position

    async def get_valued_position(
            self,
            db: AsyncSession,
            user_id: int,
            position_id: int,
            as_of: date | None = None,
    ) -> ValuedPosition:
        position = await self.get_position(db, user_id, position_id)
        valued = await self._valuation.value_positions(db, user_id, [position], as_of or utc_today())
        return valued[0]

    async def list_positions(
            self,
            db: AsyncSession,
            user_id: int,
            as_of: date | None = None,
            position_type: PositionType | None = None,
            include_archived: bool = False,
            only_archived: bool = False,
            search: str | None = None,
    ) -> list[ValuedPosition]:
        """
        Positions valued as of a date (default today), ordered by name.

        Args:
            position_type: Only assets or only liabilities
            include_archived: Also return archived positions
            only_archived: Return archived positions only (wins over include_archived)
            search: Case-insensitive substring of the name
        """
        query = select(Position).where(Position.user_id == user_id)
        if only_archived:
            query = query.where(Position.archived_at.is_not(None))
        elif not include_archived:
            query = query.where(Position.archived_at.is_(None))
        if position_type is not None:
            query = query.where(Position.type == PositionType(position_type))
        if search and search.strip():
            pattern = f"%{escape_like_pattern(search.strip())}%"
            query = query.where(Position.name.ilike(pattern, escape="\\"))

        result = await db.execute(query.order_by(func.lower(Position.name).asc(), Position.id.asc()))
        positions = list(result.scalars().all())
        return await self._valuation.value_positions(db, user_id, positions, as_of or utc_today())

    async def get_record_boundary_date(self, db: AsyncSession, user_id: int, position_id: int) -> date | None:
        """Earliest of the first update record and the first snapshot (None without history)."""
        await self.get_position(db, user_id, position_id)
        return await LedgerStore(db, user_id).get_first_timeline_date(position_id)

    # =========================================================================
    # UPDATE
    # =========================================================================

    async def update_position(
            self,
            db: AsyncSession,
            user_id: int,
            position_id: int,
            changes: Mapping[str, Any],
    ) -> Position:
        """
        Apply the given field changes.

        Only keys present in changes are touched; a None value clears the
        field where that is allowed. Relinking market data (symbol or
        domain) recalculates the whole timeline.

        Raises:
            PositionNotFoundError, ValidationError, DuplicatePositionError,
            RecalculationError
        """
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        position = await self.get_position(db, user_id, position_id)

        if "name" in changes:
            name = _clean(changes["name"])
            if not name:
                raise ValidationError("Name is required", field="name")
            if name.lower() != position.name.lower() and position.archived_at is None:
                await self._ensure_unique_name(db, user_id, name, exclude_id=position.id)
            position.name = name
        if "description" in changes:
            position.description = _clean(changes["description"])
        if "category_id" in changes:
            if changes["category_id"] is not None:
                await self._ensure_category(db, user_id, changes["category_id"])
            position.category_id = changes["category_id"]
        if "capital_gains_tax_rate" in changes:
            position.capital_gains_tax_rate = normalize_tax_rate(changes["capital_gains_tax_rate"])

        relinked = False
        if "symbol" in changes or "domain" in changes:
            symbol, domain = self._validate_price_source(
                changes.get("symbol", position.symbol),
                changes.get("domain", position.domain),
            )
            relinked = (symbol, domain) != (position.symbol, position.domain)
            position.symbol, position.domain = symbol, domain

        await db.flush()

        if relinked:
            await self._recalculate_all(db, user_id, position.id)
            logger.info(f"Relinked position {position.id} to {position.price_source.value} prices")
        return position

    async def _recalculate_all(self, db: AsyncSession, user_id: int, position_id: int) -> None:
        store = LedgerStore(db, user_id)
        first = await store.get_first_timeline_date(position_id)
        if first is None:
            return
        affected = [first, *await store.get_update_dates(position_id)]
        await recalculate_segments(self._recalculator, db, user_id, position_id, affected)

    # =========================================================================
    # ARCHIVE / RESTORE / DELETE
    # =========================================================================

    async def archive_positions(self, db: AsyncSession, user_id: int, position_ids: Sequence[int]) -> int:
        """
        Archive positions. Already archived ones are left as they are.

        Returns:
            Number of positions newly archived

        Raises:
            PositionNotFoundError: Any id missing or not owned (nothing is archived)
        """
        positions = await self._get_many(db, user_id, position_ids)
        now = datetime.now(timezone.utc)
        archived = 0
        for position in positions:
            if position.archived_at is None:
                position.archived_at = now
                archived += 1
        await db.flush()
        logger.info(f"Archived {archived} positions for user {user_id}")
        return archived

    async def restore_positions(self, db: AsyncSession, user_id: int, position_ids: Sequence[int]) -> int:
        """
        Restore archived positions.

        Raises:
            PositionNotFoundError: Any id missing or not owned
            DuplicatePositionError: An active position already uses the name
        """
        positions = await self._get_many(db, user_id, position_ids)
        restored = 0
        for position in positions:
            if position.archived_at is None:
                continue
            await self._ensure_unique_name(db, user_id, position.name, exclude_id=position.id)
            position.archived_at = None
            restored += 1
            await db.flush()
        logger.info(f"Restored {restored} positions for user {user_id}")
        return restored

    async def delete_position(self, db: AsyncSession, user_id: int, position_id: int) -> None:
        """Hard delete a position with its records and snapshots."""
        position = await self.get_position(db, user_id, position_id)
        await db.execute(delete(PositionSnapshot).where(
            PositionSnapshot.position_id == position.id,
            PositionSnapshot.user_id == user_id,
        ))
        await db.execute(delete(PortfolioRecord).where(
            PortfolioRecord.position_id == position.id,
            PortfolioRecord.user_id == user_id,
        ))
        await db.delete(position)
        await db.flush()
        logger.info(f"Deleted position {position_id} for user {user_id}")

    async def _get_many(self, db: AsyncSession, user_id: int, position_ids: Sequence[int]) -> list[Position]:
        ids = list(dict.fromkeys(position_ids))
        if not ids:
            return []
        if len(ids) > MAX_BATCH_SIZE:
            raise ValidationError(f"Cannot change more than {MAX_BATCH_SIZE} positions at once", field="position_ids")

        result = await db.execute(
            select(Position).where(Position.user_id == user_id, Position.id.in_(ids))
        )
        found = {p.id: p for p in result.scalars().all()}
        for position_id in ids:
            if position_id not in found:
                raise PositionNotFoundError(position_id)
        return [found[i] for i in ids]

    # =========================================================================
    # VALIDATION HELPERS
    # =========================================================================

    @staticmethod
    def _validate_currency(currency: str | None) -> str:
        value = (currency or "").strip().upper()
        if len(value) != 3 or not value.isalpha():
            raise ValidationError("Currency must be a 3-letter ISO code", field="currency")
        return value

    @staticmethod
    def _validate_price_source(symbol: str | None, domain: str | None) -> tuple[str | None, str | None]:
        symbol = _clean(symbol)
        domain = _clean(domain)
        if symbol and domain:
            raise ValidationError("A position is priced by a symbol or a domain, not both", field="symbol")
        return (symbol.upper() if symbol else None), (domain.lower() if domain else None)

    @staticmethod
    async def _ensure_unique_name(
            db: AsyncSession,
            user_id: int,
            name: str,
            exclude_id: int | None = None,
    ) -> None:
        query = select(Position.id).where(
            Position.user_id == user_id,
            Position.archived_at.is_(None),
            func.lower(Position.name) == name.lower(),
        )
        if exclude_id is not None:
            query = query.where(Position.id != exclude_id)
        if (await db.execute(query.limit(1))).scalar_one_or_none() is not None:
            raise DuplicatePositionError(name)

    @staticmethod
    async def _ensure_category(db: AsyncSession, user_id: int, category_id: int) -> None:
        result = await db.execute(
            select(PositionCategory.id).where(
                PositionCategory.id == category_id,
                or_(PositionCategory.user_id.is_(None), PositionCategory.user_id == user_id),
            )
        )
        if result.scalar_one_or_none() is None:
            raise ValidationError(f"Category {category_id} not found", field="category_id")

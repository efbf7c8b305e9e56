"""Inventory ledger: versioned capacity with a compare-and-swap update."""

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import ConcurrencyConflictError, NotFoundError, ValidationError
from ..core.observability import metrics_collector
from ..models.inventory import InventoryUnit, LedgerEntry, UnitKind
from ..models.resource import Resource, ResourceStatus

logger = logging.getLogger(__name__)


class InventoryLedger:
    """
    Sole writer of ``InventoryUnit.reserved`` and ``InventoryUnit.version``.

    Every write is a single conditional UPDATE guarded by the expected
    version; the affected row count tells whether the swap happened. The
    ledger never commits: callers own the transaction, so a reservation row
    and the capacity it consumes land together or not at all.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, unit_id: UUID) -> InventoryUnit:
        """
        Load the current stored state of an inventory unit.

        Raises:
            NotFoundError: If the unit does not exist
        """
        stmt = (
            select(InventoryUnit)
            .where(InventoryUnit.id == unit_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        unit = result.scalar_one_or_none()

        if not unit:
            raise NotFoundError(resource_type="inventory unit", resource_id=str(unit_id))

        return unit

    async def try_reserve(
        self,
        unit_id: UUID,
        expected_version: int,
        delta: int,
        reservation_id: Optional[UUID] = None,
        reason: Optional[str] = None,
    ) -> InventoryUnit:
        """
        Apply ``delta`` to the unit's reserved count if its version still matches.

        A positive delta holds capacity, a negative delta releases it. The
        write succeeds only when the stored version equals ``expected_version``
        and the result stays within ``[0, capacity]``; it then bumps the
        version by one and appends a ledger entry.

        Args:
            unit_id: Inventory unit to update
            expected_version: Version the caller read
            delta: Signed quantity change
            reservation_id: Reservation the change belongs to, for the audit trail
            reason: Free-text audit reason

        Returns:
            The unit as stored after the write

        Raises:
            ValidationError: If delta is zero
            NotFoundError: If the unit does not exist
            ConcurrencyConflictError: If the version is stale or the bounds would be violated
        """
        if delta == 0:
            raise ValidationError("Ledger delta must be non-zero")

        now = datetime.utcnow()
        stmt = (
            update(InventoryUnit)
            .where(
                InventoryUnit.id == unit_id,
                InventoryUnit.version == expected_version,
                InventoryUnit.reserved + delta >= 0,
                InventoryUnit.reserved + delta <= InventoryUnit.capacity,
            )
            .values(
                reserved=InventoryUnit.reserved + delta,
                version=InventoryUnit.version + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)

        if result.rowcount != 1:
            current = await self.get(unit_id)
            metrics_collector.record_ledger_conflict()
            logger.info(
                "Ledger write rejected",
                extra={
                    "unit_id": str(unit_id),
                    "expected_version": expected_version,
                    "current_version": current.version,
                    "reserved": current.reserved,
                    "capacity": current.capacity,
                    "delta": delta,
                }
            )
            if current.version != expected_version:
                detail = (
                    f"Inventory unit {unit_id} is at version {current.version}, "
                    f"expected {expected_version}"
                )
            else:
                detail = (
                    f"Applying {delta:+d} to inventory unit {unit_id} would leave "
                    f"reserved outside [0, {current.capacity}]"
                )
            raise ConcurrencyConflictError(str(unit_id), expected_version, detail=detail)

        unit = await self.get(unit_id)

        self.db.add(LedgerEntry(
            unit_id=unit_id,
            reservation_id=reservation_id,
            delta=delta,
            reason=reason or ("reserve" if delta > 0 else "release"),
            reserved_before=unit.reserved - delta,
            reserved_after=unit.reserved,
            version_before=expected_version,
            version_after=unit.version,
        ))
        await self._touch_resource(unit, now)
        await self.db.flush()

        logger.debug(
            "Ledger write applied",
            extra={
                "unit_id": str(unit_id),
                "reservation_id": str(reservation_id) if reservation_id else None,
                "delta": delta,
                "reserved": unit.reserved,
                "capacity": unit.capacity,
                "version": unit.version,
            }
        )

        return unit

    async def _touch_resource(self, unit: InventoryUnit, now: datetime) -> None:
        """Bump the owning resource's version; stock units also flip sold-out status."""
        values = {"version": Resource.version + 1, "updated_at": now}

        if unit.kind == UnitKind.STOCK.value:
            if unit.available == 0:
                values["status"] = case(
                    (Resource.status == ResourceStatus.ACTIVE.value, ResourceStatus.SOLD_OUT.value),
                    else_=Resource.status,
                )
            else:
                values["status"] = case(
                    (Resource.status == ResourceStatus.SOLD_OUT.value, ResourceStatus.ACTIVE.value),
                    else_=Resource.status,
                )

        await self.db.execute(
            update(Resource)
            .where(Resource.id == unit.resource_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

    async def get_entries(self, unit_id: UUID) -> list[LedgerEntry]:
        """Get the ledger entries of a unit, oldest first."""
        stmt = (
            select(LedgerEntry)
            .where(LedgerEntry.unit_id == unit_id)
            .order_by(LedgerEntry.version_after)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars())

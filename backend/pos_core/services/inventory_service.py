"""
Stock deduction for settled sales.

UNIT HIERARCHY:
- Selling a container (carton, paquet, sac) deducts the container row and
  the base row by quantity * quantity_contained
- Selling the base unit deducts the base row and, for every container
  variant with a known pack size, quantity / quantity_contained from the
  container row

Deductions are issued per stock row with an idempotency key derived from
the invoice number, so re-running a settlement's deduction never deducts
twice. Failures are queued as PENDING movements; an oversell is clamped at
zero and flagged through the movement's shortfall.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal

from flask import current_app

from ..enums import UnitType, OversellPolicy
from ..money import ZERO, to_quantity


@dataclass(frozen=True)
class StockDeduction:
    product_id: int
    variant_id: int | None
    quantity: Decimal

    def idempotency_key(self, reference: str) -> str:
        return f"{reference}:{self.product_id}:{self.variant_id or 0}"


@dataclass
class DeductionResult:
    applied: list = field(default_factory=list)
    pending: list = field(default_factory=list)
    oversold: list = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.pending


def _container_variants(variants):
    for variant in variants:
        unit = UnitType.parse(variant.unit_type)
        contained = Decimal(variant.quantity_contained or 0)
        if unit.is_container and contained > ZERO:
            yield variant, contained


def plan_stock_deductions(lines, catalog) -> list[StockDeduction]:
    """
    Stock rows to deduct for ``lines``, aggregated per (product, variant).

    Deleted and gift lines are skipped.
    """
    totals: "OrderedDict[tuple, Decimal]" = OrderedDict()

    def add(product_id, variant_id, qty):
        key = (product_id, variant_id)
        totals[key] = totals.get(key, ZERO) + qty

    variants_cache = {}
    for line in lines:
        if line.deleted or line.is_gift or line.quantity <= ZERO:
            continue
        if line.product_id not in variants_cache:
            variants_cache[line.product_id] = catalog.get_variants(line.product_id)
        variants = variants_cache[line.product_id]
        unit = UnitType.parse(line.unit_type)

        if unit.is_container:
            variant = None
            if line.variant_id is not None:
                variant = next((v for v in variants if v.id == line.variant_id), None)
            if variant is None:
                variant = next((v for v in variants if UnitType.parse(v.unit_type) == unit), None)
            contained = Decimal(variant.quantity_contained or 0) if variant is not None else ZERO
            if variant is not None:
                add(line.product_id, variant.id, line.quantity)
            if contained > ZERO:
                add(line.product_id, None, line.quantity * contained)
            elif variant is None:
                # No known pack size: the product row takes the sale as-is
                add(line.product_id, None, line.quantity)
        else:
            add(line.product_id, None, line.quantity)
            for variant, contained in _container_variants(variants):
                add(line.product_id, variant.id, line.quantity / contained)

    return [
        StockDeduction(product_id=pid, variant_id=vid, quantity=to_quantity(qty))
        for (pid, vid), qty in totals.items()
        if to_quantity(qty) > ZERO
    ]


def check_availability(plan, catalog, warehouse_id: int) -> list[dict]:
    """Rows where the planned deduction exceeds what is on hand."""
    shortages = []
    for item in plan:
        available = catalog.get_stock(item.product_id, warehouse_id, variant_id=item.variant_id)
        if item.quantity > available:
            shortages.append({
                "product_id": item.product_id,
                "variant_id": item.variant_id,
                "requested": str(item.quantity),
                "available": str(available),
            })
    return shortages


def deduct_invoice_stock(
    lines,
    *,
    catalog,
    warehouse_id: int,
    reference: str,
    oversell_policy=OversellPolicy.WARN,
) -> DeductionResult:
    """
    Best-effort deduction for a committed invoice.

    Never raises: every failure is logged and queued as a pending movement.
    """
    policy = OversellPolicy.parse(oversell_policy)
    result = DeductionResult()
    logger = current_app.logger

    try:
        plan = plan_stock_deductions(lines, catalog)
    except Exception:
        logger.exception("Failed to plan stock deduction for %s", reference)
        for line in lines:
            if line.deleted or line.is_gift:
                continue
            item = StockDeduction(line.product_id, line.variant_id, to_quantity(line.quantity))
            _queue(catalog, item, warehouse_id, reference, "deduction plan unavailable", result)
        return result

    for item in plan:
        try:
            movement = catalog.apply_stock_delta(
                item.product_id,
                item.variant_id,
                warehouse_id,
                -item.quantity,
                idempotency_key=item.idempotency_key(reference),
                reference=reference,
            )
        except Exception as exc:
            logger.exception(
                "Stock deduction failed for product %s (variant %s) on %s",
                item.product_id, item.variant_id, reference,
            )
            _queue(catalog, item, warehouse_id, reference, str(exc), result)
            continue

        result.applied.append(movement)
        if movement.is_oversell:
            result.oversold.append(movement)
            if policy != OversellPolicy.ALLOW:
                logger.warning(
                    "Oversell on %s: product %s (variant %s) short by %s",
                    reference, item.product_id, item.variant_id, movement.shortfall,
                )
    return result


def _queue(catalog, item: StockDeduction, warehouse_id, reference, error, result: DeductionResult):
    try:
        catalog.record_pending_movement(
            item.product_id,
            item.variant_id,
            warehouse_id,
            -item.quantity,
            idempotency_key=item.idempotency_key(reference),
            reference=reference,
            error=error,
        )
    except Exception:
        current_app.logger.exception("Could not queue pending stock movement %s", item.idempotency_key(reference))
    result.pending.append(item.idempotency_key(reference))


def retry_pending_stock_movements(catalog, *, limit: int | None = None) -> dict:
    """
    Re-issue every PENDING movement. Safe to run repeatedly: a movement that
    was applied in the meantime is skipped by its idempotency key.
    """
    summary = {"applied": 0, "failed": 0, "oversold": 0}
    for movement in catalog.list_movements(pending_only=True, limit=limit):
        key = movement.idempotency_key
        try:
            applied = catalog.apply_stock_delta(
                movement.product_id,
                movement.variant_id,
                movement.warehouse_id,
                movement.requested_delta,
                idempotency_key=key,
                reference=movement.reference,
            )
        except Exception:
            current_app.logger.exception("Retry of stock movement %s failed", key)
            summary["failed"] += 1
            continue
        summary["applied"] += 1
        if applied.is_oversell:
            summary["oversold"] += 1
    return summary

"""
Catalog/Inventory store backed by the SQLAlchemy models.

WHY: Settlement only needs a narrow view of the catalog (products,
variants, clients, stock) and one write: a stock delta. Keeping that
surface in one class lets checkout run against any store that honours the
same contract, and keeps SQLAlchemy errors from leaking into the core.

STOCK WRITES:
- Floor clamped in SQL (UPDATE ... SET quantity = CASE ...), so concurrent
  registers can never push a row below zero
- Idempotent by key: re-issuing an applied delta is a no-op
- Every delta is logged in stock_movements with the shortfall it hit
"""

from __future__ import annotations

import uuid
from decimal import Decimal

from sqlalchemy import case, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Product, ProductVariant, StockLevel, StockMovement, Client, Warehouse
from ..enums import MovementStatus
from ..errors import NotFoundError
from ..money import ZERO, to_quantity
from ..time_utils import utcnow
from .concurrency import run_with_retry, lock_for_update


class CatalogStore:
    def __init__(self, *, attempts: int = 3, backoff_base: float = 0.1):
        self.attempts = attempts
        self.backoff_base = backoff_base

    def _run(self, func):
        return run_with_retry(func, attempts=self.attempts, backoff_base=self.backoff_base)

    # =========================================================================
    # READS
    # =========================================================================

    def get_product(self, product_id: int) -> Product:
        product = self._run(lambda: db.session.get(Product, product_id))
        if product is None:
            raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})
        return product

    def get_variants(self, product_id: int) -> list[ProductVariant]:
        """Active sale-unit variants of a product."""
        return self._run(lambda: db.session.query(ProductVariant).filter_by(
            product_id=product_id,
            is_active=True,
        ).order_by(ProductVariant.id).all())

    def get_variant(self, variant_id: int) -> ProductVariant:
        variant = self._run(lambda: db.session.get(ProductVariant, variant_id))
        if variant is None:
            raise NotFoundError(f"Variant {variant_id} not found", details={"variant_id": variant_id})
        return variant

    def get_warehouse(self, warehouse_id: int) -> Warehouse:
        warehouse = self._run(lambda: db.session.get(Warehouse, warehouse_id))
        if warehouse is None:
            raise NotFoundError(f"Warehouse {warehouse_id} not found", details={"warehouse_id": warehouse_id})
        return warehouse

    def _level(self, product_id: int, variant_id: int | None, warehouse_id: int):
        q = db.session.query(StockLevel).filter_by(product_id=product_id, warehouse_id=warehouse_id)
        if variant_id is None:
            q = q.filter(StockLevel.variant_id.is_(None))
        else:
            q = q.filter(StockLevel.variant_id == variant_id)
        return q

    def get_stock(self, product_id: int, warehouse_id: int, variant_id: int | None = None) -> Decimal:
        """On-hand quantity; the product-level (base unit) row unless a variant is given."""
        level = self._run(lambda: self._level(product_id, variant_id, warehouse_id).first())
        if level is None:
            return ZERO
        return Decimal(level.quantity)

    def list_stock(self, warehouse_id: int) -> list[StockLevel]:
        return self._run(lambda: db.session.query(StockLevel).filter_by(
            warehouse_id=warehouse_id,
        ).order_by(StockLevel.product_id, StockLevel.variant_id).all())

    def get_client(self, client_id: int) -> Client:
        client = self._run(lambda: db.session.get(Client, client_id))
        if client is None:
            raise NotFoundError(f"Client {client_id} not found", details={"client_id": client_id})
        return client

    def ensure_general_client(self, name: str = "General Client") -> Client:
        """
        Walk-in client that anonymous sales are booked against.

        Created the first time it is needed, reused afterwards.
        """
        def _op():
            client = db.session.query(Client).filter_by(is_general=True).order_by(Client.id).first()
            if client is None:
                client = Client(name=name, subscription_tier=None, is_general=True)
                db.session.add(client)
                db.session.commit()
            return client
        return self._run(_op)

    # =========================================================================
    # STOCK WRITES
    # =========================================================================

    def set_stock(self, product_id: int, warehouse_id: int, quantity, variant_id: int | None = None) -> StockLevel:
        """Overwrite a stock row (seeding and manual counts)."""
        qty = max(ZERO, to_quantity(quantity))

        def _op():
            level = self._level(product_id, variant_id, warehouse_id).first()
            if level is None:
                level = StockLevel(product_id=product_id, variant_id=variant_id, warehouse_id=warehouse_id)
                db.session.add(level)
            level.quantity = qty
            db.session.commit()
            return level
        return self._run(_op)

    def apply_stock_delta(
        self,
        product_id: int,
        variant_id: int | None,
        warehouse_id: int,
        delta,
        *,
        idempotency_key: str | None = None,
        reference: str | None = None,
    ) -> StockMovement:
        """
        Apply ``delta`` to one stock row, clamped at zero.

        With an ``idempotency_key`` already APPLIED the call returns the
        existing movement untouched. A PENDING movement under the same key
        (left by an earlier failure) is applied now.
        """
        delta = to_quantity(delta, "delta")

        def _op():
            movement = None
            if idempotency_key:
                movement = db.session.query(StockMovement).filter_by(idempotency_key=idempotency_key).first()
                if movement is not None and movement.status == MovementStatus.APPLIED.value:
                    return movement
            if movement is None:
                movement = StockMovement(
                    idempotency_key=idempotency_key or _adhoc_key(product_id, variant_id, warehouse_id),
                    product_id=product_id,
                    variant_id=variant_id,
                    warehouse_id=warehouse_id,
                    requested_delta=delta,
                    status=MovementStatus.PENDING.value,
                    reference=reference,
                )
                db.session.add(movement)

            level = lock_for_update(self._level(product_id, variant_id, warehouse_id)).populate_existing().first()
            if level is None:
                level = StockLevel(product_id=product_id, variant_id=variant_id, warehouse_id=warehouse_id, quantity=ZERO)
                db.session.add(level)
            db.session.flush()

            before = Decimal(level.quantity or 0)
            new_quantity = StockLevel.quantity + delta
            db.session.execute(
                update(StockLevel)
                .where(StockLevel.id == level.id)
                .values(quantity=case((new_quantity < 0, 0), else_=new_quantity))
                .execution_options(synchronize_session=False)
            )
            db.session.refresh(level)
            after = Decimal(level.quantity)

            movement.applied_delta = after - before
            movement.shortfall = max(ZERO, -(before + delta))
            movement.status = MovementStatus.APPLIED.value
            movement.error = None
            movement.applied_at = utcnow()
            db.session.commit()
            return movement

        try:
            return self._run(_op)
        except IntegrityError:
            # Same key applied concurrently by another register
            db.session.rollback()
            existing = db.session.query(StockMovement).filter_by(idempotency_key=idempotency_key).first()
            if existing is None:
                raise
            return existing

    def record_pending_movement(
        self,
        product_id: int,
        variant_id: int | None,
        warehouse_id: int,
        delta,
        *,
        idempotency_key: str,
        reference: str | None = None,
        error: str | None = None,
    ) -> StockMovement:
        """Queue a delta that could not be applied, for retry_pending_stock_movements."""
        def _op():
            movement = db.session.query(StockMovement).filter_by(idempotency_key=idempotency_key).first()
            if movement is None:
                movement = StockMovement(
                    idempotency_key=idempotency_key,
                    product_id=product_id,
                    variant_id=variant_id,
                    warehouse_id=warehouse_id,
                    requested_delta=to_quantity(delta, "delta"),
                    status=MovementStatus.PENDING.value,
                    reference=reference,
                )
                db.session.add(movement)
            if movement.status == MovementStatus.PENDING.value:
                movement.error = (error or "")[:255] or None
            db.session.commit()
            return movement
        return self._run(_op)

    def list_movements(self, *, pending_only: bool = False, oversold_only: bool = False, limit: int | None = None):
        def _op():
            q = db.session.query(StockMovement)
            if pending_only:
                q = q.filter_by(status=MovementStatus.PENDING.value)
            if oversold_only:
                q = q.filter(StockMovement.shortfall > 0)
            q = q.order_by(StockMovement.id)
            if limit:
                q = q.limit(limit)
            return q.all()
        return self._run(_op)


def _adhoc_key(product_id, variant_id, warehouse_id) -> str:
    return f"adhoc:{product_id}:{variant_id or 0}:{warehouse_id}:{uuid.uuid4().hex}"

from __future__ import annotations

from ..extensions import db
from pos_core.time_utils import to_utc_z


class StockLevel(db.Model):
    """
    On-hand quantity of one product (or one of its variants) in a warehouse.

    variant_id NULL is the product-level row, counted in the product's base
    unit. Quantities never go below zero: every write goes through the
    floor-clamped update in CatalogStore.apply_stock_delta.
    """
    __tablename__ = "stock_levels"
    __table_args__ = (
        db.UniqueConstraint("product_id", "variant_id", "warehouse_id", name="uq_stock_levels_row"),
        db.Index("ix_stock_levels_product_warehouse", "product_id", "warehouse_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)

    quantity = db.Column(db.Numeric(14, 3), nullable=False, default=0)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    product = db.relationship("Product")
    variant = db.relationship("ProductVariant")
    warehouse = db.relationship("Warehouse")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "warehouse_id": self.warehouse_id,
            "quantity": str(self.quantity),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    One stock delta issued by a settlement.

    WHY: Deductions are best-effort and may be re-issued. The unique
    idempotency_key makes a second application of the same delta a no-op,
    and rows left PENDING (store failure) form the retry queue.

    RECONCILIATION: shortfall > 0 means the sale asked for more than was on
    hand and the row was clamped at zero (an oversell to review).
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.UniqueConstraint("idempotency_key", name="uq_stock_movements_key"),
        db.Index("ix_stock_movements_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    idempotency_key = db.Column(db.String(191), nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)

    requested_delta = db.Column(db.Numeric(14, 3), nullable=False)
    applied_delta = db.Column(db.Numeric(14, 3), nullable=True)
    shortfall = db.Column(db.Numeric(14, 3), nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default="pending")  # applied, pending
    reference = db.Column(db.String(64), nullable=True, index=True)  # invoice number
    error = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    applied_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @property
    def is_oversell(self) -> bool:
        return bool(self.shortfall) and self.shortfall > 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "idempotency_key": self.idempotency_key,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "warehouse_id": self.warehouse_id,
            "requested_delta": str(self.requested_delta),
            "applied_delta": str(self.applied_delta) if self.applied_delta is not None else None,
            "shortfall": str(self.shortfall),
            "status": self.status,
            "reference": self.reference,
            "error": self.error,
            "created_at": to_utc_z(self.created_at),
            "applied_at": to_utc_z(self.applied_at) if self.applied_at else None,
        }

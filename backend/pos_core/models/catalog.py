from __future__ import annotations

from ..extensions import db
from pos_core.time_utils import to_utc_z


TIER_PRICE_COLUMNS = ("price_a_cents", "price_b_cents", "price_c_cents", "price_d_cents", "price_e_cents")


class TierPricedMixin:
    """Five tier price columns (A..E), all in cents."""
    price_a_cents = db.Column(db.Integer, nullable=False, default=0)
    price_b_cents = db.Column(db.Integer, nullable=False, default=0)
    price_c_cents = db.Column(db.Integer, nullable=False, default=0)
    price_d_cents = db.Column(db.Integer, nullable=False, default=0)
    price_e_cents = db.Column(db.Integer, nullable=False, default=0)

    def tier_prices(self) -> dict:
        return {col[6].upper(): getattr(self, col) or 0 for col in TIER_PRICE_COLUMNS}


class Warehouse(db.Model):
    """Stock location. Cash sessions and stock levels are scoped to one."""
    __tablename__ = "warehouses"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False, unique=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "created_at": to_utc_z(self.created_at),
        }


class Client(db.Model):
    """
    Customer account as seen by the till.

    Only the pricing tier matters to settlement; the rest of the client
    record is maintained elsewhere. ``is_general`` marks the shared walk-in
    client that anonymous sales are booked against.
    """
    __tablename__ = "clients"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, index=True)
    subscription_tier = db.Column(db.String(16), nullable=True)  # A..E, legacy "basic"
    is_general = db.Column(db.Boolean, nullable=False, default=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "subscription_tier": self.subscription_tier,
            "is_general": self.is_general,
            "created_at": to_utc_z(self.created_at),
        }


class Product(TierPricedMixin, db.Model):
    """
    Sellable catalog item.

    ``price_cents`` is the base price used when every tier price is zero.
    ``unit_type`` is the unit the product itself is counted in; container
    packagings (carton, paquet, sac) are modelled as variants.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)

    price_cents = db.Column(db.Integer, nullable=False, default=0)
    unit_type = db.Column(db.String(16), nullable=False, default="unit")

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "price_cents": self.price_cents,
            **{col: getattr(self, col) for col in TIER_PRICE_COLUMNS},
            "unit_type": self.unit_type,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductVariant(TierPricedMixin, db.Model):
    """
    One sale unit of a product (the unit itself, a carton of 12, a 5 kg sac...).

    ``quantity_contained`` converts one of this variant into base units of
    the product. It is 1 for base-unit variants and the pack size for
    containers.
    """
    __tablename__ = "product_variants"
    __table_args__ = (
        db.Index("ix_product_variants_product_unit", "product_id", "unit_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    variant_name = db.Column(db.String(128), nullable=True)
    unit_type = db.Column(db.String(16), nullable=False, default="unit")
    quantity_contained = db.Column(db.Numeric(12, 3), nullable=False, default=1)
    barcode = db.Column(db.String(64), nullable=True, index=True)

    is_default = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("variants", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "variant_name": self.variant_name,
            "unit_type": self.unit_type,
            "quantity_contained": str(self.quantity_contained) if self.quantity_contained is not None else None,
            **{col: getattr(self, col) for col in TIER_PRICE_COLUMNS},
            "barcode": self.barcode,
            "is_default": self.is_default,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }

from __future__ import annotations

from ..extensions import db
from pos_core.time_utils import to_utc_z


class Promotion(db.Model):
    """
    Quantity-threshold promotion.

    Types: discount (percent off) or gift (free product lines).
    Scope: global (whole cart quantity) or product (one product's quantity).
    unit_type, when set, restricts which lines count toward min_quantity.
    A NULL starts_at/ends_at leaves that side of the window open.
    """
    __tablename__ = "promotions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)

    promo_type = db.Column(db.String(16), nullable=False)  # gift, discount
    scope = db.Column(db.String(16), nullable=False, default="global")  # global, product
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)

    min_quantity = db.Column(db.Numeric(12, 3), nullable=False, default=1)
    unit_type = db.Column(db.String(16), nullable=True)

    discount_percent = db.Column(db.Numeric(5, 2), nullable=True)
    gift_product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    gift_quantity = db.Column(db.Numeric(12, 3), nullable=True)

    starts_at = db.Column(db.DateTime(timezone=True), nullable=True)
    ends_at = db.Column(db.DateTime(timezone=True), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product", foreign_keys=[product_id])
    gift_product = db.relationship("Product", foreign_keys=[gift_product_id])
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "promo_type": self.promo_type,
            "scope": self.scope,
            "product_id": self.product_id,
            "min_quantity": str(self.min_quantity),
            "unit_type": self.unit_type,
            "discount_percent": str(self.discount_percent) if self.discount_percent is not None else None,
            "gift_product_id": self.gift_product_id,
            "gift_quantity": str(self.gift_quantity) if self.gift_quantity is not None else None,
            "starts_at": to_utc_z(self.starts_at) if self.starts_at else None,
            "ends_at": to_utc_z(self.ends_at) if self.ends_at else None,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }

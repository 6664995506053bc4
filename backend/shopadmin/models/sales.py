from __future__ import annotations

from ..extensions import db
from shopadmin.time_utils import to_utc_z


class Purchase(db.Model):
    """
    A customer buying a quantity of one product.

    total_price is quantity * product.price at creation time and is never
    recomputed. Purchases are only ever created by purchase_service.
    """
    __tablename__ = "purchases"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_purchases_quantity_positive"),
        db.CheckConstraint("total_price > 0", name="ck_purchases_total_positive"),
        db.Index("ix_purchases_product_purchased_at", "product_id", "purchased_at"),
        db.Index("ix_purchases_customer_purchased_at", "customer_id", "purchased_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    total_price = db.Column(db.Numeric(12, 2), nullable=False)
    purchased_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer = db.relationship("Customer")
    product = db.relationship("Product")

    def __repr__(self) -> str:
        return f"<Purchase id={self.id} product_id={self.product_id} quantity={self.quantity}>"

    @property
    def unit_price(self):
        return self.product.price if self.product else 0

    def to_dict(self) -> dict:
        product = self.product
        return {
            "id": self.id,
            "quantity": self.quantity,
            "total_price": float(self.total_price),
            "unit_price": float(self.unit_price),
            "purchased_at": to_utc_z(self.purchased_at),
            "customer": self.customer.to_ref() if self.customer else None,
            "product": {
                "id": product.id,
                "name": product.name,
                "price": float(product.price),
                "categories": [c.to_ref() for c in product.categories],
                "admin": product.admin.to_ref() if product.admin else None,
            } if product else None,
        }

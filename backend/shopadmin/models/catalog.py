from __future__ import annotations

from ..extensions import db
from shopadmin.time_utils import to_utc_z


class Category(db.Model):
    __tablename__ = "categories"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=False)
    admin_id = db.Column(db.Integer, db.ForeignKey("admins.id"), nullable=False, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    admin = db.relationship("Admin")
    products = db.relationship(
        "Product",
        secondary="product_categories",
        back_populates="categories",
        order_by="Product.id",
        viewonly=True,
    )

    def __repr__(self) -> str:
        return f"<Category id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "admin": self.admin.to_ref() if self.admin else None,
            "products_count": len(self.products),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }

    def to_ref(self) -> dict:
        return {"id": self.id, "name": self.name}


# Names are unique regardless of case.
db.Index("uq_categories_name_lower", db.func.lower(Category.name), unique=True)


class Product(db.Model):
    """
    Sellable product.

    STOCK: `stock` is only ever decremented by the purchase workflow, through
    a conditional UPDATE that also bumps `version_id`. Admin edits go through
    the ORM, so an edit racing a purchase fails with StaleDataError instead
    of silently overwriting the decremented stock.

    IMAGES: a persisted product always has at least one image; the catalog
    service enforces this on create and on image replacement.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("price > 0", name="ck_products_price_positive"),
        db.CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        db.Index("ix_products_admin_name", "admin_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=False)
    price = db.Column(db.Numeric(10, 2), nullable=False)
    stock = db.Column(db.Integer, nullable=False, default=0)
    admin_id = db.Column(db.Integer, db.ForeignKey("admins.id"), nullable=False, index=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    admin = db.relationship("Admin")
    images = db.relationship("ProductImage", back_populates="product", order_by="ProductImage.id")
    categories = db.relationship(
        "Category",
        secondary="product_categories",
        back_populates="products",
        order_by="Category.id",
        viewonly=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} stock={self.stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price": float(self.price) if self.price is not None else None,
            "stock": self.stock,
            "version_id": self.version_id,
            "categories": [c.to_ref() for c in self.categories],
            "images": [img.to_dict() for img in self.images],
            "admin": self.admin.to_ref() if self.admin else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductImage(db.Model):
    __tablename__ = "product_images"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    image_url = db.Column(db.String(2048), nullable=False)
    caption = db.Column(db.String(200), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", back_populates="images")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "url": self.image_url,
            "caption": self.caption,
        }


class ProductCategory(db.Model):
    """Join row between a product and a category; one row per pair."""
    __tablename__ = "product_categories"
    __table_args__ = (
        db.UniqueConstraint("product_id", "category_id", name="uq_product_categories_pair"),
        db.Index("ix_product_categories_category", "category_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")
    category = db.relationship("Category")

    def __repr__(self) -> str:
        return f"<ProductCategory product_id={self.product_id} category_id={self.category_id}>"

from __future__ import annotations

from decimal import Decimal

from ..extensions import db, blobs
from ..time_utils import to_utc_z


def _money(value: Decimal | None) -> str | None:
    return None if value is None else f"{value:.2f}"


class Product(db.Model):
    """
    Catalog product, either simple or variable.

    MODE INVARIANT:
    When is_variable is true the purchasable units are the variants, so the
    top-level price=0, sale_price=NULL, sku=NULL and stock_quantity=0. The
    service layer enforces this on every write.

    SOFT DELETE:
    deleted_at marks a product as removed. Normal reads filter it out; restore
    clears it. Slug and SKU stay reserved while soft-deleted.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_category_deleted", "category_id", "deleted_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(255), nullable=False, unique=True, index=True)
    description = db.Column(db.Text, nullable=True)
    short_description = db.Column(db.Text, nullable=True)

    price = db.Column(db.Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    sale_price = db.Column(db.Numeric(10, 2), nullable=True)
    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    sku = db.Column(db.String(100), nullable=True, unique=True)

    is_variable = db.Column(db.Boolean, nullable=False, default=False)
    is_featured = db.Column(db.Boolean, nullable=False, default=False)

    featured_image_path = db.Column(db.String(512), nullable=True)
    gallery_image_paths = db.Column(db.JSON, nullable=False, default=list)

    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    category = db.relationship("Category", backref=db.backref("products", lazy=True))
    variants = db.relationship(
        "ProductVariant",
        back_populates="product",
        order_by="ProductVariant.id",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} slug={self.slug!r} variable={self.is_variable}>"

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def _variant_price_floor(self) -> tuple[Decimal | None, Decimal | None]:
        """(lowest price, lowest sale price among variants that have one)."""
        if not self.variants:
            return None, None
        lowest_price = min(v.price for v in self.variants)
        sale_prices = [v.sale_price for v in self.variants if v.sale_price is not None]
        return lowest_price, (min(sale_prices) if sale_prices else None)

    @property
    def is_on_sale(self) -> bool:
        if self.is_variable:
            lowest_price, lowest_sale = self._variant_price_floor()
            return lowest_sale is not None and lowest_sale < lowest_price
        return self.sale_price is not None and self.sale_price < self.price

    @property
    def final_price(self) -> Decimal | None:
        """
        Price a customer pays.

        Simple: sale price when present and lower than price.
        Variable: the lowest sale price if it beats the lowest plain price,
        else the lowest plain price; None when there are no variants.
        """
        if self.is_variable:
            lowest_price, lowest_sale = self._variant_price_floor()
            if lowest_sale is not None and lowest_sale < lowest_price:
                return lowest_sale
            return lowest_price
        return self.sale_price if self.is_on_sale else self.price

    def to_dict(self, include_variants: bool = True) -> dict:
        gallery = list(self.gallery_image_paths or [])
        data = {
            "id": self.id,
            "category_id": self.category_id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "short_description": self.short_description,
            "price": _money(self.price),
            "sale_price": _money(self.sale_price),
            "stock_quantity": self.stock_quantity,
            "sku": self.sku,
            "is_variable": self.is_variable,
            "is_featured": self.is_featured,
            "is_on_sale": self.is_on_sale,
            "final_price": _money(self.final_price),
            "featured_image_path": self.featured_image_path,
            "featured_image_url": blobs.public_url(self.featured_image_path),
            "gallery_image_paths": gallery,
            "gallery_image_urls": [blobs.public_url(p) for p in gallery],
            "deleted_at": to_utc_z(self.deleted_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_variants:
            data["variants"] = [v.to_dict() for v in self.variants]
        return data


class ProductVariant(db.Model):
    """
    One purchasable combination of a variable product.

    SKU: checked for uniqueness by variant_service (across variants and product
    SKUs); storage only indexes it.
    """
    __tablename__ = "product_variants"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(
        db.Integer,
        db.ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    price = db.Column(db.Numeric(10, 2), nullable=False)
    sale_price = db.Column(db.Numeric(10, 2), nullable=True)
    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    sku = db.Column(db.String(100), nullable=False, index=True)
    image_path = db.Column(db.String(512), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product", back_populates="variants")
    attribute_links = db.relationship(
        "VariantAttributeValue",
        back_populates="variant",
        order_by="VariantAttributeValue.id",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<ProductVariant id={self.id} product_id={self.product_id} sku={self.sku!r}>"

    @property
    def combination_pairs(self) -> list[tuple[int, int]]:
        return [(link.attribute_value.attribute_id, link.attribute_value_id) for link in self.attribute_links]

    @property
    def is_on_sale(self) -> bool:
        return self.sale_price is not None and self.sale_price < self.price

    @property
    def final_price(self) -> Decimal:
        return self.sale_price if self.is_on_sale else self.price

    def combination(self) -> list[dict]:
        entries = []
        for link in self.attribute_links:
            value = link.attribute_value
            entries.append({
                "attribute_id": value.attribute_id,
                "attribute_name": value.attribute.name,
                "value_id": value.id,
                "value": value.value,
            })
        return entries

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "price": _money(self.price),
            "sale_price": _money(self.sale_price),
            "stock_quantity": self.stock_quantity,
            "sku": self.sku,
            "is_on_sale": self.is_on_sale,
            "final_price": _money(self.final_price),
            "image_path": self.image_path,
            "image_url": blobs.public_url(self.image_path),
            "combination": self.combination(),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class VariantAttributeValue(db.Model):
    """
    Join row: one attribute value of one variant.

    The set of rows for a variant is its combination. Storage only guarantees
    the pair is unique; set-level uniqueness per product is enforced by
    variant_service.
    """
    __tablename__ = "product_variant_attribute_values"
    __table_args__ = (
        db.UniqueConstraint("product_variant_id", "attribute_value_id", name="pv_av_unique"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_variant_id = db.Column(
        db.Integer,
        db.ForeignKey("product_variants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    attribute_value_id = db.Column(
        db.Integer,
        db.ForeignKey("attribute_values.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    variant = db.relationship("ProductVariant", back_populates="attribute_links")
    attribute_value = db.relationship("AttributeValue", back_populates="variant_links")

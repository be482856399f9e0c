from __future__ import annotations

from ..extensions import db, blobs
from ..time_utils import to_utc_z


class Category(db.Model):
    """
    Product category tree.

    Categories nest through parent_id; deleting a parent detaches its children
    (handled in categories_service, not by a DB cascade).
    """
    __tablename__ = "categories"
    __table_args__ = (
        db.Index("ix_categories_parent_order", "parent_id", "sort_order"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    parent_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True)

    name = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(255), nullable=False, unique=True, index=True)
    description = db.Column(db.Text, nullable=True)
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    image_path = db.Column(db.String(512), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    parent = db.relationship("Category", remote_side=[id], backref=db.backref("children", lazy=True))

    def __repr__(self) -> str:
        return f"<Category id={self.id} slug={self.slug!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "parent_id": self.parent_id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "sort_order": self.sort_order,
            "image_path": self.image_path,
            "image_url": blobs.public_url(self.image_path),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Attribute(db.Model):
    """
    Variation axis such as "Color" or "Size".

    Owns an ordered list of AttributeValue rows. Deleting an attribute deletes
    its values, and through them every variant join row that referenced them
    (ORM cascade; variants themselves are kept).
    """
    __tablename__ = "attributes"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(255), nullable=False, unique=True, index=True)
    description = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    values = db.relationship(
        "AttributeValue",
        back_populates="attribute",
        order_by="AttributeValue.position",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Attribute id={self.id} slug={self.slug!r}>"

    def to_dict(self, include_values: bool = True) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_values:
            data["values"] = [v.to_dict() for v in self.values]
        return data


class AttributeValue(db.Model):
    __tablename__ = "attribute_values"
    __table_args__ = (
        db.UniqueConstraint("attribute_id", "slug", name="uq_attribute_values_attribute_slug"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    attribute_id = db.Column(
        db.Integer,
        db.ForeignKey("attributes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    value = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(255), nullable=False)

    # Display order inside the attribute
    position = db.Column(db.Integer, nullable=False, default=0)

    attribute = db.relationship("Attribute", back_populates="values")
    variant_links = db.relationship(
        "VariantAttributeValue",
        back_populates="attribute_value",
        cascade="all",
    )

    def __repr__(self) -> str:
        return f"<AttributeValue id={self.id} attribute_id={self.attribute_id} value={self.value!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "attribute_id": self.attribute_id,
            "value": self.value,
            "slug": self.slug,
            "position": self.position,
        }

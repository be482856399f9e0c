"""
Category tree tests: slugs, parent validation, images and delete rules.
"""

import pytest

from storefront.services import categories_service, products_service
from storefront.storage import ExistingPath
from storefront.validation import ConflictError, DuplicateSlug, NotFoundError, ValidationError


def _mug(category_id, **overrides):
    fields = {"name": "Mug", "category_id": category_id, "price": "5.00", "sku": "MUG", "stock_quantity": 1}
    fields.update(overrides)
    return products_service.create_product(fields=fields, is_variable=False)


class TestCreateCategory:
    def test_slug_is_derived_from_name(self, db_session):
        category = categories_service.create_category(fields={"name": "Home & Kitchen"})

        assert category["slug"] == "home-kitchen"
        assert category["parent_id"] is None
        assert category["sort_order"] == 0

    def test_duplicate_slug_is_rejected(self, category):
        with pytest.raises(DuplicateSlug):
            categories_service.create_category(fields={"name": "Apparel"})

    def test_unknown_parent_is_rejected(self, db_session):
        with pytest.raises(ValidationError) as exc:
            categories_service.create_category(fields={"name": "Shirts", "parent_id": 404})
        assert exc.value.field == "parent_id"

    def test_child_category(self, category):
        child = categories_service.create_category(fields={"name": "Shirts", "parent_id": category.id})

        assert child["parent_id"] == category.id

    def test_image_upload(self, db_session, make_upload, stored_files):
        category = categories_service.create_category(fields={"name": "Toys"}, image=make_upload("toys.png"))

        assert category["image_path"].startswith("categories/")
        assert category["image_url"] == f"/uploads/{category['image_path']}"
        assert stored_files() == {category["image_path"]}


class TestUpdateCategory:
    def test_category_cannot_be_its_own_parent(self, category):
        with pytest.raises(ValidationError) as exc:
            categories_service.update_category(category_id=category.id, fields={"parent_id": category.id})
        assert exc.value.field == "parent_id"

    def test_cycles_are_rejected(self, category):
        child = categories_service.create_category(fields={"name": "Shirts", "parent_id": category.id})
        grandchild = categories_service.create_category(fields={"name": "Polos", "parent_id": child["id"]})

        with pytest.raises(ValidationError) as exc:
            categories_service.update_category(category_id=category.id, fields={"parent_id": grandchild["id"]})
        assert "cycle" in str(exc.value)

    def test_moving_to_root(self, category):
        child = categories_service.create_category(fields={"name": "Shirts", "parent_id": category.id})

        moved = categories_service.update_category(category_id=child["id"], fields={"parent_id": None})

        assert moved["parent_id"] is None

    def test_replacing_image_deletes_old_file(self, db_session, make_upload, stored_files):
        category = categories_service.create_category(fields={"name": "Toys"}, image=make_upload("a.png"))

        updated = categories_service.update_category(
            category_id=category["id"],
            fields={},
            image=make_upload("b.png"),
        )

        assert updated["image_path"] != category["image_path"]
        assert stored_files() == {updated["image_path"]}

    def test_remove_image(self, db_session, make_upload, stored_files):
        category = categories_service.create_category(fields={"name": "Toys"}, image=make_upload("a.png"))

        updated = categories_service.update_category(category_id=category["id"], fields={}, remove_image=True)

        assert updated["image_path"] is None
        assert stored_files() == set()

    def test_missing_existing_path_is_rejected(self, category):
        with pytest.raises(ValidationError) as exc:
            categories_service.update_category(
                category_id=category.id,
                fields={},
                image=ExistingPath("categories/nope.png"),
            )
        assert exc.value.field == "image"

    def test_blank_slug_is_rederived_from_name(self, category):
        updated = categories_service.update_category(
            category_id=category.id,
            fields={"name": "Clothing", "slug": ""},
        )

        assert updated["slug"] == "clothing"

    def test_unknown_category_is_not_found(self, db_session):
        with pytest.raises(NotFoundError):
            categories_service.update_category(category_id=404, fields={"name": "X"})


class TestDeleteCategory:
    def test_refused_while_live_products_exist(self, category):
        _mug(category.id)

        with pytest.raises(ConflictError) as exc:
            categories_service.delete_category(category_id=category.id)
        assert exc.value.details == {"product_count": 1}

    def test_refused_while_deleted_products_reference_it(self, category):
        product = _mug(category.id)
        products_service.delete_product(product_id=product["id"])

        with pytest.raises(ConflictError):
            categories_service.delete_category(category_id=category.id)

    def test_children_are_detached(self, category):
        parent_id = category.id
        child = categories_service.create_category(fields={"name": "Shirts", "parent_id": parent_id})

        assert categories_service.delete_category(category_id=parent_id) is True

        assert categories_service.get_category(child["id"])["parent_id"] is None
        with pytest.raises(NotFoundError):
            categories_service.get_category(parent_id)

    def test_image_is_removed(self, db_session, make_upload, stored_files):
        category = categories_service.create_category(fields={"name": "Toys"}, image=make_upload("a.png"))

        categories_service.delete_category(category_id=category["id"])

        assert stored_files() == set()


class TestListCategories:
    def test_ordering_and_filters(self, category):
        categories_service.create_category(fields={"name": "Zebra", "sort_order": -1})
        child = categories_service.create_category(fields={"name": "Shirts", "parent_id": category.id})

        everything = categories_service.list_categories()
        roots = categories_service.list_categories(roots_only=True)
        children = categories_service.list_categories(parent_id=category.id)

        assert [c["name"] for c in everything["items"]] == ["Zebra", "Apparel", "Shirts"]
        assert [c["name"] for c in roots["items"]] == ["Zebra", "Apparel"]
        assert [c["id"] for c in children["items"]] == [child["id"]]

"""
CLI command tests: demo seeding and catalog listings.
"""

from storefront.services import attributes_service, products_service


def test_seed_demo_creates_catalog(app, db_session):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["catalog", "seed-demo"])

    assert result.exit_code == 0, result.output
    assert "Demo catalog ready" in result.output
    products = {p["slug"]: p for p in products_service.list_products()["items"]}
    assert set(products) == {"classic-mug", "basic-t-shirt"}
    tee = products_service.get_product(products["basic-t-shirt"]["id"])
    assert [v["sku"] for v in tee["variants"]] == ["TSHIRT-RED-S", "TSHIRT-RED-M", "TSHIRT-BLU-S", "TSHIRT-BLU-M"]


def test_seed_demo_needs_no_seed_flag(app, db_session):
    assert "DEBUG_SEED_ENABLED" not in app.config

    runner = app.test_cli_runner()
    runner.invoke(args=["catalog", "seed-demo"])
    again = runner.invoke(args=["catalog", "seed-demo"])

    assert again.exit_code == 0, again.output
    assert "SKIP Category 'Apparel' already exists" in again.output
    assert len(products_service.list_products()["items"]) == 2
    assert len(attributes_service.list_attributes()["items"]) == 2


def test_list_attributes_prints_values(app, color):
    result = app.test_cli_runner().invoke(args=["catalog", "list-attributes"])

    assert result.exit_code == 0, result.output
    assert "Color" in result.output
    assert "Red" in result.output

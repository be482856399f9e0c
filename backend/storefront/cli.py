# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/storefront/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to storefront (PowerShell: $env:FLASK_APP="storefront").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Catalog inspection/bootstrap:
# - python -m flask catalog seed-demo
#   Create a demo category, Color/Size attributes and one simple + one variable product.
# - python -m flask catalog list-products [--include-deleted]
#   List products with mode, price and variant count.
# - python -m flask catalog list-attributes
#   List attributes with their values.
# - python -m flask catalog purge-orphans [--dry-run]
#   Delete uploaded files no catalog row references.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Attribute, Category, Product
from .services import attributes_service, categories_service, maintenance_service, products_service
from .services.variant_service import NewVariant, VariantSpec
from .validation import coerce_decimal


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA! Uploaded files are left in place; run
    'catalog purge-orphans' afterwards to remove them.
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask catalog seed-demo' for sample data.")


@click.group('catalog')
def catalog_group():
    """Catalog inspection and bootstrap commands."""


@catalog_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """
    Create demo catalog data (idempotent on slugs).

    - Category: Apparel
    - Attributes: Color (Red, Blue), Size (S, M)
    - Products: a simple mug and a variable t-shirt with all 4 variants
    """
    category = db.session.query(Category).filter_by(slug="apparel").first()
    if category is None:
        category_id = categories_service.create_category(fields={"name": "Apparel"})["id"]
        click.echo("PASS Created category 'Apparel'")
    else:
        category_id = category.id
        click.echo("SKIP Category 'Apparel' already exists")

    attributes = {}
    for name, values in (("Color", ["Red", "Blue"]), ("Size", ["S", "M"])):
        attr = db.session.query(Attribute).filter_by(slug=name.lower()).first()
        if attr is None:
            attributes[name] = attributes_service.create_attribute(name=name, values=values)
            click.echo(f"PASS Created attribute '{name}'")
        else:
            attributes[name] = attr.to_dict()
            click.echo(f"SKIP Attribute '{name}' already exists")

    if db.session.query(Product).filter_by(slug="classic-mug").first() is None:
        products_service.create_product(
            fields={
                "name": "Classic Mug",
                "category_id": category_id,
                "price": "12.00",
                "sale_price": "9.50",
                "sku": "MUG-CLASSIC",
                "stock_quantity": 40,
            },
            is_variable=False,
        )
        click.echo("PASS Created simple product 'Classic Mug'")

    if db.session.query(Product).filter_by(slug="basic-t-shirt").first() is None:
        drafts = products_service.generate_variations(
            selections=[
                {"attribute_id": a["id"], "value_ids": [v["id"] for v in a["values"]]}
                for a in (attributes["Color"], attributes["Size"])
            ],
            base={"price": "20.00", "stock_quantity": 10, "sku": "TSHIRT"},
        )["variations"]
        specs = [
            VariantSpec(
                ref=NewVariant(d["temp_id"]),
                combination=tuple((e["attribute_id"], e["value_id"]) for e in d["combination"]),
                price=coerce_decimal("price", d["price"]),
                stock_quantity=d["stock_quantity"],
                sku=d["sku"],
            )
            for d in drafts
        ]
        products_service.create_product(
            fields={"name": "Basic T-Shirt", "category_id": category_id},
            is_variable=True,
            variations=specs,
        )
        click.echo(f"PASS Created variable product 'Basic T-Shirt' with {len(specs)} variants")

    click.echo("PASS Demo catalog ready.")


@catalog_group.command('list-products')
@click.option('--include-deleted', is_flag=True, help='Include soft-deleted products')
@with_appcontext
def list_products_cli(include_deleted):
    """List products with mode, price and variant count."""
    products = products_service.list_products(include_deleted=include_deleted)["items"]

    if not products:
        click.echo("No products found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<5} {'Slug':<30} {'Mode':<9} {'Final':<10} {'SKU':<20} {'Variants':<9} {'Deleted'}")
    click.echo("="*100)

    for p in products:
        variant_count = len(db.session.get(Product, p["id"]).variants)
        mode = "variable" if p["is_variable"] else "simple"
        deleted = "Yes" if p["deleted_at"] else "No"
        click.echo(
            f"{p['id']:<5} {p['slug']:<30} {mode:<9} {p['final_price'] or '-':<10} "
            f"{p['sku'] or '-':<20} {variant_count:<9} {deleted}"
        )

    click.echo("="*100 + "\n")


@catalog_group.command('list-attributes')
@with_appcontext
def list_attributes_cli():
    """List attributes with their values in display order."""
    attributes = attributes_service.list_attributes()["items"]

    if not attributes:
        click.echo("No attributes found.")
        return

    for attr in attributes:
        values = ", ".join(f"{v['value']} (#{v['id']})" for v in attr["values"])
        click.echo(f"{attr['id']:<5} {attr['name']:<20} [{attr['slug']}] {values}")


@catalog_group.command('purge-orphans')
@click.option('--dry-run', is_flag=True, help='List orphaned files without deleting them')
@with_appcontext
def purge_orphans_cli(dry_run):
    """Delete uploaded files that no catalog row references."""
    orphans = maintenance_service.purge_orphan_blobs(dry_run=dry_run)
    for path in orphans:
        click.echo(f"  {path}")
    if dry_run:
        click.echo(f"DRY-RUN {len(orphans)} orphaned file(s) found; nothing deleted.")
    else:
        click.echo(f"PASS Deleted {len(orphans)} orphaned file(s).")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(catalog_group)

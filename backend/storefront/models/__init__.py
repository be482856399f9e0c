from .catalog import Category, Attribute, AttributeValue
from .products import Product, ProductVariant, VariantAttributeValue

__all__ = [
    'Category', 'Attribute', 'AttributeValue',
    'Product', 'ProductVariant', 'VariantAttributeValue',
]

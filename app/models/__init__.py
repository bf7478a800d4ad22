from .shop import Shop, OlxCredential
from .user import User, Membership
from .product import Product
from .product_image import ProductImage
from .import_log import ImportLog
from .imported_product import ImportedProduct
from .olx_category import OlxCategory, OlxCategoryAttribute
from .olx_location import OlxLocation
from .olx_category_template import OlxCategoryTemplate
from .olx_listing import OlxListing

# This ensures all models are registered with SQLAlchemy
__all__ = [
    'Shop',
    'OlxCredential',
    'User',
    'Membership',
    'Product',
    'ProductImage',
    'ImportLog',
    'ImportedProduct',
    'OlxCategory',
    'OlxCategoryAttribute',
    'OlxLocation',
    'OlxCategoryTemplate',
    'OlxListing',
]

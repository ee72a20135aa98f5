from app.models.product_model import Product

__all__ = [
    "Product",
]

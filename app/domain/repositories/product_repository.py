from __future__ import annotations

from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import String, any_, case, func, literal, select, update
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.orm import Session

from app.domain.repositories.base_sqlalchemy import SQLAlchemyRepository
from app.models.product_model import Product
from app.utils.logger import get_logger

logger = get_logger("product_repository")

LIKE_ESCAPE = "\\"


def escape_like(value: str) -> str:
    """Make ``%`` and ``_`` match literally in a LIKE pattern."""
    return (
        value.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )


def append_unique_statement(product_id: int, url: str):
    """Single PostgreSQL UPDATE that appends ``url`` unless the array already holds it."""
    column = Product.compressed_product_images
    return (
        update(Product)
        .where(Product.product_id == product_id)
        .values(
            compressed_product_images=case(
                (literal(url) == any_(column), column),
                else_=func.array_append(column, url, type_=ARRAY(String)),
            )
        )
        .execution_options(synchronize_session=False)
    )


class ProductRepository(SQLAlchemyRepository[Product, int]):
    def __init__(self, db: Session):
        super().__init__(Product, db)

    # ---------- query methods -----------------------------------------------
    def filter_by(
        self,
        *,
        user_id: Optional[int] = None,
        min_price: Optional[Decimal] = None,
        max_price: Optional[Decimal] = None,
        product_name: Optional[str] = None,
        offset: int = 0,
        limit: int = 100,
    ) -> Sequence[Product]:
        """Filter products; every criterion is optional and they combine with AND.

        Results are ordered by ascending product_id.
        """
        stmt = select(Product)
        if user_id is not None:
            stmt = stmt.where(Product.user_id == user_id)
        if min_price is not None:
            stmt = stmt.where(Product.product_price >= min_price)
        if max_price is not None:
            stmt = stmt.where(Product.product_price <= max_price)
        if product_name:
            pattern = f"%{escape_like(product_name)}%"
            stmt = stmt.where(Product.product_name.ilike(pattern, escape=LIKE_ESCAPE))

        stmt = stmt.order_by(Product.product_id).offset(offset).limit(limit)
        return self.db.scalars(stmt).all()

    # ---------- mutations ----------------------------------------------------
    def append_compressed_image(self, product_id: int, url: str) -> bool:
        """Append ``url`` to the product's compressed images unless already there.

        Returns False when no product row matched. Does not commit.
        """
        if self.dialect_name == "postgresql":
            return self._append_pg(product_id, url)
        return self._append_generic(product_id, url)

    def _append_pg(self, product_id: int, url: str) -> bool:
        result = self.db.execute(append_unique_statement(product_id, url))
        return result.rowcount > 0

    def _append_generic(self, product_id: int, url: str) -> bool:
        stmt = (
            select(Product)
            .where(Product.product_id == product_id)
            .with_for_update()
        )
        product = self.db.scalars(stmt).first()
        if product is None:
            return False
        current = list(product.compressed_product_images or [])
        if url in current:
            logger.info(f"Product {product_id} already links {url}, skipping append")
            return True
        # reassign so the JSON column is flagged dirty
        product.compressed_product_images = current + [url]
        self.db.flush()
        return True

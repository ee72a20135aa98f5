from decimal import Decimal

from sqlalchemy import JSON, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


# Postgres keeps image lists as text[] so the worker can array_append;
# other dialects (SQLite in tests) fall back to JSON.
StringList = ARRAY(String).with_variant(JSON(), "sqlite")


class Product(Base):
    __tablename__ = "products"
    __table_args__ = {"extend_existing": True}

    product_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    product_description: Mapped[str | None] = mapped_column(Text)
    product_images: Mapped[list[str]] = mapped_column(StringList, nullable=False, default=list)
    compressed_product_images: Mapped[list[str]] = mapped_column(
        StringList, nullable=False, default=list
    )
    product_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ProductSchema:
    class Create(BaseModel):
        user_id: int
        product_name: str = Field(..., min_length=1, max_length=255)
        product_description: Optional[str] = None
        product_images: List[str] = Field(default_factory=list)
        product_price: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)

        @field_validator("product_images")
        @classmethod
        def validate_images(cls, v: List[str]) -> List[str]:
            cleaned = [url.strip() for url in v]
            if any(not url for url in cleaned):
                raise ValueError("image URLs must be non-empty")
            return cleaned

    class Created(BaseModel):
        product_id: int

    class Out(BaseModel):
        product_id: int
        user_id: int
        product_name: str
        product_description: Optional[str] = None
        product_images: List[str] = Field(default_factory=list)
        compressed_product_images: List[str] = Field(default_factory=list)
        product_price: float

        model_config = ConfigDict(from_attributes=True)

        @field_validator("product_images", "compressed_product_images", mode="before")
        @classmethod
        def none_as_empty(cls, v):
            return [] if v is None else v

    class Filter(BaseModel):
        user_id: Optional[int] = None
        min_price: Optional[Decimal] = Field(None, ge=0)
        max_price: Optional[Decimal] = Field(None, ge=0)
        product_name: Optional[str] = None
        offset: int = Field(0, ge=0)
        limit: int = Field(100, ge=1, le=1000)

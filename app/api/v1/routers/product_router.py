from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status

from app.api.v1.dependencies import get_product_service
from app.schemas.product_schema import ProductSchema
from app.services.product_service import ProductService
from app.utils.logger import get_logger

logger = get_logger("product_router")


class ProductRouter:
    def __init__(self):
        self.router = APIRouter(prefix="/products", tags=["Products"])
        self._register()

    def _register(self):
        self.router.post(
            "",
            response_model=ProductSchema.Created,
            status_code=status.HTTP_201_CREATED,
        )(self._create_product)
        self.router.get("", response_model=List[ProductSchema.Out])(self._list_products)
        self.router.get(
            "/{product_id}",
            response_model=ProductSchema.Out,
            responses={404: {"description": "Product not found"}},
        )(self._get_product)

    def _create_product(
        self,
        payload: ProductSchema.Create,
        service: ProductService = Depends(get_product_service),
    ):
        logger.info(f"Creating product with {len(payload.product_images)} image(s)")
        product = service.create_product(payload)
        return ProductSchema.Created(product_id=product.product_id)

    def _list_products(
        self,
        user_id: Optional[int] = None,
        min_price: Optional[Decimal] = Query(None, ge=0),
        max_price: Optional[Decimal] = Query(None, ge=0),
        product_name: Optional[str] = None,
        offset: int = Query(0, ge=0),
        limit: int = Query(100, ge=1, le=1000),
        service: ProductService = Depends(get_product_service),
    ):
        filters = ProductSchema.Filter(
            user_id=user_id,
            min_price=min_price,
            max_price=max_price,
            product_name=product_name,
            offset=offset,
            limit=limit,
        )
        logger.info(f"Listing products with filters: {filters.model_dump(exclude_none=True)}")
        return service.list_products(filters)

    def _get_product(
        self,
        product_id: int,
        service: ProductService = Depends(get_product_service),
    ):
        # cached payloads are returned byte-for-byte
        return Response(
            content=service.get_product_json(product_id),
            media_type="application/json",
        )


product_router = ProductRouter().router

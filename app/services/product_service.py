from typing import List, Optional

from app.domain.exceptions import ProductNotFound
from app.domain.unit_of_work import UnitOfWork
from app.models.product_model import Product
from app.schemas.product_schema import ProductSchema
from app.schemas.work_item_schema import WorkItem
from app.utils.cache import Cache, product_cache_key
from app.utils.logger import get_logger
from app.utils.rabbitmq_client import RabbitMQPublisherWrapper


logger = get_logger("product_service")


class ProductService:
    def __init__(
        self,
        uow: UnitOfWork,
        cache: Cache,
        publisher: Optional[RabbitMQPublisherWrapper] = None,
        image_queue: str = "image_processing",
    ):
        self.uow = uow
        self.cache = cache
        self.publisher = publisher
        self.image_queue = image_queue

    # ------------------------------------------------------------------
    def create_product(self, payload: ProductSchema.Create) -> Product:
        """Insert the product, then queue one compression job per image.

        Queueing is fire-and-forget: a failed publish is logged and the
        product is still returned as created.
        """
        with self.uow:
            product = Product(
                user_id=payload.user_id,
                product_name=payload.product_name,
                product_description=payload.product_description,
                product_images=list(payload.product_images),
                compressed_product_images=[],
                product_price=payload.product_price,
            )
            self.uow.products.add(product)
            self.uow.products.flush()
            self.uow.commit()

        logger.info(f"Product added successfully: product_id={product.product_id}")
        self.enqueue_images(product.product_id, product.product_images)
        return product

    def enqueue_images(self, product_id: int, image_urls: List[str]) -> int:
        """Publish one work item per image URL; returns how many were accepted."""
        published = 0
        for image_url in image_urls:
            item = WorkItem(product_id=product_id, image_url=image_url)
            ok = self.publisher is not None and self.publisher.publish_raw(
                self.image_queue, item.to_body()
            )
            if ok:
                published += 1
                logger.info(
                    f"Image published for processing: product_id={product_id} image_url={image_url}"
                )
            else:
                logger.error(
                    f"Failed to publish image for processing: product_id={product_id} image_url={image_url}"
                )
        return published

    def list_products(self, filters: ProductSchema.Filter) -> List[ProductSchema.Out]:
        products = self.uow.products.filter_by(
            user_id=filters.user_id,
            min_price=filters.min_price,
            max_price=filters.max_price,
            product_name=filters.product_name,
            offset=filters.offset,
            limit=filters.limit,
        )
        return [ProductSchema.Out.model_validate(p) for p in products]

    def get_product_json(self, product_id: int) -> str:
        """Cache-aside read returning the serialized product.

        A hit resets the TTL and returns the cached payload untouched; it is
        never re-checked against the database.
        """
        key = product_cache_key(product_id)
        cached = self.cache.get(key)
        if cached is not None:
            logger.info(f"Cache hit for product {product_id}")
            self.cache.touch(key)
            return cached

        logger.info(f"Cache miss for product {product_id}")
        product = self.uow.products.get(product_id)
        if product is None:
            raise ProductNotFound(product_id)

        payload = ProductSchema.Out.model_validate(product).model_dump_json()
        self.cache.set(key, payload)
        return payload

    def get_product(self, product_id: int) -> ProductSchema.Out:
        return ProductSchema.Out.model_validate_json(self.get_product_json(product_id))

from fastapi import APIRouter
from app.api.v1.routers.product_router import product_router

api_router = APIRouter()

api_router.include_router(product_router)

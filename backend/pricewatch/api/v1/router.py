"""API v1 router -- aggregates all v1 endpoint routers."""

from fastapi import APIRouter

from pricewatch.api.v1 import health, products, stream, tracking

api_v1_router = APIRouter()

api_v1_router.include_router(health.router, tags=["health"])
api_v1_router.include_router(tracking.router, prefix="/tracking", tags=["tracking"])
api_v1_router.include_router(products.router, prefix="/products", tags=["products"])
api_v1_router.include_router(stream.router, prefix="/products", tags=["stream"])

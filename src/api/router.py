from fastapi import APIRouter

from src.api.endpoints import health, images, proxy

router = APIRouter()
router.include_router(health.router, tags=["health"])
router.include_router(proxy.router, tags=["proxy"])
# catch-all, must stay last
router.include_router(images.router, tags=["images"])

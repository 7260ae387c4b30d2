from fastapi import APIRouter

from .auctions import router as auctions_router

router = APIRouter(prefix="/api")
router.include_router(auctions_router)

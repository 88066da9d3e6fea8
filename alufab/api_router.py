from fastapi import APIRouter
from .api import materials, orders, manufacturing, cutting

# Create main API router
api_router = APIRouter()

# Include all sub-routers
api_router.include_router(materials.router, prefix="/api", tags=["Materials & Stock"])
api_router.include_router(orders.router, prefix="/api", tags=["Orders"])
api_router.include_router(manufacturing.router, prefix="/api", tags=["Cutting Plans"])
api_router.include_router(cutting.router, prefix="/api", tags=["Cutting Algorithm"])

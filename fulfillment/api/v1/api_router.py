"""
API v1 Router
Combines all fulfillment endpoint routers
"""
from fastapi import APIRouter

from fulfillment.api.v1 import allocations, orders, pick_tasks, waves

api_router = APIRouter()

api_router.include_router(
    orders.router,
    prefix="/orders",
    tags=["Orders"]
)

api_router.include_router(
    allocations.router,
    prefix="/allocations",
    tags=["Allocations"]
)

api_router.include_router(
    waves.router,
    prefix="/waves",
    tags=["Waves"]
)

api_router.include_router(
    pick_tasks.router,
    prefix="/pick-tasks",
    tags=["Pick Tasks"]
)

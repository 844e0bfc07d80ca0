from fastapi import APIRouter

from payflow.api.routes import health, payments

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(payments.router, tags=["payments"])

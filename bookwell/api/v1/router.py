from fastapi import APIRouter
from bookwell.api.v1.endpoints import appointments, providers

api_router = APIRouter()
api_router.include_router(appointments.router, prefix="/appointments", tags=["appointments"])
api_router.include_router(providers.router, prefix="/providers", tags=["providers"])

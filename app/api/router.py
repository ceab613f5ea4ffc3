from fastapi import APIRouter

from app.api.deliveries import router as deliveries_router
from app.api.jobs import router as jobs_router
from app.api.telegram import router as telegram_router

api_router = APIRouter()

# Telegram webhook at /telegram/*
api_router.include_router(telegram_router, prefix="/telegram", tags=["telegram"])

# API routes at /api/*
api_router.include_router(jobs_router, prefix="/api", tags=["jobs"])
api_router.include_router(deliveries_router, prefix="/api", tags=["deliveries"])

"""
Health Check Route — GET /health
"""

from __future__ import annotations

from fastapi import APIRouter

from rulescope.config import settings

router = APIRouter()


@router.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "ok",
        "primary": f"{settings.primary_provider}/{settings.primary_model}",
        "fallback": f"{settings.fallback_provider}/{settings.fallback_model}",
        "version": "1.0.0",
    }

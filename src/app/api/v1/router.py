"""V1 API router -- aggregates all v1 endpoint routers.

Mounted under /api/v1. Health probes are mounted at the application root.
"""

from __future__ import annotations

from fastapi import APIRouter

from src.app.api.v1 import training

router = APIRouter()

router.include_router(training.router)

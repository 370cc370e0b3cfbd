"""Health check endpoint."""

import platform
import sys

import psutil
from fastapi import APIRouter

router = APIRouter()


@router.get("/health")
async def health_check():
    """Service health and process resource usage."""
    process = psutil.Process()
    memory = psutil.virtual_memory()
    return {
        "status": "healthy",
        "memory": {
            "rss_mb": round(process.memory_info().rss / 1024 / 1024, 2),
            "system_used_percent": memory.percent,
        },
        "python_version": sys.version,
        "platform": platform.platform(),
    }

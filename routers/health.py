"""
Health check endpoints.
"""

from typing import List

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text
import redis.asyncio as redis

from config import settings
from database import engine

router = APIRouter()


def _missing_collaborators() -> List[str]:
    """Settings the paid flows cannot run without."""
    required = {
        "PAYSTACK_SECRET_KEY": settings.PAYSTACK_SECRET_KEY,
        "OPENAI_API_KEY": settings.OPENAI_API_KEY,
    }
    return [name for name, value in required.items() if not (value or "").strip()]


async def _probe_database() -> str:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        return f"down: {e}"
    return "up"


async def _probe_redis() -> str:
    client = redis.from_url(settings.REDIS_URL)
    try:
        await client.ping()
    except Exception as e:
        return f"down: {e}"
    finally:
        await client.aclose()
    return "up"


@router.get("/health")
async def health_check():
    """Ledger storage, rate-limit backend and collaborator configuration."""
    database = await _probe_database()
    redis_status = await _probe_redis()
    missing = _missing_collaborators()
    return {
        "status": "healthy" if database == "up" and redis_status == "up" else "degraded",
        "api": "up",
        "database": database,
        "redis": redis_status,
        "payment_gateway": "missing" if "PAYSTACK_SECRET_KEY" in missing else "configured",
        "content_generator": "missing" if "OPENAI_API_KEY" in missing else "configured",
    }


@router.get("/health/ready")
async def readiness_check():
    """Ready once every paid-flow collaborator is configured."""
    missing = _missing_collaborators()
    if missing:
        return JSONResponse(status_code=503, content={"ready": False, "missing": missing})
    return {"ready": True}


@router.get("/health/live")
async def liveness_check():
    """Kubernetes-style liveness probe."""
    return {"alive": True}

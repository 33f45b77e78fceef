"""Health check endpoint"""
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from hargapangan.core.config import settings
from hargapangan.core.database import get_db

router = APIRouter()


@router.get("/health")
async def health(request: Request, db: AsyncSession = Depends(get_db)):
    await db.execute(text("SELECT 1"))
    scheduler = getattr(request.app.state, "sync_scheduler", None)
    return {
        "status": "ok",
        "environment": settings.ENVIRONMENT,
        "timestamp": datetime.now(timezone.utc),
        "scheduler_running": scheduler.is_running if scheduler else False,
    }

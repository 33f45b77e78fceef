"""Seed service for initial data"""
import logging

from sqlalchemy import select

from hargapangan.core.config import settings
from hargapangan.core.database import AsyncSessionLocal
from hargapangan.core.security import hash_password
from hargapangan.models.region import Region
from hargapangan.models.user import User

logger = logging.getLogger(__name__)


async def seed_data(session_factory=AsyncSessionLocal):
    """Seed the national region and the admin account if missing"""
    async with session_factory() as db:
        result = await db.execute(select(Region).where(Region.level == "national").limit(1))
        if result.scalar_one_or_none() is None:
            db.add(Region(province_name="Indonesia", level="national"))
            logger.info("Seeded national region")

        if settings.ADMIN_PASSWORD:
            result = await db.execute(select(User).where(User.username == settings.ADMIN_USERNAME))
            if result.scalar_one_or_none() is None:
                db.add(User(
                    username=settings.ADMIN_USERNAME,
                    email=settings.ADMIN_EMAIL,
                    password_hash=hash_password(settings.ADMIN_PASSWORD),
                    full_name="Administrator",
                    role="admin",
                    is_active=True,
                ))
                logger.info("Seeded admin user %s", settings.ADMIN_USERNAME)
        else:
            logger.warning("ADMIN_PASSWORD not set, admin account not seeded")

        await db.commit()

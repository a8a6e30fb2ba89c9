from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..helpers import now_ts, to_iso
from .db import UserProfile

PROFILE_FIELDS = ("full_name", "avatar_url", "phone", "address")


def profile_to_dict(p: UserProfile) -> Dict[str, Any]:
    return {
        "id": p.id,
        "full_name": p.full_name,
        "avatar_url": p.avatar_url,
        "phone": p.phone,
        "address": p.address,
        "created_at": to_iso(p.created_at),
        "updated_at": to_iso(p.updated_at),
    }


async def get_profile(db: AsyncSession, user_id: str) -> Optional[UserProfile]:
    return await db.get(UserProfile, user_id)


async def upsert_profile(db: AsyncSession, user_id: str,
                         fields: Dict[str, Any]) -> UserProfile:
    profile = await db.get(UserProfile, user_id)
    if profile is None:
        profile = UserProfile(id=user_id, full_name="", created_at=now_ts())
        db.add(profile)
    for key in PROFILE_FIELDS:
        if key in fields and fields[key] is not None:
            setattr(profile, key, fields[key])
    profile.updated_at = now_ts()
    await db.commit()
    return profile

"""Member profiles."""

import logging

from momfit.shared.interfaces import IDataStore
from momfit.shared.models import Profile, utc_now_iso

logger = logging.getLogger(__name__)

_LIST_FIELDS = ("interests", "custom_interests", "fitness_goals")
_TEXT_FIELDS = ("bio", "avatar_url", "experience_level", "age_range", "location")


class ProfileService:
    def __init__(self, store: IDataStore):
        self._store = store

    async def get(self, user_id: str) -> Profile:
        row = await self._store.get("profiles", {"id": user_id})
        if not row:
            raise LookupError("Profile not found")
        return Profile.from_dict(row)

    async def upsert(self, caller_id: str, user_id: str, data: dict) -> Profile:
        """Create or update the caller's own profile."""
        if caller_id != user_id:
            logger.warning(f"Access denied: {caller_id} tried to edit profile {user_id}")
            raise PermissionError("You can only edit your own profile")

        display_name = str(data.get("display_name") or "").strip()
        if not display_name:
            raise ValueError("Display name is required")

        row = {"id": user_id, "display_name": display_name, "updated_at": utc_now_iso()}
        for name in _LIST_FIELDS:
            if name in data:
                value = data[name] or []
                if not isinstance(value, list):
                    raise ValueError(f"{name} must be a list")
                row[name] = [str(v).strip() for v in value if str(v).strip()]
        for name in _TEXT_FIELDS:
            if name in data:
                row[name] = data[name]

        saved = await self._store.upsert("profiles", row, on_conflict=("id",))
        return Profile.from_dict(saved)

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, Optional

from app.core.config import settings
from app.core.exceptions import InternalError
from app.core.supabase import db
from app.schemas.user import User

logger = logging.getLogger(__name__)


class UserStore(ABC):
    """The slice of user state billing needs: lookup and the premium flag."""

    @abstractmethod
    async def get(self, user_id: str) -> Optional[User]:
        ...

    @abstractmethod
    async def set_premium(self, user_id: str) -> None:
        """Mark the user premium. Setting it on an already premium user is a no-op."""


class InMemoryUserStore(UserStore):
    def __init__(self, users: Iterable[User] = ()):
        self._users: Dict[str, User] = {u.id: u for u in users}
        self._lock = asyncio.Lock()
        self.premium_writes = 0

    def add(self, user: User) -> None:
        self._users[user.id] = user

    async def get(self, user_id: str) -> Optional[User]:
        async with self._lock:
            user = self._users.get(user_id)
            return user.model_copy() if user else None

    async def set_premium(self, user_id: str) -> None:
        async with self._lock:
            user = self._users.get(user_id)
            if user is None:
                logger.warning(f"Cannot grant premium, user {user_id} not found")
                return
            self._users[user_id] = user.model_copy(update={"is_premium": True})
            self.premium_writes += 1


class SupabaseUserStore(UserStore):
    def __init__(self, table: str = None):
        self.table = table or settings.USERS_TABLE

    async def get(self, user_id: str) -> Optional[User]:
        supabase = await db.get_service_client()
        try:
            response = await supabase.table(self.table).select("id,email,first_name,last_name,is_premium").eq("id", user_id).execute()
        except Exception as e:
            logger.error(f"Failed to load user {user_id}: {e}")
            raise InternalError(f"Could not load user: {e}")
        if response.data:
            return User.model_validate(response.data[0])
        return None

    async def set_premium(self, user_id: str) -> None:
        supabase = await db.get_service_client()
        try:
            await supabase.table(self.table).update({"is_premium": True}).eq("id", user_id).execute()
            logger.info(f"Premium activated for user {user_id}")
        except Exception as e:
            logger.error(f"Failed to activate premium for user {user_id}: {e}")
            raise InternalError(f"Could not update user: {e}")

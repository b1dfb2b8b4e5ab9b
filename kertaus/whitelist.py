from typing import Iterable

from aiogram.filters import BaseFilter
from aiogram.types import CallbackQuery, Message


class WhitelistFilter(BaseFilter):
    """Lets through only updates from the given user ids; empty means nobody."""

    def __init__(self, allowed_ids: Iterable[int]):
        self.allowed_ids = frozenset(allowed_ids)

    def is_allowed(self, user_id: int) -> bool:
        return user_id in self.allowed_ids

    async def __call__(self, obj: Message | CallbackQuery) -> bool:
        if isinstance(obj, Message):
            if obj.from_user is None:
                return False
            return self.is_allowed(obj.from_user.id)
        if isinstance(obj, CallbackQuery):
            return self.is_allowed(obj.from_user.id)
        return False

from datetime import datetime
from typing import Optional
from pydantic import BaseModel
from redis import asyncio as aioredis

from .card import Card

MAX_EVENT_LENGTH = 100000


class CardStats(BaseModel):
    num_cards: int
    due_cards: int
    new_cards: int
    avg_reps: float
    avg_easiness: float


class Datastore:
    """Cards and per-user review queues kept in Redis.

    Each card is stored as JSON under ``<user>:card:<id>``; ``<user>:queue``
    is a sorted set scoring card ids by their next review timestamp.
    Concurrent writes to one card are last-writer-wins.
    """

    def __init__(self, redis: aioredis.Redis):
        self.redis = redis

    @classmethod
    def from_url(cls, redis_url: str = "redis://localhost:6379/0") -> "Datastore":
        return cls(aioredis.from_url(redis_url))

    async def close(self):
        await self.redis.aclose()

    def _queue_key(self, user: int) -> str:
        return f"{user}:queue"

    def _card_key(self, user: int, card_id: int) -> str:
        return f"{user}:card:{card_id}"

    def _cram_key(self, user: int) -> str:
        return f"{user}:cram"

    def _events_key(self, user: int) -> str:
        return f"{user}:events"

    async def save_card(self, user: int, card: Card):
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.set(self._card_key(user, card.card_id), card.model_dump_json())
            pipe.zadd(
                self._queue_key(user),
                {str(card.card_id): card.next_review_date.timestamp()},
            )
            await pipe.execute()

    async def get_card(self, user: int, card_id: int) -> Optional[Card]:
        data = await self.redis.get(self._card_key(user, card_id))
        if not data:
            return None
        return Card.model_validate_json(data)

    async def get_cards(self, user: int, card_ids: list[int]) -> list[Card]:
        if not card_ids:
            return []
        raws = await self.redis.mget(*(self._card_key(user, c) for c in card_ids))
        return [Card.model_validate_json(raw) for raw in raws if raw]

    async def delete_card(self, user: int, card_id: int):
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.delete(self._card_key(user, card_id))
            pipe.zrem(self._queue_key(user), str(card_id))
            await pipe.execute()

    async def get_due_cards(
        self, user: int, until: Optional[datetime] = None, limit: Optional[int] = None
    ) -> list[tuple[int, float]]:
        """Card ids due by ``until`` with their due timestamps, oldest first."""
        if until is None:
            until = datetime.now()
        kwargs = {"start": 0, "num": limit} if limit is not None else {}
        entries = await self.redis.zrangebyscore(
            self._queue_key(user),
            min="-inf",
            max=until.timestamp(),
            withscores=True,
            **kwargs,
        )
        result = []
        for member, score in entries:
            try:
                cid = int(member)
            except ValueError:
                continue
            result.append((cid, float(score)))
        return result

    async def peek_one_due(
        self, user: int, cram: bool = False, now: Optional[datetime] = None
    ) -> Optional[tuple[int, float]]:
        """The earliest due card, left in the queue.

        In cram mode the earliest card is returned even if it is not due yet.
        """
        if now is None:
            now = datetime.now()
        if cram:
            entries = await self.redis.zrange(
                self._queue_key(user), 0, 0, withscores=True
            )
        else:
            entries = await self.redis.zrangebyscore(
                self._queue_key(user),
                min="-inf",
                max=now.timestamp(),
                start=0,
                num=1,
                withscores=True,
            )

        if not entries:
            return None
        member, score = entries[0]
        return int(member), float(score)

    async def reschedule_card(self, user: int, card_id: int, next_due: datetime):
        await self.redis.zadd(
            self._queue_key(user), mapping={str(card_id): next_due.timestamp()}
        )

    async def last_queued(self, user: int) -> Optional[datetime]:
        """Due date of the card at the back of the queue."""
        entries = await self.redis.zrange(self._queue_key(user), -1, -1, withscores=True)
        if not entries:
            return None
        _, score = entries[0]
        return datetime.fromtimestamp(score)

    async def set_cram_mode(self, user: int, enabled: bool):
        if enabled:
            await self.redis.set(self._cram_key(user), 1)
        else:
            await self.redis.delete(self._cram_key(user))

    async def get_cram_mode(self, user: int) -> bool:
        return bool(await self.redis.exists(self._cram_key(user)))

    async def log_event(
        self,
        user: int,
        event: str,
        card_id: int | None = None,
        extra: dict | None = None,
        now: Optional[datetime] = None,
    ):
        fields = {"timestamp": (now or datetime.now()).isoformat(), "event": event}
        if card_id is not None:
            fields["card_id"] = str(card_id)
        if extra:
            for k, v in extra.items():
                fields[k] = str(v)

        await self.redis.xadd(
            name=self._events_key(user),
            fields=fields,  # type: ignore
            maxlen=MAX_EVENT_LENGTH,
            approximate=True,
        )

    async def stats(self, user: int, now: Optional[datetime] = None) -> CardStats:
        if now is None:
            now = datetime.now()

        keys = [key async for key in self.redis.scan_iter(match=f"{user}:card:*")]
        cards = []
        if keys:
            for raw in await self.redis.mget(*keys):
                if raw:
                    cards.append(Card.model_validate_json(raw))

        if not cards:
            return CardStats(
                num_cards=0, due_cards=0, new_cards=0, avg_reps=0.0, avg_easiness=0.0
            )

        due = sum(1 for c in cards if c.next_review_date <= now)
        new = sum(1 for c in cards if c.last_review is None)
        total_reps = sum(c.repetition_number for c in cards)
        total_ef = sum(c.easiness_factor for c in cards)

        return CardStats(
            num_cards=len(cards),
            due_cards=due,
            new_cards=new,
            avg_reps=total_reps / len(cards),
            avg_easiness=total_ef / len(cards),
        )

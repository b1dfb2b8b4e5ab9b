"""Study operations shared by the HTTP API and the Telegram bot.

Both front-ends load cards through :class:`~kertaus.datastore.Datastore` and
hand the scheduling itself to :func:`~kertaus.scheduler.compute_next_state`.
Storage and scheduling failures are logged with their context here and
surface to callers as :class:`StudyServiceError`.
"""

from datetime import datetime
from typing import Optional, Union

import structlog
from redis.exceptions import RedisError

from .card import Card, CreationSource
from .datastore import CardStats, Datastore
from .scheduler import ReviewRating, SchedulerError, compute_next_state, to_rating

logger = structlog.get_logger(__name__)

DEFAULT_QUEUE_LIMIT = 20
MAX_QUEUE_LIMIT = 100


class StudyServiceError(Exception):
    pass


class CardNotFoundError(StudyServiceError):
    def __init__(self, card_id: int):
        super().__init__(f"Flashcard {card_id} not found")
        self.card_id = card_id


async def fetch_study_queue(
    store: Datastore,
    user: int,
    deck_id: Optional[str] = None,
    limit: int = DEFAULT_QUEUE_LIMIT,
    now: Optional[datetime] = None,
) -> list[Card]:
    """Cards due for review at ``now``, most overdue first.

    With ``deck_id`` only cards tagged with that deck are returned.
    """
    if not 1 <= limit <= MAX_QUEUE_LIMIT:
        raise ValueError(f"limit must be between 1 and {MAX_QUEUE_LIMIT}")
    if now is None:
        now = datetime.now()

    try:
        # The deck filter is applied after loading, so the full due range is read
        due = await store.get_due_cards(
            user, until=now, limit=None if deck_id else limit
        )
        cards = await store.get_cards(user, [card_id for card_id, _ in due])
    except RedisError as e:
        logger.error(
            "study_queue_failed", user=user, deck_id=deck_id, limit=limit, error=str(e)
        )
        raise StudyServiceError("Failed to fetch study queue") from e

    if deck_id is not None:
        cards = [c for c in cards if c.deck_id == deck_id]
    return cards[:limit]


async def process_review(
    store: Datastore,
    user: int,
    card_id: int,
    rating: Union[ReviewRating, str],
    now: Optional[datetime] = None,
) -> Card:
    if now is None:
        now = datetime.now()

    try:
        card = await store.get_card(user, card_id)
    except RedisError as e:
        logger.error("card_fetch_failed", user=user, card_id=card_id, error=str(e))
        raise StudyServiceError("Failed to fetch flashcard") from e

    if card is None:
        logger.warning("card_not_found", user=user, card_id=card_id)
        raise CardNotFoundError(card_id)

    current = card.memory_state()
    try:
        rating = to_rating(rating)
        new_state = compute_next_state(current, rating, now)
    except SchedulerError as e:
        logger.error(
            "schedule_failed",
            user=user,
            card_id=card_id,
            rating=str(rating),
            state=current.model_dump(mode="json"),
            error=str(e),
        )
        raise StudyServiceError("Failed to calculate review schedule") from e

    updated = card.apply(new_state, reviewed_at=now)
    try:
        await store.save_card(user, updated)
        await store.log_event(
            user=user,
            event="review",
            card_id=card_id,
            extra={
                "rating": rating.value,
                "repetition_number": new_state.repetition_number,
                "easiness_factor": new_state.easiness_factor,
                "interval_days": new_state.interval_days,
            },
            now=now,
        )
    except RedisError as e:
        logger.error("card_update_failed", user=user, card_id=card_id, error=str(e))
        raise StudyServiceError("Failed to update flashcard") from e

    logger.info(
        "card_reviewed",
        user=user,
        card_id=card_id,
        rating=rating.value,
        interval_days=new_state.interval_days,
        easiness_factor=new_state.easiness_factor,
    )
    return updated


async def fetch_stats(
    store: Datastore, user: int, now: Optional[datetime] = None
) -> CardStats:
    try:
        return await store.stats(user, now=now)
    except RedisError as e:
        logger.error("stats_failed", user=user, error=str(e))
        raise StudyServiceError("Failed to fetch stats") from e


async def create_card(
    store: Datastore,
    user: int,
    front: str,
    back: str,
    deck_id: Optional[str] = None,
    source: CreationSource = CreationSource.MANUAL,
    now: Optional[datetime] = None,
) -> Card:
    if now is None:
        now = datetime.now()
    card = Card.simple(front, back, now, deck_id=deck_id, source=source)

    try:
        await store.save_card(user, card)
        await store.log_event(user=user, event="create", card_id=card.card_id, now=now)
    except RedisError as e:
        logger.error("card_create_failed", user=user, deck_id=deck_id, error=str(e))
        raise StudyServiceError("Failed to create flashcard") from e

    logger.info("card_created", user=user, card_id=card.card_id, deck_id=deck_id)
    return card

from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Union

from pydantic import BaseModel, ConfigDict

MIN_EASINESS = 1.3
DEFAULT_EASINESS = 2.5


class SchedulerError(ValueError):
    pass


class InvalidStateError(SchedulerError):
    pass


class InvalidRatingError(SchedulerError):
    pass


class ReviewRating(str, Enum):
    AGAIN = "again"
    HARD = "hard"
    GOOD = "good"
    EASY = "easy"


# SM-2 grade 2 is folded into "again"
GRADE_MAP: dict[ReviewRating, int] = {
    ReviewRating.AGAIN: 1,
    ReviewRating.HARD: 3,
    ReviewRating.GOOD: 4,
    ReviewRating.EASY: 5,
}


class CardMemoryState(BaseModel):
    model_config = ConfigDict(frozen=True)

    repetition_number: int = 0
    easiness_factor: float = DEFAULT_EASINESS
    interval_days: int = 0
    next_review_date: datetime

    @staticmethod
    def fresh(now: datetime) -> "CardMemoryState":
        return CardMemoryState(next_review_date=now)


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero.

    Works on the exact binary value of the float, so ``12.5`` gives ``13``
    where the builtin ``round`` would give ``12``.
    """
    return int(Decimal(value).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def to_rating(rating: Union[ReviewRating, str]) -> ReviewRating:
    try:
        return ReviewRating(rating)
    except ValueError:
        allowed = ", ".join(r.value for r in ReviewRating)
        raise InvalidRatingError(
            f"Unknown rating {rating!r}, must be one of: {allowed}"
        ) from None


def next_easiness(easiness_factor: float, grade: int) -> float:
    miss = 5 - grade
    ef = easiness_factor + (0.1 - miss * (0.08 + miss * 0.02))
    return max(ef, MIN_EASINESS)


def compute_next_state(
    state: CardMemoryState, rating: Union[ReviewRating, str], now: datetime
) -> CardMemoryState:
    """Apply one review to ``state`` using SM-2.

    ``now`` is injected so the transition is deterministic. The easiness
    factor is clamped on output only; a caller passing one below the floor
    gets it raised back to ``MIN_EASINESS``.
    """
    if state.repetition_number < 0:
        raise InvalidStateError(
            f"repetition_number must be >= 0, got {state.repetition_number}"
        )
    if state.interval_days < 0:
        raise InvalidStateError(
            f"interval_days must be >= 0, got {state.interval_days}"
        )

    grade = GRADE_MAP[to_rating(rating)]
    ef = next_easiness(state.easiness_factor, grade)

    if grade < 3:
        # Lapse: restart the learning cycle
        reps = 0
        interval = 1
    else:
        reps = state.repetition_number + 1
        if reps == 1:
            interval = 1
        elif reps == 2:
            interval = 6
        else:
            interval = round_half_up(state.interval_days * ef)

    return CardMemoryState(
        repetition_number=reps,
        easiness_factor=ef,
        interval_days=interval,
        next_review_date=now + timedelta(days=interval),
    )


def preview_next_states(
    state: CardMemoryState, now: datetime
) -> dict[ReviewRating, CardMemoryState]:
    return {rating: compute_next_state(state, rating, now) for rating in ReviewRating}

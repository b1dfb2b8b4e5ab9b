from .scheduler import (
    CardMemoryState,
    InvalidRatingError,
    InvalidStateError,
    ReviewRating,
    SchedulerError,
    compute_next_state,
)

__all__ = [
    "CardMemoryState",
    "InvalidRatingError",
    "InvalidStateError",
    "ReviewRating",
    "SchedulerError",
    "compute_next_state",
]

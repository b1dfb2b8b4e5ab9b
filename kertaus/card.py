from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, field_validator

from .scheduler import DEFAULT_EASINESS, CardMemoryState
from .snowflake import new_card_id

FRONT_MAX_LENGTH = 200
BACK_MAX_LENGTH = 500


class CreationSource(str, Enum):
    AI = "AI"
    EDITED_AI = "EditedAI"
    MANUAL = "Manual"


class Card(BaseModel):
    card_id: int
    deck_id: Optional[str] = None

    front: str = Field(max_length=FRONT_MAX_LENGTH)
    back: str = Field(max_length=BACK_MAX_LENGTH)
    creation_source: CreationSource = CreationSource.MANUAL

    repetition_number: int = Field(default=0, ge=0)
    easiness_factor: float = DEFAULT_EASINESS
    interval_days: int = Field(default=0, ge=0)
    next_review_date: datetime

    created_at: datetime
    last_review: Optional[datetime] = None

    @field_validator("front", "back")
    @classmethod
    def not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @staticmethod
    def simple(
        front: str,
        back: str,
        now: datetime,
        deck_id: Optional[str] = None,
        source: CreationSource = CreationSource.MANUAL,
    ) -> "Card":
        fresh = CardMemoryState.fresh(now)

        return Card(
            card_id=new_card_id(),
            deck_id=deck_id,
            front=front,
            back=back,
            creation_source=source,
            repetition_number=fresh.repetition_number,
            easiness_factor=fresh.easiness_factor,
            interval_days=fresh.interval_days,
            next_review_date=fresh.next_review_date,
            created_at=now,
        )

    def memory_state(self) -> CardMemoryState:
        return CardMemoryState(
            repetition_number=self.repetition_number,
            easiness_factor=self.easiness_factor,
            interval_days=self.interval_days,
            next_review_date=self.next_review_date,
        )

    def apply(self, state: CardMemoryState, reviewed_at: datetime) -> "Card":
        """Return a copy of the card carrying ``state``; all four fields move together."""
        return self.model_copy(
            update={
                "repetition_number": state.repetition_number,
                "easiness_factor": state.easiness_factor,
                "interval_days": state.interval_days,
                "next_review_date": state.next_review_date,
                "last_review": reviewed_at,
            }
        )

from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Optional

import structlog
from aiogram import Bot
from aiogram.client.default import DefaultBotProperties
from aiogram.types import Update
from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from .card import BACK_MAX_LENGTH, FRONT_MAX_LENGTH, Card, CreationSource
from .config import Settings
from .datastore import CardStats, Datastore
from .scheduler import ReviewRating
from .study import (
    DEFAULT_QUEUE_LIMIT,
    MAX_QUEUE_LIMIT,
    CardNotFoundError,
    StudyServiceError,
    create_card,
    fetch_stats,
    fetch_study_queue,
    process_review,
)

logger = structlog.get_logger(__name__)


class ProcessReviewRequest(BaseModel):
    card_id: int
    rating: ReviewRating


class ProcessReviewResponse(BaseModel):
    id: int
    repetition_number: int
    easiness_factor: float
    interval_days: int
    next_review_date: datetime


class CreateCardRequest(BaseModel):
    front: str = Field(min_length=1, max_length=FRONT_MAX_LENGTH)
    back: str = Field(min_length=1, max_length=BACK_MAX_LENGTH)
    deck_id: Optional[str] = None
    creation_source: CreationSource = CreationSource.MANUAL

    @field_validator("front", "back")
    @classmethod
    def not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value


def get_store(request: Request) -> Datastore:
    return request.app.state.store


def get_user(x_user_id: int = Header()) -> int:
    return x_user_id


def create_app(
    settings: Optional[Settings] = None, datastore: Optional[Datastore] = None
) -> FastAPI:
    if settings is None:
        settings = Settings.from_env()
    store = datastore or Datastore.from_url(settings.redis_url)
    webhook_url = settings.webhook_url

    bot: Optional[Bot] = None
    dp = None
    if webhook_url:
        from .bot import build_dispatcher

        bot = Bot(
            token=settings.bot_token,  # type: ignore[arg-type]
            default=DefaultBotProperties(parse_mode="HTML"),
        )
        dp = build_dispatcher(
            store, settings.whitelist, timedelta(seconds=settings.skip_delay_seconds)
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if bot is not None:
            await bot.set_webhook(webhook_url)  # type: ignore[arg-type]
            logger.info("webhook_set", url=webhook_url)
        try:
            yield
        finally:
            if bot is not None:
                await bot.delete_webhook()
                await bot.session.close()
                logger.info("webhook_deleted")
            if datastore is None:
                await store.close()

    app = FastAPI(title="kertaus", lifespan=lifespan)
    app.state.store = store

    @app.exception_handler(RequestValidationError)
    async def on_validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request", "details": jsonable_errors(exc)},
        )

    @app.exception_handler(CardNotFoundError)
    async def on_not_found(request: Request, exc: CardNotFoundError):
        return JSONResponse(
            status_code=404,
            content={
                "error": "Flashcard not found",
                "message": "The requested flashcard does not exist or you do not have permission to access it",
            },
        )

    @app.exception_handler(StudyServiceError)
    async def on_service_error(request: Request, exc: StudyServiceError):
        logger.error("request_failed", path=request.url.path, error=str(exc))
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "message": str(exc)},
        )

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/api/study/queue", response_model=list[Card])
    async def study_queue(
        deck_id: Optional[str] = None,
        limit: int = Query(default=DEFAULT_QUEUE_LIMIT, ge=1, le=MAX_QUEUE_LIMIT),
        user: int = Depends(get_user),
        store: Datastore = Depends(get_store),
    ):
        return await fetch_study_queue(store, user, deck_id=deck_id, limit=limit)

    @app.post("/api/study/review", response_model=ProcessReviewResponse)
    async def study_review(
        body: ProcessReviewRequest,
        user: int = Depends(get_user),
        store: Datastore = Depends(get_store),
    ):
        card = await process_review(store, user, body.card_id, body.rating)
        return ProcessReviewResponse(
            id=card.card_id,
            repetition_number=card.repetition_number,
            easiness_factor=card.easiness_factor,
            interval_days=card.interval_days,
            next_review_date=card.next_review_date,
        )

    @app.post("/api/flashcards", response_model=Card, status_code=201)
    async def new_flashcard(
        body: CreateCardRequest,
        user: int = Depends(get_user),
        store: Datastore = Depends(get_store),
    ):
        return await create_card(
            store,
            user,
            body.front,
            body.back,
            deck_id=body.deck_id,
            source=body.creation_source,
        )

    @app.get("/api/stats", response_model=CardStats)
    async def stats(
        user: int = Depends(get_user), store: Datastore = Depends(get_store)
    ):
        return await fetch_stats(store, user)

    if bot is not None and dp is not None:

        @app.post(settings.webhook_path)
        async def telegram_webhook(req: Request):
            update = Update.model_validate(await req.json(), context={"bot": bot})
            await dp.feed_update(bot, update)
            return {"ok": True}

    return app


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
        for err in exc.errors()
    ]

from datetime import datetime, timedelta

import structlog
from aiogram import Dispatcher, Router
from aiogram.filters import Command
from aiogram.types import (
    CallbackQuery,
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    Message,
)
from pydantic import ValidationError

from .card import Card
from .datastore import CardStats, Datastore
from .format import relative_time
from .scheduler import ReviewRating, preview_next_states
from .study import (
    CardNotFoundError,
    StudyServiceError,
    create_card,
    fetch_stats,
    process_review,
)
from .whitelist import WhitelistFilter

logger = structlog.get_logger(__name__)

HELP_ADD = "To add a card send: `front\\nback` (a newline between front and back)."


def main_review_kb(card_id: int) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        inline_keyboard=[
            [
                InlineKeyboardButton(text="Skip", callback_data=f"skip:{card_id}"),
                InlineKeyboardButton(text="Flip", callback_data=f"flip:{card_id}"),
            ]
        ]
    )


def grading_kb(card: Card, now: datetime) -> InlineKeyboardMarkup:
    previews = preview_next_states(card.memory_state(), now)
    buttons = []
    for rating in ReviewRating:
        next_due = previews[rating].next_review_date
        label = f"{rating.value.capitalize()} ({relative_time(next_due, now)})"
        buttons.append(
            [
                InlineKeyboardButton(
                    text=label, callback_data=f"grade:{card.card_id}:{rating.value}"
                )
            ]
        )
    return InlineKeyboardMarkup(inline_keyboard=buttons)


def parse_card_text(text: str) -> tuple[str, str] | None:
    if "\n" not in text:
        return None
    front, back = text.split("\n", 1)
    front, back = front.strip(), back.strip()
    if not front or not back:
        return None
    return front, back


async def send_next_card(message: Message, store: Datastore, user: int):
    cram = await store.get_cram_mode(user)
    entry = await store.peek_one_due(user, cram=cram)
    if not entry:
        await message.answer("No more cards due right now. " + HELP_ADD)
        return

    card_id, _ = entry
    card = await store.get_card(user, card_id)
    if not card:
        # Stale queue entry
        await store.delete_card(user, card_id)
        await message.answer("Card not found (it may have been deleted).")
        return

    await store.log_event(user=user, event="show_card", card_id=card.card_id)
    await message.answer(card.front, reply_markup=main_review_kb(card.card_id))


async def cmd_cram(message: Message, store: Datastore):
    user = message.chat.id
    new_state = not await store.get_cram_mode(user)
    await store.set_cram_mode(user, new_state)
    status = "enabled" if new_state else "disabled"

    await store.log_event(user=user, event="cram", extra={"status": status})

    await message.answer(
        f"Cram mode is now <b>{status}</b>. Cards will {'ignore scheduling' if new_state else 'follow normal intervals'} during review."
    )


async def cmd_stats(message: Message, store: Datastore):
    stats: CardStats = await fetch_stats(store, message.chat.id)

    if stats.num_cards == 0:
        await message.answer("You have no cards yet. " + HELP_ADD)
        return

    text = (
        f"<strong>Your Stats:</strong>\n"
        f"Total cards: <b>{stats.num_cards}</b>\n"
        f"Due now: <b>{stats.due_cards}</b>\n"
        f"Never reviewed: <b>{stats.new_cards}</b>\n"
        f"Average repetitions: <b>{stats.avg_reps:.2f}</b>\n"
        f"Average easiness: <b>{stats.avg_easiness:.2f}</b>\n"
    )
    await message.answer(text)


async def cmd_start(message: Message, store: Datastore):
    await send_next_card(message, store, message.chat.id)


async def on_message_create_card(message: Message, store: Datastore):
    text = (message.text or "").strip()
    if not text:
        return

    parsed = parse_card_text(text)
    if parsed is None:
        await message.reply(HELP_ADD)
        return

    try:
        card = await create_card(store, message.chat.id, *parsed)
    except ValidationError:
        await message.reply("Front is limited to 200 characters, back to 500.")
        return
    await message.reply(f"<strong>Created <code>{card.card_id}</code>!</strong>")


async def on_callback(call: CallbackQuery, store: Datastore, skip_delay: timedelta):
    user = call.from_user.id
    parts = (call.data or "").split(":")
    if len(parts) < 2:
        await call.answer("Invalid action", show_alert=True)
        return

    action = parts[0]
    try:
        card_id = int(parts[1])
    except ValueError:
        await call.answer("Invalid card", show_alert=True)
        return

    if action == "skip":
        # Memory state is untouched, only the queue position moves
        next_due = datetime.now() + skip_delay
        if await store.get_cram_mode(user):
            # Cram ignores due dates, so the card has to go behind the last one
            last = await store.last_queued(user)
            if last is not None:
                next_due = max(next_due, last + timedelta(seconds=1))
        await store.reschedule_card(user, card_id, next_due)
        await call.answer("Skipped - card put back into the queue.")
        await call.message.edit_reply_markup(reply_markup=None)  # type: ignore
        await send_next_card(call.message, store, user)  # type: ignore
        return

    if action == "flip":
        card = await store.get_card(user, card_id)
        if not card:
            await call.answer("Card disappeared", show_alert=True)
            return

        await store.log_event(user=user, event="flip_card", card_id=card.card_id)
        await call.message.edit_text(  # type: ignore
            f"{card.front}\n\n{card.back}", reply_markup=grading_kb(card, datetime.now())
        )
        await call.answer()
        return

    if action == "grade" and len(parts) == 3:
        try:
            card = await process_review(store, user, card_id, parts[2])
        except CardNotFoundError:
            await call.answer("Card not found", show_alert=True)
            return
        except StudyServiceError:
            logger.exception("bot_review_failed", user=user, card_id=card_id)
            await call.answer("Could not record the answer", show_alert=True)
            return

        await call.message.edit_text(  # type: ignore
            f"{card.front}\n\n{card.back}\n\n"
            f"<strong>Scheduled: {relative_time(card.next_review_date)}</strong>",
            reply_markup=None,
        )
        await call.answer("Answer recorded. Good job!")
        await send_next_card(call.message, store, user)  # type: ignore
        return

    await call.answer("Unknown action", show_alert=True)


def build_router(allowed_ids: list[int]) -> Router:
    router = Router()

    allowed = WhitelistFilter(allowed_ids)
    router.message.filter(allowed)
    router.callback_query.filter(allowed)

    router.message.register(cmd_cram, Command(commands=["cram"]))
    router.message.register(cmd_stats, Command(commands=["stats"]))
    router.message.register(cmd_start, Command(commands=["start"]))
    router.message.register(on_message_create_card)
    router.callback_query.register(on_callback)
    return router


def build_dispatcher(
    store: Datastore, allowed_ids: list[int], skip_delay: timedelta
) -> Dispatcher:
    dp = Dispatcher(store=store, skip_delay=skip_delay)
    dp.include_router(build_router(allowed_ids))
    return dp

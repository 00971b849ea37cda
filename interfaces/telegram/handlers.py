from __future__ import annotations

import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import telebot
from telebot.types import InlineKeyboardButton, InlineKeyboardMarkup

from application.services import (
    get_bet,
    list_bet_history,
    preview_wager,
    submit_wager,
)
from domain.models import Platform, WagerRequest
from domain.repositories import BetRecordFilter, Page
from infrastructure.container import Container
from interfaces.commands import (
    BET_USAGE,
    format_bet,
    format_checks,
    format_page,
    format_preview,
    format_refresh,
    format_submit_result,
    parse_history,
    parse_wager,
)
from interfaces.telegram.callback_data import (
    encode_bet_confirmation,
    encode_history_page,
    parse_bet_confirmation,
    parse_history_page,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")

# Runs a coroutine on the event loop that owns the aiohttp session and
# blocks until it completes.
Runner = Callable[[Awaitable[T]], T]

HISTORY_PAGE_SIZE = 10


def _history_markup(page: Page) -> Optional[InlineKeyboardMarkup]:
    buttons = []
    if page.page > 1:
        buttons.append(
            InlineKeyboardButton("< prev", callback_data=encode_history_page(page.page - 1))
        )
    if page.page < page.total_pages:
        buttons.append(
            InlineKeyboardButton("next >", callback_data=encode_history_page(page.page + 1))
        )
    if not buttons:
        return None

    markup = InlineKeyboardMarkup(row_width=2)
    markup.add(*buttons)
    return markup


def create_telegram_bot(
    bot_token: str,
    container: Container,
    owner_id: str,
    run: Runner,
) -> telebot.TeleBot:
    """
    Configure and return a TeleBot instance wired to the application layer.

    TeleBot handlers are synchronous; every application call is handed to
    `run`, which executes it on the process event loop.
    """

    bot = telebot.TeleBot(bot_token)
    wagers = container.context

    # Previewed submissions waiting for a yes/no, keyed by a short id.
    pending_bets: Dict[str, WagerRequest] = {}

    def _is_owner(user: Any) -> bool:
        return str(user.id) == owner_id

    def _args(message) -> list:
        return message.text.split()[1:]

    @bot.message_handler(func=lambda message: not _is_owner(message.from_user))
    def handle_stranger(message):
        bot.send_message(message.chat.id, "You are not allowed to use this bot.")

    @bot.message_handler(commands=["start", "help"])
    def handle_help(message):
        bot.send_message(
            message.chat.id,
            f"/{BET_USAGE}\n"
            "/history [page] [status] [code=...] [platform=...]\n"
            "/detail <order-code>\n"
            "/check [platform]   - check balances and relays\n"
            "/refresh            - sign in again where tokens expire soon",
        )

    @bot.message_handler(commands=["bet"])
    def handle_bet(message):
        try:
            request = parse_wager(_args(message))
        except ValueError as exc:
            bot.send_message(message.chat.id, str(exc))
            return

        preview = preview_wager(wagers, owner_id, request)
        if not preview.success:
            bot.send_message(message.chat.id, preview.error_message or "Cannot place this bet.")
            return

        pending_id = uuid.uuid4().hex[:8]
        pending_bets[pending_id] = request

        markup = InlineKeyboardMarkup(row_width=2)
        markup.add(
            InlineKeyboardButton("place", callback_data=encode_bet_confirmation(pending_id, True)),
            InlineKeyboardButton("cancel", callback_data=encode_bet_confirmation(pending_id, False)),
        )
        bot.send_message(
            message.chat.id,
            format_preview(request, preview),
            reply_markup=markup,
        )

    @bot.callback_query_handler(func=lambda call: call.data.startswith("bet:"))
    def handle_bet_confirmation(call):
        if not _is_owner(call.from_user):
            bot.answer_callback_query(call.id, "Not allowed.")
            return

        try:
            accepted, pending_id = parse_bet_confirmation(call.data)
        except ValueError:
            bot.answer_callback_query(call.id, "Invalid confirmation.")
            return

        request = pending_bets.pop(pending_id, None)
        bot.delete_message(call.message.chat.id, call.message.id)
        if request is None:
            bot.send_message(call.message.chat.id, "This bet is no longer pending.")
            return
        if not accepted:
            bot.send_message(call.message.chat.id, "Bet cancelled.")
            return

        bot.send_message(call.message.chat.id, "Placing bet...")
        try:
            result = run(submit_wager(wagers, owner_id, request))
        except Exception as exc:  # Keep one broad catch per command.
            logger.exception("Submission crashed")
            bot.send_message(call.message.chat.id, str(exc))
            return
        bot.send_message(call.message.chat.id, format_submit_result(result))

    def _send_history(chat_id: int, filters: BetRecordFilter, page: int) -> None:
        result = run(
            list_bet_history(wagers, owner_id, filters, page=page, limit=HISTORY_PAGE_SIZE)
        )
        bot.send_message(chat_id, format_page(result), reply_markup=_history_markup(result))

    @bot.message_handler(commands=["history"])
    def handle_history(message):
        try:
            filters, page = parse_history(_args(message))
        except ValueError as exc:
            bot.send_message(message.chat.id, str(exc))
            return

        try:
            _send_history(message.chat.id, filters, page)
        except Exception as exc:
            bot.send_message(message.chat.id, str(exc))

    @bot.callback_query_handler(func=lambda call: call.data.startswith("hist:"))
    def handle_history_page(call):
        if not _is_owner(call.from_user):
            bot.answer_callback_query(call.id, "Not allowed.")
            return

        try:
            page = parse_history_page(call.data)
        except ValueError:
            bot.answer_callback_query(call.id, "Invalid page.")
            return

        bot.delete_message(call.message.chat.id, call.message.id)
        _send_history(call.message.chat.id, BetRecordFilter(), page)

    @bot.message_handler(commands=["detail"])
    def handle_detail(message):
        args = _args(message)
        if not args:
            bot.send_message(message.chat.id, "Please enter an order code.")
            return
        bot.send_message(message.chat.id, format_bet(run(get_bet(wagers, owner_id, args[0]))))

    @bot.message_handler(commands=["check"])
    def handle_check(message):
        args = _args(message)
        try:
            platform = Platform(args[0].lower()) if args else None
        except ValueError:
            bot.send_message(message.chat.id, f"Unknown platform {args[0]}.")
            return

        bot.send_message(message.chat.id, "Checking accounts...")
        try:
            checks = run(container.checker.check_accounts(owner_id, platform=platform))
        except Exception as exc:
            bot.send_message(message.chat.id, str(exc))
            return
        bot.send_message(message.chat.id, format_checks(checks))

    @bot.message_handler(commands=["refresh"])
    def handle_refresh(message):
        try:
            report = run(container.checker.refresh_expiring_tokens(owner_id))
        except Exception as exc:
            bot.send_message(message.chat.id, str(exc))
            return
        bot.send_message(message.chat.id, format_refresh(report))

    return bot

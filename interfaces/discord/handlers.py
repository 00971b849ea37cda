from __future__ import annotations

import logging
from typing import Dict, Tuple

import discord
from discord.ext import commands

from application.services import (
    get_bet,
    list_bet_history,
    preview_wager,
    submit_wager,
)
from domain.models import Platform, WagerRequest
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


logger = logging.getLogger(__name__)

# Discord rejects messages longer than 2000 characters.
MESSAGE_LIMIT = 1900


def _fence(text: str) -> str:
    if len(text) > MESSAGE_LIMIT:
        text = text[:MESSAGE_LIMIT] + "\n..."
    return f"```\n{text}\n```"


def create_discord_bot(container: Container, owner_id: str) -> commands.Bot:
    """
    Configure and return a Discord bot that places and reviews bets for
    the accounts of `owner_id`. Only that Discord user may drive it.
    """

    intents = discord.Intents.default()
    intents.message_content = True
    intents.guilds = True
    intents.reactions = True

    # Disable the default help command so we can provide our own `!help`.
    bot = commands.Bot(command_prefix="!", intents=intents, help_command=None)
    wagers = container.context

    # Submissions waiting for a reaction, keyed by the preview message ID.
    pending_bets: Dict[int, Tuple[int, WagerRequest]] = {}

    async def bot_check(ctx: commands.Context) -> bool:
        return str(ctx.author.id) == owner_id

    bot.add_check(bot_check)

    @bot.event
    async def on_ready():
        logger.info("Discord bot logged in as %s (id=%s)", bot.user, bot.user.id)

    @bot.event
    async def on_command_error(ctx: commands.Context, error: commands.CommandError):
        if isinstance(error, commands.CheckFailure):
            await ctx.send("You are not allowed to use this bot.")
            return
        if isinstance(error, commands.CommandNotFound):
            return
        logger.error("Command %s failed: %s", ctx.command, error)
        await ctx.send(f"Error: {error}")

    @bot.command(name="help")
    async def help_cmd(ctx: commands.Context):
        await ctx.send(
            _fence(
                f"!{BET_USAGE}\n"
                "!history [page] [status] [code=...] [platform=...]\n"
                "!detail <order-code>\n"
                "!check [platform]   - check balances and relays\n"
                "!refresh            - sign in again where tokens expire soon"
            )
        )

    @bot.command(name="bet")
    async def bet_cmd(ctx: commands.Context, *args: str):
        try:
            request = parse_wager(args)
        except ValueError as exc:
            await ctx.send(str(exc))
            return

        preview = preview_wager(wagers, owner_id, request)
        if not preview.success:
            await ctx.send(preview.error_message or "Cannot place this bet.")
            return

        message = await ctx.send(
            _fence(format_preview(request, preview))
            + "\nReact with ✅ to place or ❌ to cancel."
        )
        await message.add_reaction("✅")
        await message.add_reaction("❌")
        pending_bets[message.id] = (ctx.author.id, request)

    @bot.command(name="history")
    async def history_cmd(ctx: commands.Context, *args: str):
        try:
            filters, page = parse_history(args)
        except ValueError as exc:
            await ctx.send(str(exc))
            return

        result = await list_bet_history(wagers, owner_id, filters, page=page, limit=10)
        await ctx.send(_fence(format_page(result)))

    @bot.command(name="detail")
    async def detail_cmd(ctx: commands.Context, order_code: str):
        await ctx.send(_fence(format_bet(await get_bet(wagers, owner_id, order_code))))

    @bot.command(name="check")
    async def check_cmd(ctx: commands.Context, platform: str = ""):
        try:
            selected = Platform(platform.lower()) if platform else None
        except ValueError:
            await ctx.send(f"Unknown platform {platform}.")
            return
        await ctx.send("Checking accounts...")
        checks = await container.checker.check_accounts(owner_id, platform=selected)
        await ctx.send(_fence(format_checks(checks)))

    @bot.command(name="refresh")
    async def refresh_cmd(ctx: commands.Context):
        report = await container.checker.refresh_expiring_tokens(owner_id)
        await ctx.send(format_refresh(report))

    @bot.event
    async def on_reaction_add(reaction: discord.Reaction, user: discord.abc.User):
        # Ignore bot reactions and reactions not on tracked messages.
        if user.bot:
            return

        message_id = reaction.message.id
        if message_id not in pending_bets:
            return

        author_id, request = pending_bets[message_id]
        if user.id != author_id:
            return

        emoji = str(reaction.emoji)
        channel = reaction.message.channel

        if emoji == "❌":
            pending_bets.pop(message_id, None)
            await channel.send("Bet cancelled.")
            return
        if emoji != "✅":
            return

        pending_bets.pop(message_id, None)
        await channel.send("Placing bet...")
        result = await submit_wager(wagers, owner_id, request)
        await channel.send(_fence(format_submit_result(result)))

    return bot

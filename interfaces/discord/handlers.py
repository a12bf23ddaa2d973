from __future__ import annotations

import asyncio
import logging

import discord
from discord.ext import commands

from application.services import (
    Components,
    ExternalContext,
    OperationResult,
    blackjack_deal,
    blackjack_hit,
    blackjack_stand,
    get_balance,
    heist_reset,
    heist_start,
    heist_status,
    issue_code,
    list_accounts,
    redeem_code,
    setup_account,
    spin_wheel,
    transfer,
    user_id_for,
)

logger = logging.getLogger(__name__)

PROVIDER = "discord"


def _build_external_context(user: discord.abc.User) -> ExternalContext:
    """Create an `ExternalContext` from a Discord user."""

    return ExternalContext(
        provider=PROVIDER,
        provider_user_id=str(user.id),
        display_name=user.display_name or user.name,
    )


async def run_blocking(func, *args):
    """Run a synchronous service call on a worker thread, off the gateway loop."""

    return await asyncio.to_thread(func, *args)


def format_cards(cards: list) -> str:
    return " ".join(f"{c['rank']}{c['suit']}" for c in cards)


def create_discord_bot(components: Components) -> commands.Bot:
    """
    Configure and return a Discord bot exposing the BUX wallet and games:
    balances, gifts, codes, the wheel, blackjack and the bank heist.
    """

    intents = discord.Intents.default()
    intents.message_content = True
    intents.guilds = True
    intents.members = True

    # Disable the default help command so we can provide our own `!help`.
    bot = commands.Bot(command_prefix="!", intents=intents, help_command=None)

    async def reply(ctx: commands.Context, result: OperationResult, text: str) -> None:
        if not result.success:
            await ctx.send(result.error_message or "Something went wrong.")
            return
        await ctx.send(text)

    @bot.event
    async def on_ready():
        logger.info("Discord bot logged in as %s (id=%s)", bot.user, bot.user.id)

    @bot.event
    async def on_command_error(ctx: commands.Context, error: commands.CommandError):
        if isinstance(error, commands.CommandNotFound):
            return
        if isinstance(error, (commands.BadArgument, commands.MissingRequiredArgument)):
            await ctx.send(f"{error}. Type !help to see available commands.")
            return
        if isinstance(error, commands.CheckFailure):
            await ctx.send("You are not allowed to do that.")
            return
        logger.error("command %s failed: %s", ctx.command, error)
        await ctx.send("Something went wrong.")

    @bot.command(name="start")
    async def start_cmd(ctx: commands.Context):
        result = await run_blocking(
            setup_account,
            _build_external_context(ctx.author),
            components.ledger,
            components.starting_balance,
        )
        await reply(
            ctx,
            result,
            "Welcome to the BUX casino!\n"
            f"Your balance is {result.payload.get('balance', 0):,} BUX.\n"
            "Type !help to see available commands.",
        )

    @bot.command(name="help")
    async def help_cmd(ctx: commands.Context):
        await ctx.send(
            "!start                     - open your BUX account\n"
            "!balance                   - show your balance\n"
            "!list                      - list all players\n"
            "!gift <amount> @player     - send BUX to another player\n"
            "!code <amount>             - turn BUX into a single-use code\n"
            "!redeem <code>             - redeem a code\n"
            "!spin <bet>                - spin the wheel\n"
            "!bj <bet>                  - deal a blackjack hand\n"
            "!hit / !stand              - play your blackjack hand\n"
            "!heist                     - start the bank heist\n"
            "!bank                      - show the bank status\n"
        )

    @bot.command(name="balance")
    async def balance_cmd(ctx: commands.Context):
        result = await run_blocking(
            get_balance, _build_external_context(ctx.author), components.ledger
        )
        await reply(ctx, result, f"You have {result.payload.get('balance', 0):,} BUX.")

    @bot.command(name="list")
    async def list_cmd(ctx: commands.Context):
        result = await run_blocking(list_accounts, components.ledger)
        if not result.success:
            await ctx.send(result.error_message)
            return
        accounts = result.payload["accounts"]
        if not accounts:
            await ctx.send("No players yet.")
            return

        lines = [f"{a['name']}: {a['balance']:,}" for a in accounts]
        lines.append(f"Total balance: {result.payload['total']:,}")
        await ctx.send("\n".join(lines))

    @bot.command(name="gift")
    async def gift_cmd(ctx: commands.Context, amount: int, recipient: discord.Member):
        result = await run_blocking(
            transfer,
            _build_external_context(ctx.author),
            user_id_for(PROVIDER, str(recipient.id)),
            amount,
            components.ledger,
        )
        await reply(
            ctx,
            result,
            f"{ctx.author.display_name} sent {amount:,} BUX to {recipient.mention}.",
        )

    @bot.command(name="code")
    async def code_cmd(ctx: commands.Context, amount: int):
        result = await run_blocking(
            issue_code, _build_external_context(ctx.author), amount, components.codes
        )
        if not result.success:
            await ctx.send(result.error_message)
            return
        # Codes are bearer instruments: deliver them privately.
        await ctx.author.send(result.payload["message"])
        await ctx.send("Your code has been sent to you in a direct message.")

    @bot.command(name="redeem")
    async def redeem_cmd(ctx: commands.Context, code: str):
        result = await run_blocking(
            redeem_code, _build_external_context(ctx.author), code, components.codes
        )
        await reply(ctx, result, result.payload.get("message", ""))

    @bot.command(name="spin")
    async def spin_cmd(ctx: commands.Context, bet: int):
        result = await run_blocking(
            spin_wheel, _build_external_context(ctx.author), bet, components.wheel
        )
        await reply(
            ctx,
            result,
            f"🎡 {result.payload.get('label')}: {result.payload.get('message')}\n"
            f"Balance: {result.payload.get('finalBalance', 0):,} BUX",
        )

    @bot.command(name="bj")
    async def deal_cmd(ctx: commands.Context, bet: int):
        result = await run_blocking(
            blackjack_deal, _build_external_context(ctx.author), bet, components.blackjack
        )
        payload = result.payload
        await reply(
            ctx,
            result,
            f"Your hand: {format_cards(payload.get('playerHand', []))} "
            f"({payload.get('playerScore')})\n"
            f"Dealer: {format_cards(payload.get('dealerHand', []))}\n"
            "Type !hit or !stand.",
        )

    @bot.command(name="hit")
    async def hit_cmd(ctx: commands.Context):
        result = await run_blocking(
            blackjack_hit, _build_external_context(ctx.author), components.blackjack
        )
        payload = result.payload
        text = (
            f"Your hand: {format_cards(payload.get('playerHand', []))} "
            f"({payload.get('playerScore')})"
        )
        if payload.get("message"):
            text += f"\n{payload['message']}"
        await reply(ctx, result, text)

    @bot.command(name="stand")
    async def stand_cmd(ctx: commands.Context):
        result = await run_blocking(
            blackjack_stand, _build_external_context(ctx.author), components.blackjack
        )
        payload = result.payload
        await reply(
            ctx,
            result,
            f"Dealer: {format_cards(payload.get('dealerHand', []))} "
            f"({payload.get('dealerScore')})\n"
            f"{payload.get('message')} Payout: {payload.get('payout', 0):,} BUX",
        )

    @bot.command(name="heist")
    async def heist_cmd(ctx: commands.Context):
        result = await run_blocking(
            heist_start, _build_external_context(ctx.author), components.heist
        )
        await reply(ctx, result, result.payload.get("message", ""))

    @bot.command(name="bank")
    async def bank_cmd(ctx: commands.Context):
        result = await run_blocking(heist_status, components.heist)
        payload = result.payload
        await reply(
            ctx,
            result,
            f"Bank status: {payload.get('bankStatus')}, "
            f"crew: {len(payload.get('participants', []))}",
        )

    @bot.command(name="bankreset")
    @commands.has_permissions(administrator=True)
    async def bank_reset_cmd(ctx: commands.Context):
        result = await run_blocking(heist_reset, components.heist)
        await reply(ctx, result, "The bank is safe again.")

    return bot

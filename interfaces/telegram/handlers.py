from __future__ import annotations

import logging

import telebot
from telebot.types import InlineKeyboardButton, InlineKeyboardMarkup

from application.services import (
    Components,
    ExternalContext,
    blackjack_deal,
    blackjack_hit,
    blackjack_stand,
    get_balance,
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
from interfaces.telegram.callback_data import (
    encode_blackjack_action,
    encode_gift_choice,
    parse_blackjack_action,
    parse_gift_choice,
)

logger = logging.getLogger(__name__)

PROVIDER = "telegram"


def _context_for(user) -> ExternalContext:
    name = " ".join(part for part in (user.first_name, user.last_name) if part)
    return ExternalContext(
        provider=PROVIDER,
        provider_user_id=str(user.id),
        display_name=name,
    )


def _build_external_context(message) -> ExternalContext:
    """Extract a channel-agnostic context object from a Telegram message."""

    return _context_for(message.from_user)


def _chat_id_for(user_id: str) -> str:
    """Internal user IDs look like `telegram:12345`; the chat ID is the tail."""

    return user_id.split(":", 1)[1]


def _format_cards(cards: list) -> str:
    return " ".join(f"{c['rank']}{c['suit']}" for c in cards)


def _parse_int_argument(message):
    parts = message.text.split()
    if len(parts) < 2:
        return None
    try:
        return int(parts[1])
    except ValueError:
        return None


def _blackjack_markup() -> InlineKeyboardMarkup:
    markup = InlineKeyboardMarkup(row_width=2)
    markup.add(
        InlineKeyboardButton("Hit", callback_data=encode_blackjack_action("hit")),
        InlineKeyboardButton("Stand", callback_data=encode_blackjack_action("stand")),
    )
    return markup


def create_telegram_bot(bot_token: str, components: Components) -> telebot.TeleBot:
    """
    Configure and return a TeleBot instance wired to the application layer.

    This module contains only Telegram-specific concerns: parsing Telegram
    messages/callbacks and mapping them to/from application services.
    """

    bot = telebot.TeleBot(bot_token)

    @bot.message_handler(commands=["start", "hello"])
    def handle_start(message):
        result = setup_account(
            _build_external_context(message),
            components.ledger,
            components.starting_balance,
        )
        if not result.success:
            bot.send_message(message.chat.id, result.error_message)
            return
        bot.send_message(
            message.chat.id,
            "Welcome to the BUX casino!\n"
            f"Your balance is {result.payload['balance']:,} BUX.\n"
            "Type /help to see available commands.",
        )

    @bot.message_handler(commands=["help"])
    def handle_help(message):
        bot.send_message(
            message.chat.id,
            "/start                 - open your BUX account\n"
            "/balance               - show your balance\n"
            "/list                  - list all players\n"
            "/gift <amount>         - send BUX to another player\n"
            "/code <amount>         - turn BUX into a single-use code\n"
            "/redeem <code>         - redeem a code\n"
            "/spin <bet>            - spin the wheel\n"
            "/bj <bet>              - deal a blackjack hand\n"
            "/hit, /stand           - play your blackjack hand\n"
            "/heist                 - start the bank heist\n"
            "/bank                  - show the bank status\n",
        )

    @bot.message_handler(commands=["balance"])
    def handle_balance(message):
        result = get_balance(_build_external_context(message), components.ledger)
        if not result.success:
            bot.send_message(message.chat.id, result.error_message)
            return
        bot.send_message(message.chat.id, f"You have {result.payload['balance']:,} BUX.")

    @bot.message_handler(commands=["list"])
    def handle_list(message):
        result = list_accounts(components.ledger)
        if not result.success:
            bot.send_message(message.chat.id, result.error_message)
            return
        accounts = result.payload["accounts"]
        if not accounts:
            bot.send_message(message.chat.id, "No players yet.")
            return

        lines = [f"{a['name']}: {a['balance']:,}" for a in accounts]
        lines.append(f"Total balance: {result.payload['total']:,}")
        bot.send_message(message.chat.id, "\n".join(lines))

    @bot.message_handler(commands=["gift"])
    def handle_gift(message):
        amount = _parse_int_argument(message)
        if amount is None:
            bot.send_message(message.chat.id, "Please enter an amount of BUX.")
            return

        sender = _build_external_context(message)
        listing = list_accounts(components.ledger)
        if not listing.success:
            bot.send_message(message.chat.id, listing.error_message)
            return

        candidates = [
            a
            for a in listing.payload["accounts"]
            if a["userId"].startswith(f"{PROVIDER}:") and a["userId"] != sender.user_id
        ]
        if not candidates:
            bot.send_message(message.chat.id, "No other players available to gift to.")
            return

        markup = InlineKeyboardMarkup(row_width=2)
        for candidate in candidates:
            markup.add(
                InlineKeyboardButton(
                    candidate["name"],
                    callback_data=encode_gift_choice(
                        sender_id=sender.provider_user_id,
                        recipient_id=_chat_id_for(candidate["userId"]),
                        amount=amount,
                    ),
                )
            )
        bot.send_message(message.chat.id, "Choose who gets the BUX", reply_markup=markup)

    @bot.callback_query_handler(func=lambda call: call.data.startswith("gift:"))
    def handle_gift_choice(call):
        try:
            sender_id, recipient_id, amount = parse_gift_choice(call.data)
        except ValueError:
            bot.answer_callback_query(call.id, "Invalid selection.")
            return

        # Only the player who asked for the keyboard may spend their BUX.
        if str(call.from_user.id) != sender_id:
            bot.answer_callback_query(call.id, "This is not your gift.")
            return

        try:
            result = transfer(
                _context_for(call.from_user),
                user_id_for(PROVIDER, recipient_id),
                amount,
                components.ledger,
            )
            if not result.success:
                bot.send_message(call.message.chat.id, result.error_message)
                return

            bot.send_message(call.message.chat.id, f"Sent {amount:,} BUX.")
            for broadcast in result.broadcasts:
                bot.send_message(_chat_id_for(broadcast.user_id), broadcast.text)
        finally:
            bot.delete_message(call.message.chat.id, call.message.id)

    @bot.message_handler(commands=["code"])
    def handle_code(message):
        amount = _parse_int_argument(message)
        if amount is None:
            bot.send_message(message.chat.id, "Please enter an amount of BUX.")
            return
        result = issue_code(_build_external_context(message), amount, components.codes)
        if not result.success:
            bot.send_message(message.chat.id, result.error_message)
            return
        bot.send_message(message.from_user.id, result.payload["message"])

    @bot.message_handler(commands=["redeem"])
    def handle_redeem(message):
        parts = message.text.split()
        if len(parts) < 2:
            bot.send_message(message.chat.id, "Please enter a code.")
            return
        result = redeem_code(_build_external_context(message), parts[1], components.codes)
        bot.send_message(
            message.chat.id,
            result.payload["message"] if result.success else result.error_message,
        )

    @bot.message_handler(commands=["spin"])
    def handle_spin(message):
        bet = _parse_int_argument(message)
        if bet is None:
            bot.send_message(message.chat.id, "Bet must be a number.")
            return
        result = spin_wheel(_build_external_context(message), bet, components.wheel)
        if not result.success:
            bot.send_message(message.chat.id, result.error_message)
            return
        bot.send_message(
            message.chat.id,
            f"🎡 {result.payload['label']}: {result.payload['message']}\n"
            f"Balance: {result.payload['finalBalance']:,} BUX",
        )

    @bot.message_handler(commands=["bj"])
    def handle_deal(message):
        bet = _parse_int_argument(message)
        if bet is None:
            bot.send_message(message.chat.id, "Bet must be a number.")
            return
        result = blackjack_deal(_build_external_context(message), bet, components.blackjack)
        if not result.success:
            bot.send_message(message.chat.id, result.error_message)
            return
        bot.send_message(
            message.chat.id,
            f"Your hand: {_format_cards(result.payload['playerHand'])} "
            f"({result.payload['playerScore']})\n"
            f"Dealer: {_format_cards(result.payload['dealerHand'])}",
            reply_markup=_blackjack_markup(),
        )

    def _send_hit(chat_id, ctx: ExternalContext):
        result = blackjack_hit(ctx, components.blackjack)
        if not result.success:
            bot.send_message(chat_id, result.error_message)
            return
        text = (
            f"Your hand: {_format_cards(result.payload['playerHand'])} "
            f"({result.payload['playerScore']})"
        )
        if result.payload["status"] == "playing":
            bot.send_message(chat_id, text, reply_markup=_blackjack_markup())
        else:
            bot.send_message(chat_id, f"{text}\n{result.payload['message']}")

    def _send_stand(chat_id, ctx: ExternalContext):
        result = blackjack_stand(ctx, components.blackjack)
        if not result.success:
            bot.send_message(chat_id, result.error_message)
            return
        bot.send_message(
            chat_id,
            f"Dealer: {_format_cards(result.payload['dealerHand'])} "
            f"({result.payload['dealerScore']})\n"
            f"{result.payload['message']} Payout: {result.payload['payout']:,} BUX",
        )

    @bot.message_handler(commands=["hit"])
    def handle_hit(message):
        _send_hit(message.chat.id, _build_external_context(message))

    @bot.message_handler(commands=["stand"])
    def handle_stand(message):
        _send_stand(message.chat.id, _build_external_context(message))

    @bot.callback_query_handler(func=lambda call: call.data.startswith("bj:"))
    def handle_blackjack_action(call):
        try:
            action = parse_blackjack_action(call.data)
        except ValueError:
            bot.answer_callback_query(call.id, "Invalid action.")
            return

        bot.answer_callback_query(call.id)
        # The game is looked up by whoever pressed the button.
        ctx = _context_for(call.from_user)
        if action == "hit":
            _send_hit(call.message.chat.id, ctx)
        else:
            _send_stand(call.message.chat.id, ctx)

    @bot.message_handler(commands=["heist"])
    def handle_heist(message):
        result = heist_start(_build_external_context(message), components.heist)
        bot.send_message(
            message.chat.id,
            result.payload["message"] if result.success else result.error_message,
        )

    @bot.message_handler(commands=["bank"])
    def handle_bank(message):
        result = heist_status(components.heist)
        if not result.success:
            bot.send_message(message.chat.id, result.error_message)
            return
        bot.send_message(
            message.chat.id,
            f"Bank status: {result.payload['bankStatus']}, "
            f"crew: {len(result.payload['participants'])}",
        )

    return bot

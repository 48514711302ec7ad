from __future__ import annotations

import logging
from typing import List

from telebot.async_telebot import AsyncTeleBot
from telebot.types import InlineKeyboardButton, InlineKeyboardMarkup

from application.balances import BalanceAggregator
from application.custody import CustodialWalletService
from domain.errors import AlreadyRegisteredError, TipBotError, UnknownTokenError
from domain.models import ALPH_SYMBOL, SweepStep, TokenAmount, TransactionStatus, User
from domain.repositories import TokenRepository, UserRepository
from infrastructure.config import AppConfig
from interfaces.telegram.callback_data import encode_forget_confirmation, parse_forget_confirmation
from interfaces.telegram.commands import parse_tip_command, parse_withdraw_command
from interfaces.telegram.messages import (
    UNINITIALIZED_WALLET,
    describe_error,
    error_while,
    format_balance,
    format_token_list,
)

logger = logging.getLogger(__name__)

USAGE_TIP = (
    "Reply to a message with <code>/tip 1 $TOKEN</code>, "
    "or send <code>/tip 1 $TOKEN @user</code>. $TOKEN is optional and defaults to $ALPH."
)

USAGE_WITHDRAW = (
    "Send:\n"
    " &#8226; <code>/withdraw 1 $TOKEN address</code> to withdraw 1 $TOKEN to <em>address</em>.\n"
    " &#8226; <code>/withdraw 1 address</code> to withdraw 1 $ALPH to <em>address</em>.\n"
    " &#8226; <code>/withdraw all $TOKEN address</code> to withdraw all your $TOKEN to <em>address</em>.\n"
    " &#8226; <code>/withdraw all address</code> to withdraw all your coins to <em>address</em>."
)


def _display_name(tg_user) -> str:
    return tg_user.username or tg_user.first_name or str(tg_user.id)


def create_telegram_bot(
    config: AppConfig,
    custody: CustodialWalletService,
    balances: BalanceAggregator,
    user_repo: UserRepository,
    token_repo: TokenRepository,
) -> AsyncTeleBot:
    """
    Configure and return an AsyncTeleBot wired to the application layer.

    This module contains only Telegram-specific concerns: parsing commands
    and rendering results and errors.
    """

    bot = AsyncTeleBot(config.telegram.bot_token, parse_mode="HTML")
    explorer_url = config.bot.explorer_url

    def status_display(chat_id: int, message_id: int):
        async def update(text: str) -> None:
            await bot.edit_message_text(text, chat_id=chat_id, message_id=message_id)

        return update

    async def send_balance(chat_id: int, user: User) -> None:
        try:
            balance = await balances.get_user_balance(user)
        except Exception:
            logger.exception("Failed to fetch balance of %s", user)
            await bot.send_message(chat_id, error_while("retrieving your account balance"))
            return
        await bot.send_message(chat_id, format_balance(balance))

    async def registered_sender(message) -> User | None:
        user = await user_repo.get_by_telegram_id(message.from_user.id)
        if user is None:
            await bot.send_message(message.chat.id, UNINITIALIZED_WALLET)
        return user

    @bot.message_handler(commands=["start"], chat_types=["private"])
    async def handle_start(message):
        await bot.send_message(
            message.chat.id,
            f"Hi {_display_name(message.from_user)}!\n\n"
            "With this bot, you can tip ALPH and tokens to other Telegram users!\n"
            "The wallet linked to your account is custodial (we hold the mnemonic), "
            "so please do not put too much money on it.",
        )

        new_user = User(telegram_id=message.from_user.id, telegram_username=_display_name(message.from_user))
        try:
            user = await custody.register_user(new_user)
            logger.info("Registered %s", user)
            await bot.send_message(
                message.chat.id,
                f"Your wallet has been initialized!\nHere's your address:\n<code>{user.address}</code>\n"
                "Ask users to <code>/tip</code> you or send some tokens to it.",
            )
        except AlreadyRegisteredError:
            user = await user_repo.get_by_telegram_id(message.from_user.id)
            await bot.send_message(message.chat.id, "You already have an initialized account!")
        except Exception:
            logger.exception("Failed to register %s", new_user)
            await bot.send_message(message.chat.id, error_while("ensuring the initialization of your account"))
            return

        await send_balance(message.chat.id, user)

    @bot.message_handler(commands=["help"])
    async def handle_help(message):
        await bot.send_message(
            message.chat.id,
            "/start                 - initialize your wallet\n"
            "/address               - display your deposit address\n"
            "/balance               - display your balance\n"
            "/tip                   - tip someone\n"
            "/withdraw              - send funds to an external address\n"
            "/tokens                - list the supported tokens\n"
            "/forgetme              - delete your account\n",
        )

    @bot.message_handler(commands=["address"], chat_types=["private"])
    async def handle_address(message):
        user = await registered_sender(message)
        if user is None:
            return
        link = f'its status <a href="{explorer_url}/addresses/{user.address}">here</a> and ' if explorer_url else ""
        await bot.send_message(
            message.chat.id,
            f"Your address is <code>{user.address}</code>.\nYou can see {link}your balance with /balance.",
        )

    @bot.message_handler(commands=["balance"], chat_types=["private"])
    async def handle_balance(message):
        user = await registered_sender(message)
        if user is not None:
            await send_balance(message.chat.id, user)

    @bot.message_handler(commands=["tokens"])
    async def handle_tokens(message):
        tokens = await token_repo.list_tokens()
        lines = [f" &#8226; ${t.symbol} ({t.name or t.id[:8]})" for t in tokens]
        await bot.send_message(message.chat.id, "List of tokens:\n\n" + "\n".join(lines))

    @bot.message_handler(commands=["tip"])
    async def handle_tip(message):
        sender = await registered_sender(message)
        if sender is None:
            return

        command = parse_tip_command(message.text or "")
        if command is None:
            await bot.reply_to(message, USAGE_TIP)
            return

        try:
            token = await token_repo.get_by_symbol(command.symbol or ALPH_SYMBOL)
            token_amount = TokenAmount.from_display(command.amount, token)
        except (UnknownTokenError, ValueError):
            await bot.reply_to(message, "The token or the amount is invalid.")
            return

        was_new_account_created = False
        if command.username is not None:
            receiver = await user_repo.get_by_telegram_username(command.username)
            if receiver is None:
                await bot.reply_to(message, f"@{command.username} has not initialized a wallet yet.")
                return
        elif message.reply_to_message is not None:
            target = message.reply_to_message.from_user
            receiver = await user_repo.get_by_telegram_id(target.id)
            if receiver is None:
                try:
                    receiver = await custody.register_user(User(telegram_id=target.id, telegram_username=_display_name(target)))
                    was_new_account_created = True
                except AlreadyRegisteredError:
                    receiver = await user_repo.get_by_telegram_id(target.id)
        else:
            await bot.reply_to(message, USAGE_TIP)
            return

        logger.info("%s tips %s to %s (motive: %r)", sender.id, token_amount, receiver.id, command.reason)

        tx_status = TransactionStatus(
            f"@{sender.telegram_username} tipped @{receiver.telegram_username}",
            str(token_amount),
            explorer_url=explorer_url,
        )
        status_msg = await bot.reply_to(message, str(tx_status))
        tx_status.set_display_update(status_display(status_msg.chat.id, status_msg.message_id))

        try:
            tx_id = await custody.transfer_from_user_to_user(sender, receiver, token_amount, tx_status)
        except TipBotError as err:
            logger.warning("Tip of %s failed: %s %s", sender, err, err.context)
            tx_status.set_failed().display_update()
            await bot.send_message(sender.telegram_id, describe_error(err, "tip", token_amount.token))
            return
        except Exception:
            logger.exception("Tip of %s failed", sender)
            tx_status.set_failed().display_update()
            await bot.send_message(sender.telegram_id, error_while("processing your tip"))
            return

        tx_status.set_confirmed().set_transaction_id(tx_id).display_update()

        if was_new_account_created:
            await bot.send_message(
                message.chat.id,
                f"@{receiver.telegram_username}! You received a tip! Send /start to me in private to access your account!",
            )

    @bot.message_handler(commands=["withdraw"], chat_types=["private"])
    async def handle_withdraw(message):
        sender = await registered_sender(message)
        if sender is None:
            return

        command = parse_withdraw_command(message.text or "")
        if command is None:
            usage = USAGE_WITHDRAW
            if config.operator.fees > 0:
                usage += f"\n\n{config.operator.fees}% withdrawal fee will be deducted from your withdrawals."
            await bot.reply_to(message, usage)
            return

        token = None
        if command.is_sweep_all:
            tx_status = TransactionStatus(
                f"Withdrawal to {command.destination}\n&#9888; This will take some time...",
                [step.value for step in SweepStep],
                explorer_url=explorer_url,
            )
            status_msg = await bot.reply_to(message, str(tx_status))
            tx_status.set_display_update(status_display(status_msg.chat.id, status_msg.message_id))
            logger.info("%s sends everything to %s", sender.id, command.destination)
            withdrawal = custody.take_fees_and_sweep_wallet_from_user_to(sender, command.destination, tx_status)
        else:
            try:
                token = await token_repo.get_by_symbol(command.symbol or ALPH_SYMBOL)
            except UnknownTokenError:
                await bot.reply_to(message, "The token is invalid or does not exist.")
                return

            if command.amount is None:
                try:
                    balance = await balances.get_user_balance(sender)
                except Exception:
                    logger.exception("Failed to fetch balance of %s", sender)
                    await bot.reply_to(message, error_while("retrieving your account balance"))
                    return
                if len(balance) > 1 and token.is_alph():
                    await bot.reply_to(
                        message,
                        "Withdrawing only all your $ALPH is not allowed as you need some for your other tokens.\n"
                        f"Try to withdraw everything with <code>/withdraw all {command.destination}</code>",
                    )
                    return
                held = [t for t in balance if t.token.id == token.id]
                if not held:
                    await bot.reply_to(message, f"You do not have any ${token.symbol}")
                    return
                token_amount = held[0]
                details = f"all your {token_amount}"
            else:
                try:
                    token_amount = TokenAmount.from_display(command.amount, token)
                except ValueError:
                    await bot.reply_to(message, "The amount is invalid.")
                    return
                details = str(token_amount)

            tx_status = TransactionStatus(f"Withdrawal to {command.destination}", details, explorer_url=explorer_url)
            status_msg = await bot.reply_to(message, str(tx_status))
            tx_status.set_display_update(status_display(status_msg.chat.id, status_msg.message_id))
            logger.info("%s sends %s to %s", sender.id, token_amount, command.destination)
            withdrawal = custody.send_amount_to_address_from(sender, token_amount, command.destination, tx_status)

        try:
            tx_id = await withdrawal
        except TipBotError as err:
            logger.warning("Withdrawal of %s failed: %s %s", sender, err, err.context)
            tx_status.set_failed().display_update()
            await bot.reply_to(message, describe_error(err, "withdraw", token))
            return
        except Exception:
            logger.exception("Withdrawal of %s failed", sender)
            tx_status.set_failed().display_update()
            await bot.reply_to(message, error_while("processing your withdrawal"))
            return

        if tx_id:
            tx_status.set_transaction_id(tx_id)
        tx_status.set_confirmed().display_update()

    @bot.message_handler(commands=["forgetme"], chat_types=["private"])
    async def handle_forgetme(message):
        user = await registered_sender(message)
        if user is None:
            return

        markup = InlineKeyboardMarkup(row_width=2)
        markup.add(
            InlineKeyboardButton("Yes, forget me", callback_data=encode_forget_confirmation(user.id, True)),
            InlineKeyboardButton("No", callback_data=encode_forget_confirmation(user.id, False)),
        )
        await bot.send_message(
            message.chat.id,
            "By asking me to forget you, your remaining funds are given to the operator "
            "and you will no longer be able to access them.\nDo you confirm?",
            reply_markup=markup,
        )

    @bot.callback_query_handler(func=lambda call: call.data.startswith("forget:"))
    async def handle_forget_confirmation(call):
        try:
            accepted, user_id = parse_forget_confirmation(call.data)
        except ValueError:
            await bot.answer_callback_query(call.id, "Invalid confirmation.")
            return

        try:
            user = await user_repo.get_by_telegram_id(call.from_user.id)
            if user is None or user.id != user_id:
                await bot.answer_callback_query(call.id, "This is not your account.")
                return

            if not accepted:
                await bot.send_message(call.message.chat.id, "We'll do as if you never asked me to forget you…")
                return

            logger.info("User %s confirmed their intention to be forgotten", user.id)
            try:
                tx_ids = await custody.empty_wallet_for_deletion(user)
            except TipBotError as err:
                logger.warning("Emptying wallet of %s failed: %s", user, err)
                await bot.send_message(call.message.chat.id, error_while("emptying your wallet"))
                return
            logger.info("Wallet of user %s emptied in %s", user.id, ", ".join(tx_ids))

            await custody.delete_user(user)
            await bot.send_message(
                call.message.chat.id,
                "Your account has successfully been deleted. To use me again, send <code>/start</code>",
            )
        finally:
            await bot.delete_message(call.message.chat.id, call.message.message_id)

    def is_admin(message) -> bool:
        return message.from_user.id in config.telegram.admins

    @bot.message_handler(commands=["stats"], func=is_admin)
    async def handle_stats(message):
        total_users = await user_repo.count()
        total = await balances.get_total_token_amount()
        await bot.send_message(
            message.chat.id,
            f"<b>{total_users}</b> accounts created\n\nTVL:\n{format_token_list(total)}",
        )

    @bot.message_handler(commands=["fees"], func=is_admin)
    async def handle_fees(message):
        addresses: List[str] = list(config.operator.addresses_by_group)
        lines = [f" &#8226; G{group}: <code>{address}</code>" for group, address in enumerate(addresses)]
        total = await balances.get_total_token_amount_from_addresses(addresses)
        await bot.send_message(
            message.chat.id,
            "Addresses for fees collection:\n"
            + "\n".join(lines)
            + f"\n\nTotal fees collected\n{format_token_list(total)}",
        )

    return bot

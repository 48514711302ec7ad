from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional, Set

from application.balances import BalanceAggregator
from application.error_classifier import classified_errors
from domain.errors import AlreadyRegisteredError, InvalidAddressError, TooSmallWithdrawalError
from domain.models import TokenAmount, TransactionStatus, User
from domain.repositories import Destination, NodeGateway, UserRepository, Wallet
from infrastructure.config import BotConfig, OperatorConfig

logger = logging.getLogger(__name__)

# Minimal amount of ALPH (0.001) attached to an output carrying tokens.
DUST_AMOUNT = 10**15

CONFIRMATION_POLL_INTERVAL = 1.0

WalletDeriver = Callable[[str, int], Wallet]
AddressValidator = Callable[[str], bool]


def _destination_for(address: str, token_amount: TokenAmount) -> Destination:
    if token_amount.token.is_alph():
        return Destination(address=address, atto_alph_amount=token_amount.amount)
    return Destination(
        address=address,
        atto_alph_amount=DUST_AMOUNT,
        tokens=[(token_amount.token.id, token_amount.amount)],
    )


class CustodialWalletService:
    """
    Moves funds held in the custodial wallets of the bot users.

    Wallets are never stored: each operation derives the signing wallet
    of the user it acts for from the master mnemonic and the user id.
    Node failures leave this class as domain errors (see
    `application.error_classifier`).

    Transfers and withdrawals of the same user are not serialised here;
    only registration and deletion are.
    """

    def __init__(
        self,
        node: NodeGateway,
        user_repo: UserRepository,
        balances: BalanceAggregator,
        mnemonic_reader: Callable[[], str],
        derive_wallet: WalletDeriver,
        is_valid_address: AddressValidator,
        operator_config: OperatorConfig,
        bot_config: BotConfig,
    ) -> None:
        self._node = node
        self._user_repo = user_repo
        self._balances = balances
        self._mnemonic_reader = mnemonic_reader
        self._derive_wallet = derive_wallet
        self._is_valid_address = is_valid_address
        self._operator = operator_config
        self._bot = bot_config
        self._register_lock = asyncio.Lock()
        self._deletion_lock = asyncio.Lock()
        self._background_tasks: Set["asyncio.Task[None]"] = set()

    # Users

    async def register_user(self, new_user: User) -> User:
        """
        Persist `new_user` and assign the address of its wallet.

        Raises `AlreadyRegisteredError` if the Telegram id is taken.
        """

        async with self._register_lock:
            if await self._user_repo.exists_by_telegram_id(new_user.telegram_id):
                raise AlreadyRegisteredError(new_user.telegram_id)

            user = await self._user_repo.save(new_user)
            user.address = self.get_user_wallet(user).address
            return await self._user_repo.save(user)

    async def delete_user(self, user: User) -> None:
        """Remove `user`. Its wallet must have been emptied beforehand."""

        async with self._deletion_lock:
            await self._user_repo.remove(user)

    def get_user_wallet(self, user: User) -> Wallet:
        return self._derive_wallet(self._mnemonic_reader(), user.id)

    # Transfers

    def _fee_address_for(self, wallet: Wallet) -> str:
        return self._operator.addresses_by_group[wallet.group]

    def _report_submitted(self, tx_status: Optional[TransactionStatus], tx_id: str) -> None:
        if tx_status is not None and not self._bot.is_on_devnet:
            tx_status.set_transaction_id(tx_id).display_update()

    async def _wait(self, tx_id: str, confirmations: int) -> None:
        with classified_errors():
            await self._node.wait_for_confirmation(tx_id, confirmations, CONFIRMATION_POLL_INTERVAL)

    async def transfer_from_user_to_user(
        self,
        sender: User,
        receiver: User,
        token_amount: TokenAmount,
        tx_status: Optional[TransactionStatus] = None,
    ) -> str:
        sender_wallet = self.get_user_wallet(sender)

        with classified_errors():
            tx_id = await self._node.sign_and_submit_transfer(
                sender_wallet, [_destination_for(receiver.address, token_amount)]
            )
        self._report_submitted(tx_status, tx_id)

        await self._wait(tx_id, self._bot.nb_confirmations_internal_transfer)

        self._consolidate_in_background(sender)
        if sender.id != receiver.id:
            self._consolidate_in_background(receiver)

        return tx_id

    async def send_amount_to_address_from(
        self,
        user: User,
        token_amount: TokenAmount,
        destination_address: str,
        tx_status: Optional[TransactionStatus] = None,
    ) -> str:
        if not self._is_valid_address(destination_address):
            raise InvalidAddressError(destination_address)

        if token_amount.token.is_alph():
            minimum = token_amount.token.to_smallest_unit(self._operator.strict_minimal_withdrawal_amount)
            if token_amount.amount <= minimum:
                raise TooSmallWithdrawalError(token_amount)

        user_wallet = self.get_user_wallet(user)
        destinations: List[Destination] = []

        # The fee is taken out of the requested amount, not added to it.
        token_amount = TokenAmount(token_amount.amount, token_amount.token)
        if self._operator.fees > 0:
            operator_fee = token_amount.substract_and_get_percentage(self._operator.fees)
            fee_address = self._fee_address_for(user_wallet)
            logger.info(
                "Collecting %s (%s%%) fees on %s (group %d)",
                operator_fee,
                self._operator.fees,
                fee_address,
                user_wallet.group,
            )
            destinations.append(_destination_for(fee_address, operator_fee))

        destinations.append(_destination_for(destination_address, token_amount))

        with classified_errors():
            tx_id = await self._node.sign_and_submit_transfer(user_wallet, destinations)
        self._report_submitted(tx_status, tx_id)

        await self._wait(tx_id, self._bot.nb_confirmations_external_transfer)

        self._consolidate_in_background(user)

        return tx_id

    async def take_fees_and_sweep_wallet_from_user_to(
        self,
        user: User,
        destination_address: str,
        tx_status: Optional[TransactionStatus] = None,
    ) -> str:
        """
        Withdraw everything in two steps: operator fees, then a sweep.

        Returns the id of the first sweep transaction, or "" when nothing
        was left to sweep. A failure of the sweep does not give back the
        fees taken in the first step.
        """

        if not self._is_valid_address(destination_address):
            raise InvalidAddressError(destination_address)

        user_wallet = self.get_user_wallet(user)

        if self._operator.fees > 0:
            await self._take_fees_before_sweep(user, user_wallet, tx_status)

        if tx_status is not None:
            tx_status.set_confirmed().next_step().display_update()

        sweep_tx_ids = await self._sweep(user_wallet, destination_address, tx_status)
        if not sweep_tx_ids:
            return ""

        await self._wait(sweep_tx_ids[0], self._bot.nb_confirmations_external_transfer)
        return sweep_tx_ids[0]

    async def _take_fees_before_sweep(
        self,
        user: User,
        user_wallet: Wallet,
        tx_status: Optional[TransactionStatus],
    ) -> None:
        fee_address = self._fee_address_for(user_wallet)
        user_balance = await self._balances.get_user_balance(user)
        alph_balance = next(t for t in user_balance if t.token.is_alph())

        # Keep enough ALPH for the sweep transaction to pay for itself.
        minimum = alph_balance.token.to_smallest_unit(self._operator.strict_minimal_withdrawal_all_amount)
        if alph_balance.amount <= minimum:
            raise TooSmallWithdrawalError(alph_balance)

        fees = [t.substract_and_get_percentage(self._operator.fees) for t in user_balance]
        for fee in fees:
            logger.info(
                "Collecting %s (%s%%) fees on %s (group %d)",
                fee,
                self._operator.fees,
                fee_address,
                user_wallet.group,
            )

        destination = Destination(
            address=fee_address,
            atto_alph_amount=next(f.amount for f in fees if f.token.is_alph()),
            tokens=[(f.token.id, f.amount) for f in fees if not f.token.is_alph()],
        )
        with classified_errors():
            tx_id = await self._node.sign_and_submit_transfer(user_wallet, [destination])
        self._report_submitted(tx_status, tx_id)

        await self._wait(tx_id, self._bot.nb_confirmations_between_steps)

    async def empty_wallet_for_deletion(self, user: User) -> List[str]:
        """Sweep the whole wallet of `user` to the operator, without any fee step."""

        if not self._operator.addresses_by_group:
            logger.warning("No operator address configured, leaving the wallet of user %s untouched", user.id)
            return []
        return await self._sweep(self.get_user_wallet(user), self._operator.addresses_by_group[0])

    async def _sweep(
        self,
        wallet: Wallet,
        destination_address: str,
        tx_status: Optional[TransactionStatus] = None,
    ) -> List[str]:
        with classified_errors():
            tx_ids = await self._node.sign_and_submit_sweep(wallet, destination_address)
        if tx_ids:
            self._report_submitted(tx_status, tx_ids[0])
        return tx_ids

    # Consolidation

    async def consolidate_if_required(self, user: User) -> Optional[str]:
        """
        Sweep the wallet of `user` onto itself when it holds too many UTXOs.

        Only waits for the submission, not for the confirmation.
        """

        logger.debug("Checking if consolidation is required for user %s", user.id)
        wallet = self.get_user_wallet(user)

        with classified_errors():
            balance = await self._node.get_address_balance(wallet.address, self._bot.consider_mempool)

        if balance.utxo_num < self._bot.nb_utxo_before_consolidation:
            logger.debug("No need to consolidate. Only %d UTXOs for user %s", balance.utxo_num, user.id)
            return None

        logger.info("Consolidating %d UTXOs of user %s", balance.utxo_num, user.id)
        tx_ids = ", ".join(await self._sweep(wallet, wallet.address))
        logger.info("Consolidated in tx %s", tx_ids)
        return tx_ids

    def _consolidate_in_background(self, user: User) -> None:
        task = asyncio.create_task(self._consolidate_logging_errors(user))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _consolidate_logging_errors(self, user: User) -> None:
        try:
            await self.consolidate_if_required(user)
        except Exception:
            logger.exception("Consolidation failed for user %s", user.id)

    async def drain_background_tasks(self) -> None:
        """Wait for pending background consolidations."""

        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks))

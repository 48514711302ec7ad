from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, List, Mapping, Optional

from domain.errors import ConfigError
from domain.models import ALPH_TOKEN
from infrastructure.alephium.wallet import TOTAL_NUMBER_OF_GROUPS, is_valid_address

NETWORKS = ("devnet", "testnet", "mainnet")


@dataclass(frozen=True)
class FullNodeConfig:
    url: str
    api_key: Optional[str] = None


@dataclass(frozen=True)
class OperatorConfig:
    """
    Operator fee policy.

    `fees` is a percentage. Minimum withdrawal amounts are in ALPH.
    `addresses_by_group` holds one fee collection address per group.
    """

    fees: Decimal = Decimal(0)
    addresses_by_group: List[str] = field(default_factory=list)
    strict_minimal_withdrawal_amount: Decimal = Decimal(0)
    strict_minimal_withdrawal_all_amount: Decimal = Decimal(0)


@dataclass(frozen=True)
class BotConfig:
    nb_confirmations_internal_transfer: int = 1
    nb_confirmations_external_transfer: int = 1
    nb_confirmations_between_steps: int = 1
    nb_utxo_before_consolidation: int = 50
    consider_mempool: bool = False
    network: str = "mainnet"
    explorer_url: Optional[str] = None

    @property
    def is_on_devnet(self) -> bool:
        return self.network == "devnet"


@dataclass(frozen=True)
class TelegramConfig:
    bot_token: str
    admins: List[int] = field(default_factory=list)


@dataclass(frozen=True)
class AppConfig:
    telegram: TelegramConfig
    fullnode: FullNodeConfig
    operator: OperatorConfig
    bot: BotConfig
    mnemonic_reader: Callable[[], str]
    db_path: str = "tipbot.db"
    tokens_file: Optional[str] = None
    log_level: str = "INFO"


def _get_int(environ: Mapping[str, str], name: str, default: int, minimum: int = 0) -> int:
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ConfigError(f"{name} must be at least {minimum}, got {value}")
    return value


def _get_decimal(environ: Mapping[str, str], name: str, default: str = "0") -> Decimal:
    raw = environ.get(name) or default
    try:
        value = Decimal(raw)
    except InvalidOperation as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc
    if not value.is_finite() or value < 0:
        raise ConfigError(f"{name} must be a positive number, got {raw!r}")
    return value


def _get_alph_amount(environ: Mapping[str, str], name: str) -> Decimal:
    """An amount of ALPH that must be representable in its smallest unit."""

    value = _get_decimal(environ, name)
    try:
        ALPH_TOKEN.to_smallest_unit(value)
    except ValueError as exc:
        raise ConfigError(f"{name} must have at most {ALPH_TOKEN.decimals} decimals, got {value}") from exc
    return value


def _get_bool(environ: Mapping[str, str], name: str, default: bool) -> bool:
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _mnemonic_reader(environ: Mapping[str, str]) -> Callable[[], str]:
    """
    Return a callable producing the master mnemonic.

    `MNEMONIC_FILE` is preferred so the secret is read on demand instead
    of staying in the process environment.
    """

    mnemonic_file = environ.get("MNEMONIC_FILE")
    if mnemonic_file:
        path = Path(mnemonic_file)
        if not path.is_file():
            raise ConfigError(f"MNEMONIC_FILE {mnemonic_file} does not exist")
        return lambda: path.read_text(encoding="utf-8").strip()

    mnemonic = environ.get("MNEMONIC")
    if not mnemonic:
        raise ConfigError("Either MNEMONIC or MNEMONIC_FILE must be set.")
    return lambda: mnemonic


def load_operator_config(environ: Mapping[str, str]) -> OperatorConfig:
    fees = _get_decimal(environ, "OPERATOR_FEES")
    if fees > 100:
        raise ConfigError(f"OPERATOR_FEES must be a percentage, got {fees}")

    addresses = [a.strip() for a in environ.get("OPERATOR_ADDRESSES", "").split(",") if a.strip()]
    invalid = [a for a in addresses if not is_valid_address(a)]
    if invalid:
        raise ConfigError(f"Invalid OPERATOR_ADDRESSES: {', '.join(invalid)}")
    if (fees > 0 or addresses) and len(addresses) != TOTAL_NUMBER_OF_GROUPS:
        raise ConfigError(
            f"OPERATOR_ADDRESSES must list {TOTAL_NUMBER_OF_GROUPS} addresses (one per group)"
        )

    return OperatorConfig(
        fees=fees,
        addresses_by_group=addresses,
        strict_minimal_withdrawal_amount=_get_alph_amount(environ, "OPERATOR_MIN_WITHDRAWAL"),
        strict_minimal_withdrawal_all_amount=_get_alph_amount(environ, "OPERATOR_MIN_WITHDRAWAL_ALL"),
    )


def load_bot_config(environ: Mapping[str, str]) -> BotConfig:
    network = environ.get("NETWORK", "mainnet").lower()
    if network not in NETWORKS:
        raise ConfigError(f"NETWORK must be one of {', '.join(NETWORKS)}, got {network!r}")

    return BotConfig(
        nb_confirmations_internal_transfer=_get_int(environ, "NB_CONFIRMATIONS_INTERNAL", 1, minimum=1),
        nb_confirmations_external_transfer=_get_int(environ, "NB_CONFIRMATIONS_EXTERNAL", 1, minimum=1),
        nb_confirmations_between_steps=_get_int(environ, "NB_CONFIRMATIONS_BETWEEN_STEPS", 1, minimum=1),
        nb_utxo_before_consolidation=_get_int(environ, "NB_UTXO_BEFORE_CONSOLIDATION", 50, minimum=2),
        consider_mempool=_get_bool(environ, "CONSIDER_MEMPOOL", False),
        network=network,
        explorer_url=environ.get("EXPLORER_URL") or None,
    )


def load_config(environ: Mapping[str, str]) -> AppConfig:
    """Build the application configuration from environment variables."""

    bot_token = environ.get("TELEGRAM_BOT_TOKEN")
    if not bot_token:
        raise ConfigError("TELEGRAM_BOT_TOKEN environment variable is not set.")

    try:
        admins = [int(a) for a in environ.get("TELEGRAM_ADMINS", "").split(",") if a.strip()]
    except ValueError as exc:
        raise ConfigError("TELEGRAM_ADMINS must be a comma separated list of Telegram ids") from exc

    return AppConfig(
        telegram=TelegramConfig(bot_token=bot_token, admins=admins),
        fullnode=FullNodeConfig(
            url=environ.get("FULLNODE_URL", "http://127.0.0.1:22973"),
            api_key=environ.get("FULLNODE_API_KEY") or None,
        ),
        operator=load_operator_config(environ),
        bot=load_bot_config(environ),
        mnemonic_reader=_mnemonic_reader(environ),
        db_path=environ.get("DB_PATH", "tipbot.db"),
        tokens_file=environ.get("TOKENS_FILE") or None,
        log_level=environ.get("LOG_LEVEL", "INFO").upper(),
    )

"""
Protocol registry: static per-protocol identifiers, limits and argument encoders.

One table maps each Protocol variant to its ProtocolConfig and its app-args
encoder, so adding a protocol touches only PROTOCOL_TABLE. Lookups by name raise
UnknownProtocol, which every caller treats as terminal.

Values mirror the deployed Tinyman AMM v2, AlgoFi lending and Pact staking apps.
Amounts are microAlgo.
"""

from __future__ import annotations

import dataclasses
import enum
import threading
from dataclasses import dataclass
from typing import Any, Callable

from backend_algoswarm.core.exceptions import UnknownProtocol
from backend_algoswarm.swarm_logging import get_logger

logger = get_logger(__name__)

KIND_DEPOSIT = "deposit"
KIND_WITHDRAW = "withdraw"
TRANSACTION_KINDS = (KIND_DEPOSIT, KIND_WITHDRAW)

# 1 ALGO
GENERIC_MIN_DEPOSIT = 1_000_000
PACT_MIN_STAKE = 5_000_000
PACT_STAKING_PERIOD_DAYS = 14

RISK_UNKNOWN = "unknown"


class Protocol(str, enum.Enum):
    TINYMAN = "tinyman"
    ALGOFI = "algofi"
    PACT = "pact"

    @classmethod
    def parse(cls, name: str) -> "Protocol":
        """Resolve a protocol name (case-insensitive). Raises UnknownProtocol."""
        key = (name or "").strip().lower()
        try:
            return cls(key)
        except ValueError:
            raise UnknownProtocol(name) from None


# (kind, amount, config) -> rejection reason or None
ProtocolRule = Callable[[str, int, "ProtocolConfig"], "str | None"]
# (kind, net_amount, config) -> app args
ArgsEncoder = Callable[[str, int, "ProtocolConfig"], "list[str]"]


@dataclass(frozen=True)
class ProtocolConfig:
    """Immutable per-protocol metadata. Replaced wholesale by an administrative update."""

    protocol: Protocol
    display_name: str
    app_id: int
    deposit_method: str
    withdraw_method: str
    fee_microalgo: int
    min_balance_microalgo: int
    min_deposit: int
    max_deposit: int
    withdrawal_delay_seconds: int
    risk_level: str
    asset: str
    estimated_apy: float = 0.0

    @property
    def name(self) -> str:
        return self.protocol.value

    def method_for(self, kind: str) -> str:
        return self.deposit_method if kind == KIND_DEPOSIT else self.withdraw_method

    def to_dict(self) -> dict[str, Any]:
        return {
            "protocol": self.name,
            "name": self.display_name,
            "app_id": self.app_id,
            "deposit_method": self.deposit_method,
            "withdraw_method": self.withdraw_method,
            "fee_microalgo": self.fee_microalgo,
            "min_balance_microalgo": self.min_balance_microalgo,
            "min_deposit": self.min_deposit,
            "max_deposit": self.max_deposit,
            "withdrawal_delay_seconds": self.withdrawal_delay_seconds,
            "risk_level": self.risk_level,
            "asset": self.asset,
            "estimated_apy": self.estimated_apy,
        }


@dataclass(frozen=True)
class ProtocolEntry:
    config: ProtocolConfig
    encode_args: ArgsEncoder
    rules: tuple[ProtocolRule, ...] = ()


# -----------------------------------------------------------------------------
# Encoders and protocol-specific rules
# -----------------------------------------------------------------------------


def _encode_pool_args(kind: str, net_amount: int, config: ProtocolConfig) -> list[str]:
    """Tinyman / AlgoFi: [method, amount, asset-or-pool]."""
    return [config.method_for(kind), str(net_amount), config.asset]


def _encode_pact_args(kind: str, net_amount: int, config: ProtocolConfig) -> list[str]:
    """Pact stake carries the staking period; unstake does not."""
    args = [config.method_for(kind), str(net_amount), config.asset]
    if kind == KIND_DEPOSIT:
        args.append(str(PACT_STAKING_PERIOD_DAYS))
    return args


def _pact_min_stake(kind: str, amount: int, config: ProtocolConfig) -> str | None:
    if kind == KIND_DEPOSIT and amount < PACT_MIN_STAKE:
        return f"Pact minimum stake is {PACT_MIN_STAKE / 1_000_000:g} ALGO"
    return None


PROTOCOL_TABLE: dict[Protocol, ProtocolEntry] = {
    Protocol.TINYMAN: ProtocolEntry(
        config=ProtocolConfig(
            protocol=Protocol.TINYMAN,
            display_name="Tinyman AMM",
            app_id=552635992,
            deposit_method="add_liquidity",
            withdraw_method="remove_liquidity",
            fee_microalgo=2000,
            min_balance_microalgo=100_000,
            min_deposit=GENERIC_MIN_DEPOSIT,
            max_deposit=100_000_000_000,
            withdrawal_delay_seconds=0,
            risk_level="medium",
            asset="ALGO-USDC",
            estimated_apy=0.08,
        ),
        encode_args=_encode_pool_args,
    ),
    Protocol.ALGOFI: ProtocolEntry(
        config=ProtocolConfig(
            protocol=Protocol.ALGOFI,
            display_name="AlgoFi Lending",
            app_id=818179690,
            deposit_method="supply",
            withdraw_method="withdraw_underlying",
            fee_microalgo=3000,
            min_balance_microalgo=200_000,
            min_deposit=GENERIC_MIN_DEPOSIT,
            max_deposit=500_000_000_000,
            withdrawal_delay_seconds=86_400,
            risk_level="low",
            asset="ALGO",
            estimated_apy=0.05,
        ),
        encode_args=_encode_pool_args,
    ),
    Protocol.PACT: ProtocolEntry(
        config=ProtocolConfig(
            protocol=Protocol.PACT,
            display_name="Pact DeFi",
            app_id=1002541853,
            deposit_method="stake",
            withdraw_method="unstake",
            fee_microalgo=4000,
            min_balance_microalgo=500_000,
            min_deposit=GENERIC_MIN_DEPOSIT,
            max_deposit=200_000_000_000,
            withdrawal_delay_seconds=604_800,
            risk_level="high",
            asset="ALGO",
            estimated_apy=0.12,
        ),
        encode_args=_encode_pact_args,
        rules=(_pact_min_stake,),
    ),
}

# Fields an administrative update may change; identity fields stay fixed.
UPDATABLE_FIELDS = frozenset(
    {
        "display_name",
        "app_id",
        "fee_microalgo",
        "min_balance_microalgo",
        "min_deposit",
        "max_deposit",
        "withdrawal_delay_seconds",
        "risk_level",
        "estimated_apy",
    }
)


class ProtocolRegistry:
    """
    Read-only lookup over PROTOCOL_TABLE. The only mutation is update_config,
    which swaps in a new frozen ProtocolConfig for one protocol.
    """

    def __init__(self, table: dict[Protocol, ProtocolEntry] | None = None) -> None:
        self._entries = dict(table or PROTOCOL_TABLE)
        self._lock = threading.Lock()

    def entry(self, protocol_name: str | Protocol) -> ProtocolEntry:
        protocol = protocol_name if isinstance(protocol_name, Protocol) else Protocol.parse(protocol_name)
        entry = self._entries.get(protocol)
        if entry is None:
            raise UnknownProtocol(str(protocol_name))
        return entry

    def get_config(self, protocol_name: str | Protocol) -> ProtocolConfig:
        return self.entry(protocol_name).config

    def list_protocols(self) -> list[ProtocolConfig]:
        return [e.config for e in self._entries.values()]

    def assess_risk(self, protocol_name: str) -> str:
        try:
            return self.get_config(protocol_name).risk_level
        except UnknownProtocol:
            return RISK_UNKNOWN

    def update_config(self, protocol_name: str, **changes: Any) -> ProtocolConfig:
        """Administrative update. Unknown or identity fields raise ValueError."""
        bad = set(changes) - UPDATABLE_FIELDS
        if bad:
            raise ValueError(f"Fields not updatable: {sorted(bad)}")
        with self._lock:
            entry = self.entry(protocol_name)
            new_config = dataclasses.replace(entry.config, **changes)
            if new_config.min_deposit > new_config.max_deposit:
                raise ValueError("min_deposit must not exceed max_deposit")
            self._entries[new_config.protocol] = dataclasses.replace(entry, config=new_config)
        logger.warning("protocol_config_updated", protocol=new_config.name, changes=sorted(changes))
        return new_config


_default_registry = ProtocolRegistry()


def get_registry() -> ProtocolRegistry:
    return _default_registry


def get_config(protocol_name: str) -> ProtocolConfig:
    """Return the config for a protocol name. Raises UnknownProtocol."""
    return _default_registry.get_config(protocol_name)

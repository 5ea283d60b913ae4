"""
Deposit/withdraw transaction builder.

Routes by protocol to the registry's app-args encoder and produces an unsigned
Algorand application-call description for the wallet to sign. Pure computation:
no signing, no submission, no network I/O. Deposit net amount is the amount minus
the protocol fee and minimum reserve. A withdrawal encodes the full amount; its fee is
paid by the wallet and only reported as fee_estimate.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Any

from backend_algoswarm.core.exceptions import AmountTooSmall
from backend_algoswarm.protocols.registry import (
    KIND_DEPOSIT,
    KIND_WITHDRAW,
    ProtocolRegistry,
    get_registry,
)

APPL_TXN_TYPE = "appl"
ON_COMPLETE_NOOP = "noop"


@dataclass
class UnsignedTransaction:
    """Unsigned protocol transaction plus the numbers it was built from."""

    protocol: str
    kind: str
    method: str
    amount: int
    net_amount: int
    fee_estimate: int
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "unsigned_transaction": self.payload,
            "protocol": self.protocol,
            "transaction_type": self.method,
            "kind": self.kind,
            "amount": self.amount,
            "net_amount": self.net_amount,
            "estimated_fee": self.fee_estimate,
        }


def encode_app_args(args: list[str]) -> list[str]:
    """algod expects application args as base64 byte strings."""
    return [base64.b64encode(a.encode("utf-8")).decode("ascii") for a in args]


class TransactionBuilder:
    def __init__(self, registry: ProtocolRegistry | None = None) -> None:
        self._registry = registry or get_registry()

    def build_deposit(self, protocol_name: str, wallet_address: str, amount: int) -> UnsignedTransaction:
        return self._build(protocol_name, wallet_address, amount, KIND_DEPOSIT)

    def build_withdraw(self, protocol_name: str, wallet_address: str, amount: int) -> UnsignedTransaction:
        return self._build(protocol_name, wallet_address, amount, KIND_WITHDRAW)

    def build(self, protocol_name: str, wallet_address: str, amount: int, kind: str) -> UnsignedTransaction:
        if kind == KIND_DEPOSIT:
            return self.build_deposit(protocol_name, wallet_address, amount)
        if kind == KIND_WITHDRAW:
            return self.build_withdraw(protocol_name, wallet_address, amount)
        raise ValueError(f"Unknown transaction kind: {kind}")

    def _build(self, protocol_name: str, wallet_address: str, amount: int, kind: str) -> UnsignedTransaction:
        entry = self._registry.entry(protocol_name)
        config = entry.config
        if kind == KIND_DEPOSIT:
            overhead = config.fee_microalgo + config.min_balance_microalgo
            net_amount = amount - overhead
        else:
            # The wallet pays the fee; the app call asks for the whole position.
            overhead = config.fee_microalgo
            net_amount = amount
        if net_amount <= 0:
            raise AmountTooSmall(amount, overhead)

        args = entry.encode_args(kind, net_amount, config)
        payload = {
            "type": APPL_TXN_TYPE,
            "sender": wallet_address,
            "app_id": config.app_id,
            "on_complete": ON_COMPLETE_NOOP,
            "app_args": encode_app_args(args),
            "app_args_plain": args,
            "fee": config.fee_microalgo,
            "flat_fee": True,
        }
        return UnsignedTransaction(
            protocol=config.name,
            kind=kind,
            method=config.method_for(kind),
            amount=amount,
            net_amount=net_amount,
            fee_estimate=overhead,
            payload=payload,
        )

"""
Request bodies for the DeFi transaction and recovery routes.

Amounts are StrictInt microAlgo: floats and numeric strings are rejected with 422.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, StrictInt


class CreateTransactionRequest(BaseModel):
    """POST /defi/transaction/create-deposit and create-withdraw."""

    protocol_name: str = Field(..., min_length=1, max_length=50, description="tinyman, algofi or pact")
    amount_microalgo: StrictInt = Field(..., description="Amount in microAlgo")
    wallet: str = Field(..., min_length=1, max_length=64, description="Algorand wallet address")


class SubmitTransactionRequest(BaseModel):
    """
    POST /defi/transaction/submit. protocol_name, wallet and amount_microalgo are optional;
    when all are given the deposit is late-validated and recorded as pending.
    Withdrawals go through /recovery/withdraw; unknown fields are rejected with 422.
    """

    model_config = ConfigDict(extra="forbid")

    signed_transaction: str = Field(..., min_length=1, description="Base64 signed transaction bytes")
    protocol_name: str | None = Field(None, max_length=50)
    wallet: str | None = Field(None, max_length=64)
    amount_microalgo: StrictInt | None = None


class ConfirmTransactionRequest(BaseModel):
    """
    POST /defi/transaction/confirm. With confirmation_round the confirmation is recorded
    directly (idempotent); otherwise the node is polled for up to timeout_seconds.
    """

    tx_id: str = Field(..., min_length=1, max_length=100)
    timeout_seconds: float = Field(60.0, ge=0, le=600)
    confirmation_round: StrictInt | None = None


class CompleteTransactionRequest(BaseModel):
    """POST /defi/transaction/complete: full validate/submit/record/confirm in one call."""

    protocol_name: str = Field(..., min_length=1, max_length=50)
    amount_microalgo: StrictInt
    signed_transaction: str = Field(..., min_length=1)
    wallet: str = Field(..., min_length=1, max_length=64, description="Algorand wallet address")
    timeout_seconds: float | None = Field(None, ge=0, le=600)


class WithdrawRequest(BaseModel):
    investment_id: StrictInt
    wallet: str = Field(..., min_length=1, max_length=64, description="Algorand wallet address")
    signed_transaction: str | None = Field(None, description="Signed withdrawal; omit to get the unsigned transaction")


class EmergencyRecoveryRequest(BaseModel):
    investment_id: StrictInt
    wallet: str = Field(..., min_length=1, max_length=64, description="Algorand wallet address")
    override_time_lock: bool = False
    signed_transaction: str | None = None


class ConfirmationPayload(BaseModel):
    confirmed: bool
    confirmation_round: StrictInt | None = None


class CompleteRecoveryRequest(BaseModel):
    investment_id: StrictInt
    tx_id: str = Field(..., min_length=1, max_length=100)
    confirmation_result: ConfirmationPayload
    wallet: str = Field(..., min_length=1, max_length=64, description="Algorand wallet address")

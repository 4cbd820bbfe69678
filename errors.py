from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict

import requests
from web3 import exceptions as w3_exc


@dataclass
class AppError(Exception):
    code: str
    message: str
    data: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "data": self.data}


class _CodedError(AppError):
    default_code = "app_error"

    def __init__(self, message: str, data: Dict[str, Any] | None = None) -> None:
        super().__init__(self.default_code, message, data or {})


class InvalidAmount(_CodedError):
    """Malformed, negative or non-finite amount."""

    default_code = "invalid_amount"


class InvalidDecimals(_CodedError):
    default_code = "invalid_decimals"


class PrecisionLoss(_CodedError):
    """Round-trip check failed; never downgraded to a rounded value."""

    default_code = "precision_loss"


class InsufficientBalance(_CodedError):
    default_code = "insufficient_balance"


class InsufficientAllowance(_CodedError):
    default_code = "insufficient_allowance"


class SubmissionRejected(_CodedError):
    """The user or signer refused to sign."""

    default_code = "submission_rejected"


class SubmissionFailed(_CodedError):
    """Node, RPC or inclusion failure after the call left the simulator."""

    default_code = "submission_failed"


class WrongNetworkEvent(_CodedError):
    """
    An observed handle did not match the pending handle of its network.

    Logged and dropped by the coordinator, never raised to the user.
    """

    default_code = "wrong_network_event"


class TransitionError(_CodedError):
    default_code = "invalid_transition"


_REJECTION_MARKERS = ("user rejected", "user denied", "rejected by user", "signature rejected")


def classify_exception(e: Exception) -> AppError:
    """
    Map web3 / RPC / signer failures into stable submission error codes.
    """
    if isinstance(e, AppError):
        return e

    text = str(e)
    if any(m in text.lower() for m in _REJECTION_MARKERS):
        return SubmissionRejected(text, {"exception": type(e).__name__})

    if isinstance(e, w3_exc.ContractLogicError):
        return SubmissionFailed(text or "execution reverted", {"reason": "contract_reverted"})
    if isinstance(e, w3_exc.TimeExhausted):
        return SubmissionFailed(text, {"reason": "receipt_timeout"})
    if isinstance(e, w3_exc.TransactionNotFound):
        return SubmissionFailed(text, {"reason": "transaction_not_found"})
    if isinstance(e, w3_exc.Web3RPCError):
        return SubmissionFailed(text, {"reason": "rpc_error"})
    if isinstance(e, (requests.ConnectionError, requests.Timeout)):
        return SubmissionFailed(text, {"reason": "network_error"})
    if isinstance(e, w3_exc.Web3Exception):
        return SubmissionFailed(text, {"reason": "web3_error"})

    return SubmissionFailed(text, {"reason": "unknown_error", "exception": type(e).__name__})

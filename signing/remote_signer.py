from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from errors import SubmissionRejected

from .base import SignedTx, Signer


@dataclass(frozen=True)
class _RemoteSignedTx:
    raw_transaction: bytes


class RemoteSigner(Signer):
    """
    Delegates signing to an HTTP signing service (a sidecar wallet, an
    approval UI or a KMS proxy) that may ask the owner to confirm.

    Protocol (HTTP JSON):
    GET  {url}/address                 -> {"address": "0x..."}
    POST {url}/sign_transaction        body: {"tx": {...}, "chain_id": 1}
                                       -> {"rawTransactionHex": "0x..."}
    A 403 response or {"rejected": true} means the owner declined.
    """

    def __init__(self, url: str | None, *, timeout_sec: float = 30.0) -> None:
        base = (url or "").strip()
        if not base:
            raise ValueError("SIGNER_REMOTE_URL environment variable not set")
        self._base_url = base.rstrip("/")
        self._timeout = float(timeout_sec)
        self._cached_address: Optional[str] = None

    def get_address(self) -> str:
        if self._cached_address:
            return self._cached_address
        r = requests.get(f"{self._base_url}/address", timeout=self._timeout)
        r.raise_for_status()
        addr = str(r.json().get("address") or "").strip()
        if not addr:
            raise ValueError("Remote signer returned empty address")
        self._cached_address = addr
        return addr

    def sign_transaction(self, tx: Dict[str, Any], *, chain_id: int | None = None) -> SignedTx:
        payload = {"tx": _jsonable_tx(tx), "chain_id": chain_id}
        r = requests.post(f"{self._base_url}/sign_transaction", json=payload, timeout=self._timeout)
        if r.status_code == 403:
            raise SubmissionRejected("Signing request rejected by the wallet owner", {"status": 403})
        r.raise_for_status()
        data = r.json()
        if data.get("rejected"):
            raise SubmissionRejected(str(data.get("reason") or "Signing request rejected by the wallet owner"))
        raw_hex: Optional[str] = data.get("rawTransactionHex") or data.get("raw_transaction_hex")
        if not raw_hex:
            raise ValueError("Remote signer did not return rawTransactionHex")
        raw_hex = str(raw_hex).strip()
        if raw_hex.startswith("0x"):
            raw_hex = raw_hex[2:]
        return _RemoteSignedTx(raw_transaction=bytes.fromhex(raw_hex))


def _jsonable_tx(tx: Dict[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for k, v in tx.items():
        if isinstance(v, (bytes, bytearray)):
            out[k] = "0x" + bytes(v).hex()
        else:
            out[k] = v
    return out

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict

from eth_account import Account
from eth_account.signers.local import LocalAccount

from .base import SignedTx, Signer


class LocalAccountSigner(Signer):
    """
    Signs in-process with an eth_account LocalAccount.

    Build it from a raw hex key (development) or from an encrypted keystore
    JSON that is decrypted once at start-up.
    """

    def __init__(self, account: LocalAccount) -> None:
        self._account = account

    @classmethod
    def from_private_key(cls, private_key: str | None) -> "LocalAccountSigner":
        if not private_key:
            raise ValueError("PRIVATE_KEY environment variable not set")
        return cls(Account.from_key(private_key))

    @classmethod
    def from_keystore(cls, keystore_path: str | None, password: str | None) -> "LocalAccountSigner":
        if not keystore_path:
            raise ValueError("KEYSTORE_PATH environment variable not set")
        if not password:
            raise ValueError("KEYSTORE_PASSWORD environment variable not set")
        path = Path(keystore_path).expanduser()
        if not path.exists():
            raise ValueError(f"Keystore file not found: {path}")
        keystore = json.loads(path.read_text())
        return cls(Account.from_key(Account.decrypt(keystore, password)))

    def get_address(self) -> str:
        return self._account.address

    def sign_transaction(self, tx: Dict[str, Any], *, chain_id: int | None = None) -> SignedTx:
        if chain_id is not None:
            tx = dict(tx)
            tx["chainId"] = chain_id
        return self._account.sign_transaction(tx)

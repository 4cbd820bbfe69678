from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Protocol

from networks import NetworkId, NetworkMode, chain_id_for


class SignedTx(Protocol):
    raw_transaction: bytes


class Signer(ABC):
    """
    Signs vault and token transactions on behalf of the wallet owner.

    Implementations only sign; broadcasting belongs to the ContractCaller.
    """

    @abstractmethod
    def get_address(self) -> str:
        raise NotImplementedError

    @abstractmethod
    def sign_transaction(self, tx: Dict[str, Any], *, chain_id: int | None = None) -> SignedTx:
        raise NotImplementedError

    def sign_for(self, tx: Dict[str, Any], network: NetworkId, mode: NetworkMode) -> SignedTx:
        """
        Sign `tx` for `network`, refusing a transaction built for another chain.
        """
        chain_id = chain_id_for(network, mode)
        declared = tx.get("chainId")
        if declared is not None and int(declared) != chain_id:
            raise ValueError(
                f"Transaction chainId {declared} does not match {network.value} {mode.value} ({chain_id})"
            )
        return self.sign_transaction(tx, chain_id=chain_id)

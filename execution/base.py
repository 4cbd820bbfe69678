from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from networks import NetworkId


@dataclass(frozen=True)
class InclusionResult:
    included: bool
    error: Optional[str] = None
    block_number: Optional[int] = None


class ContractCaller(ABC):
    """
    Reads view functions and submits state-changing calls.

    Balance-like reads must return base-unit ints, never pre-rounded decimals.
    """

    @abstractmethod
    async def call(self, network: NetworkId, address: str, function_signature: str, args: Sequence[Any] = ()) -> Any:
        raise NotImplementedError

    @abstractmethod
    async def submit(
        self,
        network: NetworkId,
        address: str,
        function_signature: str,
        args: Sequence[Any] = (),
        native_value: int = 0,
    ) -> str:
        """Sign and broadcast; returns the transaction handle (hex hash)."""
        raise NotImplementedError

    @abstractmethod
    async def native_balance(self, network: NetworkId, address: str) -> int:
        raise NotImplementedError

    @abstractmethod
    async def account_address(self) -> str:
        raise NotImplementedError


class HandleWatcher(ABC):
    @abstractmethod
    async def await_inclusion(self, network: NetworkId, handle: str) -> InclusionResult:
        raise NotImplementedError


class TokenMetadataSource(ABC):
    @abstractmethod
    async def decimals_of(self, network: NetworkId, token_address: str) -> int:
        raise NotImplementedError

    @abstractmethod
    async def symbol_of(self, network: NetworkId, token_address: str) -> str:
        raise NotImplementedError

from __future__ import annotations

import asyncio
import os
from functools import lru_cache
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

from web3 import AsyncWeb3, Web3
from web3.exceptions import TimeExhausted
from web3.providers.rpc import AsyncHTTPProvider

from networks import NetworkId, NetworkMode, chain_id_for
from observability import build_log_context, log_event
from signing.base import Signer

from .abi import ERC20_ABI, abi_for_function, function_name
from .base import ContractCaller, HandleWatcher, InclusionResult, TokenMetadataSource

EVM_CTX = build_log_context(tool="evm")

DEFAULT_TOKEN_DECIMALS = 18

# Settings/env key suffix per network; ETHEREUM kept as an alias of ETH.
_ENV_KEYS: Dict[NetworkId, Tuple[str, ...]] = {
    NetworkId.ETH: ("ETH", "ETHEREUM"),
    NetworkId.BSC: ("BSC",),
    NetworkId.BASE: ("BASE",),
}


def _env(name: str) -> Optional[str]:
    v = os.getenv(name)
    if v is None:
        return None
    v = v.strip()
    return v or None


def rpc_url_for(network: NetworkId) -> str:
    """
    Resolve RPC URL for a network.

    Env precedence (network=ETH -> ETH, then ETHEREUM):
    - EVM_RPC_URL_<NET>
    - RPC_URL_<NET>
    """
    for key in _ENV_KEYS[network]:
        url = _env(f"EVM_RPC_URL_{key}") or _env(f"RPC_URL_{key}")
        if url:
            return url
    key = _ENV_KEYS[network][0]
    raise ValueError(f"Missing RPC URL for network '{network.value}'. Set EVM_RPC_URL_{key} (or RPC_URL_{key}).")


@lru_cache(maxsize=8)
def get_web3(network: NetworkId, timeout_sec: float = 10.0) -> AsyncWeb3:
    url = rpc_url_for(network)
    return AsyncWeb3(AsyncHTTPProvider(url, request_kwargs={"timeout": timeout_sec}))


def is_hex_address(s: str) -> bool:
    v = (s or "").strip()
    if not (v.startswith("0x") and len(v) == 42):
        return False
    try:
        int(v[2:], 16)
        return True
    except ValueError:
        return False


def _normalize_arg(value: Any) -> Any:
    if isinstance(value, str) and is_hex_address(value):
        return Web3.to_checksum_address(value)
    if isinstance(value, (list, tuple)):
        return [_normalize_arg(v) for v in value]
    return value


Web3Factory = Callable[[NetworkId], AsyncWeb3]


class Web3ContractCaller(ContractCaller):
    """
    ContractCaller over web3.py: view reads via eth_call, writes built with the
    contract ABI, signed locally by a Signer and broadcast raw.
    """

    def __init__(
        self,
        signer: Signer,
        *,
        mode: NetworkMode = NetworkMode.MAINNET,
        w3_factory: Web3Factory = get_web3,
    ) -> None:
        self._signer = signer
        self._mode = mode
        self._w3_factory = w3_factory

    async def account_address(self) -> str:
        return await asyncio.to_thread(self._signer.get_address)

    def _bound_function(self, network: NetworkId, address: str, function_signature: str, args: Sequence[Any]):
        w3 = self._w3_factory(network)
        contract = w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi_for_function(function_signature))
        fn = contract.get_function_by_name(function_name(function_signature))
        return w3, fn(*[_normalize_arg(a) for a in args])

    async def call(self, network: NetworkId, address: str, function_signature: str, args: Sequence[Any] = ()) -> Any:
        _, bound = self._bound_function(network, address, function_signature, args)
        # getMyVaultedTokens keys on msg.sender
        return await bound.call({"from": Web3.to_checksum_address(await self.account_address())})

    async def submit(
        self,
        network: NetworkId,
        address: str,
        function_signature: str,
        args: Sequence[Any] = (),
        native_value: int = 0,
    ) -> str:
        w3, bound = self._bound_function(network, address, function_signature, args)
        sender = Web3.to_checksum_address(await self.account_address())
        chain_id = chain_id_for(network, self._mode)
        nonce = await w3.eth.get_transaction_count(sender, "pending")
        tx = await bound.build_transaction(
            {"from": sender, "value": int(native_value), "nonce": nonce, "chainId": chain_id}
        )
        # Remote signers block on the owner's confirmation; keep the loop free.
        signed = await asyncio.to_thread(self._signer.sign_for, tx, network, self._mode)
        tx_hash = await w3.eth.send_raw_transaction(signed.raw_transaction)
        handle = Web3.to_hex(tx_hash)
        log_event(
            "tx_broadcast",
            ctx=EVM_CTX,
            data={"network": network, "to": address, "fn": function_name(function_signature), "handle": handle},
        )
        return handle

    async def native_balance(self, network: NetworkId, address: str) -> int:
        w3 = self._w3_factory(network)
        return int(await w3.eth.get_balance(Web3.to_checksum_address(address)))


class Web3HandleWatcher(HandleWatcher):
    """
    Waits for a receipt. Timeouts and reverted receipts are reported as
    `included=False` with an error message; the caller decides what to do.
    """

    def __init__(
        self,
        *,
        timeout_sec: float = 180.0,
        poll_latency_sec: float = 1.0,
        w3_factory: Web3Factory = get_web3,
    ) -> None:
        self._timeout = float(timeout_sec)
        self._poll = float(poll_latency_sec)
        self._w3_factory = w3_factory

    async def await_inclusion(self, network: NetworkId, handle: str) -> InclusionResult:
        w3 = self._w3_factory(network)
        try:
            receipt = await w3.eth.wait_for_transaction_receipt(handle, timeout=self._timeout, poll_latency=self._poll)
        except TimeExhausted:
            return InclusionResult(included=False, error=f"Transaction {handle} not included within {self._timeout:g}s")
        block = receipt.get("blockNumber")
        if int(receipt.get("status", 0)) != 1:
            return InclusionResult(included=False, error=f"Transaction {handle} reverted", block_number=block)
        return InclusionResult(included=True, block_number=block)


class Erc20MetadataSource(TokenMetadataSource):
    """
    Token decimals/symbol read from the token contract.

    On a failed read the documented defaults apply: 18 decimals and a
    shortened address as symbol. Only successful reads are cached.
    """

    def __init__(self, *, default_decimals: int = DEFAULT_TOKEN_DECIMALS, w3_factory: Web3Factory = get_web3) -> None:
        self._default_decimals = int(default_decimals)
        self._w3_factory = w3_factory
        self._decimals: Dict[Tuple[NetworkId, str], int] = {}
        self._symbols: Dict[Tuple[NetworkId, str], str] = {}

    def _contract(self, network: NetworkId, token_address: str):
        w3 = self._w3_factory(network)
        return w3.eth.contract(address=Web3.to_checksum_address(token_address), abi=ERC20_ABI)

    async def decimals_of(self, network: NetworkId, token_address: str) -> int:
        key = (network, token_address.lower())
        if key in self._decimals:
            return self._decimals[key]
        try:
            d = int(await self._contract(network, token_address).functions.decimals().call())
        except Exception as e:
            log_event(
                "token_decimals_fallback",
                ctx=EVM_CTX,
                level="warning",
                data={"network": network, "token": token_address, "error": str(e), "fallback": self._default_decimals},
            )
            return self._default_decimals
        if d < 0 or d > 255:
            raise ValueError(f"Invalid ERC20 decimals() for {token_address}: {d}")
        self._decimals[key] = d
        return d

    async def symbol_of(self, network: NetworkId, token_address: str) -> str:
        key = (network, token_address.lower())
        if key in self._symbols:
            return self._symbols[key]
        try:
            symbol = str(await self._contract(network, token_address).functions.symbol().call())
        except Exception as e:
            fallback = f"{token_address[:6]}...{token_address[-4:]}"
            log_event(
                "token_symbol_fallback",
                ctx=EVM_CTX,
                level="warning",
                data={"network": network, "token": token_address, "error": str(e), "fallback": fallback},
            )
            return fallback
        self._symbols[key] = symbol
        return symbol

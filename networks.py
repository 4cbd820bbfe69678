from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict

NATIVE_TOKEN_ADDRESS = "0x0000000000000000000000000000000000000000"


class NetworkId(Enum):
    """Supported vault networks."""

    ETH = "ETH"
    BSC = "BSC"
    BASE = "BASE"

    @classmethod
    def parse(cls, value: "str | int | NetworkId") -> "NetworkId":
        """
        Resolve user input (name, alias or chain id) to a NetworkId.

        Raises ValueError for anything outside the supported set.
        """
        if isinstance(value, NetworkId):
            return value
        if isinstance(value, bool):
            raise ValueError(f"Unsupported network: {value!r}")
        if isinstance(value, int):
            return network_for_chain_id(value)
        key = (value or "").strip().lower()
        if key in _ALIASES:
            return _ALIASES[key]
        if key.isdigit():
            return network_for_chain_id(int(key))
        raise ValueError(f"Unsupported network: {value!r}")


class NetworkMode(Enum):
    MAINNET = "mainnet"
    TESTNET = "testnet"


@dataclass(frozen=True)
class NetworkProfile:
    network: NetworkId
    name: str
    mainnet_chain_id: int
    testnet_chain_id: int
    native_symbol: str
    native_decimals: int
    explorer_url: str
    settle_delay_ms: int

    def chain_id(self, mode: NetworkMode) -> int:
        return self.mainnet_chain_id if mode is NetworkMode.MAINNET else self.testnet_chain_id


# Wait after confirmation before dependent reads (balances, indexers) are trusted.
SETTLE_DELAY_MS: Dict[NetworkId, int] = {
    NetworkId.ETH: 12_000,
    NetworkId.BSC: 8_000,
    NetworkId.BASE: 2_000,
}

PROFILES: Dict[NetworkId, NetworkProfile] = {
    NetworkId.ETH: NetworkProfile(
        network=NetworkId.ETH,
        name="Ethereum",
        mainnet_chain_id=1,
        testnet_chain_id=11155111,
        native_symbol="ETH",
        native_decimals=18,
        explorer_url="https://etherscan.io",
        settle_delay_ms=SETTLE_DELAY_MS[NetworkId.ETH],
    ),
    NetworkId.BSC: NetworkProfile(
        network=NetworkId.BSC,
        name="Binance Smart Chain",
        mainnet_chain_id=56,
        testnet_chain_id=97,
        native_symbol="BNB",
        native_decimals=18,
        explorer_url="https://bscscan.com",
        settle_delay_ms=SETTLE_DELAY_MS[NetworkId.BSC],
    ),
    NetworkId.BASE: NetworkProfile(
        network=NetworkId.BASE,
        name="Base",
        mainnet_chain_id=8453,
        testnet_chain_id=84532,
        native_symbol="ETH",
        native_decimals=18,
        explorer_url="https://basescan.org",
        settle_delay_ms=SETTLE_DELAY_MS[NetworkId.BASE],
    ),
}

_ALIASES: Dict[str, NetworkId] = {
    "eth": NetworkId.ETH,
    "ethereum": NetworkId.ETH,
    "mainnet": NetworkId.ETH,
    "sepolia": NetworkId.ETH,
    "bsc": NetworkId.BSC,
    "bnb": NetworkId.BSC,
    "binance": NetworkId.BSC,
    "base": NetworkId.BASE,
}


def settle_delay_ms(network: NetworkId) -> int:
    return SETTLE_DELAY_MS[network]


def profile_for(network: NetworkId) -> NetworkProfile:
    return PROFILES[network]


def chain_id_for(network: NetworkId, mode: NetworkMode = NetworkMode.MAINNET) -> int:
    return PROFILES[network].chain_id(mode)


def network_for_chain_id(chain_id: int) -> NetworkId:
    for profile in PROFILES.values():
        if chain_id in (profile.mainnet_chain_id, profile.testnet_chain_id):
            return profile.network
    raise ValueError(f"Unsupported chain id: {chain_id}")

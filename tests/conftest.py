import os
import sys
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add project root to path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from coordinator import ChainTransactionCoordinator
from execution.base import ContractCaller, HandleWatcher, InclusionResult, TokenMetadataSource
from networks import NetworkId
from observability import Metrics

USER = "0x1111111111111111111111111111111111111111"
VAULT = "0x2222222222222222222222222222222222222222"
TOKEN = "0x3333333333333333333333333333333333333333"
RECIPIENT = "0x4444444444444444444444444444444444444444"


class RecordingSleep:
    """Stand-in for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.calls = []
        self.before_return = None

    async def __call__(self, seconds):
        self.calls.append(seconds)
        if self.before_return is not None:
            self.before_return()


@pytest.fixture
def sleep():
    return RecordingSleep()

@pytest.fixture
def metrics():
    return Metrics()

@pytest.fixture
def coordinator(sleep, metrics):
    return ChainTransactionCoordinator(active_network=NetworkId.ETH, sleep=sleep, metrics=metrics)

@pytest.fixture
def caller():
    c = MagicMock(spec=ContractCaller)
    c.account_address = AsyncMock(return_value=USER)
    c.call = AsyncMock()
    c.submit = AsyncMock(return_value="0xh1")
    c.native_balance = AsyncMock(return_value=10**20)
    return c

@pytest.fixture
def watcher():
    w = MagicMock(spec=HandleWatcher)
    w.await_inclusion = AsyncMock(return_value=InclusionResult(included=True, block_number=1))
    return w

@pytest.fixture
def metadata():
    m = MagicMock(spec=TokenMetadataSource)
    m.decimals_of = AsyncMock(return_value=6)
    m.symbol_of = AsyncMock(return_value="USDC")
    return m

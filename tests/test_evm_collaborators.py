import asyncio
import threading
from unittest.mock import AsyncMock, MagicMock

import pytest
from web3.exceptions import TimeExhausted

from execution.abi import ERC20_ABI, VAULT_ABI, abi_for_function, function_name
from execution.evm import Erc20MetadataSource, Web3ContractCaller, Web3HandleWatcher, rpc_url_for
from networks import NetworkId, NetworkMode

ETH = NetworkId.ETH
USER = "0x1111111111111111111111111111111111111111"
VAULT = "0x2222222222222222222222222222222222222222"
TOKEN = "0x3333333333333333333333333333333333333333"


def _w3():
    w3 = MagicMock()
    w3.eth.get_transaction_count = AsyncMock(return_value=7)
    w3.eth.send_raw_transaction = AsyncMock(return_value=b"\x12" * 32)
    w3.eth.get_balance = AsyncMock(return_value=123)
    w3.eth.wait_for_transaction_receipt = AsyncMock()
    return w3


def _signer():
    signer = MagicMock()
    signer.get_address.return_value = USER
    signer.sign_for.return_value = MagicMock(raw_transaction=b"signed")
    return signer


def test_abi_lookup():
    assert abi_for_function("depositToken(address,uint256)") is VAULT_ABI
    assert abi_for_function("approve") is ERC20_ABI
    assert function_name("getBalance(address,address)") == "getBalance"
    with pytest.raises(ValueError):
        abi_for_function("selfDestruct()")


def test_rpc_url_precedence(monkeypatch):
    for key in ("EVM_RPC_URL_ETH", "RPC_URL_ETH", "EVM_RPC_URL_ETHEREUM", "RPC_URL_ETHEREUM"):
        monkeypatch.delenv(key, raising=False)
    with pytest.raises(ValueError):
        rpc_url_for(ETH)

    monkeypatch.setenv("RPC_URL_ETHEREUM", "https://fallback")
    assert rpc_url_for(ETH) == "https://fallback"
    monkeypatch.setenv("EVM_RPC_URL_ETH", "https://primary")
    assert rpc_url_for(ETH) == "https://primary"


@pytest.mark.asyncio
async def test_submit_builds_signs_and_broadcasts():
    w3 = _w3()
    contract = w3.eth.contract.return_value
    fn = contract.get_function_by_name.return_value
    bound = fn.return_value
    bound.build_transaction = AsyncMock(return_value={"to": VAULT, "data": "0x"})
    signer = _signer()

    caller = Web3ContractCaller(signer, mode=NetworkMode.TESTNET, w3_factory=lambda n: w3)
    handle = await caller.submit(ETH, VAULT, "depositToken(address,uint256)", [TOKEN, 5], native_value=10)

    assert handle == "0x" + "12" * 32
    contract.get_function_by_name.assert_called_once_with("depositToken")
    fn.assert_called_once_with(TOKEN, 5)
    bound.build_transaction.assert_awaited_once_with(
        {"from": USER, "value": 10, "nonce": 7, "chainId": 11155111}
    )
    signer.sign_for.assert_called_once_with({"to": VAULT, "data": "0x"}, ETH, NetworkMode.TESTNET)
    w3.eth.send_raw_transaction.assert_awaited_once_with(b"signed")


@pytest.mark.asyncio
async def test_call_and_native_balance():
    w3 = _w3()
    bound = w3.eth.contract.return_value.get_function_by_name.return_value.return_value
    bound.call = AsyncMock(return_value=42)

    caller = Web3ContractCaller(_signer(), w3_factory=lambda n: w3)
    assert await caller.call(ETH, VAULT, "getCurrentFeeInWei()") == 42
    bound.call.assert_awaited_once_with({"from": USER})
    assert await caller.native_balance(ETH, USER) == 123


@pytest.mark.asyncio
async def test_watcher_outcomes():
    w3 = _w3()
    watcher = Web3HandleWatcher(timeout_sec=5, poll_latency_sec=0.1, w3_factory=lambda n: w3)

    w3.eth.wait_for_transaction_receipt.return_value = {"status": 1, "blockNumber": 9}
    ok = await watcher.await_inclusion(ETH, "0xh1")
    assert ok.included is True
    assert ok.block_number == 9

    w3.eth.wait_for_transaction_receipt.return_value = {"status": 0, "blockNumber": 10}
    reverted = await watcher.await_inclusion(ETH, "0xh1")
    assert reverted.included is False
    assert "reverted" in reverted.error

    w3.eth.wait_for_transaction_receipt.side_effect = TimeExhausted("slow")
    timed_out = await watcher.await_inclusion(ETH, "0xh1")
    assert timed_out.included is False
    assert "not included" in timed_out.error


@pytest.mark.asyncio
async def test_metadata_reads_and_caches():
    w3 = _w3()
    functions = w3.eth.contract.return_value.functions
    functions.decimals.return_value.call = AsyncMock(return_value=6)
    functions.symbol.return_value.call = AsyncMock(return_value="USDC")

    source = Erc20MetadataSource(w3_factory=lambda n: w3)
    assert await source.decimals_of(ETH, TOKEN) == 6
    assert await source.decimals_of(ETH, TOKEN) == 6
    assert await source.symbol_of(ETH, TOKEN) == "USDC"
    functions.decimals.return_value.call.assert_awaited_once()


@pytest.mark.asyncio
async def test_metadata_falls_back_without_caching():
    w3 = _w3()
    functions = w3.eth.contract.return_value.functions
    functions.decimals.return_value.call = AsyncMock(side_effect=RuntimeError("not a token"))
    functions.symbol.return_value.call = AsyncMock(side_effect=RuntimeError("not a token"))

    source = Erc20MetadataSource(w3_factory=lambda n: w3)
    assert await source.decimals_of(ETH, TOKEN) == 18
    assert await source.symbol_of(ETH, TOKEN) == "0x3333...3333"

    functions.decimals.return_value.call = AsyncMock(return_value=8)
    assert await source.decimals_of(ETH, TOKEN) == 8


@pytest.mark.asyncio
async def test_metadata_rejects_out_of_range_decimals():
    w3 = _w3()
    w3.eth.contract.return_value.functions.decimals.return_value.call = AsyncMock(return_value=300)
    with pytest.raises(ValueError):
        await Erc20MetadataSource(w3_factory=lambda n: w3).decimals_of(ETH, TOKEN)


@pytest.mark.asyncio
async def test_account_address_comes_from_signer():
    caller = Web3ContractCaller(_signer(), w3_factory=lambda n: _w3())
    assert await caller.account_address() == USER


@pytest.mark.asyncio
async def test_network_switch_lands_while_signer_waits_for_owner(coordinator):
    w3 = _w3()
    bound = w3.eth.contract.return_value.get_function_by_name.return_value.return_value
    bound.build_transaction = AsyncMock(return_value={"to": VAULT, "data": "0x"})
    owner_confirmed = threading.Event()

    def wait_for_owner(tx, network, mode):
        assert owner_confirmed.wait(timeout=5)
        return MagicMock(raw_transaction=b"signed")

    signer = _signer()
    signer.sign_for.side_effect = wait_for_owner
    caller = Web3ContractCaller(signer, w3_factory=lambda n: w3)

    submit = asyncio.create_task(caller.submit(ETH, VAULT, "withdrawETH(uint256)", [1], native_value=10))
    while signer.sign_for.call_count == 0:
        await asyncio.sleep(0.01)

    coordinator.switch_network(NetworkId.BSC)
    assert coordinator.active_network is NetworkId.BSC
    assert not submit.done()

    owner_confirmed.set()
    assert await submit == "0x" + "12" * 32

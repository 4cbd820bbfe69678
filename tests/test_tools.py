import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.core.container import global_container
from app.tools.vault import (
    convert_from_base_units,
    convert_to_base_units,
    deposit,
    get_balances,
    get_transaction_state,
    switch_network,
    transfer,
    wait_for_pending_operations,
    withdraw,
)
from coordinator import TransactionState
from errors import InsufficientBalance
from networks import NetworkId
from vault_handler import OperationResult

TOKEN = "0x3333333333333333333333333333333333333333"
TOKEN2 = "0x5555555555555555555555555555555555555555"
RECIPIENT = "0x4444444444444444444444444444444444444444"


@pytest.fixture(autouse=True)
def fresh_container():
    coordinator = global_container.coordinator
    coordinator.switch_network(NetworkId.ETH)
    coordinator.reset_all()
    handler = MagicMock()
    global_container._vault_handler = handler
    yield handler
    global_container._vault_handler = None
    coordinator.switch_network(NetworkId.ETH)
    coordinator.reset_all()


def _result(operation="deposit_native"):
    return OperationResult(
        network=NetworkId.ETH,
        operation=operation,
        handle="0xh1",
        state=TransactionState(network=NetworkId.ETH),
    )


def test_convert_to_base_units():
    res = json.loads(convert_to_base_units("100.5", 6))
    assert res["ok"] is True
    assert res["data"]["base_units"] == "100500000"

    err = json.loads(convert_to_base_units("1.0000001", 6))
    assert err["ok"] is False
    assert err["error"]["code"] == "precision_loss"


def test_convert_from_base_units():
    res = json.loads(convert_from_base_units("1", 18))
    assert res["data"]["amount"] == "0.000000000000000001"
    assert "display" not in res["data"]

    res = json.loads(convert_from_base_units("123456789", 6, max_fraction_digits=2))
    assert res["data"]["amount"] == "123.456789"
    assert res["data"]["display"] == "123.45"

    err = json.loads(convert_from_base_units("1", 300))
    assert err["error"]["code"] == "invalid_decimals"


def test_get_transaction_state():
    res = json.loads(get_transaction_state())
    assert res["ok"] is True
    assert res["data"]["active_network"] == "ETH"
    assert res["data"]["state"]["phase"] == "idle"
    assert res["data"]["pending_approval"] is None
    assert res["data"]["settle_delay_ms"] == global_container.coordinator.settle_delay_ms(NetworkId.ETH)

    err = json.loads(get_transaction_state("polygon"))
    assert err["error"]["code"] == "invalid_network"


def test_switch_network():
    res = json.loads(switch_network("bsc"))
    assert res["data"] == {"previous": "ETH", "active_network": "BSC"}
    assert global_container.coordinator.active_network is NetworkId.BSC

    err = json.loads(switch_network("solana"))
    assert err["ok"] is False


@pytest.mark.asyncio
async def test_deposit_routes_native_and_token(fresh_container):
    fresh_container.deposit_native = AsyncMock(return_value=_result())
    fresh_container.deposit_token = AsyncMock(return_value=_result("deposit_token"))

    res = json.loads(await deposit("1.5"))
    assert res["ok"] is True
    assert res["data"]["handle"] == "0xh1"
    fresh_container.deposit_native.assert_awaited_once_with(NetworkId.ETH, "1.5", wait=True)

    await deposit("2", token=TOKEN, wait=False)
    fresh_container.deposit_token.assert_awaited_once_with(NetworkId.ETH, TOKEN, "2", wait=False)


@pytest.mark.asyncio
async def test_withdraw_and_transfer(fresh_container):
    fresh_container.withdraw_token = AsyncMock(return_value=_result("withdraw_token"))
    fresh_container.transfer_native = AsyncMock(return_value=_result("transfer_native"))

    await withdraw("3", token=TOKEN)
    fresh_container.withdraw_token.assert_awaited_once_with(NetworkId.ETH, TOKEN, "3", wait=True)

    await transfer(RECIPIENT, "0.1")
    fresh_container.transfer_native.assert_awaited_once_with(NetworkId.ETH, RECIPIENT, "0.1", wait=True)


@pytest.mark.asyncio
async def test_app_errors_use_their_code(fresh_container):
    fresh_container.deposit_native = AsyncMock(side_effect=InsufficientBalance("short", {"required": "10"}))
    res = json.loads(await deposit("1"))
    assert res["ok"] is False
    assert res["error"] == {"code": "insufficient_balance", "message": "short", "data": {"required": "10"}}


@pytest.mark.asyncio
async def test_get_balances_parses_token_list(fresh_container):
    fresh_container.balances_for_display = AsyncMock(return_value=[])
    res = json.loads(await get_balances("base", f"{TOKEN}, {TOKEN2}"))
    assert res["data"] == {"network": "BASE", "balances": []}
    fresh_container.balances_for_display.assert_awaited_once_with(NetworkId.BASE, [TOKEN, TOKEN2])


@pytest.mark.asyncio
async def test_wait_for_pending_operations(fresh_container):
    fresh_container.pending_tasks = 2
    fresh_container.drain = AsyncMock()

    res = json.loads(await wait_for_pending_operations())

    assert res["ok"] is True
    assert res["data"]["awaited"] == 2
    assert res["data"]["state"]["network"] == "ETH"
    fresh_container.drain.assert_awaited_once()

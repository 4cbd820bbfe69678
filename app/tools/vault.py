import json
from typing import Any, Dict, List, Optional

from fastmcp import FastMCP

from amounts import format_for_display, to_base_units, to_decimal_string
from app.core.container import global_container
from errors import AppError
from networks import NetworkId


def _json_ok(data: Dict[str, Any] | None = None) -> str:
    payload = {"ok": True, "data": data or {}}
    return json.dumps(payload, indent=2, sort_keys=True)

def _json_err(code: str, message: str, data: Dict[str, Any] | None = None) -> str:
    payload = {"ok": False, "error": {"code": code, "message": message, "data": data or {}}}
    return json.dumps(payload, indent=2, sort_keys=True)

def _network(network: str) -> NetworkId:
    if not (network or "").strip():
        return global_container.coordinator.active_network
    return NetworkId.parse(network)

def _tokens(tokens: str) -> Optional[List[str]]:
    items = [t.strip() for t in (tokens or "").split(",") if t.strip()]
    return items or None

# Module-level functions for testing

def get_transaction_state(network: str = "") -> str:
    """Get the transaction phase of a network (default: the active network)."""
    try:
        net = _network(network)
    except ValueError as e:
        return _json_err("invalid_network", str(e))
    coordinator = global_container.coordinator
    approval = coordinator.pending_approval(net)
    return _json_ok({
        "active_network": coordinator.active_network.value,
        "state": coordinator.get_state(net).to_dict(),
        "pending_approval": {
            "token": approval.token_address,
            "symbol": approval.token_symbol,
            "amount_base_units": str(approval.amount_base_units),
            "approval_handle": approval.approval_handle,
        } if approval else None,
        "settle_delay_ms": coordinator.settle_delay_ms(net),
    })

def convert_to_base_units(amount: str, decimals: int) -> str:
    """Convert a decimal amount (e.g. "100.5") into integer base units."""
    try:
        units = to_base_units(amount, decimals)
    except AppError as e:
        return _json_err(e.code, e.message, e.data)
    return _json_ok({"amount": amount, "decimals": decimals, "base_units": str(units)})

def convert_from_base_units(base_units: str, decimals: int, max_fraction_digits: int = -1) -> str:
    """
    Render integer base units as an exact decimal string.

    max_fraction_digits >= 0 adds a rounded-down `display` field.
    """
    try:
        exact = to_decimal_string(base_units, decimals)
        data: Dict[str, Any] = {"base_units": base_units, "decimals": decimals, "amount": exact}
        if max_fraction_digits >= 0:
            data["display"] = format_for_display(exact, decimals, max_fraction_digits=max_fraction_digits)
    except AppError as e:
        return _json_err(e.code, e.message, e.data)
    return _json_ok(data)

async def get_balances(network: str = "", tokens: str = "") -> str:
    """
    Get wallet and vault balances.

    tokens: comma-separated token addresses; empty lists everything held in the vault.
    """
    try:
        net = _network(network)
        rows = await global_container.vault_handler.balances_for_display(net, _tokens(tokens))
        return _json_ok({"network": net.value, "balances": rows})
    except AppError as e:
        return _json_err(e.code, e.message, e.data)
    except Exception as e:
        return _json_err("balance_error", str(e))

async def deposit(amount: str, token: str = "", network: str = "", wait: bool = True) -> str:
    """Deposit native currency (no token) or an ERC20 token into the vault."""
    try:
        net = _network(network)
        handler = global_container.vault_handler
        if token:
            res = await handler.deposit_token(net, token, amount, wait=wait)
        else:
            res = await handler.deposit_native(net, amount, wait=wait)
        return _json_ok(res.to_dict())
    except AppError as e:
        return _json_err(e.code, e.message, e.data)
    except Exception as e:
        return _json_err("deposit_error", str(e))

async def withdraw(amount: str, token: str = "", network: str = "", wait: bool = True) -> str:
    """Withdraw native currency (no token) or an ERC20 token from the vault."""
    try:
        net = _network(network)
        handler = global_container.vault_handler
        if token:
            res = await handler.withdraw_token(net, token, amount, wait=wait)
        else:
            res = await handler.withdraw_native(net, amount, wait=wait)
        return _json_ok(res.to_dict())
    except AppError as e:
        return _json_err(e.code, e.message, e.data)
    except Exception as e:
        return _json_err("withdraw_error", str(e))

async def transfer(to_address: str, amount: str, token: str = "", network: str = "", wait: bool = True) -> str:
    """Move vaulted funds to another vault account."""
    try:
        net = _network(network)
        handler = global_container.vault_handler
        if token:
            res = await handler.transfer_token(net, token, to_address, amount, wait=wait)
        else:
            res = await handler.transfer_native(net, to_address, amount, wait=wait)
        return _json_ok(res.to_dict())
    except AppError as e:
        return _json_err(e.code, e.message, e.data)
    except Exception as e:
        return _json_err("transfer_error", str(e))

async def wait_for_pending_operations(network: str = "") -> str:
    """Wait for operations started with wait=false to settle, then report the network's state."""
    try:
        net = _network(network)
        handler = global_container.vault_handler
        awaited = handler.pending_tasks
        await handler.drain()
    except AppError as e:
        return _json_err(e.code, e.message, e.data)
    except Exception as e:
        return _json_err("pending_operations_error", str(e))
    return _json_ok({
        "awaited": awaited,
        "state": global_container.coordinator.get_state(net).to_dict(),
    })

def switch_network(network: str) -> str:
    """Switch the active network. Pending work on both networks is discarded."""
    try:
        net = NetworkId.parse(network)
    except ValueError as e:
        return _json_err("invalid_network", str(e))
    previous = global_container.coordinator.switch_network(net)
    return _json_ok({"previous": previous.value, "active_network": net.value})


def register_vault_tools(mcp: FastMCP):
    mcp.tool()(get_transaction_state)
    mcp.tool()(convert_to_base_units)
    mcp.tool()(convert_from_base_units)
    mcp.tool()(get_balances)
    mcp.tool()(deposit)
    mcp.tool()(withdraw)
    mcp.tool()(transfer)
    mcp.tool()(switch_network)
    mcp.tool()(wait_for_pending_operations)

from __future__ import annotations

from typing import Any, Dict, List


def _fn(
    name: str,
    inputs: List[Dict[str, str]],
    outputs: List[Dict[str, str]] | None = None,
    *,
    mutability: str = "nonpayable",
) -> Dict[str, Any]:
    return {
        "inputs": inputs,
        "name": name,
        "outputs": outputs or [],
        "stateMutability": mutability,
        "type": "function",
    }


def _arg(name: str, type_: str) -> Dict[str, str]:
    return {"internalType": type_, "name": name, "type": type_}


VAULT_ABI: List[Dict[str, Any]] = [
    _fn("depositETH", [], mutability="payable"),
    _fn("withdrawETH", [_arg("amount", "uint256")], mutability="payable"),
    _fn("transferInternalETH", [_arg("to", "address"), _arg("amount", "uint256")], mutability="payable"),
    _fn("depositToken", [_arg("token", "address"), _arg("amount", "uint256")], mutability="payable"),
    _fn("withdrawToken", [_arg("token", "address"), _arg("amount", "uint256")], mutability="payable"),
    _fn(
        "transferInternalToken",
        [_arg("token", "address"), _arg("to", "address"), _arg("amount", "uint256")],
        mutability="payable",
    ),
    _fn("depositMultipleTokens", [_arg("tokens", "address[]"), _arg("amounts", "uint256[]")], mutability="payable"),
    _fn("withdrawMultipleTokens", [_arg("tokens", "address[]"), _arg("amounts", "uint256[]")], mutability="payable"),
    _fn(
        "transferMultipleTokensInternal",
        [_arg("tokens", "address[]"), _arg("to", "address"), _arg("amounts", "uint256[]")],
        mutability="payable",
    ),
    _fn("getBalance", [_arg("user", "address"), _arg("token", "address")], [_arg("", "uint256")], mutability="view"),
    _fn("getCurrentFeeInWei", [], [_arg("", "uint256")], mutability="view"),
    _fn("getMyVaultedTokens", [], [_arg("", "address[]"), _arg("", "uint256[]")], mutability="view"),
]

ERC20_ABI: List[Dict[str, Any]] = [
    _fn("decimals", [], [_arg("", "uint8")], mutability="view"),
    _fn("symbol", [], [_arg("", "string")], mutability="view"),
    _fn("balanceOf", [_arg("account", "address")], [_arg("", "uint256")], mutability="view"),
    _fn("allowance", [_arg("owner", "address"), _arg("spender", "address")], [_arg("", "uint256")], mutability="view"),
    _fn("approve", [_arg("spender", "address"), _arg("amount", "uint256")], [_arg("", "bool")]),
]


def abi_for_function(function_signature: str) -> List[Dict[str, Any]]:
    """
    Pick the ABI that declares `function_signature` ("approve" or "approve(address,uint256)").
    """
    name = function_signature.split("(", 1)[0].strip()
    for abi in (VAULT_ABI, ERC20_ABI):
        if any(entry["name"] == name for entry in abi):
            return abi
    raise ValueError(f"Unknown contract function: {function_signature}")


def function_name(function_signature: str) -> str:
    return function_signature.split("(", 1)[0].strip()

"""
Vault operation flows.

Every write follows the same path:

    amount conversion -> begin_simulation -> pre-flight reads -> submit
    -> begin_submission -> await inclusion -> on_included -> on_confirmed

Amount and recipient errors are raised before the coordinator is touched.
Pre-flight and submission failures are recorded on the network's state via
`on_failed` and re-raised to the caller as AppError subclasses.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, NoReturn, Optional, Sequence, Set, Tuple

from web3 import Web3

from amounts import AmountLike, compact_balance, to_base_units, to_decimal_string
from coordinator import ChainTransactionCoordinator, PendingApproval, TransactionState
from errors import (
    AppError,
    InsufficientAllowance,
    InsufficientBalance,
    InvalidAmount,
    SubmissionFailed,
    TransitionError,
    classify_exception,
)
from execution.base import ContractCaller, HandleWatcher, TokenMetadataSource
from networks import NATIVE_TOKEN_ADDRESS, NetworkId, profile_for
from observability import build_log_context, log_event

HANDLER_CTX = build_log_context(tool="vault_handler")


@dataclass(frozen=True)
class OperationResult:
    network: NetworkId
    operation: str
    handle: Optional[str]
    state: TransactionState
    tracked: bool = True
    approval_required: bool = False
    follow_up: Optional["OperationResult"] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "network": self.network.value,
            "operation": self.operation,
            "handle": self.handle,
            "tracked": self.tracked,
            "approval_required": self.approval_required,
            "state": self.state.to_dict(),
            "follow_up": self.follow_up.to_dict() if self.follow_up else None,
        }


class VaultHandler:
    """
    Drives vault reads and writes for the wallet behind `caller`.

    The coordinator is the only place phase state lives; this class never
    keeps its own copy of it.
    """

    def __init__(
        self,
        coordinator: ChainTransactionCoordinator,
        caller: ContractCaller,
        watcher: HandleWatcher,
        metadata: TokenMetadataSource,
        *,
        vault_addresses: Mapping[NetworkId, str],
        auto_approve: bool = True,
    ) -> None:
        self._coordinator = coordinator
        self._caller = caller
        self._watcher = watcher
        self._metadata = metadata
        self._vaults = dict(vault_addresses)
        self._auto_approve = auto_approve
        self._tasks: Set[asyncio.Task] = set()
        self._chained_results: Dict[str, Optional[OperationResult]] = {}
        coordinator.set_approval_handler(self._deposit_after_approval)

    @property
    def coordinator(self) -> ChainTransactionCoordinator:
        return self._coordinator

    def vault_address(self, network: NetworkId) -> str:
        address = self._vaults.get(network)
        if not address:
            raise ValueError(f"No vault contract configured for {network.value}. Set VAULT_CONTRACT_{network.value}.")
        return address

    # ------------------------------------------------------------------ reads

    async def _user(self) -> str:
        return await self._caller.account_address()

    async def wallet_balance(self, network: NetworkId) -> int:
        return int(await self._caller.native_balance(network, await self._user()))

    async def vault_balance(self, network: NetworkId, token: str | None = None) -> int:
        raw = await self._caller.call(
            network,
            self.vault_address(network),
            "getBalance(address,address)",
            [await self._user(), token or NATIVE_TOKEN_ADDRESS],
        )
        return int(raw)

    async def token_wallet_balance(self, network: NetworkId, token: str) -> int:
        return int(await self._caller.call(network, token, "balanceOf(address)", [await self._user()]))

    async def token_allowance(self, network: NetworkId, token: str) -> int:
        raw = await self._caller.call(
            network, token, "allowance(address,address)", [await self._user(), self.vault_address(network)]
        )
        return int(raw)

    async def current_fee(self, network: NetworkId) -> int:
        return int(await self._caller.call(network, self.vault_address(network), "getCurrentFeeInWei()"))

    async def vaulted_tokens(self, network: NetworkId) -> List[Tuple[str, int]]:
        """(token address, base units) pairs held in the vault, native excluded."""
        tokens, balances = await self._caller.call(network, self.vault_address(network), "getMyVaultedTokens()")
        return [
            (str(t), int(b))
            for t, b in zip(tokens, balances)
            if str(t).lower() != NATIVE_TOKEN_ADDRESS
        ]

    async def balances_for_display(self, network: NetworkId, tokens: Sequence[str] | None = None) -> List[Dict[str, Any]]:
        """
        Wallet and vault balances rendered with the codec.

        Exact strings come from `to_decimal_string`; `*_compact` fields are
        display-only summaries.
        """
        profile = profile_for(network)
        native_wallet = await self.wallet_balance(network)
        native_vault = await self.vault_balance(network)
        rows = [
            self._balance_row(
                NATIVE_TOKEN_ADDRESS, profile.native_symbol, profile.native_decimals, native_wallet, native_vault
            )
        ]

        if tokens is None:
            held = await self.vaulted_tokens(network)
            token_list = [t for t, _ in held]
        else:
            token_list = list(tokens)

        for token in token_list:
            decimals = await self._metadata.decimals_of(network, token)
            symbol = await self._metadata.symbol_of(network, token)
            wallet = await self.token_wallet_balance(network, token)
            vault = await self.vault_balance(network, token)
            rows.append(self._balance_row(token, symbol, decimals, wallet, vault))
        return rows

    @staticmethod
    def _balance_row(token: str, symbol: str, decimals: int, wallet: int, vault: int) -> Dict[str, Any]:
        return {
            "token": token,
            "symbol": symbol,
            "decimals": decimals,
            "wallet_base_units": str(wallet),
            "vault_base_units": str(vault),
            "wallet": to_decimal_string(wallet, decimals),
            "vault": to_decimal_string(vault, decimals),
            "wallet_compact": compact_balance(wallet, decimals),
            "vault_compact": compact_balance(vault, decimals),
        }

    # ------------------------------------------------------------ native writes

    async def deposit_native(self, network: NetworkId, amount: AmountLike, *, wait: bool = True) -> OperationResult:
        units = self._native_units(network, amount)
        vault = self.vault_address(network)
        fee, generation = await self._simulate(
            network, "deposit_native", lambda f: self._require_wallet(network, units + f, "native")
        )
        return await self._submit(
            network,
            "deposit_native",
            lambda: self._caller.submit(network, vault, "depositETH()", [], units + fee),
            generation=generation,
            wait=wait,
        )

    async def withdraw_native(self, network: NetworkId, amount: AmountLike, *, wait: bool = True) -> OperationResult:
        units = self._native_units(network, amount)
        vault = self.vault_address(network)

        async def checks(fee: int) -> None:
            await self._require_vault(network, None, units)
            await self._require_wallet(network, fee, "native fee")

        fee, generation = await self._simulate(network, "withdraw_native", checks)
        return await self._submit(
            network,
            "withdraw_native",
            lambda: self._caller.submit(network, vault, "withdrawETH(uint256)", [units], fee),
            generation=generation,
            wait=wait,
        )

    async def transfer_native(
        self, network: NetworkId, to: str, amount: AmountLike, *, wait: bool = True
    ) -> OperationResult:
        _check_recipient(to)
        units = self._native_units(network, amount)
        vault = self.vault_address(network)

        async def checks(fee: int) -> None:
            await self._require_vault(network, None, units)
            await self._require_wallet(network, fee, "native fee")

        fee, generation = await self._simulate(network, "transfer_native", checks)
        return await self._submit(
            network,
            "transfer_native",
            lambda: self._caller.submit(network, vault, "transferInternalETH(address,uint256)", [to, units], fee),
            generation=generation,
            wait=wait,
        )

    # ------------------------------------------------------------ token writes

    async def deposit_token(
        self, network: NetworkId, token: str, amount: AmountLike, *, wait: bool = True
    ) -> OperationResult:
        """
        Deposit an ERC20 token.

        When the vault's allowance is short, an exact-amount approval is sent
        instead and the deposit is chained to that approval's confirmation.
        """
        units = await self._token_units(network, token, amount)
        vault = self.vault_address(network)
        symbol = await self._metadata.symbol_of(network, token)
        approval_needed = False

        async def checks(fee: int) -> None:
            nonlocal approval_needed
            await self._require_token_wallet(network, token, units, symbol)
            await self._require_wallet(network, fee, "native fee")
            allowance = await self.token_allowance(network, token)
            if allowance >= units:
                return
            if not self._auto_approve:
                raise InsufficientAllowance(
                    f"Allowance for {symbol} is {allowance}, {units} required",
                    {"token": token, "allowance": str(allowance), "required": str(units)},
                )
            approval_needed = True

        fee, generation = await self._simulate(network, "deposit_token", checks)
        if not approval_needed:
            return await self._submit(
                network,
                "deposit_token",
                lambda: self._caller.submit(network, vault, "depositToken(address,uint256)", [token, units], fee),
                generation=generation,
                wait=wait,
            )

        log_event(
            "approval_required",
            ctx=HANDLER_CTX,
            data={"network": network, "token": token, "symbol": symbol, "amount": str(units)},
        )
        return await self._submit(
            network,
            "approve",
            lambda: self._caller.submit(network, token, "approve(address,uint256)", [vault, units], 0),
            approval={"token_address": token, "amount_base_units": units, "token_symbol": symbol},
            generation=generation,
            wait=wait,
        )

    async def withdraw_token(
        self, network: NetworkId, token: str, amount: AmountLike, *, wait: bool = True
    ) -> OperationResult:
        units = await self._token_units(network, token, amount)
        vault = self.vault_address(network)

        async def checks(fee: int) -> None:
            await self._require_vault(network, token, units)
            await self._require_wallet(network, fee, "native fee")

        fee, generation = await self._simulate(network, "withdraw_token", checks)
        return await self._submit(
            network,
            "withdraw_token",
            lambda: self._caller.submit(network, vault, "withdrawToken(address,uint256)", [token, units], fee),
            generation=generation,
            wait=wait,
        )

    async def transfer_token(
        self, network: NetworkId, token: str, to: str, amount: AmountLike, *, wait: bool = True
    ) -> OperationResult:
        _check_recipient(to)
        units = await self._token_units(network, token, amount)
        vault = self.vault_address(network)

        async def checks(fee: int) -> None:
            await self._require_vault(network, token, units)
            await self._require_wallet(network, fee, "native fee")

        fee, generation = await self._simulate(network, "transfer_token", checks)
        return await self._submit(
            network,
            "transfer_token",
            lambda: self._caller.submit(
                network, vault, "transferInternalToken(address,address,uint256)", [token, to, units], fee
            ),
            generation=generation,
            wait=wait,
        )

    # ------------------------------------------------------------ multi-token writes

    async def deposit_multiple_tokens(
        self, network: NetworkId, tokens: Sequence[str], amounts: Sequence[AmountLike], *, wait: bool = True
    ) -> OperationResult:
        """Batch deposit. Every allowance must already cover its amount."""
        units = await self._batch_units(network, tokens, amounts)
        vault = self.vault_address(network)

        async def checks(fee: int) -> None:
            for token, amount in zip(tokens, units):
                await self._require_token_wallet(network, token, amount, token)
                allowance = await self.token_allowance(network, token)
                if allowance < amount:
                    raise InsufficientAllowance(
                        f"Allowance for {token} is {allowance}, {amount} required",
                        {"token": token, "allowance": str(allowance), "required": str(amount)},
                    )
            await self._require_wallet(network, fee, "native fee")

        fee, generation = await self._simulate(network, "deposit_multiple_tokens", checks)
        return await self._submit(
            network,
            "deposit_multiple_tokens",
            lambda: self._caller.submit(
                network, vault, "depositMultipleTokens(address[],uint256[])", [list(tokens), units], fee
            ),
            generation=generation,
            wait=wait,
        )

    async def withdraw_multiple_tokens(
        self, network: NetworkId, tokens: Sequence[str], amounts: Sequence[AmountLike], *, wait: bool = True
    ) -> OperationResult:
        units = await self._batch_units(network, tokens, amounts)
        vault = self.vault_address(network)

        async def checks(fee: int) -> None:
            for token, amount in zip(tokens, units):
                await self._require_vault(network, token, amount)
            await self._require_wallet(network, fee, "native fee")

        fee, generation = await self._simulate(network, "withdraw_multiple_tokens", checks)
        return await self._submit(
            network,
            "withdraw_multiple_tokens",
            lambda: self._caller.submit(
                network, vault, "withdrawMultipleTokens(address[],uint256[])", [list(tokens), units], fee
            ),
            generation=generation,
            wait=wait,
        )

    async def transfer_multiple_tokens(
        self,
        network: NetworkId,
        tokens: Sequence[str],
        to: str,
        amounts: Sequence[AmountLike],
        *,
        wait: bool = True,
    ) -> OperationResult:
        _check_recipient(to)
        units = await self._batch_units(network, tokens, amounts)
        vault = self.vault_address(network)

        async def checks(fee: int) -> None:
            for token, amount in zip(tokens, units):
                await self._require_vault(network, token, amount)
            await self._require_wallet(network, fee, "native fee")

        fee, generation = await self._simulate(network, "transfer_multiple_tokens", checks)
        return await self._submit(
            network,
            "transfer_multiple_tokens",
            lambda: self._caller.submit(
                network,
                vault,
                "transferMultipleTokensInternal(address[],address,uint256[])",
                [list(tokens), to, units],
                fee,
            ),
            generation=generation,
            wait=wait,
        )

    # ------------------------------------------------------------ tracking

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every background tracking task started with wait=False."""
        while self._tasks:
            pending = list(self._tasks)
            results = await asyncio.gather(*pending, return_exceptions=True)
            for task, result in zip(pending, results):
                self._tasks.discard(task)
                if isinstance(result, Exception):
                    log_event("tracking_task_error", ctx=HANDLER_CTX, level="error", data={"error": str(result)})

    async def _simulate(
        self, network: NetworkId, operation: str, checks: Callable[[int], Awaitable[None]]
    ) -> Tuple[int, int]:
        """Enter SIMULATING, read the fee and run pre-flight checks; returns (fee, generation)."""
        generation = self._coordinator.begin_simulation(network, operation)
        try:
            fee = await self.current_fee(network)
            await checks(fee)
        except Exception as e:
            self._fail_unsubmitted(network, e, generation)
        return fee, generation

    async def _submit(
        self,
        network: NetworkId,
        operation: str,
        send: Callable[[], Awaitable[str]],
        *,
        generation: int,
        approval: Dict[str, Any] | None = None,
        wait: bool,
    ) -> OperationResult:
        try:
            handle = await send()
        except Exception as e:
            self._fail_unsubmitted(network, e, generation)

        try:
            if approval is None:
                self._coordinator.begin_submission(network, handle, operation, generation=generation)
            else:
                self._coordinator.begin_approval(network, handle, generation=generation, **approval)
        except TransitionError as e:
            # Broadcast already happened but the network was reset underneath us.
            log_event(
                "submission_untracked",
                ctx=HANDLER_CTX,
                level="warning",
                data={"network": network, "handle": handle, "operation": operation, "error": e.message},
            )
            return OperationResult(
                network=network,
                operation=operation,
                handle=handle,
                state=self._coordinator.get_state(network),
                tracked=False,
                approval_required=approval is not None,
            )

        if not wait:
            task = asyncio.create_task(self._track(network, handle))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            return OperationResult(
                network=network,
                operation=operation,
                handle=handle,
                state=self._coordinator.get_state(network),
                approval_required=approval is not None,
            )

        if approval is not None:
            self._chained_results[handle] = None
        try:
            await self._track(network, handle)
        finally:
            follow_up = self._chained_results.pop(handle, None)
        return OperationResult(
            network=network,
            operation=operation,
            handle=handle,
            state=self._coordinator.get_state(network),
            approval_required=approval is not None,
            follow_up=follow_up,
        )

    async def _track(self, network: NetworkId, handle: str) -> None:
        try:
            inclusion = await self._watcher.await_inclusion(network, handle)
        except Exception as e:
            self._coordinator.on_failed(network, handle, classify_exception(e))
            return

        if not inclusion.included:
            err = SubmissionFailed(
                inclusion.error or f"Transaction {handle} was not included",
                {"handle": handle, "block_number": inclusion.block_number},
            )
            self._coordinator.on_failed(network, handle, err)
            return

        if self._coordinator.on_included(network, handle):
            await self._coordinator.on_confirmed(network, handle)

    async def _deposit_after_approval(self, network: NetworkId, approval: PendingApproval) -> Optional[OperationResult]:
        vault = self.vault_address(network)
        units = approval.amount_base_units
        try:
            fee, generation = await self._simulate(
                network, "deposit_token", lambda f: self._require_wallet(network, f, "native fee")
            )
            result = await self._submit(
                network,
                "deposit_token",
                lambda: self._caller.submit(
                    network, vault, "depositToken(address,uint256)", [approval.token_address, units], fee
                ),
                generation=generation,
                wait=True,
            )
        except AppError as e:
            # Already recorded as last_error on the network.
            log_event(
                "chained_deposit_failed",
                ctx=HANDLER_CTX,
                level="error",
                data={"network": network, "approval_handle": approval.approval_handle, "error": e.to_dict()},
            )
            return None

        log_event(
            "chained_deposit_finished",
            ctx=HANDLER_CTX,
            data={"network": network, "approval_handle": approval.approval_handle, "result": result.to_dict()},
        )
        # Only a caller still waiting on the approval collects the follow-up.
        if approval.approval_handle in self._chained_results:
            self._chained_results[approval.approval_handle] = result
        return result

    def _fail_unsubmitted(self, network: NetworkId, e: Exception, generation: int) -> NoReturn:
        err = classify_exception(e)
        self._coordinator.on_failed(network, None, err, generation=generation)
        if err is e:
            raise err
        raise err from e

    # ------------------------------------------------------------ pre-flight

    async def _require_wallet(self, network: NetworkId, required: int, label: str) -> None:
        available = await self.wallet_balance(network)
        if available < required:
            raise InsufficientBalance(
                f"Wallet {label} balance {available} is below the required {required}",
                {"network": network.value, "available": str(available), "required": str(required)},
            )

    async def _require_token_wallet(self, network: NetworkId, token: str, required: int, label: str) -> None:
        available = await self.token_wallet_balance(network, token)
        if available < required:
            raise InsufficientBalance(
                f"Wallet {label} balance {available} is below the required {required}",
                {"network": network.value, "token": token, "available": str(available), "required": str(required)},
            )

    async def _require_vault(self, network: NetworkId, token: str | None, required: int) -> None:
        available = await self.vault_balance(network, token)
        if available < required:
            raise InsufficientBalance(
                f"Vault balance {available} is below the required {required}",
                {
                    "network": network.value,
                    "token": token or NATIVE_TOKEN_ADDRESS,
                    "available": str(available),
                    "required": str(required),
                },
            )

    # ------------------------------------------------------------ conversion

    def _native_units(self, network: NetworkId, amount: AmountLike) -> int:
        return _positive(to_base_units(amount, profile_for(network).native_decimals), amount)

    async def _token_units(self, network: NetworkId, token: str, amount: AmountLike) -> int:
        decimals = await self._metadata.decimals_of(network, token)
        return _positive(to_base_units(amount, decimals), amount)

    async def _batch_units(
        self, network: NetworkId, tokens: Sequence[str], amounts: Sequence[AmountLike]
    ) -> List[int]:
        if not tokens:
            raise InvalidAmount("At least one token is required")
        if len(tokens) != len(amounts):
            raise InvalidAmount(
                f"Got {len(tokens)} tokens but {len(amounts)} amounts",
                {"tokens": len(tokens), "amounts": len(amounts)},
            )
        return [await self._token_units(network, t, a) for t, a in zip(tokens, amounts)]


def _positive(units: int, amount: AmountLike) -> int:
    if units == 0:
        raise InvalidAmount(f"Amount must be greater than zero: {amount!r}")
    return units


def _check_recipient(to: str) -> None:
    if not Web3.is_address(to):
        raise AppError("invalid_recipient", f"Invalid recipient address: {to!r}", {"to": to})

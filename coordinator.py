"""
Per-network transaction phase tracking.

Each NetworkId owns one TransactionState. States only change through the
named transition methods below, and every externally observed event
(inclusion, confirmation, failure) must carry the handle that is pending on
that network. Anything else is a stale or foreign event and is dropped.

Phases: IDLE -> SIMULATING -> SUBMITTED -> CONFIRMING -> SETTLING -> IDLE,
with any failure returning straight to IDLE with `last_error` set.

Every `begin_simulation` issues a generation number for its network and
every reset invalidates the outstanding one. Callers that sign between
simulation and submission pass the number back, so a signature returning
after the network was left (and possibly re-entered) cannot claim the slot.
"""

from __future__ import annotations

import asyncio
import inspect
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple

from errors import AppError, TransitionError, WrongNetworkEvent, classify_exception
from networks import SETTLE_DELAY_MS, NetworkId
from observability import AuditLog, build_log_context, log_event, now_ms


class Phase(Enum):
    IDLE = "idle"
    SIMULATING = "simulating"
    SUBMITTED = "submitted"
    CONFIRMING = "confirming"
    SETTLING = "settling"


@dataclass(frozen=True)
class TransactionState:
    network: NetworkId
    phase: Phase = Phase.IDLE
    pending_handle: Optional[str] = None
    has_refreshed_since_confirmation: bool = False
    last_error: Optional[AppError] = None
    operation: Optional[str] = None

    @property
    def busy(self) -> bool:
        return self.phase is not Phase.IDLE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "network": self.network.value,
            "phase": self.phase.value,
            "pending_handle": self.pending_handle,
            "has_refreshed_since_confirmation": self.has_refreshed_since_confirmation,
            "last_error": self.last_error.to_dict() if self.last_error else None,
            "operation": self.operation,
        }


@dataclass(frozen=True)
class PendingApproval:
    """An allowance approval whose confirmation should fire a deposit."""

    token_address: str
    amount_base_units: int
    token_symbol: str
    approval_handle: str


class _MetricsLike(ABC):
    """Abstract interface for metrics collection (compatible with observability.metrics)."""

    @abstractmethod
    def inc(self, name: str, value: int = 1) -> None:  # pragma: no cover
        ...

    @abstractmethod
    def set_gauge(self, name: str, value: float) -> None:  # pragma: no cover
        ...


RefreshListener = Callable[[NetworkId], Any]
ChainedDeposit = Callable[[NetworkId, PendingApproval], Awaitable[Any]]
Sleep = Callable[[float], Awaitable[Any]]


class ChainTransactionCoordinator:
    """
    Owns one TransactionState per network and the single-slot PendingApproval
    of each network.

    Switching the active network resets both the network being left and the
    one being entered. In-flight awaits are not cancelled; when they resolve
    their handles no longer match and the events are dropped.
    """

    def __init__(
        self,
        *,
        active_network: NetworkId = NetworkId.ETH,
        settle_delays: Mapping[NetworkId, int] | None = None,
        sleep: Sleep | None = None,
        metrics: _MetricsLike | None = None,
        audit: AuditLog | None = None,
        on_approval_confirmed: ChainedDeposit | None = None,
    ) -> None:
        self._states: Dict[NetworkId, TransactionState] = {n: TransactionState(network=n) for n in NetworkId}
        self._approvals: Dict[NetworkId, PendingApproval] = {}
        self._generations: Dict[NetworkId, int] = {n: 0 for n in NetworkId}
        self._active = active_network
        self._settle_overrides: Dict[NetworkId, int] = dict(settle_delays or {})
        self._sleep: Sleep = sleep or asyncio.sleep
        self._metrics = metrics
        self._audit = audit
        self._chained_deposit = on_approval_confirmed
        self._refresh_listeners: List[RefreshListener] = []
        self._ctx = build_log_context(tool="coordinator")

    # ------------------------------------------------------------------ reads

    @property
    def active_network(self) -> NetworkId:
        return self._active

    def get_state(self, network: NetworkId) -> TransactionState:
        return self._states[network]

    def states(self) -> Dict[NetworkId, TransactionState]:
        return dict(self._states)

    def pending_approval(self, network: NetworkId) -> Optional[PendingApproval]:
        return self._approvals.get(network)

    def generation(self, network: NetworkId) -> int:
        return self._generations[network]

    def settle_delay_ms(self, network: NetworkId) -> int:
        return self._settle_overrides.get(network, SETTLE_DELAY_MS[network])

    # ------------------------------------------------------------ wiring

    def add_refresh_listener(self, callback: RefreshListener) -> None:
        self._refresh_listeners.append(callback)

    def remove_refresh_listener(self, callback: RefreshListener) -> None:
        if callback in self._refresh_listeners:
            self._refresh_listeners.remove(callback)

    def set_approval_handler(self, callback: ChainedDeposit | None) -> None:
        self._chained_deposit = callback

    # ------------------------------------------------------------ transitions

    def switch_network(self, network: NetworkId) -> NetworkId:
        """Make `network` active; returns the previously active network."""
        previous = self._active
        if network is previous:
            return previous
        self.reset(previous)
        self.reset(network)
        self._active = network
        log_event("network_switched", ctx=self._ctx, data={"from": previous, "to": network})
        if self._metrics:
            self._metrics.inc("network_switch_total", 1)
        return previous

    def begin_simulation(self, network: NetworkId, operation: str | None = None) -> int:
        """Enter SIMULATING and return the generation that owns the operation."""
        self._require_active(network, "begin_simulation")
        state = self._states[network]
        if state.busy:
            raise TransitionError(
                f"{network.value} already has an operation in flight ({state.phase.value})",
                {"network": network.value, "phase": state.phase.value},
            )
        self._generations[network] += 1
        self._transition(
            network,
            "simulation_started",
            phase=Phase.SIMULATING,
            pending_handle=None,
            has_refreshed_since_confirmation=False,
            last_error=None,
            operation=operation,
        )
        return self._generations[network]

    def begin_submission(
        self,
        network: NetworkId,
        handle: str,
        operation: str | None = None,
        *,
        generation: int | None = None,
    ) -> TransactionState:
        """
        Record the broadcast handle as the network's pending one.

        With `generation` the network must still be SIMULATING under that
        generation. Without it a submission straight from IDLE is accepted.
        """
        self._require_active(network, "begin_submission")
        if not handle:
            raise TransitionError("Submission handle must not be empty", {"network": network.value})
        state = self._states[network]
        allowed: Tuple[Phase, ...] = (Phase.IDLE, Phase.SIMULATING)
        if generation is not None:
            self._require_generation(network, generation, "begin_submission")
            allowed = (Phase.SIMULATING,)
        if state.phase not in allowed:
            raise TransitionError(
                f"Cannot submit on {network.value} while {state.phase.value}",
                {"network": network.value, "phase": state.phase.value},
            )
        return self._transition(
            network,
            "submitted",
            phase=Phase.SUBMITTED,
            pending_handle=handle,
            has_refreshed_since_confirmation=False,
            last_error=None,
            operation=operation or state.operation,
        )

    def begin_approval(
        self,
        network: NetworkId,
        handle: str,
        *,
        token_address: str,
        amount_base_units: int,
        token_symbol: str,
        generation: int | None = None,
    ) -> PendingApproval:
        """
        Track an approval as the in-flight operation and link the deposit that
        must fire once it confirms.
        """
        self.begin_submission(network, handle, operation="approve", generation=generation)
        approval = PendingApproval(
            token_address=token_address,
            amount_base_units=int(amount_base_units),
            token_symbol=token_symbol,
            approval_handle=handle,
        )
        self._approvals[network] = approval
        log_event(
            "approval_pending",
            ctx=self._ctx,
            data={"network": network, "handle": handle, "token": token_address, "symbol": token_symbol},
        )
        return approval

    def on_included(self, network: NetworkId, handle: str) -> bool:
        if not self._is_attributed(network, handle, "included"):
            return False
        state = self._states[network]
        if state.phase is Phase.CONFIRMING:
            return True
        if state.phase is not Phase.SUBMITTED:
            self._drop(network, handle, "included", reason=f"unexpected phase {state.phase.value}")
            return False
        self._transition(network, "included", phase=Phase.CONFIRMING)
        return True

    async def on_confirmed(self, network: NetworkId, handle: str) -> bool:
        """
        Settle a confirmed handle.

        Waits the network's settle delay, signals refresh listeners exactly
        once, then fires the chained deposit when `handle` was the network's
        pending approval. Returns False when the event was dropped.
        """
        if not self._is_attributed(network, handle, "confirmed"):
            return False
        state = self._states[network]
        if state.phase not in (Phase.SUBMITTED, Phase.CONFIRMING):
            self._drop(network, handle, "confirmed", reason=f"unexpected phase {state.phase.value}")
            return False

        self._transition(network, "confirmed", phase=Phase.SETTLING)
        delay_ms = self.settle_delay_ms(network)
        if self._metrics:
            self._metrics.set_gauge(f"settle_delay_ms_{network.value.lower()}", float(delay_ms))
        await self._sleep(delay_ms / 1000.0)

        # A network switch or reset during the wait invalidates this handle.
        state = self._states[network]
        if state.pending_handle != handle or state.phase is not Phase.SETTLING:
            self._drop(network, handle, "settled", reason="state changed during settle delay")
            return False

        self._transition(
            network,
            "settled",
            phase=Phase.IDLE,
            pending_handle=None,
            has_refreshed_since_confirmation=True,
        )
        await self._signal_refresh(network)

        approval = self._approvals.get(network)
        if approval is not None and approval.approval_handle == handle:
            del self._approvals[network]
            log_event(
                "approval_confirmed",
                ctx=self._ctx,
                data={"network": network, "handle": handle, "symbol": approval.token_symbol},
            )
            if self._chained_deposit is not None:
                await self._chained_deposit(network, approval)
        return True

    def on_failed(
        self,
        network: NetworkId,
        handle: str | None,
        error: Exception,
        *,
        generation: int | None = None,
    ) -> bool:
        """
        Record a failure and return the network to IDLE.

        `handle=None` is only meaningful before a handle exists (simulation or
        signing failures); otherwise the handle must match the pending one.
        A handle-less failure from a superseded `generation` is dropped.
        """
        state = self._states[network]
        if handle is None:
            if generation is not None and generation != self._generations[network]:
                self._drop(network, handle, "failed", reason=f"generation {generation} superseded")
                return False
            if state.phase is not Phase.SIMULATING:
                self._drop(network, handle, "failed", reason=f"no handle while {state.phase.value}")
                return False
        elif not self._is_attributed(network, handle, "failed"):
            return False

        app_error = classify_exception(error) if not isinstance(error, AppError) else error
        approval = self._approvals.get(network)
        if approval is not None and (handle is None or approval.approval_handle == handle):
            del self._approvals[network]

        self._transition(
            network,
            "failed",
            phase=Phase.IDLE,
            pending_handle=None,
            has_refreshed_since_confirmation=False,
            last_error=app_error,
        )
        if self._metrics:
            self._metrics.inc(f"tx_error_{app_error.code}_total", 1)
        return True

    def reset(self, network: NetworkId) -> TransactionState:
        self._generations[network] += 1
        self._approvals.pop(network, None)
        fresh = TransactionState(network=network)
        if self._states[network] == fresh:
            return fresh
        prev = self._states[network]
        self._states[network] = fresh
        self._record(network, "reset", prev, fresh)
        return fresh

    def reset_all(self) -> None:
        for network in NetworkId:
            self.reset(network)

    # ------------------------------------------------------------ internals

    def _require_active(self, network: NetworkId, op: str) -> None:
        if network is not self._active:
            raise TransitionError(
                f"{op} on {network.value} but the active network is {self._active.value}",
                {"network": network.value, "active_network": self._active.value},
            )

    def _require_generation(self, network: NetworkId, generation: int, op: str) -> None:
        current = self._generations[network]
        if generation != current:
            raise TransitionError(
                f"{op} on {network.value} for a superseded operation (generation {generation}, now {current})",
                {"network": network.value, "generation": generation, "current_generation": current},
            )

    def _is_attributed(self, network: NetworkId, handle: str | None, event: str) -> bool:
        pending = self._states[network].pending_handle
        if handle is not None and pending is not None and handle == pending:
            return True
        self._drop(network, handle, event, reason="handle does not match pending handle")
        return False

    def _drop(self, network: NetworkId, handle: str | None, event: str, *, reason: str) -> None:
        err = WrongNetworkEvent(
            f"Ignored {event} for {handle} on {network.value}: {reason}",
            {
                "network": network.value,
                "handle": handle,
                "pending_handle": self._states[network].pending_handle,
                "active_network": self._active.value,
            },
        )
        log_event("tx_event_dropped", ctx=self._ctx, level="warning", data=err.to_dict())
        if self._metrics:
            self._metrics.inc("tx_wrong_network_event_total", 1)

    def _transition(self, network: NetworkId, event: str, **changes: Any) -> TransactionState:
        prev = self._states[network]
        new = replace(prev, **changes)
        self._states[network] = new
        self._record(network, event, prev, new)
        return new

    def _record(self, network: NetworkId, event: str, prev: TransactionState, new: TransactionState) -> None:
        handle = new.pending_handle or prev.pending_handle
        log_event(
            "tx_transition",
            ctx=self._ctx,
            data={
                "network": network,
                "event": event,
                "from": prev.phase,
                "to": new.phase,
                "handle": handle,
                "error": new.last_error.code if new.last_error else None,
            },
        )
        if self._metrics:
            self._metrics.inc(f"tx_{event}_total", 1)
        if self._audit is not None:
            self._audit.append(
                ts_ms=now_ms(),
                network=network.value,
                event=event,
                phase=new.phase.value,
                handle=handle,
                operation=new.operation or prev.operation,
                error_code=new.last_error.code if new.last_error else None,
            )

    async def _signal_refresh(self, network: NetworkId) -> None:
        log_event("refresh_signal", ctx=self._ctx, data={"network": network})
        for callback in list(self._refresh_listeners):
            try:
                result = callback(network)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                log_event(
                    "refresh_listener_error",
                    ctx=self._ctx,
                    level="error",
                    data={"network": network, "error": str(e), "listener": getattr(callback, "__name__", repr(callback))},
                )

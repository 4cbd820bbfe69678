from __future__ import annotations

from functools import partial
from typing import Optional

from app.core.settings import Settings, settings
from coordinator import ChainTransactionCoordinator
from execution.evm import Erc20MetadataSource, Web3ContractCaller, Web3Factory, Web3HandleWatcher, get_web3
from observability import AuditLog, Metrics
from signing import Signer, get_signer
from vault_handler import VaultHandler


class Container:
    """
    Process-wide wiring.

    Observability and the coordinator are built eagerly. The signer and the
    web3 collaborators are built on first use so the server can start (and
    serve codec/state tools) without key material.
    """

    def __init__(self, config: Settings = settings):
        self.settings = config

        # Observability
        self.metrics = Metrics()
        self.audit_log = AuditLog(config.AUDIT_DB_PATH)

        # Core
        self.coordinator = ChainTransactionCoordinator(
            active_network=config.active_network,
            settle_delays=config.SETTLE_DELAY_OVERRIDES_MS,
            metrics=self.metrics,
            audit=self.audit_log,
        )
        self.w3_factory: Web3Factory = partial(get_web3, timeout_sec=float(config.HTTP_TIMEOUT_SEC))

        self._signer: Optional[Signer] = None
        self._vault_handler: Optional[VaultHandler] = None

    @property
    def signer(self) -> Signer:
        if self._signer is None:
            self._signer = get_signer(self.settings)
        return self._signer

    @property
    def vault_handler(self) -> VaultHandler:
        if self._vault_handler is None:
            caller = Web3ContractCaller(self.signer, mode=self.settings.NETWORK_MODE, w3_factory=self.w3_factory)
            watcher = Web3HandleWatcher(
                timeout_sec=self.settings.RECEIPT_TIMEOUT_SEC,
                poll_latency_sec=self.settings.RECEIPT_POLL_SEC,
                w3_factory=self.w3_factory,
            )
            metadata = Erc20MetadataSource(
                default_decimals=self.settings.DEFAULT_TOKEN_DECIMALS, w3_factory=self.w3_factory
            )
            self._vault_handler = VaultHandler(
                self.coordinator,
                caller,
                watcher,
                metadata,
                vault_addresses=self.settings.VAULT_CONTRACTS,
                auto_approve=self.settings.AUTO_APPROVE_DEPOSITS,
            )
        return self._vault_handler


global_container = Container()

import logging
import threading
from typing import Any, Dict, List, Optional, Union

from .abi_fetcher import AbiFetcher
from .abi_parser import AbiRegistry, ContractDescriptor, descriptor_from_abi
from .cache import AbiCache
from .config import Config, WatchConfig, load_watch_config, save_watch_config
from .datadog_client import DatadogLogSink
from .deduplicator import TransactionDeduplicator
from .errors import ConfigurationError
from .poller import DEFAULT_LOOKBACK_BLOCKS, EventPoller
from .records import RecordFactory
from .resolver import NameResolver
from .rpc_client import StarknetRpcClient
from .selectors import event_selector, function_selector

logger = logging.getLogger(__name__)


class IngestService:
    """Combine configuration, watch file, ABI, and clients into runnable commands."""

    def __init__(self, config: Config, watch: Optional[WatchConfig] = None) -> None:
        self.config = config
        self.watch = watch if watch is not None else load_watch_config(config.config_file)
        self.abi_cache = AbiCache()
        self._rpc: Optional[StarknetRpcClient] = None
        self._registry: Optional[AbiRegistry] = None

    @property
    def rpc(self) -> StarknetRpcClient:
        if self._rpc is None:
            if not self.config.rpc_url:
                raise ConfigurationError("Missing required settings: STARKNET_RPC_URL.")
            self._rpc = StarknetRpcClient(
                rpc_url=self.config.rpc_url or "",
                timeout=self.config.request_timeout,
                max_retries=self.config.max_retries,
                backoff_seconds=self.config.backoff_seconds,
            )
        return self._rpc

    def registry(self) -> Optional[AbiRegistry]:
        if self._registry is None and self.watch.abi_file:
            self._registry = AbiRegistry.from_file(self.watch.abi_file)
        return self._registry

    def setup(self, abi_file: str, force: bool = False) -> Dict[str, Any]:
        if self.watch.contracts and not force:
            logger.warning(
                "Contracts already configured (%d); use --force to overwrite", len(self.watch.contracts)
            )
            return {"status": "skipped", "contracts": list(self.watch.contracts)}

        registry = AbiRegistry.from_file(abi_file)
        addresses = registry.deployable_addresses()
        if not addresses:
            logger.info("No deployed contracts found in %s; configure deployed addresses manually", abi_file)
            return {"status": "no_addresses", "contracts": [], "summary": registry.summary()}

        self.watch.contracts = addresses
        self.watch.abi_file = abi_file
        save_watch_config(self.config.config_file, self.watch)
        self._registry = registry
        logger.info("Configuration updated: %d contracts", len(addresses))
        return {"status": "updated", "contracts": addresses, "abi_file": abi_file}

    def _legacy_contracts(self) -> List[ContractDescriptor]:
        contracts: List[ContractDescriptor] = []
        for entry in self.watch.contract_abis:
            address = entry.get("address") if isinstance(entry, dict) else None
            abi = entry.get("abi") if isinstance(entry, dict) else None
            if isinstance(address, str) and isinstance(abi, list):
                contracts.append(descriptor_from_abi(address, abi))
        if self.config.auto_fetch_abi and self.watch.contracts:
            fetcher = AbiFetcher(self.rpc, self.config.network, self.abi_cache)
            contracts.extend(fetcher.get_contracts(self.watch.contracts))
        return contracts

    def build_resolver(self) -> NameResolver:
        overrides = self.watch.event_overrides()
        function_overrides = self.watch.function_overrides()
        registry = self.registry()
        if registry is not None:
            return NameResolver.from_registry(registry, overrides=overrides, function_overrides=function_overrides)
        return NameResolver.from_event_names(
            self.watch.event_names,
            overrides=overrides,
            contracts=self._legacy_contracts(),
            function_overrides=function_overrides,
        )

    def build_sink(self, dump_file: Optional[str] = None) -> DatadogLogSink:
        return DatadogLogSink(
            site=self.config.dd_site or "",
            api_key=self.config.dd_api_key or "",
            max_retries=self.config.max_retries,
            backoff_seconds=self.config.backoff_seconds,
            mask_logs=self.config.log_mask,
            dump_file=dump_file,
        )

    def build_poller(
        self,
        from_block: Union[int, str, None] = None,
        lookback_blocks: int = DEFAULT_LOOKBACK_BLOCKS,
        interval_seconds: float = 1.5,
        stop_event: Optional[threading.Event] = None,
        dump_file: Optional[str] = None,
    ) -> EventPoller:
        self.config.require_ingest_settings()
        resolver = self.build_resolver()
        factory = RecordFactory(network=self.config.network)
        deduplicator = TransactionDeduplicator(
            source=self.rpc,
            resolver=resolver,
            record_factory=factory,
            fetch_delay_seconds=self.config.tx_fetch_delay_seconds,
            trace_calls=self.config.trace_calls,
        )
        return EventPoller(
            source=self.rpc,
            sink=self.build_sink(dump_file),
            resolver=resolver,
            deduplicator=deduplicator,
            record_factory=factory,
            addresses=self.watch.contracts,
            chunk_size=self.config.chunk_size,
            interval_seconds=interval_seconds,
            from_block=from_block,
            lookback_blocks=lookback_blocks,
            exclude_event_names=self.watch.exclude_event_names,
            stop_event=stop_event,
        )

    def abi_summary(self, abi_file: str) -> Dict[str, Any]:
        registry = AbiRegistry.from_file(abi_file)
        summary = registry.summary()
        summary["deployable_addresses"] = registry.deployable_addresses()
        return summary

    def list_contracts(self) -> List[Dict[str, Any]]:
        registry = self.registry()
        contracts = registry.contracts() if registry is not None else self._legacy_contracts()
        return [
            {
                "name": contract.name,
                "address": contract.address,
                "class_hash": contract.class_hash,
                "kind": contract.kind,
                "events": [{"name": e.name, "selector": e.selector} for e in contract.events],
                "functions": [{"name": f.name, "selector": f.selector} for f in contract.functions],
            }
            for contract in contracts
        ]

    def compute_selector(self, name: str, kind: str = "event") -> Dict[str, str]:
        if kind not in {"event", "function"}:
            raise ValueError("kind must be 'event' or 'function'.")
        selector = event_selector(name) if kind == "event" else function_selector(name)
        return {"name": name, "kind": kind, "selector": selector}

    def resolve(
        self,
        selector: str,
        contract_address: Optional[str] = None,
        function: bool = False,
        resolver: Optional[NameResolver] = None,
    ) -> Dict[str, Any]:
        resolver = resolver or self.build_resolver()
        if function:
            return {
                "selector": selector,
                "kind": "function",
                "name": resolver.resolve_function_name(selector),
                "known": resolver.is_known_function(selector),
            }
        return {
            "selector": selector,
            "kind": "event",
            "contract_address": contract_address,
            "name": resolver.resolve_event_name_with_contract_context(selector, contract_address),
            "known": resolver.lookup_event(selector, contract_address) is not None,
        }

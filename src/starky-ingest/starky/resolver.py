import logging
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from .abi_parser import AbiRegistry, ContractDescriptor, EventDescriptor
from .errors import SelectorComputationError
from .selectors import event_selector, normalize_selector, selector_key

logger = logging.getLogger(__name__)

UNKNOWN_NAME = "unknown"


class SelectorDictionary:
    """Paired name->selector and selector->name maps for one selector namespace."""

    def __init__(self) -> None:
        self._by_selector: Dict[str, str] = {}
        self._by_name: Dict[str, str] = {}

    def add(self, selector: str, name: str) -> None:
        key = normalize_selector(selector)
        self._by_selector[key] = name
        self._by_name[name] = key

    def name_for(self, selector: str) -> Optional[str]:
        if not selector:
            return None
        return self._by_selector.get(selector_key(selector))

    def selector_for(self, name: str) -> Optional[str]:
        return self._by_name.get(name)

    def names(self) -> List[str]:
        return list(self._by_selector.values())

    def items(self):
        return self._by_selector.items()

    def __contains__(self, selector: object) -> bool:
        return isinstance(selector, str) and self.name_for(selector) is not None

    def __len__(self) -> int:
        return len(self._by_selector)


class NameResolver:
    """
    Resolves event and function selectors to names.

    Entries are inserted in a fixed order: computed entries from the
    contracts (or from bare event names), then manifest-global events,
    then manual overrides, so an override always wins a selector collision.
    The resolver is built once and only read afterwards.
    """

    def __init__(
        self,
        contracts: Sequence[ContractDescriptor] = (),
        manifest_events: Sequence[EventDescriptor] = (),
        overrides: Optional[Mapping[str, str]] = None,
        event_names: Iterable[str] = (),
        function_overrides: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.events = SelectorDictionary()
        self.functions = SelectorDictionary()
        self._contracts: Dict[str, ContractDescriptor] = {}

        for contract in contracts:
            if contract.is_deployed:
                self._contracts[selector_key(contract.address)] = contract
            for event in contract.events:
                self.events.add(event.selector, event.name)
            for func in contract.functions:
                self.functions.add(func.selector, func.name)

        for name in event_names:
            try:
                self.events.add(event_selector(name), name)
            except SelectorComputationError as exc:
                logger.warning("Failed to map event name %r: %s", name, exc)

        for event in manifest_events:
            self.events.add(event.selector, event.name)

        self._apply_overrides(self.events, overrides, "event")
        self._apply_overrides(self.functions, function_overrides, "function")
        logger.debug("Resolver ready: %d event selectors, %d function selectors", len(self.events), len(self.functions))

    @staticmethod
    def _apply_overrides(target: SelectorDictionary, overrides: Optional[Mapping[str, str]], label: str) -> None:
        for selector, name in (overrides or {}).items():
            try:
                target.add(selector, name)
            except ValueError as exc:
                logger.warning("Ignoring manual %s mapping %r -> %r: %s", label, selector, name, exc)

    @classmethod
    def from_registry(
        cls,
        registry: AbiRegistry,
        overrides: Optional[Mapping[str, str]] = None,
        function_overrides: Optional[Mapping[str, str]] = None,
    ) -> "NameResolver":
        return cls(
            contracts=registry.contracts(),
            manifest_events=registry.manifest_events(),
            overrides=overrides,
            function_overrides=function_overrides,
        )

    @classmethod
    def from_event_names(
        cls,
        event_names: Iterable[str],
        overrides: Optional[Mapping[str, str]] = None,
        contracts: Sequence[ContractDescriptor] = (),
        function_overrides: Optional[Mapping[str, str]] = None,
    ) -> "NameResolver":
        """Legacy mode: a flat list of known names, optionally with per-contract ABIs."""
        return cls(
            contracts=contracts,
            overrides=overrides,
            event_names=event_names,
            function_overrides=function_overrides,
        )

    def lookup_event(self, selector: str, contract_address: Optional[str] = None) -> Optional[str]:
        name = self.events.name_for(selector)
        if name is not None or not contract_address:
            return name
        contract = self._contracts.get(selector_key(contract_address))
        if contract is None:
            return None
        event = contract.event_by_selector(selector)
        return event.name if event else None

    def lookup_function(self, selector: str) -> Optional[str]:
        return self.functions.name_for(selector)

    def resolve_event_name(self, selector: str) -> str:
        if not selector:
            return UNKNOWN_NAME
        return self.lookup_event(selector) or selector

    def resolve_event_name_with_contract_context(self, selector: str, contract_address: Optional[str]) -> str:
        if not selector:
            return UNKNOWN_NAME
        return self.lookup_event(selector, contract_address) or selector

    def resolve_function_name(self, selector: str) -> str:
        if not selector:
            return UNKNOWN_NAME
        return self.lookup_function(selector) or selector

    def is_known_selector(self, selector: str) -> bool:
        return bool(selector) and selector in self.events

    def is_known_function(self, selector: str) -> bool:
        return bool(selector) and selector in self.functions

    def known_event_names(self) -> List[str]:
        return self.events.names()

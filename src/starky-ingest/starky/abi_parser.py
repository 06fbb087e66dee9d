"""
ABI loading for Dojo manifests and Scarb compiled contract classes.

The two document shapes share nothing structurally, so the variant is
resolved once by ``detect_abi_form`` and each variant parses itself into
``ContractDescriptor`` values. ``AbiRegistry`` holds the result and answers
lookups by address and selector.
"""

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .errors import AbiFormatError, SelectorComputationError
from .selectors import (
    NAMESPACE_SEPARATOR,
    event_selector,
    function_selector,
    normalize_event_name,
    normalize_selector,
    selector_key,
)

logger = logging.getLogger(__name__)

UNKNOWN_ADDRESS = "unknown"
ENTRY_POINT_KINDS = ("EXTERNAL", "L1_HANDLER", "CONSTRUCTOR")
CONTRACT_CLASS_SUFFIXES = (".contract_class.json", ".json")


@dataclass(frozen=True)
class AbiParam:
    name: str
    type: str


@dataclass(frozen=True)
class EventDescriptor:
    name: str
    qualified_name: str
    selector: str
    inputs: Tuple[AbiParam, ...] = ()


@dataclass(frozen=True)
class FunctionDescriptor:
    name: str
    selector: str
    inputs: Tuple[AbiParam, ...] = ()
    outputs: Tuple[AbiParam, ...] = ()
    state_mutability: str = "unknown"


@dataclass(frozen=True)
class EntryPoint:
    selector: str
    function_idx: int


@dataclass(frozen=True)
class ContractDescriptor:
    address: str
    class_hash: str
    name: str
    kind: str
    events: Tuple[EventDescriptor, ...] = ()
    functions: Tuple[FunctionDescriptor, ...] = ()

    @property
    def is_deployed(self) -> bool:
        return self.address != UNKNOWN_ADDRESS

    def event_by_selector(self, selector: str) -> Optional[EventDescriptor]:
        target = selector_key(selector)
        for event in self.events:
            if selector_key(event.selector) == target:
                return event
        return None


def parse_params(raw: Any) -> Tuple[AbiParam, ...]:
    if not isinstance(raw, list):
        return ()
    params: List[AbiParam] = []
    for entry in raw:
        if isinstance(entry, Mapping):
            params.append(AbiParam(name=str(entry.get("name", "")), type=str(entry.get("type", ""))))
        elif isinstance(entry, str):
            params.append(AbiParam(name=entry, type=""))
    return tuple(params)


def _event_inputs(item: Mapping[str, Any]) -> Tuple[AbiParam, ...]:
    for key in ("inputs", "members", "variants"):
        if isinstance(item.get(key), list):
            return parse_params(item[key])
    return ()


def extract_events(abi: Sequence[Any]) -> List[EventDescriptor]:
    """Event items of an ABI array. An embedded selector wins over a computed one."""
    events: List[EventDescriptor] = []
    for item in abi:
        if not isinstance(item, Mapping) or item.get("type") != "event" or not item.get("name"):
            continue
        qualified = str(item["name"])
        try:
            embedded = item.get("selector")
            selector = normalize_selector(embedded) if embedded else event_selector(qualified)
        except (SelectorComputationError, ValueError) as exc:
            logger.warning("Failed to get selector for event %s: %s", qualified, exc)
            continue
        events.append(
            EventDescriptor(
                name=normalize_event_name(qualified),
                qualified_name=qualified,
                selector=selector,
                inputs=_event_inputs(item),
            )
        )
    return events


def _function_from_item(item: Mapping[str, Any], default_mutability: str) -> Optional[FunctionDescriptor]:
    name = str(item["name"])
    try:
        selector = function_selector(name)
    except SelectorComputationError as exc:
        logger.warning("Failed to calculate selector for function %s: %s", name, exc)
        return None
    return FunctionDescriptor(
        name=name,
        selector=selector,
        inputs=parse_params(item.get("inputs")),
        outputs=parse_params(item.get("outputs")),
        state_mutability=str(item.get("state_mutability") or default_mutability),
    )


def _interface_functions(abi: Sequence[Any]) -> List[Mapping[str, Any]]:
    found: List[Mapping[str, Any]] = []
    for item in abi:
        if isinstance(item, Mapping) and item.get("type") == "interface" and isinstance(item.get("items"), list):
            for inner in item["items"]:
                if isinstance(inner, Mapping) and inner.get("type") == "function":
                    found.append(inner)
    return found


def extract_functions(abi: Sequence[Any]) -> List[FunctionDescriptor]:
    """Direct function items plus the ones nested in interface groups, in ABI order."""
    functions: List[FunctionDescriptor] = []
    for item in abi:
        if not isinstance(item, Mapping):
            continue
        candidates: List[Mapping[str, Any]] = []
        if item.get("type") == "function":
            candidates.append(item)
        elif item.get("type") == "interface":
            candidates.extend(_interface_functions([item]))
        for candidate in candidates:
            if not candidate.get("name"):
                continue
            descriptor = _function_from_item(candidate, "unknown")
            if descriptor is not None:
                functions.append(descriptor)
    return functions


def extract_contract_name(abi: Sequence[Any]) -> str:
    for item in abi:
        if not isinstance(item, Mapping) or not item.get("name"):
            continue
        if item.get("type") == "impl":
            return str(item["name"])
        if item.get("type") == "interface":
            return str(item["name"]).split(NAMESPACE_SEPARATOR)[-1] or "Unknown"
    return "Unknown"


def descriptor_from_abi(address: str, abi: Sequence[Any], class_hash: str = UNKNOWN_ADDRESS) -> ContractDescriptor:
    return ContractDescriptor(
        address=address,
        class_hash=class_hash,
        name=extract_contract_name(abi),
        kind="contract",
        events=tuple(extract_events(abi)),
        functions=tuple(extract_functions(abi)),
    )


@dataclass(frozen=True)
class ManifestDocument:
    """Dojo manifest: a world, its contracts, and deployment-wide events."""

    world: Mapping[str, Any]
    contracts: Tuple[Mapping[str, Any], ...]
    events: Tuple[Mapping[str, Any], ...]

    format_name = "Dojo manifest"

    @staticmethod
    def matches(document: Mapping[str, Any]) -> bool:
        return isinstance(document.get("world"), Mapping) and isinstance(document.get("contracts"), list)

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "ManifestDocument":
        world = document.get("world")
        contracts = document.get("contracts")
        events = document.get("events") or []
        if not isinstance(world, Mapping):
            raise AbiFormatError("Manifest 'world' must be an object.")
        if not isinstance(contracts, list) or not all(isinstance(c, Mapping) for c in contracts):
            raise AbiFormatError("Manifest 'contracts' must be an array of objects.")
        if not isinstance(events, list):
            raise AbiFormatError("Manifest 'events' must be an array.")
        for contract in contracts:
            if not isinstance(contract.get("address"), str) or not contract["address"]:
                raise AbiFormatError("Every manifest contract needs an 'address'.")
            if not isinstance(contract.get("abi", []), list):
                raise AbiFormatError(f"ABI of contract {contract['address']} must be an array.")
        return cls(world=world, contracts=tuple(contracts), events=tuple(e for e in events if isinstance(e, Mapping)))

    def manifest_events(self) -> List[EventDescriptor]:
        found: List[EventDescriptor] = []
        for event in self.events:
            tag = event.get("tag")
            selector = event.get("selector")
            if not tag or not selector:
                continue
            try:
                normalized = normalize_selector(selector)
            except ValueError as exc:
                logger.warning("Skipping manifest event %s: %s", tag, exc)
                continue
            found.append(
                EventDescriptor(
                    name=str(tag),
                    qualified_name=str(tag),
                    selector=normalized,
                    inputs=parse_params(event.get("members")),
                )
            )
        return found

    def parse(self) -> Tuple[List[ContractDescriptor], List[EventDescriptor]]:
        global_events = self.manifest_events()
        contracts: List[ContractDescriptor] = []

        world_address = self.world.get("address")
        if world_address:
            contracts.append(
                ContractDescriptor(
                    address=str(world_address),
                    class_hash=str(self.world.get("class_hash", "")),
                    name="World",
                    kind="world",
                    events=tuple(global_events),
                )
            )

        for entry in self.contracts:
            abi = entry.get("abi") or []
            contracts.append(
                ContractDescriptor(
                    address=str(entry["address"]),
                    class_hash=str(entry.get("class_hash", "")),
                    name=extract_contract_name(abi),
                    kind=str(entry.get("kind", "")),
                    events=tuple(extract_events(abi)) + tuple(global_events),
                    functions=tuple(extract_functions(abi)),
                )
            )
        return contracts, global_events

    def summary_fields(self) -> Dict[str, Any]:
        return {"world": {"kind": self.world.get("kind"), "class_hash": self.world.get("class_hash")}}


@dataclass(frozen=True)
class CompiledClassDocument:
    """Scarb compiled contract class: no deployed address, selectors in the entry-point table."""

    name: str
    abi: Tuple[Any, ...]
    entry_points: Mapping[str, Tuple[EntryPoint, ...]]
    contract_class_version: Optional[str] = None

    format_name = "Contract class"

    @staticmethod
    def matches(document: Mapping[str, Any]) -> bool:
        return bool(document.get("sierra_program")) and bool(document.get("entry_points_by_type"))

    @classmethod
    def from_document(cls, document: Mapping[str, Any], source_name: str) -> "CompiledClassDocument":
        table = document.get("entry_points_by_type")
        abi = document.get("abi") or []
        if isinstance(abi, str):
            try:
                abi = json.loads(abi)
            except json.JSONDecodeError as exc:
                raise AbiFormatError(f"Contract class ABI is not valid JSON: {exc}") from exc
        if not isinstance(table, Mapping):
            raise AbiFormatError("'entry_points_by_type' must be an object.")
        if not isinstance(abi, list):
            raise AbiFormatError("Contract class 'abi' must be an array.")

        entry_points: Dict[str, Tuple[EntryPoint, ...]] = {}
        for kind in ENTRY_POINT_KINDS:
            rows = table.get(kind) or []
            if not isinstance(rows, list):
                raise AbiFormatError(f"Entry points '{kind}' must be an array.")
            parsed: List[EntryPoint] = []
            for row in rows:
                if not isinstance(row, Mapping):
                    raise AbiFormatError(f"Malformed '{kind}' entry point: {row!r}.")
                idx = row.get("function_idx")
                try:
                    selector = normalize_selector(row.get("selector"))
                except ValueError as exc:
                    raise AbiFormatError(f"Malformed '{kind}' entry point selector: {exc}") from exc
                if isinstance(idx, bool) or not isinstance(idx, int):
                    raise AbiFormatError(f"Malformed '{kind}' entry point index: {idx!r}.")
                parsed.append(EntryPoint(selector=selector, function_idx=idx))
            entry_points[kind] = tuple(parsed)

        version = document.get("contract_class_version")
        return cls(
            name=contract_name_from_path(source_name),
            abi=tuple(abi),
            entry_points=entry_points,
            contract_class_version=str(version) if version is not None else None,
        )

    def external_functions(self) -> List[FunctionDescriptor]:
        candidates = _interface_functions(self.abi)
        functions: List[FunctionDescriptor] = []
        for entry in self.entry_points.get("EXTERNAL", ()):
            idx = entry.function_idx
            item = candidates[idx] if 0 <= idx < len(candidates) else None
            if item is not None and item.get("name"):
                functions.append(
                    FunctionDescriptor(
                        name=str(item["name"]),
                        selector=entry.selector,
                        inputs=parse_params(item.get("inputs")),
                        outputs=parse_params(item.get("outputs")),
                        state_mutability=str(item.get("state_mutability") or "external"),
                    )
                )
            else:
                functions.append(
                    FunctionDescriptor(name=f"function_{idx}", selector=entry.selector, state_mutability="external")
                )
        return functions

    def parse(self) -> Tuple[List[ContractDescriptor], List[EventDescriptor]]:
        contract = ContractDescriptor(
            address=UNKNOWN_ADDRESS,
            class_hash=UNKNOWN_ADDRESS,
            name=self.name,
            kind="ContractClass",
            events=tuple(extract_events(self.abi)),
            functions=tuple(self.external_functions()),
        )
        return [contract], []

    def summary_fields(self) -> Dict[str, Any]:
        return {"version": self.contract_class_version}


AbiDocument = Union[ManifestDocument, CompiledClassDocument]


def contract_name_from_path(source_name: str) -> str:
    base = os.path.basename(source_name or "") or "contract"
    for suffix in CONTRACT_CLASS_SUFFIXES:
        if base.endswith(suffix) and len(base) > len(suffix):
            return base[: -len(suffix)]
    return base


def detect_abi_form(document: Any, source_name: str = "") -> AbiDocument:
    if not isinstance(document, Mapping):
        raise AbiFormatError("Unrecognized ABI format: document must be a JSON object.")
    if ManifestDocument.matches(document):
        return ManifestDocument.from_document(document)
    if CompiledClassDocument.matches(document):
        return CompiledClassDocument.from_document(document, source_name)
    raise AbiFormatError(
        "Unrecognized ABI format: expected a Dojo manifest (world + contracts) "
        "or a contract class (sierra_program + entry_points_by_type)."
    )


def load_abi_file(path: str) -> Any:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            return json.load(handle)
    except FileNotFoundError as exc:
        raise AbiFormatError(f"ABI file not found: {os.path.abspath(path)}") from exc
    except json.JSONDecodeError as exc:
        raise AbiFormatError(f"ABI file {path} is not valid JSON: {exc}") from exc
    except OSError as exc:
        raise AbiFormatError(f"Could not read ABI file {path}: {exc}") from exc


class AbiRegistry:
    """Parsed contracts of one ABI document. Immutable after construction."""

    def __init__(self, document: AbiDocument) -> None:
        self.document = document
        contracts, manifest_events = document.parse()
        self._manifest_events: Tuple[EventDescriptor, ...] = tuple(manifest_events)
        self._contracts: Dict[str, ContractDescriptor] = {}
        for contract in contracts:
            key = selector_key(contract.address) if contract.is_deployed else contract.name.lower()
            self._contracts[key] = contract

    @classmethod
    def from_document(cls, document: Any, source_name: str = "") -> "AbiRegistry":
        return cls(detect_abi_form(document, source_name))

    @classmethod
    def from_file(cls, path: str) -> "AbiRegistry":
        registry = cls.from_document(load_abi_file(path), path)
        summary = registry.summary()
        logger.info(
            "ABI loaded from %s (%s): %d contracts, %d events, %d functions",
            path,
            summary["type"],
            summary["contracts"],
            summary["total_events"],
            summary["total_functions"],
        )
        for contract in registry.contracts():
            logger.debug(
                "Contract %s at %s: %d events, %d functions",
                contract.name,
                contract.address,
                len(contract.events),
                len(contract.functions),
            )
        return registry

    @property
    def format_name(self) -> str:
        return self.document.format_name

    def contracts(self) -> List[ContractDescriptor]:
        return list(self._contracts.values())

    def get_contract(self, address: str) -> Optional[ContractDescriptor]:
        if not address:
            return None
        return self._contracts.get(selector_key(address)) or self._contracts.get(address.strip().lower())

    def all_events(self) -> List[EventDescriptor]:
        return [event for contract in self._contracts.values() for event in contract.events]

    def all_functions(self) -> List[FunctionDescriptor]:
        return [func for contract in self._contracts.values() for func in contract.functions]

    def manifest_events(self) -> List[EventDescriptor]:
        return list(self._manifest_events)

    def event_by_selector(self, selector: str) -> Optional[EventDescriptor]:
        target = selector_key(selector)
        for event in self.all_events():
            if selector_key(event.selector) == target:
                return event
        return None

    def function_by_selector(self, selector: str) -> Optional[FunctionDescriptor]:
        target = selector_key(selector)
        for func in self.all_functions():
            if selector_key(func.selector) == target:
                return func
        return None

    def deployable_addresses(self) -> List[str]:
        return [contract.address for contract in self._contracts.values() if contract.is_deployed]

    def summary(self) -> Dict[str, Any]:
        summary: Dict[str, Any] = {"type": self.format_name}
        summary.update(self.document.summary_fields())
        summary.update(
            {
                "contracts": len(self._contracts),
                "total_events": len(self.all_events()),
                "total_functions": len(self.all_functions()),
                "manifest_events": len(self._manifest_events),
            }
        )
        return summary

"""
Unit tests for starky/abi_parser.py.

Tests cover:
- Format detection (Dojo manifest vs. compiled contract class)
- Manifest parsing: world contract, per-contract events/functions, global events
- Contract class parsing: entry-point table, function_<idx> fallback
- Registry lookups and summary
- Malformed documents
"""

from __future__ import annotations

import json

import pytest

from starky.abi_parser import (
    AbiRegistry,
    CompiledClassDocument,
    ManifestDocument,
    contract_name_from_path,
    descriptor_from_abi,
    detect_abi_form,
    extract_contract_name,
    extract_events,
    extract_functions,
    load_abi_file,
)
from starky.errors import AbiFormatError
from starky.selectors import compute_selector, event_selector, function_selector

# ===========================================================================
# Format detection
# ===========================================================================


class TestDetectAbiForm:
    def test_manifest_detected(self, manifest_document):
        assert isinstance(detect_abi_form(manifest_document), ManifestDocument)

    def test_contract_class_detected(self, contract_class_document):
        doc = detect_abi_form(contract_class_document, "token.contract_class.json")
        assert isinstance(doc, CompiledClassDocument)
        assert doc.name == "token"

    @pytest.mark.parametrize("document", [{}, {"abi": []}, {"world": {}}, [], "x"])
    def test_unrecognized_format(self, document):
        with pytest.raises(AbiFormatError, match="Unrecognized ABI format"):
            detect_abi_form(document)

    @pytest.mark.parametrize(
        "path, expected",
        [
            ("target/dev/token.contract_class.json", "token"),
            ("/tmp/game.json", "game"),
            ("noext", "noext"),
        ],
    )
    def test_contract_name_from_path(self, path, expected):
        assert contract_name_from_path(path) == expected


# ===========================================================================
# Manifest
# ===========================================================================


class TestManifestParsing:
    def test_contracts_and_world(self, manifest_document):
        registry = AbiRegistry.from_document(manifest_document)
        world = registry.get_contract("0xa1")
        game = registry.get_contract("0xC1")

        assert world is not None and world.name == "World" and world.kind == "world"
        assert [e.name for e in world.events] == ["Score"]
        assert world.functions == ()

        assert game is not None
        assert game.name == "GameImpl"
        assert game.kind == "DojoContract"
        assert [e.name for e in game.events] == ["Moved", "Score"]
        assert [f.name for f in game.functions] == ["attack"]

    def test_event_selectors(self, manifest_document):
        registry = AbiRegistry.from_document(manifest_document)
        game = registry.get_contract("0xc1")
        moved, score = game.events

        assert moved.qualified_name == "Game::MovedEvent"
        assert moved.selector == compute_selector("Moved")
        assert moved.inputs[0].name == "player"
        assert score.selector == "0xee"

    def test_function_selector_and_params(self, manifest_document):
        registry = AbiRegistry.from_document(manifest_document)
        attack = registry.get_contract("0xc1").functions[0]
        assert attack.selector == function_selector("attack")
        assert attack.inputs[0].type == "core::felt252"
        assert attack.state_mutability == "external"

    def test_manifest_events_and_lookups(self, manifest_document):
        registry = AbiRegistry.from_document(manifest_document)
        assert [e.name for e in registry.manifest_events()] == ["Score"]
        assert registry.event_by_selector("0x00EE").name == "Score"
        assert registry.function_by_selector(function_selector("attack")).name == "attack"
        assert registry.function_by_selector("0x1234") is None

    def test_deployable_addresses_and_summary(self, manifest_document):
        registry = AbiRegistry.from_document(manifest_document)
        assert registry.deployable_addresses() == ["0xA1", "0xC1"]
        summary = registry.summary()
        assert summary["type"] == "Dojo manifest"
        assert summary["contracts"] == 2
        assert summary["total_events"] == 3
        assert summary["total_functions"] == 1
        assert summary["manifest_events"] == 1
        assert summary["world"]["kind"] == "WorldContract"

    def test_manifest_event_without_selector_skipped(self, manifest_document):
        manifest_document["events"].append({"tag": "NoSelector"})
        registry = AbiRegistry.from_document(manifest_document)
        assert [e.name for e in registry.manifest_events()] == ["Score"]

    def test_contract_without_address_rejected(self, manifest_document):
        del manifest_document["contracts"][0]["address"]
        with pytest.raises(AbiFormatError):
            AbiRegistry.from_document(manifest_document)


# ===========================================================================
# Contract class
# ===========================================================================


class TestContractClassParsing:
    def test_single_undeployed_contract(self, contract_class_document):
        registry = AbiRegistry.from_document(contract_class_document, "token.contract_class.json")
        contracts = registry.contracts()
        assert len(contracts) == 1
        contract = contracts[0]
        assert contract.address == "unknown"
        assert contract.kind == "ContractClass"
        assert not contract.is_deployed
        assert registry.deployable_addresses() == []
        assert registry.get_contract("token") is contract

    def test_external_entry_points_become_functions(self, contract_class_document):
        registry = AbiRegistry.from_document(contract_class_document, "token.contract_class.json")
        functions = registry.contracts()[0].functions
        assert [(f.name, f.selector) for f in functions] == [("transfer", "0xaaa"), ("function_7", "0xbbb")]

    def test_constructor_not_listed(self, contract_class_document):
        registry = AbiRegistry.from_document(contract_class_document, "token.contract_class.json")
        assert registry.function_by_selector("0xccc") is None

    def test_events_from_abi(self, contract_class_document):
        registry = AbiRegistry.from_document(contract_class_document, "token.contract_class.json")
        events = registry.contracts()[0].events
        assert [e.name for e in events] == ["Transfer"]
        assert events[0].selector == event_selector("Transfer")

    def test_string_abi_accepted(self, contract_class_document):
        contract_class_document["abi"] = json.dumps(contract_class_document["abi"])
        registry = AbiRegistry.from_document(contract_class_document, "token.json")
        assert registry.contracts()[0].functions[0].name == "transfer"

    def test_summary(self, contract_class_document):
        summary = AbiRegistry.from_document(contract_class_document, "token.json").summary()
        assert summary["type"] == "Contract class"
        assert summary["version"] == "0.1.0"
        assert summary["contracts"] == 1
        assert summary["total_functions"] == 2

    def test_malformed_entry_point_rejected(self, contract_class_document):
        contract_class_document["entry_points_by_type"]["EXTERNAL"].append({"selector": "0x1"})
        with pytest.raises(AbiFormatError):
            AbiRegistry.from_document(contract_class_document, "token.json")


# ===========================================================================
# Plain ABI arrays and files
# ===========================================================================


class TestAbiArrays:
    def test_embedded_event_selector_wins(self):
        abi = [{"type": "event", "name": "Custom", "selector": "0x0042"}]
        assert extract_events(abi)[0].selector == "0x42"

    def test_functions_at_top_level_and_in_interfaces(self):
        abi = [
            {"type": "function", "name": "top"},
            {"type": "interface", "name": "x::IThing", "items": [{"type": "function", "name": "inner"}]},
            {"type": "struct", "name": "Ignored"},
        ]
        assert [f.name for f in extract_functions(abi)] == ["top", "inner"]

    def test_contract_name(self):
        assert extract_contract_name([{"type": "interface", "name": "pkg::IToken"}]) == "IToken"
        assert extract_contract_name([]) == "Unknown"

    def test_descriptor_from_abi(self):
        descriptor = descriptor_from_abi("0xabc", [{"type": "event", "name": "Transfer"}])
        assert descriptor.is_deployed
        assert descriptor.event_by_selector(event_selector("Transfer")).name == "Transfer"

    def test_load_abi_file(self, tmp_path, manifest_document):
        path = tmp_path / "manifest.json"
        path.write_text(json.dumps(manifest_document), encoding="utf-8")
        registry = AbiRegistry.from_file(str(path))
        assert registry.format_name == "Dojo manifest"

    def test_missing_file(self, tmp_path):
        with pytest.raises(AbiFormatError, match="not found"):
            load_abi_file(str(tmp_path / "missing.json"))

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(AbiFormatError, match="not valid JSON"):
            load_abi_file(str(path))

    def test_manifest_with_no_contracts(self):
        document = {
            "world": {"address": "0xA1", "class_hash": "0xW0"},
            "contracts": [],
            "events": [{"tag": "Score", "selector": "0xEE"}],
        }
        assert isinstance(detect_abi_form(document), ManifestDocument)
        registry = AbiRegistry.from_document(document)
        contracts = registry.contracts()
        assert [(c.name, c.address) for c in contracts] == [("World", "0xA1")]
        assert [e.name for e in contracts[0].events] == ["Score"]
        assert registry.deployable_addresses() == ["0xA1"]

"""
Shared pytest fixtures for starky tests.

Provides sample ABI documents and in-memory stand-ins for the Starknet node
and the Datadog sink, so no test touches the network.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest

from starky.records import RawEvent, RecordFactory
from starky.rpc_client import EventsPage

# ---------------------------------------------------------------------------
# Sample ABI documents
# ---------------------------------------------------------------------------


def make_manifest() -> Dict[str, Any]:
    """Dojo manifest with one world, one game contract and one global event."""
    return {
        "world": {"address": "0xA1", "class_hash": "0xW0", "kind": "WorldContract"},
        "contracts": [
            {
                "address": "0xC1",
                "class_hash": "0xCC",
                "kind": "DojoContract",
                "abi": [
                    {"type": "impl", "name": "GameImpl", "interface_name": "game::IGame"},
                    {
                        "type": "interface",
                        "name": "game::IGame",
                        "items": [
                            {
                                "type": "function",
                                "name": "attack",
                                "inputs": [{"name": "target", "type": "core::felt252"}],
                                "outputs": [],
                                "state_mutability": "external",
                            }
                        ],
                    },
                    {
                        "type": "event",
                        "name": "Game::MovedEvent",
                        "kind": "struct",
                        "members": [{"name": "player", "type": "core::felt252", "kind": "key"}],
                    },
                ],
            }
        ],
        "events": [{"tag": "Score", "selector": "0xEE", "members": ["player", "points"]}],
    }


def make_contract_class() -> Dict[str, Any]:
    """Scarb compiled contract class with two external entry points."""
    return {
        "sierra_program": ["0x1", "0x2"],
        "contract_class_version": "0.1.0",
        "entry_points_by_type": {
            "EXTERNAL": [
                {"selector": "0x0AAA", "function_idx": 0},
                {"selector": "0xBBB", "function_idx": 7},
            ],
            "L1_HANDLER": [],
            "CONSTRUCTOR": [{"selector": "0xCCC", "function_idx": 1}],
        },
        "abi": [
            {
                "type": "interface",
                "name": "token::IToken",
                "items": [
                    {
                        "type": "function",
                        "name": "transfer",
                        "inputs": [{"name": "to", "type": "felt"}],
                        "outputs": [],
                        "state_mutability": "external",
                    }
                ],
            },
            {"type": "event", "name": "token::Transfer", "kind": "struct", "members": []},
        ],
    }


@pytest.fixture
def manifest_document() -> Dict[str, Any]:
    return make_manifest()


@pytest.fixture
def contract_class_document() -> Dict[str, Any]:
    return make_contract_class()


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


FIXED_NOW = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


@pytest.fixture
def record_factory() -> RecordFactory:
    return RecordFactory(network="sepolia", clock=lambda: FIXED_NOW)


def make_event(
    selector: str = "0x1",
    address: str = "0xc1",
    tx_hash: Optional[str] = "0xt1",
    block_number: Optional[int] = 10,
) -> RawEvent:
    return RawEvent(
        from_address=address,
        keys=(selector,) if selector else (),
        data=("0x5",),
        block_number=block_number,
        transaction_hash=tx_hash,
    )


class FakeSource:
    """In-memory Starknet node.

    ``heads`` are returned by successive ``get_block_number`` calls (the last
    one repeats). ``pages`` maps a continuation token (``None`` for the first
    page) to ``(events, next_token)``.
    """

    def __init__(
        self,
        heads: Optional[List[int]] = None,
        pages: Optional[Dict[Optional[str], Any]] = None,
        transactions: Optional[Dict[str, Any]] = None,
        traces: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.heads = list(heads or [100])
        self.pages = pages if pages is not None else {None: ([], None)}
        self.transactions = transactions or {}
        self.traces = traces or {}
        self.event_calls: List[Dict[str, Any]] = []
        self.tx_calls: List[str] = []
        self.trace_calls: List[str] = []
        self.on_get_events = None

    def get_block_number(self) -> int:
        if len(self.heads) > 1:
            return self.heads.pop(0)
        return self.heads[0]

    def get_events(self, **kwargs: Any) -> EventsPage:
        self.event_calls.append(kwargs)
        if self.on_get_events is not None:
            self.on_get_events(kwargs)
        events, next_token = self.pages[kwargs.get("continuation_token")]
        return EventsPage(events=tuple(events), continuation_token=next_token)

    def get_transaction_by_hash(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        self.tx_calls.append(tx_hash)
        result = self.transactions.get(tx_hash)
        if isinstance(result, Exception):
            raise result
        return result

    def trace_transaction(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        self.trace_calls.append(tx_hash)
        result = self.traces.get(tx_hash)
        if isinstance(result, Exception):
            raise result
        return result


class FakeSink:
    def __init__(self, error: Optional[Exception] = None) -> None:
        self.batches: List[List[Any]] = []
        self.error = error

    def send(self, records) -> int:
        if self.error is not None:
            raise self.error
        self.batches.append(list(records))
        return 202

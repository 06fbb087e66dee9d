from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple

EVENT_KIND = "starknet_event"
FUNCTION_CALL_KIND = "starknet_function_call"
DEFAULT_SERVICE = "starky"
DEFAULT_SOURCE = "starknet"


def _hex_tuple(raw: Any) -> Tuple[str, ...]:
    if not isinstance(raw, list):
        return ()
    return tuple(str(item) for item in raw)


def _block_number(raw: Any) -> Optional[int]:
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str):
        candidate = raw.strip().lower()
        try:
            return int(candidate, 16) if candidate.startswith("0x") else int(candidate)
        except ValueError:
            return None
    return None


@dataclass(frozen=True)
class RawEvent:
    from_address: str
    keys: Tuple[str, ...]
    data: Tuple[str, ...]
    block_number: Optional[int]
    transaction_hash: Optional[str]

    @classmethod
    def from_rpc(cls, payload: Mapping[str, Any]) -> "RawEvent":
        return cls(
            from_address=str(payload.get("from_address") or ""),
            keys=_hex_tuple(payload.get("keys")),
            data=_hex_tuple(payload.get("data")),
            block_number=_block_number(payload.get("block_number")),
            transaction_hash=payload.get("transaction_hash"),
        )

    @property
    def selector(self) -> Optional[str]:
        return self.keys[0] if self.keys else None


@dataclass(frozen=True)
class ProcessedLogRecord:
    kind: str
    service: str
    source: str
    tags: Tuple[str, ...]
    contract_address: Optional[str]
    selector: Optional[str]
    resolved_name: str
    raw_keys: Tuple[str, ...]
    raw_data: Tuple[str, ...]
    block_number: Optional[int]
    transaction_hash: Optional[str]
    timestamp: str

    def to_payload(self) -> Dict[str, Any]:
        """Datadog Logs intake entry."""
        name_field = "function_name" if self.kind == FUNCTION_CALL_KIND else "event_name"
        return {
            "message": self.kind,
            "ddsource": self.source,
            "service": self.service,
            "ddtags": ",".join(self.tags),
            "contract_address": self.contract_address,
            "selector": self.selector,
            name_field: self.resolved_name,
            "keys": list(self.raw_keys),
            "data": list(self.raw_data),
            "block_number": self.block_number,
            "tx_hash": self.transaction_hash,
            "timestamp": self.timestamp,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RecordFactory:
    network: str
    service: str = DEFAULT_SERVICE
    source: str = DEFAULT_SOURCE
    clock: Callable[[], datetime] = field(default=_utcnow)

    def _tags(self, contract_address: Optional[str], extra: Sequence[str]) -> Tuple[str, ...]:
        tags = [f"app:{self.service}", f"network:{self.network}"]
        if contract_address:
            tags.append(f"contract:{contract_address}")
        tags.extend(extra)
        return tuple(tags)

    def event_record(self, event: RawEvent, resolved_name: str) -> ProcessedLogRecord:
        return ProcessedLogRecord(
            kind=EVENT_KIND,
            service=self.service,
            source=self.source,
            tags=self._tags(event.from_address, [f"event:{resolved_name}"]),
            contract_address=event.from_address or None,
            selector=event.selector,
            resolved_name=resolved_name,
            raw_keys=event.keys,
            raw_data=event.data,
            block_number=event.block_number,
            transaction_hash=event.transaction_hash,
            timestamp=self.clock().isoformat(),
        )

    def function_call_record(
        self,
        selector: Optional[str],
        resolved_name: str,
        contract_address: Optional[str],
        calldata: Sequence[str],
        transaction_hash: Optional[str],
        block_number: Optional[int],
        internal: bool = False,
    ) -> ProcessedLogRecord:
        call_tag = "call:internal" if internal else "call:external"
        return ProcessedLogRecord(
            kind=FUNCTION_CALL_KIND,
            service=self.service,
            source=self.source,
            tags=self._tags(contract_address, [f"function:{resolved_name}", call_tag]),
            contract_address=contract_address,
            selector=selector,
            resolved_name=resolved_name,
            raw_keys=(),
            raw_data=tuple(calldata),
            block_number=block_number,
            transaction_hash=transaction_hash,
            timestamp=self.clock().isoformat(),
        )

"""
Typed Starknet transactions and execution-trace calls.

RPC payloads are validated once in ``parse_transaction``; downstream code
works on the dataclasses and never probes raw dict fields.
"""

from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Tuple, Union

from .errors import TransactionFormatError

SELECTOR_OFFSET = 0
# Address of the called contract sits right after the selector in invoke calldata.
CONTRACT_ADDRESS_OFFSET = 1


def _hex_list(raw: Any, field: str) -> Tuple[str, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list) or not all(isinstance(item, str) for item in raw):
        raise TransactionFormatError(f"{field} must be an array of hex strings.")
    return tuple(item.lower() for item in raw)


def _optional_str(raw: Mapping[str, Any], field: str) -> Optional[str]:
    value = raw.get(field)
    if value is None:
        return None
    if not isinstance(value, str):
        raise TransactionFormatError(f"{field} must be a string.")
    return value.lower()


@dataclass(frozen=True)
class InvokeTransaction:
    hash: str
    version: str
    sender_address: Optional[str]
    calldata: Tuple[str, ...]

    kind = "INVOKE"

    @property
    def called_selector(self) -> Optional[str]:
        if len(self.calldata) > SELECTOR_OFFSET:
            return self.calldata[SELECTOR_OFFSET]
        return None

    @property
    def called_contract(self) -> Optional[str]:
        if len(self.calldata) > CONTRACT_ADDRESS_OFFSET:
            return self.calldata[CONTRACT_ADDRESS_OFFSET]
        return None


@dataclass(frozen=True)
class L1HandlerTransaction:
    hash: str
    version: str
    contract_address: Optional[str]
    entry_point_selector: Optional[str]
    calldata: Tuple[str, ...]

    kind = "L1_HANDLER"


@dataclass(frozen=True)
class DeclareTransaction:
    hash: str
    version: str
    sender_address: Optional[str]
    class_hash: Optional[str]

    kind = "DECLARE"


@dataclass(frozen=True)
class DeployTransaction:
    hash: str
    version: str
    class_hash: Optional[str]
    constructor_calldata: Tuple[str, ...]

    kind = "DEPLOY"


@dataclass(frozen=True)
class DeployAccountTransaction:
    hash: str
    version: str
    class_hash: Optional[str]
    constructor_calldata: Tuple[str, ...]

    kind = "DEPLOY_ACCOUNT"


Transaction = Union[
    InvokeTransaction,
    L1HandlerTransaction,
    DeclareTransaction,
    DeployTransaction,
    DeployAccountTransaction,
]


def parse_transaction(raw: Any, tx_hash: Optional[str] = None) -> Transaction:
    if not isinstance(raw, Mapping):
        raise TransactionFormatError("Transaction payload must be an object.")

    tx_type = raw.get("type")
    if not isinstance(tx_type, str):
        raise TransactionFormatError("Transaction payload has no 'type'.")

    hash_value = _optional_str(raw, "transaction_hash") or (tx_hash or "").lower()
    version = str(raw.get("version", "0x0"))
    kind = tx_type.upper()

    if kind == "INVOKE":
        return InvokeTransaction(
            hash=hash_value,
            version=version,
            sender_address=_optional_str(raw, "sender_address") or _optional_str(raw, "contract_address"),
            calldata=_hex_list(raw.get("calldata"), "calldata"),
        )
    if kind == "L1_HANDLER":
        return L1HandlerTransaction(
            hash=hash_value,
            version=version,
            contract_address=_optional_str(raw, "contract_address"),
            entry_point_selector=_optional_str(raw, "entry_point_selector"),
            calldata=_hex_list(raw.get("calldata"), "calldata"),
        )
    if kind == "DECLARE":
        return DeclareTransaction(
            hash=hash_value,
            version=version,
            sender_address=_optional_str(raw, "sender_address"),
            class_hash=_optional_str(raw, "class_hash"),
        )
    if kind == "DEPLOY":
        return DeployTransaction(
            hash=hash_value,
            version=version,
            class_hash=_optional_str(raw, "class_hash"),
            constructor_calldata=_hex_list(raw.get("constructor_calldata"), "constructor_calldata"),
        )
    if kind == "DEPLOY_ACCOUNT":
        return DeployAccountTransaction(
            hash=hash_value,
            version=version,
            class_hash=_optional_str(raw, "class_hash"),
            constructor_calldata=_hex_list(raw.get("constructor_calldata"), "constructor_calldata"),
        )
    raise TransactionFormatError(f"Unsupported transaction type '{tx_type}'.")


@dataclass(frozen=True)
class TraceCall:
    contract_address: str
    entry_point_selector: str
    calldata: Tuple[str, ...]
    depth: int


def _walk_calls(invocation: Mapping[str, Any], depth: int, out: List[TraceCall]) -> None:
    calls = invocation.get("calls")
    if calls is None:
        return
    if not isinstance(calls, list):
        raise TransactionFormatError("Trace 'calls' must be an array.")
    for call in calls:
        if not isinstance(call, Mapping):
            continue
        address = call.get("contract_address")
        selector = call.get("entry_point_selector")
        if isinstance(address, str) and isinstance(selector, str):
            out.append(
                TraceCall(
                    contract_address=address.lower(),
                    entry_point_selector=selector.lower(),
                    calldata=_hex_list(call.get("calldata"), "calldata"),
                    depth=depth,
                )
            )
        _walk_calls(call, depth + 1, out)


def parse_trace_calls(trace: Any) -> List[TraceCall]:
    """Internal calls below the top-level invocation, depth-first. Reverted executions yield nothing."""
    if not isinstance(trace, Mapping):
        return []
    invocation = trace.get("execute_invocation") or trace.get("function_invocation")
    if not isinstance(invocation, Mapping) or "revert_reason" in invocation:
        return []
    calls: List[TraceCall] = []
    _walk_calls(invocation, 1, calls)
    return calls

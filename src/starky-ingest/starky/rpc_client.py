import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

import requests

from .errors import TransientNetworkError
from .records import RawEvent

TXN_HASH_NOT_FOUND = 29
CONTRACT_NOT_FOUND = 20


class StarknetRpcError(TransientNetworkError):
    """JSON-RPC error object returned by the node."""

    def __init__(self, message: str, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class EventsPage:
    events: Tuple[RawEvent, ...]
    continuation_token: Optional[str] = None


def _block_id(block: Union[int, str]) -> Union[Dict[str, int], str]:
    if isinstance(block, int) and not isinstance(block, bool):
        return {"block_number": block}
    if isinstance(block, str) and block in {"latest", "pending"}:
        return block
    raise ValueError("block must be a block number, 'latest' or 'pending'.")


class StarknetRpcClient:
    """Minimal Starknet JSON-RPC 2.0 client (HTTP POST) with basic retry."""

    def __init__(
        self,
        rpc_url: str,
        timeout: int = 10,
        max_retries: int = 3,
        backoff_seconds: float = 0.5,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        url = (rpc_url or "").strip()
        if not url:
            raise ValueError("rpc_url must be a non-empty string.")

        self.rpc_url = url
        self.timeout = timeout
        self.max_retries = max(1, int(max_retries))
        self.backoff_seconds = float(backoff_seconds)
        self.session = requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})
        if headers:
            self.session.headers.update(dict(headers))
        self._next_id = 1

    def call(self, method: str, params: Optional[Union[List[Any], Dict[str, Any]]] = None) -> Any:
        if not isinstance(method, str) or not method.strip():
            raise ValueError("method must be a non-empty string.")
        if params is None:
            params = []
        if not isinstance(params, (list, dict)):
            raise ValueError("params must be a list or an object.")

        payload = {
            "jsonrpc": "2.0",
            "id": self._next_id,
            "method": method,
            "params": params,
        }
        self._next_id += 1

        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                response = self.session.post(
                    self.rpc_url,
                    json=payload,
                    timeout=self.timeout,
                )
                if response.status_code in {429} or response.status_code >= 500:
                    if attempt < self.max_retries:
                        time.sleep(self.backoff_seconds * attempt)
                        continue

                response.raise_for_status()
                data = response.json()
            except (requests.RequestException, ValueError) as exc:
                last_error = exc
                if attempt < self.max_retries:
                    time.sleep(self.backoff_seconds * attempt)
                    continue
                raise TransientNetworkError(f"{method} failed: {exc}") from exc

            if not isinstance(data, dict):
                raise TransientNetworkError(f"{method}: unexpected JSON-RPC response (non-object).")

            error_obj = data.get("error")
            if isinstance(error_obj, dict):
                code = error_obj.get("code")
                message = error_obj.get("message")
                err_data = error_obj.get("data")
                parts: list[str] = []
                if code is not None:
                    parts.append(f"code {code}")
                if message:
                    parts.append(str(message))
                if err_data:
                    parts.append(str(err_data))
                detail = ": ".join(parts) if parts else "unknown error"
                raise StarknetRpcError(f"RPC error in {method}: {detail}.", code=code)

            if "result" not in data:
                raise TransientNetworkError(f"{method}: unexpected JSON-RPC response (missing result).")
            return data.get("result")

        if last_error:
            raise TransientNetworkError(f"{method} failed: {last_error}") from last_error
        raise TransientNetworkError(f"{method} failed without raising an exception.")

    def get_block_number(self) -> int:
        result = self.call("starknet_blockNumber", [])
        if isinstance(result, bool) or not isinstance(result, int):
            raise TransientNetworkError("starknet_blockNumber returned unexpected result.")
        return result

    def get_events(
        self,
        from_block: Union[int, str],
        to_block: Union[int, str] = "latest",
        address: Optional[str] = None,
        chunk_size: int = 300,
        continuation_token: Optional[str] = None,
        keys: Optional[List[List[str]]] = None,
    ) -> EventsPage:
        event_filter: Dict[str, Any] = {
            "from_block": _block_id(from_block),
            "to_block": _block_id(to_block),
            "keys": keys or [],
            "chunk_size": int(chunk_size),
        }
        if address:
            event_filter["address"] = address
        if continuation_token:
            event_filter["continuation_token"] = continuation_token

        result = self.call("starknet_getEvents", {"filter": event_filter})
        if not isinstance(result, dict):
            raise TransientNetworkError("starknet_getEvents returned unexpected result.")
        raw_events = result.get("events") or []
        events = tuple(RawEvent.from_rpc(entry) for entry in raw_events if isinstance(entry, dict))
        return EventsPage(events=events, continuation_token=result.get("continuation_token") or None)

    def get_transaction_by_hash(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        try:
            result = self.call("starknet_getTransactionByHash", {"transaction_hash": tx_hash})
        except StarknetRpcError as exc:
            if exc.code == TXN_HASH_NOT_FOUND:
                return None
            raise
        return result if isinstance(result, dict) else None

    def trace_transaction(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        result = self.call("starknet_traceTransaction", {"transaction_hash": tx_hash})
        return result if isinstance(result, dict) else None

    def get_class_at(self, address: str, block: Union[int, str] = "latest") -> Optional[Dict[str, Any]]:
        try:
            result = self.call(
                "starknet_getClassAt",
                {"block_id": _block_id(block), "contract_address": address},
            )
        except StarknetRpcError as exc:
            if exc.code == CONTRACT_NOT_FOUND:
                return None
            raise
        return result if isinstance(result, dict) else None

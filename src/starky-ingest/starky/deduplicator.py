import logging
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Set

from .errors import TransactionFormatError, TransientNetworkError
from .records import ProcessedLogRecord, RawEvent, RecordFactory
from .resolver import NameResolver
from .selectors import unknown_function_label
from .transactions import InvokeTransaction, TraceCall, parse_trace_calls, parse_transaction

logger = logging.getLogger(__name__)


class TransactionDeduplicator:
    """
    Expands the transactions behind a page of events into function-call records.

    Each transaction hash is fetched at most once per cycle: callers pass the
    cycle's ``seen`` set, which is updated in place.
    """

    def __init__(
        self,
        source: Any,
        resolver: NameResolver,
        record_factory: RecordFactory,
        fetch_delay_seconds: float = 0.1,
        trace_calls: bool = True,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.source = source
        self.resolver = resolver
        self.record_factory = record_factory
        self.fetch_delay_seconds = max(0.0, float(fetch_delay_seconds))
        self.trace_calls = trace_calls
        self._sleep = sleep

    def extract(self, events: Sequence[RawEvent], seen: Set[str]) -> List[ProcessedLogRecord]:
        blocks: Dict[str, Optional[int]] = {}
        for event in events:
            if event.transaction_hash and event.transaction_hash not in blocks:
                blocks[event.transaction_hash] = event.block_number

        pending = [tx_hash for tx_hash in blocks if tx_hash not in seen]
        records: List[ProcessedLogRecord] = []
        for index, tx_hash in enumerate(pending):
            if index and self.fetch_delay_seconds:
                self._sleep(self.fetch_delay_seconds)
            seen.add(tx_hash)
            try:
                records.extend(self._records_for(tx_hash, blocks[tx_hash]))
            except (TransientNetworkError, TransactionFormatError) as exc:
                logger.warning("Skipping transaction %s: %s", tx_hash, exc, extra={"tx_hash": tx_hash})
            except Exception:  # pylint: disable=broad-except
                logger.exception("Unexpected error processing transaction %s", tx_hash, extra={"tx_hash": tx_hash})
        return records

    def _records_for(self, tx_hash: str, block_number: Optional[int]) -> List[ProcessedLogRecord]:
        raw = self.source.get_transaction_by_hash(tx_hash)
        if raw is None:
            logger.debug("Transaction %s not found", tx_hash)
            return []
        tx = parse_transaction(raw, tx_hash)
        if not isinstance(tx, InvokeTransaction):
            return []
        if tx.called_selector is None:
            logger.debug("Invoke transaction %s has no calldata", tx_hash, extra={"tx_hash": tx_hash})
            return []

        records = [self._external_call_record(tx, block_number)]
        if self.trace_calls:
            try:
                calls = parse_trace_calls(self.source.trace_transaction(tx_hash))
            except (TransientNetworkError, TransactionFormatError) as exc:
                logger.warning("Trace unavailable for %s: %s", tx_hash, exc, extra={"tx_hash": tx_hash})
                calls = []
            for call in calls:
                records.append(self._internal_call_record(tx, call, block_number))
        return records

    def _function_name(self, selector: Optional[str]) -> str:
        if not selector:
            return unknown_function_label("")
        name = self.resolver.lookup_function(selector)
        if name is None:
            logger.debug("No function name for selector %s", selector, extra={"selector": selector})
            return unknown_function_label(selector)
        return name

    def _external_call_record(self, tx: InvokeTransaction, block_number: Optional[int]) -> ProcessedLogRecord:
        selector = tx.called_selector
        return self.record_factory.function_call_record(
            selector=selector,
            resolved_name=self._function_name(selector),
            contract_address=tx.called_contract,
            calldata=tx.calldata,
            transaction_hash=tx.hash,
            block_number=block_number,
        )

    def _internal_call_record(
        self, tx: InvokeTransaction, call: TraceCall, block_number: Optional[int]
    ) -> ProcessedLogRecord:
        return self.record_factory.function_call_record(
            selector=call.entry_point_selector,
            resolved_name=self._function_name(call.entry_point_selector),
            contract_address=call.contract_address,
            calldata=call.calldata,
            transaction_hash=tx.hash,
            block_number=block_number,
            internal=True,
        )

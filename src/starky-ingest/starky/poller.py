"""
Resumable event polling loop.

The poller walks a small state machine: BOOTSTRAPPING resolves the starting
block, POLLING_PAGE follows the node's continuation-token chain for each
watched address, CYCLE_IDLE advances the cursor and sleeps. Any error inside
a cycle leaves the cursor where it was, so the next cycle re-reads the same
range (delivery is at-least-once).
"""

import enum
import logging
import threading
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence, Set, Union

from .deduplicator import TransactionDeduplicator
from .errors import TransientNetworkError
from .records import ProcessedLogRecord, RawEvent, RecordFactory
from .resolver import UNKNOWN_NAME, NameResolver
from .selectors import unknown_event_label

logger = logging.getLogger(__name__)

LATEST = "latest"
DEFAULT_LOOKBACK_BLOCKS = 100
DEFAULT_INTERVAL_SECONDS = 1.5
DEFAULT_CHUNK_SIZE = 300


class PollerState(enum.Enum):
    BOOTSTRAPPING = "bootstrapping"
    POLLING_PAGE = "polling_page"
    CYCLE_IDLE = "cycle_idle"


@dataclass
class IngestionCursor:
    block: int
    continuation_token: Optional[str] = None

    def advance(self, head: int) -> None:
        self.block = head
        self.continuation_token = None


class EventPoller:
    def __init__(
        self,
        source: Any,
        sink: Any,
        resolver: NameResolver,
        deduplicator: TransactionDeduplicator,
        record_factory: RecordFactory,
        addresses: Sequence[str] = (),
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        from_block: Union[int, str, None] = None,
        lookback_blocks: int = DEFAULT_LOOKBACK_BLOCKS,
        exclude_event_names: Iterable[str] = (),
        stop_event: Optional[threading.Event] = None,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be a positive integer.")
        if lookback_blocks < 0:
            raise ValueError("lookback_blocks must be non-negative.")
        self.source = source
        self.sink = sink
        self.resolver = resolver
        self.deduplicator = deduplicator
        self.record_factory = record_factory
        self.addresses = list(addresses)
        self.chunk_size = chunk_size
        self.interval_seconds = max(0.0, float(interval_seconds))
        self.from_block = from_block
        self.lookback_blocks = lookback_blocks
        self.exclude_event_names: Set[str] = set(exclude_event_names)
        self.stop_event = stop_event or threading.Event()
        self.state = PollerState.BOOTSTRAPPING
        self.cursor: Optional[IngestionCursor] = None

    def bootstrap(self) -> IngestionCursor:
        self.state = PollerState.BOOTSTRAPPING
        if isinstance(self.from_block, int) and not isinstance(self.from_block, bool):
            start = max(0, self.from_block)
        else:
            head = self.source.get_block_number()
            lookback = 0 if self.from_block == LATEST else self.lookback_blocks
            start = max(0, head - lookback)
        self.cursor = IngestionCursor(block=start)
        self.state = PollerState.POLLING_PAGE
        logger.info("Starting from block %d", start, extra={"block_number": start})
        return self.cursor

    def run_cycle(self) -> int:
        """Poll every address once from the cursor to a fresh head. Returns the number of records sent."""
        cursor = self.cursor if self.cursor is not None else self.bootstrap()

        self.state = PollerState.POLLING_PAGE
        head = self.source.get_block_number()
        seen: Set[str] = set()
        sent = 0
        targets: List[Optional[str]] = list(self.addresses) or [None]

        for address in targets:
            events = self._poll_address(cursor, address, head)
            if events is None:
                logger.info("Stop requested; cursor stays at block %d", cursor.block)
                return sent
            records = self._build_records(events, seen)
            if records:
                self.sink.send(records)
                sent += len(records)
                logger.info(
                    "Sent %d logs for %s (blocks %d-%d)",
                    len(records),
                    address or "all contracts",
                    cursor.block,
                    head,
                )

        self.state = PollerState.CYCLE_IDLE
        cursor.advance(head)
        logger.debug("Cursor advanced to block %d", head, extra={"block_number": head})
        return sent

    def _poll_address(
        self, cursor: IngestionCursor, address: Optional[str], head: int
    ) -> Optional[List[RawEvent]]:
        """All pages for one address, or None if a stop was requested between pages."""
        cursor.continuation_token = None
        events: List[RawEvent] = []
        while True:
            page = self.source.get_events(
                from_block=cursor.block,
                to_block=head,
                address=address,
                chunk_size=self.chunk_size,
                continuation_token=cursor.continuation_token,
            )
            events.extend(page.events)
            cursor.continuation_token = page.continuation_token
            if not page.continuation_token:
                return events
            if self.stop_event.is_set():
                cursor.continuation_token = None
                return None

    def _event_name(self, event: RawEvent) -> str:
        selector = event.selector
        if not selector:
            return UNKNOWN_NAME
        name = self.resolver.lookup_event(selector, event.from_address)
        if name is None:
            logger.debug("No event name for selector %s", selector, extra={"selector": selector})
            return unknown_event_label(selector)
        return name

    def _build_records(self, events: Sequence[RawEvent], seen: Set[str]) -> List[ProcessedLogRecord]:
        records: List[ProcessedLogRecord] = []
        for event in events:
            name = self._event_name(event)
            if name in self.exclude_event_names:
                continue
            records.append(self.record_factory.event_record(event, name))
        records.extend(self.deduplicator.extract(events, seen))
        return records

    def stop(self) -> None:
        self.stop_event.set()

    def run_forever(self) -> None:
        """Run cycles until the stop event is set. Errors never end the loop."""
        while not self.stop_event.is_set():
            try:
                if self.cursor is None:
                    self.bootstrap()
                self.run_cycle()
            except TransientNetworkError as exc:
                logger.warning("Ingest error, retrying in %.1fs: %s", self.interval_seconds, exc)
            except Exception:  # pylint: disable=broad-except
                logger.exception("Unexpected ingest error, retrying in %.1fs", self.interval_seconds)
            self.state = PollerState.CYCLE_IDLE
            self.stop_event.wait(self.interval_seconds)
        logger.info("Poller stopped")

import json
import logging
import time
from typing import Any, Dict, List, Optional, Sequence

import requests

from .errors import TransientNetworkError
from .records import ProcessedLogRecord

logger = logging.getLogger(__name__)

DEFAULT_PREVIEW = 2


def intake_url(site: str) -> str:
    return f"https://http-intake.logs.{site.strip().rstrip('/')}/api/v2/logs"


def _mask(value: Optional[str]) -> Optional[str]:
    if not value:
        return value
    return value[:10] + "..."


class DatadogLogSink:
    """Sends processed records to the Datadog Logs intake (v2) with basic retry."""

    def __init__(
        self,
        site: str,
        api_key: str,
        timeout: int = 15,
        max_retries: int = 3,
        backoff_seconds: float = 0.5,
        mask_logs: bool = True,
        preview: int = DEFAULT_PREVIEW,
        dump_file: Optional[str] = None,
    ) -> None:
        if not site or not api_key:
            raise ValueError("Datadog site and api_key are required.")
        self.url = intake_url(site)
        self.timeout = timeout
        self.max_retries = max(1, int(max_retries))
        self.backoff_seconds = backoff_seconds
        self.mask_logs = mask_logs
        self.preview = max(0, int(preview))
        self.dump_file = dump_file
        self.session = requests.Session()
        self.session.headers.update({"DD-API-KEY": api_key, "Content-Type": "application/json"})

    def send(self, records: Sequence[ProcessedLogRecord]) -> int:
        """POST one batch; returns the HTTP status. Empty batches are not sent."""
        if not records:
            return 0
        entries = [record.to_payload() for record in records]
        self._log_preview(entries)
        if self.dump_file:
            self._dump(entries)
        status = self._post(entries)
        logger.debug("Datadog intake status: %d", status)
        return status

    def _log_preview(self, entries: List[Dict[str, Any]]) -> None:
        if not logger.isEnabledFor(logging.DEBUG):
            return
        logger.debug("Posting %d logs to %s", len(entries), self.url)
        for index, entry in enumerate(entries[: self.preview], start=1):
            sample = dict(entry)
            if self.mask_logs:
                sample["tx_hash"] = _mask(sample.get("tx_hash"))
                sample["contract_address"] = _mask(sample.get("contract_address"))
            logger.debug("sample %d %s", index, json.dumps(sample))

    def _dump(self, entries: List[Dict[str, Any]]) -> None:
        try:
            with open(self.dump_file, "w", encoding="utf-8") as handle:
                json.dump(entries, handle, indent=2)
        except OSError as exc:
            logger.warning("Could not write dump file %s: %s", self.dump_file, exc)

    def _post(self, entries: List[Dict[str, Any]]) -> int:
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_retries + 1):
            try:
                response = self.session.post(
                    self.url,
                    json=entries,
                    timeout=self.timeout,
                )
                if (response.status_code == 429 or response.status_code >= 500) and attempt < self.max_retries:
                    time.sleep(self.backoff_seconds * attempt)
                    continue

                response.raise_for_status()
                return response.status_code
            except requests.RequestException as exc:
                last_error = exc
                if attempt < self.max_retries:
                    time.sleep(self.backoff_seconds * attempt)
                else:
                    detail = getattr(getattr(exc, "response", None), "text", "") or str(exc)
                    raise TransientNetworkError(f"Datadog logs intake error: {detail}") from exc

        if last_error:
            raise TransientNetworkError(f"Datadog logs intake error: {last_error}") from last_error
        raise TransientNetworkError("Datadog request failed without raising an exception.")

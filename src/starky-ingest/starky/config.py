import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_NETWORK = "mainnet"
DEFAULT_CHUNK_SIZE = 300
DEFAULT_CONFIG_FILE = "starky.config.json"

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass
class Config:
    rpc_url: Optional[str] = None
    network: str = DEFAULT_NETWORK
    chunk_size: int = DEFAULT_CHUNK_SIZE
    dd_site: Optional[str] = None
    dd_api_key: Optional[str] = None
    request_timeout: int = 10
    max_retries: int = 3
    backoff_seconds: float = 0.5
    config_file: str = DEFAULT_CONFIG_FILE
    tx_fetch_delay_seconds: float = 0.1
    trace_calls: bool = True
    auto_fetch_abi: bool = False
    log_mask: bool = True
    log_format: str = "human"
    log_file: Optional[str] = None

    def require_ingest_settings(self) -> None:
        missing = [
            name
            for name, value in (
                ("STARKNET_RPC_URL", self.rpc_url),
                ("DD_SITE", self.dd_site),
                ("DD_API_KEY", self.dd_api_key),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(f"Missing required settings: {', '.join(missing)}.")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _env_number(name: str, default: Any, cast: type) -> Any:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return cast(value.strip())
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got '{value}'.") from exc


def load_config() -> Config:
    """Load configuration from environment variables (and a local .env file)."""
    load_dotenv()

    rpc_url = (os.getenv("STARKNET_RPC_URL") or "").strip() or None
    dd_site = (os.getenv("DD_SITE") or "").strip() or None
    dd_api_key = (os.getenv("DD_API_KEY") or "").strip() or None
    chunk_size = _env_number("STARKY_CHUNK_SIZE", DEFAULT_CHUNK_SIZE, int)
    if chunk_size <= 0:
        raise ConfigurationError("STARKY_CHUNK_SIZE must be a positive integer.")
    log_format = os.getenv("STARKY_LOG_FORMAT", "human").strip().lower()
    if log_format not in {"human", "json"}:
        raise ConfigurationError("STARKY_LOG_FORMAT must be 'human' or 'json'.")

    return Config(
        rpc_url=rpc_url,
        network=os.getenv("STARKNET_NETWORK", DEFAULT_NETWORK).strip().lower() or DEFAULT_NETWORK,
        chunk_size=chunk_size,
        dd_site=dd_site,
        dd_api_key=dd_api_key,
        request_timeout=_env_number("REQUEST_TIMEOUT", 10, int),
        max_retries=_env_number("REQUEST_RETRIES", 3, int),
        backoff_seconds=_env_number("REQUEST_BACKOFF_SECONDS", 0.5, float),
        config_file=os.getenv("STARKY_CONFIG_FILE", DEFAULT_CONFIG_FILE),
        tx_fetch_delay_seconds=_env_number("STARKY_TX_FETCH_DELAY_MS", 100, int) / 1000.0,
        trace_calls=_env_bool("STARKY_TRACE_CALLS", True),
        auto_fetch_abi=_env_bool("STARKY_AUTO_FETCH_ABI", False),
        log_mask=_env_bool("STARKY_LOG_MASK", True),
        log_format=log_format,
        log_file=os.getenv("STARKY_LOG_FILE") or None,
    )


@dataclass
class WatchConfig:
    """Contents of the watch file (``starky.config.json``). Every key is optional."""

    active_board_id: Optional[str] = None
    abi_file: Optional[str] = None
    contracts: List[str] = field(default_factory=list)
    event_names: List[str] = field(default_factory=list)
    exclude_event_names: List[str] = field(default_factory=list)
    contract_abis: List[Dict[str, Any]] = field(default_factory=list)
    manual_event_mappings: List[Dict[str, str]] = field(default_factory=list)
    manual_function_mappings: List[Dict[str, str]] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)

    def event_overrides(self) -> Dict[str, str]:
        return _mapping_pairs(self.manual_event_mappings)

    def function_overrides(self) -> Dict[str, str]:
        return _mapping_pairs(self.manual_function_mappings)


_WATCH_KEYS = {
    "activeBoardId": "active_board_id",
    "abiFile": "abi_file",
    "contracts": "contracts",
    "eventNames": "event_names",
    "excludeEventNames": "exclude_event_names",
    "contractABIs": "contract_abis",
    "manualEventMappings": "manual_event_mappings",
    "manualFunctionMappings": "manual_function_mappings",
}
_LIST_FIELDS = {
    "contracts",
    "event_names",
    "exclude_event_names",
    "contract_abis",
    "manual_event_mappings",
    "manual_function_mappings",
}


def _mapping_pairs(entries: List[Dict[str, str]]) -> Dict[str, str]:
    pairs: Dict[str, str] = {}
    for entry in entries:
        if isinstance(entry, dict) and entry.get("selector") and entry.get("name"):
            pairs[str(entry["selector"])] = str(entry["name"])
    return pairs


def load_watch_config(path: str) -> WatchConfig:
    if not os.path.exists(path):
        return WatchConfig()
    try:
        with open(path, "r", encoding="utf-8") as handle:
            raw = json.load(handle)
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Ignoring unreadable config file %s: %s", path, exc)
        return WatchConfig()
    if not isinstance(raw, dict):
        logger.warning("Ignoring config file %s: expected a JSON object", path)
        return WatchConfig()

    values: Dict[str, Any] = {}
    extra: Dict[str, Any] = {}
    for key, value in raw.items():
        attr = _WATCH_KEYS.get(key)
        if attr is None:
            extra[key] = value
        elif attr in _LIST_FIELDS:
            values[attr] = list(value) if isinstance(value, list) else []
        else:
            values[attr] = value if isinstance(value, str) else None
    return WatchConfig(extra=extra, **values)


def save_watch_config(path: str, cfg: WatchConfig) -> None:
    raw: Dict[str, Any] = dict(cfg.extra)
    for key, attr in _WATCH_KEYS.items():
        value = getattr(cfg, attr)
        if attr in _LIST_FIELDS:
            if value or key == "contracts":
                raw[key] = value
        elif value is not None:
            raw[key] = value

    directory = os.path.dirname(os.path.abspath(path))
    fd, tmp_path = tempfile.mkstemp(prefix=".starky-", suffix=".json", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(raw, handle, indent=2)
            handle.write("\n")
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise

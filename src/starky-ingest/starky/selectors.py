import re
from typing import Any

from eth_utils import keccak

from .errors import SelectorComputationError

NAMESPACE_SEPARATOR = "::"
EVENT_SUFFIX = "Event"
# Starknet keccak keeps the low 250 bits of keccak-256.
MASK_250 = (1 << 250) - 1
_HEX_BODY = re.compile(r"^[0-9a-f]+$")


def normalize_event_name(name: str) -> str:
    """Reduce a qualified event name to the variant name that is hashed on-chain.

    ``Game::MovedEvent`` -> ``Moved``; ``Transfer`` -> ``Transfer``.
    """
    short = name.split(NAMESPACE_SEPARATOR)[-1]
    if short.endswith(EVENT_SUFFIX) and len(short) > len(EVENT_SUFFIX):
        short = short[: -len(EVENT_SUFFIX)]
    return short


def compute_selector(name: Any) -> str:
    if not isinstance(name, str) or not name.strip():
        raise SelectorComputationError("Selector name must be a non-empty string.")
    try:
        digest = keccak(text=name)
    except Exception as exc:  # pylint: disable=broad-except
        raise SelectorComputationError(f"Failed to hash name '{name}': {exc}") from exc
    value = int.from_bytes(digest, "big") & MASK_250
    return hex(value)


def event_selector(name: str) -> str:
    if not isinstance(name, str):
        raise SelectorComputationError("Event name must be a string.")
    return compute_selector(normalize_event_name(name))


def function_selector(name: str) -> str:
    return compute_selector(name)


def normalize_selector(value: Any) -> str:
    """Canonical lowercase 0x-hex without zero padding (``0x00AB`` -> ``0xab``)."""
    if isinstance(value, int) and not isinstance(value, bool):
        if value < 0:
            raise ValueError("Selector must be non-negative.")
        return hex(value)
    if not isinstance(value, str):
        raise ValueError("Selector must be a hex string.")
    candidate = value.strip().lower()
    if candidate.startswith("0x"):
        candidate = candidate[2:]
    if not candidate or not _HEX_BODY.match(candidate):
        raise ValueError(f"Invalid selector '{value}': expected hex.")
    return hex(int(candidate, 16))


def _short_hex(selector: str) -> str:
    body = (selector or "").strip().lower()
    if body.startswith("0x"):
        body = body[2:]
    return body[:8]


def unknown_event_label(selector: str) -> str:
    return f"unknown_{_short_hex(selector)}"


def unknown_function_label(selector: str) -> str:
    return f"function_{_short_hex(selector)}"


def selector_key(value: str) -> str:
    """Lookup key for a selector or address; falls back to lowercase for non-hex input."""
    try:
        return normalize_selector(value)
    except ValueError:
        return (value or "").strip().lower()

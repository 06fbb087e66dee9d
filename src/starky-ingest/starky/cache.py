from typing import Any, Dict, List, Optional


class AbiCache:
    """Simple in-memory cache of contract ABIs keyed by address+network."""

    def __init__(self) -> None:
        self._memory: Dict[str, List[Any]] = {}

    def _key(self, address: str, network: str) -> str:
        return f"{network}:{address.lower()}"

    def get(self, address: str, network: str) -> Optional[List[Any]]:
        key = self._key(address, network)
        return self._memory.get(key)

    def set(self, address: str, network: str, abi: List[Any]) -> None:
        key = self._key(address, network)
        self._memory[key] = abi

    def clear(self) -> None:
        self._memory.clear()

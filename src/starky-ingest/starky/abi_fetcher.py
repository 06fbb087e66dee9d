import json
import logging
from typing import Any, Dict, Iterable, List, Optional

from .abi_parser import ContractDescriptor, descriptor_from_abi
from .cache import AbiCache
from .errors import TransientNetworkError

logger = logging.getLogger(__name__)


class AbiFetcher:
    """Fetches deployed contract ABIs from the node via ``starknet_getClassAt``."""

    def __init__(self, client: Any, network: str, cache: Optional[AbiCache] = None) -> None:
        self.client = client
        self.network = network
        self.cache = cache or AbiCache()

    def get_contract_abi(self, address: str) -> List[Any]:
        cached = self.cache.get(address, self.network)
        if cached is not None:
            return cached

        logger.info("Fetching ABI for contract %s...", address[:10])
        try:
            contract_class = self.client.get_class_at(address)
        except TransientNetworkError as exc:
            logger.error("Failed to fetch ABI for %s: %s", address, exc)
            return []

        abi = self._abi_from_class(contract_class)
        if not abi:
            logger.warning("No ABI found for contract %s", address)
            return []
        logger.info("ABI loaded: %d items for contract %s...", len(abi), address[:10])
        self.cache.set(address, self.network, abi)
        return abi

    def _abi_from_class(self, contract_class: Optional[Dict[str, Any]]) -> List[Any]:
        if not contract_class:
            return []
        abi = contract_class.get("abi")
        if isinstance(abi, str):
            # Sierra classes carry the ABI as a JSON string.
            try:
                abi = json.loads(abi)
            except json.JSONDecodeError as exc:
                logger.warning("Contract class ABI is not valid JSON: %s", exc)
                return []
        return abi if isinstance(abi, list) else []

    def get_contracts(self, addresses: Iterable[str]) -> List[ContractDescriptor]:
        descriptors: List[ContractDescriptor] = []
        for address in addresses:
            abi = self.get_contract_abi(address)
            if not abi:
                continue
            descriptor = descriptor_from_abi(address, abi)
            if descriptor.events:
                logger.info(
                    "Events found for %s...: %s",
                    address[:10],
                    ", ".join(event.name for event in descriptor.events),
                )
            descriptors.append(descriptor)
        return descriptors

"""
MCP server exposing selector computation and name resolution for the configured ABI.
"""

import argparse
from typing import Optional

from mcp.server.fastmcp import FastMCP

from .config import load_config
from .logger_manager import configure_logging
from .resolver import NameResolver
from .service import IngestService

server = FastMCP(
    name="starky",
    instructions="Resolve Starknet event and function selectors using the configured contract ABIs.",
)

_service: Optional[IngestService] = None
_resolver: Optional[NameResolver] = None


def _get_service() -> IngestService:
    global _service
    if _service is None:
        cfg = load_config()
        _service = IngestService(cfg)
    return _service


def _get_resolver() -> NameResolver:
    global _resolver
    if _resolver is None:
        _resolver = _get_service().build_resolver()
    return _resolver


@server.tool(
    name="compute_selector",
    title="Compute Selector",
    description="Compute the Starknet selector of a name. kind: event (strips namespace and 'Event' suffix) or function.",
)
def compute_selector(name: str, kind: str = "event") -> dict:
    svc = _get_service()
    return svc.compute_selector(name, kind)


@server.tool(
    name="resolve_event",
    title="Resolve Event Selector",
    description="Resolve an event selector (keys[0]) to its name. Pass contract_address to also search that contract's ABI.",
)
def resolve_event(selector: str, contract_address: Optional[str] = None) -> dict:
    svc = _get_service()
    return svc.resolve(selector, contract_address, function=False, resolver=_get_resolver())


@server.tool(
    name="resolve_function",
    title="Resolve Function Selector",
    description="Resolve a function selector to its name.",
)
def resolve_function(selector: str) -> dict:
    svc = _get_service()
    return svc.resolve(selector, function=True, resolver=_get_resolver())


@server.tool(
    name="list_contracts",
    title="List Contracts",
    description="List contracts of the configured ABI with their events and functions.",
)
def list_contracts() -> list:
    svc = _get_service()
    return svc.list_contracts()


@server.tool(
    name="abi_summary",
    title="ABI Summary",
    description="Summarize an ABI file: format, contract count, events, functions and deployable addresses.",
)
def abi_summary(abi_file: str) -> dict:
    svc = _get_service()
    return svc.abi_summary(abi_file)


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the starky MCP server.")
    parser.add_argument(
        "--transport",
        choices=["stdio", "sse", "streamable-http"],
        default="stdio",
        help="Transport protocol for MCP.",
    )
    parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host for SSE/HTTP transports.",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port for SSE/HTTP transports.",
    )
    parser.add_argument(
        "--mount-path",
        default="/",
        help="Mount path for SSE transport (only when transport=sse).",
    )
    args = parser.parse_args()

    cfg = load_config()
    configure_logging(log_format=cfg.log_format, log_file=cfg.log_file)

    # FastMCP uses host/port only for SSE/HTTP transports; stdio ignores them.
    server.settings.host = args.host
    server.settings.port = args.port

    if args.transport == "sse":
        server.run(transport="sse", mount_path=args.mount_path)
    else:
        server.run(transport=args.transport)


if __name__ == "__main__":
    main()

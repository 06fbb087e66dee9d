import argparse
import json
import signal
import sys
import threading
from typing import Optional, Union

from .config import load_config
from .logger_manager import configure_logging
from .poller import DEFAULT_LOOKBACK_BLOCKS, LATEST
from .service import IngestService

DEFAULT_INTERVAL_MS = 1500


def _from_block(value: str) -> Union[int, str]:
    candidate = value.strip().lower()
    if candidate == LATEST:
        return LATEST
    try:
        block = int(candidate, 16) if candidate.startswith("0x") else int(candidate)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("must be a block number or 'latest'") from exc
    if block < 0:
        raise argparse.ArgumentTypeError("must be non-negative")
    return block


def _non_negative_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("must be an integer") from exc
    if number < 0:
        raise argparse.ArgumentTypeError("must be non-negative")
    return number


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="starky",
        description="Stream Starknet contract events to Datadog Logs with human-readable names.",
        allow_abbrev=False,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    setup_parser = subparsers.add_parser("setup", help="Configure watched contracts from an ABI file")
    setup_parser.add_argument(
        "--abi-file",
        required=True,
        help="Path to ABI file (Dojo manifest or Scarb *.contract_class.json).",
    )
    setup_parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite contracts already present in the config file.",
    )

    ingest_parser = subparsers.add_parser("ingest", help="Stream Starknet events to Datadog Logs")
    ingest_parser.add_argument(
        "--from-block",
        type=_from_block,
        required=False,
        help="Starting block number, or 'latest'. Defaults to head minus --lookback-blocks.",
    )
    ingest_parser.add_argument(
        "--lookback-blocks",
        type=_non_negative_int,
        default=DEFAULT_LOOKBACK_BLOCKS,
        help=f"Blocks to look back from head when --from-block is not set (default {DEFAULT_LOOKBACK_BLOCKS}).",
    )
    ingest_parser.add_argument(
        "--interval-ms",
        type=_non_negative_int,
        default=DEFAULT_INTERVAL_MS,
        help=f"Delay between polling cycles and after errors (default {DEFAULT_INTERVAL_MS}).",
    )
    ingest_parser.add_argument(
        "--dump-file",
        required=False,
        help="Write the last batch sent to Datadog to this file.",
    )
    ingest_parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log debug details, including payload previews and unresolved selectors.",
    )

    summary_parser = subparsers.add_parser("abi-summary", help="Print a summary of an ABI file")
    summary_parser.add_argument("--abi-file", required=True, help="Path to ABI file.")

    selector_parser = subparsers.add_parser("selector", help="Compute the selector of an event or function name")
    selector_parser.add_argument("name", help="Event or function name.")
    selector_parser.add_argument(
        "--function",
        action="store_true",
        help="Hash the name as a function (no event-name normalization).",
    )

    resolve_parser = subparsers.add_parser("resolve", help="Resolve a selector with the configured ABI")
    resolve_parser.add_argument("selector", help="0x-prefixed selector.")
    resolve_parser.add_argument("--contract", required=False, help="Contract address for per-contract lookup.")
    resolve_parser.add_argument("--function", action="store_true", help="Resolve as a function selector.")

    return parser


def _install_signal_handlers(stop_event: threading.Event) -> None:
    def _handler(signum, _frame) -> None:
        print(f"Received signal {signum}, stopping after the current page...", file=sys.stderr)
        stop_event.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def main(argv: Optional[list[str]] = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config()
        configure_logging(
            verbose=getattr(args, "verbose", False),
            log_format=config.log_format,
            log_file=config.log_file,
        )
        service = IngestService(config)

        if args.command == "setup":
            result = service.setup(args.abi_file, force=args.force)
            print(json.dumps(result, indent=2))
        elif args.command == "ingest":
            stop_event = threading.Event()
            poller = service.build_poller(
                from_block=args.from_block,
                lookback_blocks=args.lookback_blocks,
                interval_seconds=args.interval_ms / 1000.0,
                stop_event=stop_event,
                dump_file=args.dump_file,
            )
            _install_signal_handlers(stop_event)
            poller.run_forever()
        elif args.command == "abi-summary":
            print(json.dumps(service.abi_summary(args.abi_file), indent=2))
        elif args.command == "selector":
            kind = "function" if args.function else "event"
            print(json.dumps(service.compute_selector(args.name, kind), indent=2))
        elif args.command == "resolve":
            result = service.resolve(args.selector, args.contract, function=args.function)
            print(json.dumps(result, indent=2))
    except Exception as exc:  # pylint: disable=broad-except
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()

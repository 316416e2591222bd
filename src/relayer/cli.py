"""
Command-line interface for the message relayer.

Provides commands for relaying messages and inspecting past relays.
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Optional

import structlog

from relayer import __version__
from relayer.config import NetworkType, RelayConfig, set_config
from relayer.core.errors import InvalidInputError, RelayError
from relayer.core.orchestrator import RelayOrchestrator
from relayer.core.relay import RelayRecord, RelayResult
from relayer.core.types import MessageFingerprint
from relayer.state.journal import RelayJournal, init_journal
from relayer.tx.signer import KeypairSigner


def setup_logging(level: str = "INFO", json_format: bool = False) -> None:
    """Configure structured logging."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if json_format
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level.upper()),
        stream=sys.stderr,
    )


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    """Add network and logging options shared by all commands."""
    parser.add_argument(
        "--network",
        choices=[n.value for n in NetworkType],
        default=None,
        help="Source ledger network (default: devnet)",
    )
    parser.add_argument(
        "--rpc-url",
        help="Ledger JSON-RPC URL",
    )
    parser.add_argument(
        "--guardian-url",
        help="Attestation API base URL",
    )
    parser.add_argument(
        "--database-url",
        help="Relay journal database URL",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Output logs in JSON format",
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="relayer",
        description="Relay messages from the source ledger through the attestation network",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Send command
    send_parser = subparsers.add_parser("send", help="Relay a message")
    add_common_arguments(send_parser)
    send_parser.add_argument(
        "--destination",
        required=True,
        help="Destination address (base58)",
    )
    payload_group = send_parser.add_mutually_exclusive_group(required=True)
    payload_group.add_argument(
        "--message",
        help="Message text (UTF-8 encoded)",
    )
    payload_group.add_argument(
        "--payload-hex",
        help="Raw payload bytes in hex",
    )
    send_parser.add_argument(
        "--keypair",
        help="Path to the fee payer's JSON keypair file",
    )
    send_parser.add_argument(
        "--nonce",
        type=int,
        help="Message nonce (default: 0)",
    )
    send_parser.add_argument(
        "--consistency-level",
        type=int,
        help="Finality level requested from the bridge (default: 1)",
    )
    send_parser.add_argument(
        "--max-attempts",
        type=int,
        help="Maximum send attempts per transaction (default: 3)",
    )
    send_parser.add_argument(
        "--backoff-ms",
        type=int,
        help="Delay between send attempts in ms (default: 2000)",
    )
    send_parser.add_argument(
        "--attestation-timeout-ms",
        type=int,
        help="Attestation wait in ms (default: 60000)",
    )
    send_parser.add_argument(
        "--simulate",
        action="store_true",
        help="Run preflight simulation before sending",
    )

    # Attest command
    attest_parser = subparsers.add_parser("attest", help="Poll again for an attestation")
    add_common_arguments(attest_parser)
    target_group = attest_parser.add_mutually_exclusive_group(required=True)
    target_group.add_argument(
        "--relay-id",
        help="Journaled relay to resume",
    )
    target_group.add_argument(
        "--message-id",
        help="Message id as chain/emitter/sequence",
    )
    attest_parser.add_argument(
        "--timeout-ms",
        type=int,
        help="Attestation wait in ms",
    )

    # History command
    history_parser = subparsers.add_parser("history", help="Show journaled relays")
    add_common_arguments(history_parser)
    history_parser.add_argument(
        "--limit",
        type=int,
        default=20,
        help="Number of relays to show (default: 20)",
    )

    return parser


def build_config(args: argparse.Namespace) -> RelayConfig:
    """Create configuration from environment plus command-line overrides."""
    overrides = {
        "network": args.network,
        "rpc_url": args.rpc_url,
        "guardian_url": args.guardian_url,
        "database_url": args.database_url,
        "keypair_path": getattr(args, "keypair", None),
        "message_nonce": getattr(args, "nonce", None),
        "consistency_level": getattr(args, "consistency_level", None),
        "max_submit_attempts": getattr(args, "max_attempts", None),
        "submit_backoff_ms": getattr(args, "backoff_ms", None),
        "attestation_timeout_ms": getattr(args, "attestation_timeout_ms", None),
        "log_level": args.log_level,
        "log_json": args.log_json,
    }
    if getattr(args, "simulate", False):
        overrides["skip_simulation"] = False

    config = RelayConfig(**{k: v for k, v in overrides.items() if v is not None})
    set_config(config)
    return config


def print_record(record: RelayRecord) -> None:
    """Print a relay record summary."""
    print(f"  Relay ID: {record.relay_id}")
    print(f"    Stage: {record.stage.value}")
    print(f"    Destination: {record.destination}")
    print(f"    Transactions: {', '.join(record.transaction_ids) or '-'}")
    print(f"    Message: {record.fingerprint.vaa_id if record.fingerprint else '-'}")
    if record.error_message:
        print(f"    Error: {record.error_type}: {record.error_message}")


def print_error(error: RelayError) -> int:
    """Print a relay failure and return the process exit code."""
    print(json.dumps(error.context(), indent=2))
    return 1


def print_result(result: RelayResult) -> int:
    """Print a relay result and return the process exit code."""
    print_record(result.record)
    if result.ok:
        print()
        print(f"VAA ({len(result.artifact.vaa_bytes)} bytes):")
        print(result.artifact.hex)
        return 0

    print()
    return print_error(result.error)


def open_journal(config: RelayConfig) -> Optional[RelayJournal]:
    return RelayJournal(config) if config.database_url else None


def read_payload(args: argparse.Namespace) -> bytes:
    """Get the message bytes from --payload-hex or --message."""
    if args.payload_hex is None:
        return args.message.encode("utf-8")
    try:
        return bytes.fromhex(args.payload_hex)
    except ValueError as e:
        raise InvalidInputError(f"Malformed payload hex: {e}")


async def send_message(args: argparse.Namespace) -> int:
    """Relay one message."""
    config = build_config(args)
    try:
        payload = read_payload(args)
        signer = KeypairSigner.from_config(config)
    except RelayError as e:
        return print_error(e)

    orchestrator = RelayOrchestrator(config, journal=open_journal(config))
    orchestrator.on_stage_change(lambda record: print(f"[{record.stage.value}]"))

    try:
        await orchestrator.initialize()
        result = await orchestrator.relay(payload, args.destination, signer)
    except RelayError as e:
        return print_error(e)
    finally:
        await orchestrator.shutdown()

    return print_result(result)


async def attest_message(args: argparse.Namespace) -> int:
    """Poll again for an attestation."""
    config = build_config(args)
    timeout = args.timeout_ms / 1000 if args.timeout_ms else None

    if args.relay_id and not config.database_url:
        print("Relay journal disabled (no database URL); use --message-id instead")
        return 1

    orchestrator = RelayOrchestrator(config, journal=open_journal(config))
    try:
        await orchestrator.initialize()
        if args.relay_id:
            result = await orchestrator.resume_attestation(args.relay_id, timeout)
            return print_result(result)

        fingerprint = MessageFingerprint.parse(args.message_id)
        artifact = await orchestrator.attest(fingerprint, timeout)
        print(artifact.hex)
        return 0
    except RelayError as e:
        return print_error(e)
    finally:
        await orchestrator.shutdown()


async def show_history(args: argparse.Namespace) -> int:
    """List journaled relays."""
    config = build_config(args)
    if not config.database_url:
        print("Relay journal disabled (no database URL)")
        return 1

    journal = await init_journal(config)
    try:
        records = await journal.load_recent(args.limit)
    finally:
        await journal.disconnect()

    if not records:
        print("No relays recorded.")
        return 0

    print(f"Last {len(records)} relay(s):")
    print()
    for record in records:
        print_record(record)
        print()
    return 0


def main() -> None:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    setup_logging(args.log_level, args.log_json)

    if args.command == "send":
        sys.exit(asyncio.run(send_message(args)))
    elif args.command == "attest":
        sys.exit(asyncio.run(attest_message(args)))
    elif args.command == "history":
        sys.exit(asyncio.run(show_history(args)))


if __name__ == "__main__":
    main()

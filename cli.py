#!/usr/bin/env python3
"""Command line entry point for sponsored cross-chain transfers"""

import argparse
import asyncio
import json
import sys
from decimal import Decimal, InvalidOperation

from bridgeflow.config import settings
from bridgeflow.core.accounts import LocalKeySigner
from bridgeflow.core.errors import BridgeflowError
from bridgeflow.core.session import SessionState, SessionStore
from bridgeflow.core.transfer import ProgressEvent, TransferRequest
from bridgeflow.core.transfer.orchestrator import build_orchestrator
from bridgeflow.logging_config import setup_logging


def print_progress(event: ProgressEvent) -> None:
    step = f" [step {event.step_order}]" if event.step_order is not None else ""
    print(f"  {event.timestamp:%H:%M:%S} {event.stage.value:<14}{step} {event.message}")


def print_report(report) -> None:
    print(f"\nTransfer {report.transfer_id}")
    print("=" * 50)
    print(f"Wallet:  {report.wallet_address}")
    print(f"Result:  {report.summary}")

    print("\nSteps:")
    print("-" * 50)
    for outcome in report.outcomes:
        tx = outcome.receipt.transaction_hash if outcome.receipt else None
        line = f"{outcome.order}. {outcome.label:<15} {outcome.status.value:<10} chain {outcome.chain_id}"
        if tx:
            line += f"  tx {tx}"
        print(line)
        if outcome.reason and not outcome.is_success:
            print(f"   {outcome.reason}")

    if report.record is not None:
        state = "saved" if report.record_persisted else "NOT saved"
        print(f"\nRecord: {report.record.amount_sent} to {report.record.receiver_address} "
              f"({report.record.delivery_status.value}, {state})")

    if report.warnings:
        print(f"\nWarnings: {'; '.join(report.warnings)}")


def print_history(records) -> None:
    if not records:
        print("No transactions recorded")
        return
    for record in records:
        print(f"{record.timestamp:%Y-%m-%d %H:%M} {record.amount_sent:>12} -> {record.receiver_address}")


def _parse_amount(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"Invalid amount: {value}")


def _signer() -> LocalKeySigner:
    if not settings.local_signer_private_key:
        raise SystemExit("LOCAL_SIGNER_PRIVATE_KEY is not set")
    return LocalKeySigner(settings.local_signer_private_key)


async def cli_send(args: argparse.Namespace) -> int:
    destination_amount = args.destination_amount if args.destination_amount is not None else args.amount
    request_kwargs = {}
    if args.transfer_id:
        request_kwargs["transfer_id"] = args.transfer_id
    request = TransferRequest(
        receiver_address=args.receiver,
        amount_from_source=args.amount,
        amount_from_destination=destination_amount,
        **request_kwargs,
    )

    store = SessionStore()
    if store.load() is None:
        store.save(SessionState())

    orchestrator = build_orchestrator(_signer(), session_store=store)
    orchestrator.emitter.subscribe(print_progress)

    print(f"Sending {request.amount_from_source} to {request.receiver_address}...")
    try:
        report = await orchestrator.send(request)
    except BridgeflowError as e:
        print(f"Transfer aborted: {e}")
        return 1
    finally:
        await orchestrator.close()

    if args.json:
        print(json.dumps(report.to_dict(), indent=2, default=str))
    else:
        print_report(report)
    return 0 if report.fully_confirmed else 2


async def cli_history(args: argparse.Namespace) -> int:
    orchestrator = build_orchestrator(_signer())
    try:
        records = await orchestrator.history(args.wallet)
    except BridgeflowError as e:
        print(f"Could not fetch history: {e}")
        return 1
    finally:
        await orchestrator.close()

    if args.json:
        print(json.dumps([r.to_dict() for r in records], indent=2, default=str))
    else:
        print_history(records)
    return 0


def cli_session(args: argparse.Namespace) -> int:
    store = SessionStore()
    if args.action == "clear":
        store.clear()
        print(f"Removed session cache {store.path}")
        return 0

    state = store.load()
    if state is None:
        print("No session cached")
        return 0
    print(state.model_dump_json(indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sponsored cross-chain transfer CLI")
    parser.add_argument("--log-level", help="Override LOG_LEVEL")
    subparsers = parser.add_subparsers(dest="command")

    send_parser = subparsers.add_parser("send", help="Bridge tokens and deliver them to a receiver")
    send_parser.add_argument("receiver", help="Receiver address on the destination chain")
    send_parser.add_argument("amount", type=_parse_amount, help="Amount debited on the source chain")
    send_parser.add_argument("--destination-amount", type=_parse_amount,
                             help="Amount credited on the destination chain (default: same as amount)")
    send_parser.add_argument("--transfer-id", help="Id to tag the transfer with (default: generated)")
    send_parser.add_argument("--json", action="store_true", help="Print the report as JSON")

    history_parser = subparsers.add_parser("history", help="Show recorded transfers")
    history_parser.add_argument("--wallet", help="Wallet address (default: configured smart account)")
    history_parser.add_argument("--json", action="store_true", help="Print records as JSON")

    session_parser = subparsers.add_parser("session", help="Inspect or clear the local session cache")
    session_parser.add_argument("action", choices=["show", "clear"])

    return parser


async def main() -> int:
    parser = build_parser()
    args = parser.parse_args()
    setup_logging(args.log_level)

    if not args.command:
        parser.print_help()
        return 0

    if args.command == "send":
        return await cli_send(args)
    if args.command == "history":
        return await cli_history(args)
    if args.command == "session":
        return cli_session(args)

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))

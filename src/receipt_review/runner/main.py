"""
CLI main entry point.
"""

import argparse
import getpass
import logging
import sys
from pathlib import Path
from typing import Optional

from ..api_client import ReceiptApiClient, ReceiptApiError
from ..auth import AuthenticationRequired, SessionContext
from ..config import Config, create_default_config, load_config
from ..progress_stream import ErrorEvent, ProgressEvent, ProgressStreamClient, StreamEvent
from ..review import PAYMENT_METHODS, ResolverAction, ReviewWorkflow, StepOutcome
from ..schemas import MessageRole, TransactionState

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="receipt-review",
        description="Extract transactions from receipts and review them one by one",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("init-config", help="Write a default config file")

    login_parser = subparsers.add_parser("login", help="Sign in and store the session")
    login_parser.add_argument("--email", type=str, required=True, help="Account email")

    subparsers.add_parser("logout", help="Sign out and forget the stored session")

    status_parser = subparsers.add_parser(
        "status", help="Show a receipt's sessions and the next action"
    )
    status_parser.add_argument("receipt_id", type=str, help="Receipt ID")

    detect_parser = subparsers.add_parser(
        "detect", help="Detect document type and transaction count"
    )
    detect_parser.add_argument("receipt_id", type=str, help="Receipt ID")

    process_parser = subparsers.add_parser(
        "process", help="Run AI extraction with live progress"
    )
    process_parser.add_argument("receipt_id", type=str, help="Receipt ID")
    process_parser.add_argument(
        "--bank-account",
        type=str,
        required=True,
        help="Bank account ID the transactions belong to",
    )
    process_parser.add_argument(
        "--review",
        action="store_true",
        help="Start reviewing right after extraction",
    )

    review_parser = subparsers.add_parser(
        "review", help="Interactively review an in-progress session"
    )
    review_parser.add_argument("receipt_id", type=str, help="Receipt ID")

    return parser


def build_api_client(config: Config) -> ReceiptApiClient:
    """Create the session context and the backend client from config."""
    context = SessionContext(config.session_file, token=config.api.token or None)
    if not context.is_authenticated:
        context.load()

    api = ReceiptApiClient(
        base_url=config.api.base_url,
        session_context=context,
        timeout=config.api.timeout_seconds,
        max_retries=config.api.max_retries,
        backoff_factor=config.api.backoff_factor,
    )
    return api


def build_stream_client(config: Config, context: SessionContext) -> ProgressStreamClient:
    return ProgressStreamClient(
        base_url=config.api.base_url,
        session_context=context,
        connect_timeout=config.stream.connect_timeout_seconds,
        write_timeout=config.stream.write_timeout_seconds,
    )


def cmd_init_config(config_path: Path) -> int:
    if config_path.exists():
        print(f"⚠️  {config_path} already exists, not overwriting")
        return 1
    create_default_config(config_path)
    print(f"✓ Wrote {config_path}")
    return 0


def cmd_login(config: Config, email: str) -> int:
    api = build_api_client(config)
    password = getpass.getpass("Password: ")
    try:
        user = api.sign_in(email, password)
    except (AuthenticationRequired, ReceiptApiError) as e:
        print(f"❌ Sign-in failed: {e}")
        return 1
    print(f"✓ Signed in as {user.get('name') or email}")
    return 0


def cmd_logout(config: Config) -> int:
    api = build_api_client(config)
    api.sign_out()
    print("✓ Signed out")
    return 0


def cmd_status(workflow: ReviewWorkflow, receipt_id: str) -> int:
    """Show receipt sessions and the primary action."""
    resolution = workflow.load(receipt_id)
    if resolution is None:
        print(f"❌ {workflow.error}")
        return 1

    receipt = workflow.receipt
    print(f"\n📄 Receipt {receipt.id}")
    print("=" * 40)
    print(f"  Status:                {receipt.processing_status.value}")
    print(f"  Expected transactions: {receipt.expected_transactions or '-'}")
    print(f"  Finalized transactions:{len(receipt.transactions):>3}")
    print(f"  Batch sessions:        {len(receipt.batch_sessions)}")
    for session in receipt.batch_sessions:
        marker = "→" if resolution.active_session and session.id == resolution.active_session.id else " "
        print(
            f"   {marker} {session.id}  {session.status.value:<11}  "
            f"{session.total_processed}/{session.total_expected}  {session.created_at or ''}"
        )
    print()
    if resolution.action is ResolverAction.CONTINUE:
        print("▶ Next: continue reviewing (receipt-review review)")
    else:
        print("▶ Next: start processing (receipt-review process)")
    return 0


def cmd_detect(workflow: ReviewWorkflow, receipt_id: str) -> int:
    if workflow.load(receipt_id) is None:
        print(f"❌ {workflow.error}")
        return 1

    result = workflow.detect()
    if result is None:
        print(f"❌ {workflow.error}")
        return 1

    if result.no_transactions_found:
        print("ℹ️  No transactions found in this document")
        return 0

    print(f"✓ {result.document_type}: {result.transaction_count} transactions "
          f"({result.confidence:.0%} confidence)")
    for preview in result.transaction_preview:
        print(f"   - {preview.get('date', '')}  {preview.get('amount', '')}  "
              f"{preview.get('description', '')}")
    return 0


def _print_event(event: StreamEvent) -> None:
    if isinstance(event, ProgressEvent):
        print(f"  [{event.progress:>3}%] {event.message or event.step}")
    elif isinstance(event, ErrorEvent) and not event.cancelled:
        print(f"  ✗ {event.message}")


def cmd_process(workflow: ReviewWorkflow, receipt_id: str, bank_account: str, review: bool) -> int:
    """Run extraction for a receipt."""
    resolution = workflow.load(receipt_id)
    if resolution is None:
        print(f"❌ {workflow.error}")
        return 1

    if resolution.action is ResolverAction.CONTINUE:
        print("ℹ️  This receipt has a session in progress; starting a new extraction anyway")

    print(f"🔄 Processing receipt {receipt_id}...")
    try:
        started = workflow.start(bank_account, on_event=_print_event)
    except KeyboardInterrupt:
        print(f"\n⚠️  {workflow.tracker.error or 'Cancelled'}")
        return 1

    if not started:
        print(f"❌ {workflow.error}")
        return 1

    result = workflow.tracker.result
    print(f"✓ Session {result.batch_session_id}: {result.total_transactions} transactions "
          f"({result.overall_confidence:.0%} confidence)")
    if result.processing_notes:
        print(f"  {result.processing_notes}")

    if review:
        return review_loop(workflow)
    return 0


def cmd_review(workflow: ReviewWorkflow, receipt_id: str) -> int:
    resolution = workflow.load(receipt_id)
    if resolution is None:
        print(f"❌ {workflow.error}")
        return 1
    if not workflow.resume():
        print("ℹ️  Nothing to continue; run `receipt-review process` first")
        return 1
    return review_loop(workflow)


def _print_card(workflow: ReviewWorkflow) -> None:
    stepper = workflow.stepper
    card = workflow.card
    record = stepper.current
    state = stepper.current_state

    print()
    print(f"Transaction {stepper.current_index + 1} of {stepper.total}  [{state.value}]")
    print("-" * 40)
    if card.amount is not None:
        print(f"  Amount:         {card.amount} {card.currency or ''}")
    print(f"  Description:    {card.description}")
    print(f"  Category:       {card.category_name or card.category_id or '-'}")
    print(f"  Date:           {card.transaction_date or '-'}")
    print(f"  Payment method: {card.payment_method or '-'}")
    print(f"  Contact:        {card.contact_name or card.contact_id or '-'}")
    print(f"  Confidence:     {record.confidence_score:.0%}")
    if record.notes:
        print(f"  Notes:          {record.notes}")
    missing = card.missing_fields()
    if missing:
        print(f"  Missing:        {', '.join(missing)}")
    if stepper.finalize_pending:
        print("  ⚠️  Session not completed yet, use [f]inalize to retry")


def _edit_card(workflow: ReviewWorkflow, assignment: str) -> None:
    field_name, _, value = assignment.partition("=")
    field_name = field_name.strip()
    value = value.strip()
    card = workflow.card

    if field_name == "category":
        match = workflow.references.category_by_name(value)
        card.category_id = match.id if match else value
    elif field_name == "payment_method":
        if value not in PAYMENT_METHODS:
            print(f"  Payment method must be one of: {', '.join(PAYMENT_METHODS)}")
            return
        card.payment_method = value
    elif field_name in ("description", "transaction_date", "contact_id", "category_id"):
        setattr(card, field_name, value)
    else:
        print(f"  Unknown field: {field_name}")


def _clarify(workflow: ReviewWorkflow) -> None:
    if not workflow.open_clarification():
        print(f"  Clarification not available{': ' + workflow.error if workflow.error else ''}")
        return

    controller = workflow.clarification
    for message in controller.messages:
        who = "You" if message.role is MessageRole.USER else "AI"
        print(f"  {who}: {message.content}")

    while controller.is_open and not controller.is_resolved:
        text = input("  answer (empty to close)> ").strip()
        if not text:
            workflow.close_clarification()
            break
        entry = workflow.send_clarification(text)
        if workflow.error:
            print(f"  ✗ {workflow.error}")
        elif entry is not None and entry.notes:
            print(f"  AI: {entry.notes}")

    if controller.is_resolved:
        print("  ✓ Clarified")


def review_loop(workflow: ReviewWorkflow) -> int:
    """Interactive review of the current session."""
    stepper = workflow.stepper
    if stepper is None or stepper.total == 0:
        print("ℹ️  No transactions to review")
        return 0

    help_text = (
        "[a]pprove  [s]kip  [c]larify  [n]ext  [p]rev  "
        "[e] field=value  [f]inalize  [q]uit"
    )

    while not stepper.is_finalized:
        _print_card(workflow)
        print(help_text)
        choice = input("> ").strip()
        command, _, argument = choice.partition(" ")

        if command == "a":
            if stepper.current_state is TransactionState.CLARIFICATION_NEEDED:
                print("  Clarify this transaction first")
                continue
            outcome = workflow.approve()
            if outcome in (StepOutcome.IGNORED, StepOutcome.FINALIZE_FAILED) and workflow.error:
                print(f"  ✗ {workflow.error}")
        elif command == "s":
            outcome = workflow.skip()
            if outcome in (StepOutcome.IGNORED, StepOutcome.FINALIZE_FAILED) and workflow.error:
                print(f"  ✗ {workflow.error}")
        elif command == "f":
            if not workflow.finalize() and workflow.error:
                print(f"  ✗ {workflow.error}")
        elif command == "c":
            _clarify(workflow)
        elif command == "n":
            workflow.navigate(stepper.current_index + 1)
        elif command == "p":
            workflow.navigate(stepper.current_index - 1)
        elif command == "e" and argument:
            _edit_card(workflow, argument)
        elif command == "q":
            return 0
        stepper = workflow.stepper

    print()
    print("✓ Review complete")
    print(f"  Approved: {stepper.approved_count}")
    print(f"  Skipped:  {stepper.skipped_count}")
    return 0


def main(args: Optional[list[str]] = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    if parsed.command == "init-config":
        return cmd_init_config(parsed.config)

    try:
        config = load_config(parsed.config)
    except Exception as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    if parsed.command == "login":
        return cmd_login(config, parsed.email)
    if parsed.command == "logout":
        return cmd_logout(config)

    api = build_api_client(config)
    if not api.session_context.is_authenticated:
        print("❌ Not signed in. Run `receipt-review login --email ...` first")
        return 1

    stream = build_stream_client(config, api.session_context)
    workflow = ReviewWorkflow(api, stream, config.review)
    try:
        if parsed.command == "status":
            return cmd_status(workflow, parsed.receipt_id)
        elif parsed.command == "detect":
            return cmd_detect(workflow, parsed.receipt_id)
        elif parsed.command == "process":
            return cmd_process(workflow, parsed.receipt_id, parsed.bank_account, parsed.review)
        elif parsed.command == "review":
            return cmd_review(workflow, parsed.receipt_id)
        else:
            parser.print_help()
            return 1
    except AuthenticationRequired:
        print("❌ Session expired. Run `receipt-review login --email ...` to sign in again")
        return 1
    finally:
        stream.close()


if __name__ == "__main__":
    sys.exit(main())

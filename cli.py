#!/usr/bin/env python3
"""
Moove Money - CLI for batch MOVE payments on Movement.

Usage:
    moove-money send [--file <path> | <recipient> <amount> ...] [--dry-run] [--yes]
    moove-money send-equal --amount <octas> [--file <path> | <recipient> ...]
    moove-money preflight [--file <path> | <recipient> <amount> ...]
    moove-money validate --file <path>
    moove-money register [--accounts <path>] [<address> ...]
    moove-money lookup (--hash <hash> | --version <n>)
    moove-money history [--address <addr>] [--limit <n>]
    moove-money create-accounts --count <n> [--output <path>] [--fund <octas>]
    moove-money generate-template --output <path> [--format csv|json] [--count <n>]

Amounts are in octas (1 MOVE = 100,000,000 octas). Network and sender come
from the Movement profile in .movement/config.yaml.

Examples:
    # Send 1 MOVE and 2 MOVE to two recipients
    moove-money send 0x123... 100000000 0xabc... 200000000

    # Check a recipient list against the ledger without sending
    moove-money preflight --file recipients.csv

    # Pay every address in a file the same amount
    moove-money send-equal --amount 50000000 --file recipients.csv
"""

from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime, timezone
from pathlib import Path

from moove_money import __version__
from moove_money.batch import (
    Recipient,
    format_move,
    normalize_address,
    parse_recipient_pairs,
    parse_recipients,
    validate_recipients,
)
from moove_money.client import LedgerClient
from moove_money.config import Settings, load_settings
from moove_money.crypto import LocalAccount
from moove_money.errors import (
    ConfigurationError,
    MooveMoneyError,
    SettlementTimeout,
    UnregisteredRecipients,
)
from moove_money import logs
from moove_money.orchestrator import DisbursementOrchestrator, SettlementStatus, check_settlement


BANNER = r"""
  __  __                        __  __
 |  \/  | ___   ___ __   _____ |  \/  | ___  _ __   ___ _   _
 | |\/| |/ _ \ / _ \\ \ / / _ \| |\/| |/ _ \| '_ \ / _ \ | | |
 | |  | | (_) | (_) |\ V /  __/| |  | | (_) | | | |  __/ |_| |
 |_|  |_|\___/ \___/  \_/ \___||_|  |_|\___/|_| |_|\___|\__, |
                                                        |___/
  Batch MOVE payments in one atomic transaction
"""


def _settings(args: argparse.Namespace) -> Settings:
    settings = load_settings(args.config, args.profile)
    if getattr(args, "module_address", None):
        settings.disbursement.module_address = normalize_address(args.module_address)
    if getattr(args, "max_wait", None):
        settings.disbursement.max_wait = args.max_wait
    settings.disbursement.validate()
    logs.configure(settings.logging)
    return settings


def _client(settings: Settings) -> LedgerClient:
    return LedgerClient(settings.profile.rest_url, faucet_url=settings.profile.faucet_url)


def _signer(args: argparse.Namespace, settings: Settings) -> LocalAccount:
    private_key = getattr(args, "private_key", None) or settings.profile.private_key
    if not private_key:
        raise ConfigurationError(
            f"Profile '{settings.profile.name}' has no private_key; pass --private-key"
        )
    return LocalAccount.from_private_key(private_key)


def _load_batch(args: argparse.Namespace) -> list[Recipient]:
    if args.file:
        return parse_recipients(args.file)
    if not args.pairs:
        raise ValueError("Give --file or <recipient> <amount> pairs")
    return parse_recipient_pairs(args.pairs)


def _print_batch(recipients: list[Recipient]) -> None:
    print("Transfer details:")
    for r in recipients:
        label = f" ({r.label})" if r.label else ""
        print(f"  -> {r.address}: {format_move(r.amount)} ({r.amount} octas){label}")


def _print_unregistered(err: UnregisteredRecipients) -> None:
    print("\nThe following recipient accounts are not registered for the coin:")
    for addr in err.recipients:
        print(f"   - {addr}")
    print("\nRecipients must register before they can receive MOVE.")
    print("They can call: 0x1::managed_coin::register<0x1::aptos_coin::AptosCoin>()")
    print("or run: moove-money register (with their own profile)")


def _confirm(args: argparse.Namespace, total: int) -> bool:
    if args.yes:
        return True
    response = input(f"\nProceed with transfer of {format_move(total)}? [y/N]: ")
    return response.lower() in ("y", "yes")


def _report(result) -> int:
    print()
    print(result.summary())
    return 0 if result.success else 1


def cmd_send(args: argparse.Namespace) -> int:
    """Execute a batch transfer with per-recipient amounts."""
    print(BANNER)

    try:
        recipients = _load_batch(args)
    except (OSError, ValueError) as e:
        print(f"Error reading recipients: {e}")
        return 1

    is_valid, errors = validate_recipients(recipients)
    if not is_valid:
        print("Validation errors:")
        for err in errors:
            print(f"  x {err}")
        return 1

    settings = _settings(args)
    signer = _signer(args, settings)
    addresses = [r.address for r in recipients]
    amounts = [r.amount for r in recipients]
    total = sum(amounts)

    print(f"Sender: {signer.address}")
    print(f"Network: {settings.profile.rest_url}\n")
    _print_batch(recipients)

    with _client(settings) as client:
        orchestrator = DisbursementOrchestrator(client, signer, settings.disbursement)

        if args.dry_run:
            print("\n[DRY RUN] Checking the batch against the ledger without sending...")
            report = orchestrator.preflight(addresses, amounts)
            print()
            print(report.summary())
            return 0 if report.ok else 1

        if not _confirm(args, total):
            print("Aborted.")
            return 0

        print("\nExecuting batch transfer...")
        try:
            result = orchestrator.disburse(addresses, amounts)
        except UnregisteredRecipients as e:
            _print_unregistered(e)
            return 1
        except SettlementTimeout as e:
            print(f"\n{e}")
            print(f"Check later with: moove-money lookup --hash {e.txn_hash}")
            return 1

    return _report(result)


def cmd_send_equal(args: argparse.Namespace) -> int:
    """Send the same amount to every recipient."""
    print(BANNER)

    if args.file:
        try:
            addresses = [r.address for r in parse_recipients(args.file)]
        except (OSError, ValueError) as e:
            print(f"Error reading recipients: {e}")
            return 1
    else:
        addresses = [normalize_address(a) for a in args.recipients]

    recipients = [Recipient(address=a, amount=args.amount) for a in addresses]
    is_valid, errors = validate_recipients(recipients)
    if not is_valid:
        print("Validation errors:")
        for err in errors:
            print(f"  x {err}")
        return 1

    settings = _settings(args)
    signer = _signer(args, settings)
    print(f"Sender: {signer.address}")
    print(f"Network: {settings.profile.rest_url}\n")
    _print_batch(recipients)

    if not _confirm(args, args.amount * len(addresses)):
        print("Aborted.")
        return 0

    with _client(settings) as client:
        orchestrator = DisbursementOrchestrator(client, signer, settings.disbursement)
        try:
            result = orchestrator.disburse_equal(addresses, args.amount)
        except UnregisteredRecipients as e:
            _print_unregistered(e)
            return 1
        except SettlementTimeout as e:
            print(f"\n{e}")
            print(f"Check later with: moove-money lookup --hash {e.txn_hash}")
            return 1

    return _report(result)


def cmd_preflight(args: argparse.Namespace) -> int:
    """Check registration and balance for a batch without sending it."""
    print(BANNER)

    try:
        recipients = _load_batch(args)
    except (OSError, ValueError) as e:
        print(f"Error reading recipients: {e}")
        return 1

    settings = _settings(args)
    signer = _signer(args, settings)
    with _client(settings) as client:
        orchestrator = DisbursementOrchestrator(client, signer, settings.disbursement)
        report = orchestrator.preflight(
            [r.address for r in recipients], [r.amount for r in recipients]
        )

    print(report.summary())
    return 0 if report.ok else 1


def cmd_validate(args: argparse.Namespace) -> int:
    """Validate a recipient list."""
    print(BANNER)

    try:
        recipients = parse_recipients(args.file)
    except (OSError, ValueError) as e:
        print(f"Error parsing file: {e}")
        return 1

    print(f"Loaded {len(recipients)} recipients from {args.file}")

    is_valid, errors = validate_recipients(recipients)

    if is_valid:
        total = sum(r.amount for r in recipients)
        print(f"\n✓ All {len(recipients)} recipients are valid")
        print(f"  Total amount: {format_move(total)}")
        print(f"  Min: {format_move(min(r.amount for r in recipients))}")
        print(f"  Max: {format_move(max(r.amount for r in recipients))}")
        skipped = sum(1 for r in recipients if r.amount == 0)
        if skipped:
            print(f"  Zero-amount entries (skipped on-chain): {skipped}")

        print("\nPreview (first 5):")
        for r in recipients[:5]:
            label = f" ({r.label})" if r.label else ""
            print(f"  {r.address[:16]}...{r.address[-8:]} -> {format_move(r.amount)}{label}")
        if len(recipients) > 5:
            print(f"  ... and {len(recipients) - 5} more")

        return 0
    else:
        print(f"\n✗ Found {len(errors)} validation errors:")
        for err in errors:
            print(f"  ✗ {err}")
        return 1


def cmd_register(args: argparse.Namespace) -> int:
    """Register the profile account, or accounts from a key file, for the coin."""
    print(BANNER)
    settings = _settings(args)

    if args.accounts:
        try:
            with open(args.accounts, "r") as f:
                records = json.load(f)["accounts"]
        except (OSError, ValueError, KeyError) as e:
            print(f"Error reading {args.accounts}: {e}")
            print("Create test accounts first using: moove-money create-accounts")
            return 1
        wanted = {normalize_address(a) for a in args.addresses}
        signers = [
            LocalAccount.from_private_key(rec["private_key"])
            for rec in records
            if not wanted or normalize_address(rec["address"]) in wanted
        ]
        if not signers:
            print(f"No matching accounts found in {args.accounts}")
            return 1
    else:
        signers = [_signer(args, settings)]

    results = {"success": 0, "failed": 0, "already": 0}
    with _client(settings) as client:
        for i, signer in enumerate(signers, start=1):
            orchestrator = DisbursementOrchestrator(client, signer, settings.disbursement)
            prefix = f"[{i}/{len(signers)}] {signer.address}"
            try:
                if orchestrator.ensure_registered():
                    results["success"] += 1
                    print(f"{prefix} - Registered")
                else:
                    results["already"] += 1
                    print(f"{prefix} - Already registered")
            except MooveMoneyError as e:
                results["failed"] += 1
                print(f"{prefix} - Failed: {e}")

    print("\n" + "=" * 60)
    print(f"Registered: {results['success']}")
    print(f"Already registered: {results['already']}")
    print(f"Failed: {results['failed']}")
    return 0 if results["failed"] == 0 else 1


def cmd_lookup(args: argparse.Namespace) -> int:
    """Look up the settlement of a submitted transaction."""
    settings = _settings(args)
    with _client(settings) as client:
        if args.version is not None:
            txn = client.get_transaction_by_version(args.version)
            print(_format_transaction(txn))
            return 0

        outcome = check_settlement(client, args.hash)

    print(f"Transaction: {outcome.txn_hash}")
    print(f"Status: {outcome.status.value}")
    if outcome.status is SettlementStatus.PENDING:
        print("Not settled yet (or not known to this node).")
        return 0
    print(f"Version: {outcome.version}")
    print(f"Gas used: {outcome.gas_used}")
    print(f"VM status: {outcome.vm_status}")
    if outcome.hint:
        print(f"Tip: {outcome.hint}")
    return 0 if outcome.status is SettlementStatus.CONFIRMED else 1


def _format_transaction(txn: dict) -> str:
    timestamp = txn.get("timestamp")
    when = (
        datetime.fromtimestamp(int(timestamp) / 1_000_000, tz=timezone.utc).isoformat()
        if timestamp else "N/A"
    )
    function = (txn.get("payload") or {}).get("function", txn.get("type", "unknown"))
    status = "Success" if txn.get("success", True) else f"Failed ({txn.get('vm_status')})"
    return "\n".join([
        f"Hash: {txn.get('hash', 'N/A')}",
        f"Version: {txn.get('version', 'N/A')}",
        f"Timestamp: {when}",
        f"Function: {function}",
        f"Status: {status}",
    ])


def cmd_history(args: argparse.Namespace) -> int:
    """Show transactions sent by an account, newest first."""
    settings = _settings(args)
    address = normalize_address(args.address or settings.profile.account)
    with _client(settings) as client:
        txns = client.get_account_transactions(address, limit=args.limit)

    txns = sorted(txns, key=lambda t: int(t.get("version", 0)), reverse=True)
    print(f"Transactions for {address} ({len(txns)}):")
    for i, txn in enumerate(txns, start=1):
        print("\n" + "=" * 60)
        print(f"Transaction {i} of {len(txns)}")
        print(_format_transaction(txn))
    return 0


def cmd_create_accounts(args: argparse.Namespace) -> int:
    """Generate throwaway accounts, optionally funded from the faucet."""
    accounts = [LocalAccount.generate() for _ in range(args.count)]

    if args.fund:
        settings = _settings(args)
        with _client(settings) as client:
            for account in accounts:
                client.fund_account(account.address, args.fund)
                print(f"Funded {account.address} with {format_move(args.fund)}")

    data = {
        "created": datetime.now(timezone.utc).isoformat(),
        "accounts": [vars(account.export()) for account in accounts],
    }
    with open(args.output, "w") as f:
        json.dump(data, f, indent=2)

    print(f"Created {len(accounts)} account(s): {args.output}")
    for account in accounts:
        print(f"  {account.address}")
    print("\nRegister them with: moove-money register --accounts " + str(args.output))
    return 0


def cmd_generate_template(args: argparse.Namespace) -> int:
    """Generate a template recipient file."""
    print(BANNER)

    count = args.count
    output = Path(args.output)

    recipients = []
    for i in range(count):
        recipients.append({
            "address": LocalAccount.generate().address,
            "amount": (i + 1) * 100_000_000,
            "label": f"Recipient_{i + 1}",
        })

    fmt = args.format
    if fmt == "json":
        with open(output, "w") as f:
            json.dump(recipients, f, indent=2)
    else:
        with open(output, "w", newline="") as f:
            f.write("address,amount,label\n")
            for r in recipients:
                f.write(f"{r['address']},{r['amount']},{r['label']}\n")

    print(f"Generated template with {count} recipients: {output}")
    print(f"Format: {fmt.upper()}")
    print("\nEdit the file with your actual recipient addresses and amounts (octas),")
    print(f"then run: moove-money validate --file {output}")
    return 0


def _add_profile_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", help="Path to the Movement config (default: .movement/config.yaml)")
    parser.add_argument("--profile", "-p", help="Profile name (default: default)")


def _add_sender_args(parser: argparse.ArgumentParser) -> None:
    _add_profile_args(parser)
    parser.add_argument("--private-key", help="Sender key; overrides the profile's private_key")
    parser.add_argument("--module-address", help="Address the moove_money module is published at")
    parser.add_argument("--max-wait", type=float, help="Seconds to wait for settlement")
    parser.add_argument("--yes", "-y", action="store_true", help="Skip confirmation prompt")


def main() -> int:
    parser = argparse.ArgumentParser(
        prog="moove-money",
        description="Moove Money - Batch MOVE payments on Movement",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version", action="version", version=f"moove-money {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    send_parser = subparsers.add_parser("send", help="Send MOVE to multiple recipients")
    _add_sender_args(send_parser)
    send_parser.add_argument("--file", "-f", help="Path to recipient list (CSV or JSON)")
    send_parser.add_argument("pairs", nargs="*", help="<recipient> <amount> pairs")
    send_parser.add_argument(
        "--dry-run", action="store_true",
        help="Run the preflight checks without sending"
    )

    equal_parser = subparsers.add_parser("send-equal", help="Send the same amount to every recipient")
    _add_sender_args(equal_parser)
    equal_parser.add_argument("--amount", "-a", type=int, required=True, help="Amount per recipient, in octas")
    equal_parser.add_argument("--file", "-f", help="Recipient list; its amounts are ignored")
    equal_parser.add_argument("recipients", nargs="*", help="Recipient addresses")

    preflight_parser = subparsers.add_parser("preflight", help="Check a batch against the ledger")
    _add_sender_args(preflight_parser)
    preflight_parser.add_argument("--file", "-f", help="Path to recipient list")
    preflight_parser.add_argument("pairs", nargs="*", help="<recipient> <amount> pairs")

    validate_parser = subparsers.add_parser("validate", help="Validate a recipient list")
    validate_parser.add_argument("--file", "-f", required=True, help="Path to recipient list")

    register_parser = subparsers.add_parser("register", help="Register accounts for the coin")
    _add_sender_args(register_parser)
    register_parser.add_argument("--accounts", help="Key file written by create-accounts")
    register_parser.add_argument("addresses", nargs="*", help="Only register these accounts")

    lookup_parser = subparsers.add_parser("lookup", help="Look up a submitted transaction")
    _add_profile_args(lookup_parser)
    target = lookup_parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--hash", help="Transaction hash")
    target.add_argument("--version", type=int, help="Ledger version")

    history_parser = subparsers.add_parser("history", help="Show an account's transactions")
    _add_profile_args(history_parser)
    history_parser.add_argument("--address", help="Account (default: profile account)")
    history_parser.add_argument("--limit", "-l", type=int, default=10, help="Number of transactions")

    accounts_parser = subparsers.add_parser("create-accounts", help="Generate test accounts")
    _add_profile_args(accounts_parser)
    accounts_parser.add_argument("--count", "-c", type=int, default=2, help="Number of accounts")
    accounts_parser.add_argument("--output", "-o", default="test_accounts.json", help="Output file")
    accounts_parser.add_argument("--fund", type=int, default=0, help="Faucet amount per account, in octas")

    template_parser = subparsers.add_parser(
        "generate-template", help="Generate a template recipient file"
    )
    template_parser.add_argument(
        "--output", "-o", default="recipients.csv", help="Output file path"
    )
    template_parser.add_argument(
        "--format", choices=["csv", "json"], default="csv", help="File format"
    )
    template_parser.add_argument(
        "--count", "-c", type=int, default=5, help="Number of sample recipients"
    )

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "send": cmd_send,
        "send-equal": cmd_send_equal,
        "preflight": cmd_preflight,
        "validate": cmd_validate,
        "register": cmd_register,
        "lookup": cmd_lookup,
        "history": cmd_history,
        "create-accounts": cmd_create_accounts,
        "generate-template": cmd_generate_template,
    }

    try:
        return commands[args.command](args)
    except MooveMoneyError as e:
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())

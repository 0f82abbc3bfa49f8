"""
Batch shape rules and recipient lists for Moove Money.

Everything here is pure: no ledger access. The same checks guard the
on-ledger executor and the off-ledger orchestrator, so a malformed batch
is rejected identically on both sides.

Supports:
- Explicit per-recipient amounts or one amount replicated to every recipient
- CSV/JSON recipient list parsing
- Address normalization and format validation
"""

from __future__ import annotations

import csv
import json
import re
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Sequence, Union

from moove_money.errors import BatchSizeExceeded, EmptyRecipients, VectorLengthMismatch


# Maximum recipients per batch invocation.
MAX_BATCH_SIZE = 100

# 1 MOVE = 10^8 octas
OCTAS_PER_MOVE = 100_000_000

U64_MAX = 2**64 - 1

_ADDRESS_RE = re.compile(r"^0x[0-9a-f]{1,64}$")


def normalize_address(address: str) -> str:
    """Lowercase an address and make sure it carries the ``0x`` prefix."""
    address = address.strip().lower()
    return address if address.startswith("0x") else f"0x{address}"


def is_valid_address(address: str) -> bool:
    return bool(_ADDRESS_RE.match(normalize_address(address)))


def to_move(octas: int) -> Decimal:
    return Decimal(octas) / OCTAS_PER_MOVE


def format_move(octas: int) -> str:
    return f"{to_move(octas):.8f} MOVE"


@dataclass(frozen=True)
class ExplicitAmounts:
    """Amount ``i`` goes to recipient ``i``."""

    amounts: tuple[int, ...]

    def expand(self, count: int) -> list[int]:
        # A length mismatch is left for check_batch_shape to report.
        return list(self.amounts)


@dataclass(frozen=True)
class EqualAmount:
    """The same amount goes to every recipient."""

    amount: int

    def expand(self, count: int) -> list[int]:
        return [self.amount] * count


AmountSource = Union[ExplicitAmounts, EqualAmount]


def check_batch_shape(recipients: Sequence[str], amounts: Sequence[int]) -> None:
    """Raise the structural error for a malformed batch, or return quietly."""
    if len(recipients) == 0:
        raise EmptyRecipients()
    if len(recipients) > MAX_BATCH_SIZE:
        raise BatchSizeExceeded(len(recipients), MAX_BATCH_SIZE)
    if len(recipients) != len(amounts):
        raise VectorLengthMismatch(len(recipients), len(amounts))


def sum_amounts(amounts: Iterable[int]) -> int:
    """Total cost of a batch, in octas."""
    total = 0
    for amount in amounts:
        total += amount
    return total


@dataclass
class Recipient:
    """A single payment recipient."""

    address: str
    amount: int  # in octas
    label: str = ""  # optional label/note

    def validate(self) -> list[str]:
        """Validate this recipient. Returns list of error strings."""
        errors = []
        if not is_valid_address(self.address):
            errors.append(f"Invalid account address: {self.address}")
        if not isinstance(self.amount, int) or isinstance(self.amount, bool):
            errors.append(f"Amount must be a whole number of octas, got {self.amount!r}")
        elif self.amount < 0:
            errors.append(f"Amount must not be negative, got {self.amount}")
        elif self.amount > U64_MAX:
            errors.append(f"Amount {self.amount} does not fit in a u64")
        return errors


def _parse_amount(raw: str, where: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{where}: invalid amount '{raw}' (expected octas)")


def parse_recipients_csv(filepath: str | Path) -> list[Recipient]:
    """
    Parse a CSV file of recipients. Amounts are in octas.

    Expected format:
        address,amount[,label]
        0xf136610f92fb19db84152cf4d9b7e63ce135597c7fa77cec43947620f977c7f8,100000000,Alice
        0xc8887393decbbd7eab16d4c50831d39a58dec794e9ad96e6d25f6aff1570af35,200000000,Bob
    """
    recipients = []
    filepath = Path(filepath)

    with open(filepath, "r", newline="") as f:
        reader = csv.DictReader(f)

        if reader.fieldnames is None:
            raise ValueError("CSV file is empty or has no headers")

        for row_num, row in enumerate(reader, start=2):
            normalized = {k.strip().lower(): (v or "").strip() for k, v in row.items() if k}

            address = normalized.get("address", "")
            amount_str = normalized.get("amount", "0")
            label = normalized.get("label", normalized.get("name", ""))

            if not address:
                raise ValueError(f"Row {row_num}: missing address")

            recipients.append(Recipient(
                address=normalize_address(address),
                amount=_parse_amount(amount_str, f"Row {row_num}"),
                label=label,
            ))

    return recipients


def parse_recipients_json(filepath: str | Path) -> list[Recipient]:
    """
    Parse a JSON file of recipients. Amounts are in octas.

    Expected format:
        [
            {"address": "0xf136...", "amount": 100000000, "label": "Alice"},
            {"address": "0xc888...", "amount": 200000000}
        ]
    """
    filepath = Path(filepath)
    with open(filepath, "r") as f:
        data = json.load(f)

    if not isinstance(data, list):
        raise ValueError("JSON must contain a list of recipient objects")

    recipients = []
    for i, entry in enumerate(data):
        if not isinstance(entry, dict):
            raise ValueError(f"Entry {i}: must be an object")
        if "address" not in entry:
            raise ValueError(f"Entry {i}: missing 'address' field")
        if "amount" not in entry:
            raise ValueError(f"Entry {i}: missing 'amount' field")

        recipients.append(Recipient(
            address=normalize_address(str(entry["address"])),
            amount=_parse_amount(str(entry["amount"]), f"Entry {i}"),
            label=str(entry.get("label", "")),
        ))

    return recipients


def parse_recipients(filepath: str | Path) -> list[Recipient]:
    """Auto-detect file format and parse recipients."""
    filepath = Path(filepath)
    suffix = filepath.suffix.lower()
    if suffix == ".json":
        return parse_recipients_json(filepath)
    elif suffix in (".csv", ".txt"):
        return parse_recipients_csv(filepath)
    else:
        try:
            return parse_recipients_csv(filepath)
        except ValueError:
            return parse_recipients_json(filepath)


def parse_recipient_pairs(args: Sequence[str]) -> list[Recipient]:
    """Parse ``<recipient> <amount> <recipient> <amount> ...`` command-line pairs."""
    if len(args) % 2 != 0:
        raise ValueError("Expected <recipient> <amount> pairs")
    return [
        Recipient(
            address=normalize_address(args[i]),
            amount=_parse_amount(args[i + 1], f"Pair {i // 2 + 1}"),
        )
        for i in range(0, len(args), 2)
    ]


def validate_recipients(recipients: list[Recipient]) -> tuple[bool, list[str]]:
    """
    Validate all recipients. Returns (is_valid, list_of_errors).
    Also checks the batch shape (emptiness and size cap).
    """
    errors = []

    if not recipients:
        errors.append(str(EmptyRecipients()))
    elif len(recipients) > MAX_BATCH_SIZE:
        errors.append(str(BatchSizeExceeded(len(recipients), MAX_BATCH_SIZE)))

    for i, r in enumerate(recipients):
        for err in r.validate():
            errors.append(f"Recipient {i + 1} ({r.label or r.address[:12]}...): {err}")

    return len(errors) == 0, errors

"""
In-process ledger running the batch-transfer entry functions.

Each invocation is applied under one lock and against a staged copy of
account state: an abort anywhere in a batch restores the snapshot, so no
partial transfer is ever observable. The class answers the same query and
submit calls as ``moove_money.client.LedgerClient`` and can stand in for a
fullnode in tests and local runs.

Gas is metered (reported as ``gas_used``) but not deducted from balances.
"""

from __future__ import annotations

import copy
import hashlib
import json
import logging
import re
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Optional, Sequence

from moove_money.batch import (
    U64_MAX,
    AmountSource,
    EqualAmount,
    ExplicitAmounts,
    check_batch_shape,
    is_valid_address,
    normalize_address,
    sum_amounts,
)
from moove_money.errors import (
    BalanceOverflow,
    BatchValidationError,
    InsufficientBalance,
    LedgerAbort,
    LedgerError,
    RecipientStoreNotPublished,
    ResourceNotFound,
)
from moove_money.payload import (
    COIN_TYPE,
    MODULE_NAME,
    REGISTER_FUNCTION,
    SEND_EQUAL_TO_MULTIPLE,
    SEND_TO_MULTIPLE,
    EntryFunctionPayload,
    coin_store_type,
)

logger = logging.getLogger(__name__)

GAS_BASE = 50
GAS_PER_TRANSFER = 10
GAS_UNIT_PRICE = 100

EXECUTED = "Executed successfully"

# Abort codes of the batch module, category INVALID_ARGUMENT (0x1).
MODULE_ABORT_CODES = {
    "E_EMPTY_RECIPIENTS": 0x10001,
    "E_VECTOR_LENGTH_MISMATCH": 0x10002,
    "E_BATCH_SIZE_EXCEEDED": 0x10003,
}

_COIN_STORE_RE = re.compile(r"^0x1::coin::CoinStore<(.+)>$")


@dataclass(frozen=True)
class BatchTransferEvent:
    """Audit record of one successful batch."""

    sender: str
    num_recipients: int
    total_amount: int

    def to_json(self, module_address: str) -> dict[str, Any]:
        return {
            "type": f"{module_address}::{MODULE_NAME}::BatchTransferEvent",
            "data": {
                "sender": self.sender,
                "num_recipients": str(self.num_recipients),
                "total_amount": str(self.total_amount),
            },
        }


@dataclass
class AccountState:
    sequence_number: int = 0
    # coin type -> balance in smallest units; presence means registered
    coin_stores: dict[str, int] = field(default_factory=dict)


class Ledger:
    """
    Account ledger with the ``moove_money`` module published at ``module_address``.

    Example:
        >>> ledger = Ledger("0xcafe")
        >>> ledger.fund(alice, 1_000)
        >>> ledger.register(bob)
        >>> ledger.execute(alice, [bob], [100])
    """

    def __init__(self, module_address: str, coin_type: str = COIN_TYPE):
        self.module_address = normalize_address(module_address)
        self.coin_type = coin_type
        self.events: list[BatchTransferEvent] = []
        self._accounts: dict[str, AccountState] = {}
        self._transactions: list[dict[str, Any]] = []
        self._by_hash: dict[str, dict[str, Any]] = {}
        self._lock = threading.RLock()
        self._transfers = 0

        prefix = f"{self.module_address}::{MODULE_NAME}"
        self._entry_functions: dict[str, Callable[[str, EntryFunctionPayload], None]] = {
            REGISTER_FUNCTION: self._register_entry,
            f"{prefix}::{SEND_TO_MULTIPLE}": self._send_entry,
            f"{prefix}::{SEND_EQUAL_TO_MULTIPLE}": self._send_equal_entry,
        }

    # ── State helpers ──────────────────────────────────────────

    def _account(self, address: str) -> AccountState:
        return self._accounts.setdefault(normalize_address(address), AccountState())

    @contextmanager
    def _atomic(self) -> Iterator[None]:
        """Stage every write; restore the snapshot if the block raises."""
        with self._lock:
            accounts = copy.deepcopy(self._accounts)
            event_count = len(self.events)
            try:
                yield
            except Exception:
                self._accounts = accounts
                del self.events[event_count:]
                raise

    def is_registered(self, address: str, coin_type: Optional[str] = None) -> bool:
        account = self._accounts.get(normalize_address(address))
        return account is not None and (coin_type or self.coin_type) in account.coin_stores

    def balance_of(self, address: str, coin_type: Optional[str] = None) -> int:
        account = self._accounts.get(normalize_address(address))
        if account is None:
            return 0
        return account.coin_stores.get(coin_type or self.coin_type, 0)

    def fund(self, address: str, amount: int) -> None:
        """Faucet mint: create the account and its store if needed, then credit it."""
        with self._lock:
            balance = self.balance_of(address)
            if balance + amount > U64_MAX:
                raise BalanceOverflow(normalize_address(address), balance, amount)
            account = self._account(address)
            account.coin_stores[self.coin_type] = balance + amount

    # ── Executor ───────────────────────────────────────────────

    def register(self, address: str, coin_type: Optional[str] = None) -> None:
        """Publish an empty coin store for ``address``. No-op if already there."""
        with self._lock:
            self._account(address).coin_stores.setdefault(coin_type or self.coin_type, 0)

    def _transfer(self, sender: str, recipient: str, amount: int) -> None:
        source = self._account(sender).coin_stores
        if self.coin_type not in source:
            raise RecipientStoreNotPublished(sender)
        if source[self.coin_type] < amount:
            raise InsufficientBalance(sender, source[self.coin_type], amount)
        source[self.coin_type] -= amount

        dest = self._account(recipient).coin_stores
        if self.coin_type not in dest:
            raise RecipientStoreNotPublished(recipient)
        if dest[self.coin_type] + amount > U64_MAX:
            raise BalanceOverflow(recipient, dest[self.coin_type], amount)
        dest[self.coin_type] += amount
        self._transfers += 1

    def _execute_batch(
        self, sender: str, recipients: Sequence[str], source: AmountSource
    ) -> BatchTransferEvent:
        amounts = source.expand(len(recipients))
        check_batch_shape(recipients, amounts)
        if any(amount < 0 for amount in amounts):
            raise ValueError("Amounts must be unsigned")

        total = sum_amounts(amounts)
        for recipient, amount in zip(recipients, amounts):
            if amount == 0:
                continue
            self._transfer(sender, recipient, amount)

        event = BatchTransferEvent(
            sender=normalize_address(sender),
            num_recipients=len(recipients),
            total_amount=total,
        )
        self.events.append(event)
        return event

    def execute(
        self, sender: str, recipients: Sequence[str], amounts: Sequence[int]
    ) -> BatchTransferEvent:
        """Transfer ``amounts[i]`` to ``recipients[i]`` for every i, or nothing at all."""
        with self._atomic():
            return self._execute_batch(sender, recipients, ExplicitAmounts(tuple(amounts)))

    def execute_equal(
        self, sender: str, recipients: Sequence[str], amount: int
    ) -> BatchTransferEvent:
        """Transfer ``amount`` to every recipient, or nothing at all."""
        with self._atomic():
            return self._execute_batch(sender, recipients, EqualAmount(amount))

    # ── Entry functions ────────────────────────────────────────

    def _register_entry(self, sender: str, payload: EntryFunctionPayload) -> None:
        if payload.arguments or len(payload.type_arguments) != 1:
            raise LedgerError("register takes one type argument and no arguments", 400)
        self.register(sender, payload.type_arguments[0])

    def _send_entry(self, sender: str, payload: EntryFunctionPayload) -> None:
        recipients, amounts = self._decode_args(payload, 2)
        self._execute_batch(
            sender,
            _decode_addresses(recipients),
            ExplicitAmounts(tuple(_decode_u64(a) for a in _as_list(amounts))),
        )

    def _send_equal_entry(self, sender: str, payload: EntryFunctionPayload) -> None:
        recipients, amount = self._decode_args(payload, 2)
        self._execute_batch(sender, _decode_addresses(recipients), EqualAmount(_decode_u64(amount)))

    @staticmethod
    def _decode_args(payload: EntryFunctionPayload, count: int) -> list[Any]:
        if len(payload.arguments) != count:
            raise LedgerError(
                f"{payload.function_name} expects {count} arguments, got {len(payload.arguments)}",
                400,
            )
        return list(payload.arguments)

    def invoke(self, sender: str, payload: EntryFunctionPayload) -> dict[str, Any]:
        """
        Run one entry function as ``sender`` and record the committed transaction.

        Aborts are recorded, not raised: the returned transaction carries
        ``success`` and ``vm_status`` exactly as a fullnode reports them.
        Malformed payloads raise ``LedgerError`` and are never recorded.
        """
        sender = normalize_address(sender)
        handler = self._entry_functions.get(payload.function)
        if handler is None:
            raise LedgerError(f"Unknown entry function {payload.function}", 400)

        with self._lock:
            event_count = len(self.events)
            self._transfers = 0
            try:
                with self._atomic():
                    handler(sender, payload)
                success, vm_status = True, EXECUTED
            except LedgerAbort as e:
                success, vm_status = False, e.vm_status
            except BatchValidationError as e:
                location = f"{self.module_address}::{MODULE_NAME}"
                success = False
                vm_status = (
                    f"Move abort in {location}: {e.abort_name}"
                    f"(0x{MODULE_ABORT_CODES[e.abort_name]:x}): {e}"
                )

            if not success:
                logger.debug("Transaction from %s aborted: %s", sender, vm_status)

            account = self._account(sender)

            txn = {
                "type": "user_transaction",
                "version": str(len(self._transactions)),
                "hash": _txn_hash(sender, account.sequence_number, payload),
                "sender": sender,
                "sequence_number": str(account.sequence_number),
                "success": success,
                "vm_status": vm_status,
                "gas_used": str(GAS_BASE + GAS_PER_TRANSFER * self._transfers),
                "gas_unit_price": str(GAS_UNIT_PRICE),
                "payload": payload.to_json(),
                "events": [e.to_json(self.module_address) for e in self.events[event_count:]],
                "timestamp": str(int(time.time() * 1_000_000)),
            }
            account.sequence_number += 1
            self._transactions.append(txn)
            self._by_hash[txn["hash"]] = txn
            return txn

    # ── Query/submit surface shared with LedgerClient ──────────

    def get_account(self, address: str) -> dict[str, Any]:
        account = self._accounts.get(normalize_address(address))
        if account is None:
            raise ResourceNotFound(f"Account not found: {address}", 404)
        return {
            "sequence_number": str(account.sequence_number),
            "authentication_key": normalize_address(address),
        }

    def get_account_resource(self, address: str, resource_type: str) -> dict[str, Any]:
        match = _COIN_STORE_RE.match(resource_type)
        account = self._accounts.get(normalize_address(address))
        if match is None or account is None or match.group(1) not in account.coin_stores:
            raise ResourceNotFound(f"Resource not found: {resource_type} at {address}", 404)
        return {
            "type": coin_store_type(match.group(1)),
            "data": {
                "coin": {"value": str(account.coin_stores[match.group(1)])},
                "frozen": False,
            },
        }

    def get_account_transactions(
        self, address: str, limit: int = 25, start: Optional[int] = None
    ) -> list[dict[str, Any]]:
        address = normalize_address(address)
        if address not in self._accounts:
            raise ResourceNotFound(f"Account not found: {address}", 404)
        own = [t for t in self._transactions if t["sender"] == address]
        own = [t for t in own if start is None or int(t["sequence_number"]) >= start]
        return own[:limit]

    def get_transaction_by_hash(self, txn_hash: str) -> dict[str, Any]:
        try:
            return self._by_hash[txn_hash]
        except KeyError:
            raise ResourceNotFound(f"Transaction not found: {txn_hash}", 404)

    def get_transaction_by_version(self, version: int) -> dict[str, Any]:
        if not 0 <= int(version) < len(self._transactions):
            raise ResourceNotFound(f"Transaction not found at version {version}", 404)
        return self._transactions[int(version)]

    def submit_transaction(self, payload: EntryFunctionPayload, signer: Any) -> dict[str, Any]:
        """Commit immediately and hand back the pending view of the transaction."""
        txn = self.invoke(signer.address, payload)
        return {
            "type": "pending_transaction",
            "hash": txn["hash"],
            "sender": txn["sender"],
            "sequence_number": txn["sequence_number"],
            "payload": txn["payload"],
        }


def _as_list(value: Any) -> list[Any]:
    if not isinstance(value, list):
        raise LedgerError(f"Expected a vector argument, got {value!r}", 400)
    return value


def _decode_addresses(value: Any) -> list[str]:
    addresses = []
    for raw in _as_list(value):
        if not isinstance(raw, str) or not is_valid_address(raw):
            raise LedgerError(f"Invalid address argument: {raw!r}", 400)
        addresses.append(normalize_address(raw))
    return addresses


def _decode_u64(value: Any) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise LedgerError(f"Invalid u64 argument: {value!r}", 400)
    if isinstance(value, (bool, float)) or not 0 <= number <= U64_MAX:
        raise LedgerError(f"Invalid u64 argument: {value!r}", 400)
    return number


def _txn_hash(sender: str, sequence_number: int, payload: EntryFunctionPayload) -> str:
    body = json.dumps(
        {"sender": sender, "sequence_number": sequence_number, "payload": payload.to_json()},
        sort_keys=True,
    )
    return "0x" + hashlib.sha3_256(body.encode("utf-8")).hexdigest()

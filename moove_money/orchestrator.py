"""
Disbursement orchestration for Moove Money.

One attempt walks through

    Building -> PreflightChecking -> Submitting -> AwaitingSettlement
             -> Confirmed | Failed

Structural problems and unregistered recipients stop the attempt before
anything is submitted. A low sender balance is only reported: the ledger
decides, and its verdict is trusted over any local reading. A failed
settlement is classified and returned, never retried here.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional, Sequence

from moove_money.batch import (
    AmountSource,
    EqualAmount,
    ExplicitAmounts,
    Recipient,
    check_batch_shape,
    format_move,
    normalize_address,
    sum_amounts,
)
from moove_money.config import DisbursementSettings
from moove_money.errors import (
    InvalidBatchEntries,
    MooveMoneyError,
    RegistrationError,
    ResourceNotFound,
    SettlementTimeout,
    TransientQueryFailure,
    UnregisteredRecipients,
)
from moove_money.payload import EntryFunctionPayload, batch_payload, coin_store_type, register_payload

logger = logging.getLogger(__name__)


class Stage(Enum):
    """Steps of a single disbursement attempt."""

    BUILDING = "building"
    PREFLIGHT = "preflight_checking"
    SUBMITTING = "submitting"
    AWAITING_SETTLEMENT = "awaiting_settlement"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class SettlementStatus(Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class FailureReason(Enum):
    """Ledger-reported reasons a submitted batch was rejected."""

    INSUFFICIENT_BALANCE = "insufficient_balance"
    RECIPIENT_NOT_REGISTERED = "recipient_not_registered"
    EMPTY_RECIPIENTS = "empty_recipients"
    BATCH_SIZE_EXCEEDED = "batch_size_exceeded"
    VECTOR_LENGTH_MISMATCH = "vector_length_mismatch"
    BALANCE_OVERFLOW = "balance_overflow"
    OUT_OF_GAS = "out_of_gas"
    SEQUENCE_NUMBER = "sequence_number"
    UNKNOWN = "unknown"


# Checked in order against the ledger's vm_status.
_FAILURE_MARKERS = (
    ("EINSUFFICIENT_BALANCE", FailureReason.INSUFFICIENT_BALANCE),
    ("ECOIN_STORE_NOT_PUBLISHED", FailureReason.RECIPIENT_NOT_REGISTERED),
    ("E_EMPTY_RECIPIENTS", FailureReason.EMPTY_RECIPIENTS),
    ("E_BATCH_SIZE_EXCEEDED", FailureReason.BATCH_SIZE_EXCEEDED),
    ("E_VECTOR_LENGTH_MISMATCH", FailureReason.VECTOR_LENGTH_MISMATCH),
    ("ARITHMETIC_ERROR", FailureReason.BALANCE_OVERFLOW),
    ("OUT_OF_GAS", FailureReason.OUT_OF_GAS),
    ("SEQUENCE_NUMBER", FailureReason.SEQUENCE_NUMBER),
)

REMEDIATION_HINTS = {
    FailureReason.INSUFFICIENT_BALANCE: (
        "Insufficient balance. Make sure the sender holds enough MOVE for the whole batch."
    ),
    FailureReason.RECIPIENT_NOT_REGISTERED: (
        "One or more recipient accounts are not registered for the coin. Recipients "
        "must call 0x1::managed_coin::register<0x1::aptos_coin::AptosCoin>() first."
    ),
    FailureReason.EMPTY_RECIPIENTS: "The batch must name at least one recipient.",
    FailureReason.BATCH_SIZE_EXCEEDED: "Split the batch: at most 100 recipients per invocation.",
    FailureReason.VECTOR_LENGTH_MISMATCH: "Pass exactly one amount per recipient.",
    FailureReason.BALANCE_OVERFLOW: "A recipient balance would exceed the u64 maximum.",
    FailureReason.OUT_OF_GAS: "Raise the gas limit and submit again.",
    FailureReason.SEQUENCE_NUMBER: (
        "Another transaction from the sender landed first. Re-query the account and submit again."
    ),
    FailureReason.UNKNOWN: "Inspect the VM status on the explorer before retrying.",
}


def classify_failure(vm_status: str) -> FailureReason:
    for marker, reason in _FAILURE_MARKERS:
        if marker in vm_status:
            return reason
    return FailureReason.UNKNOWN


@dataclass
class SettlementOutcome:
    """The orchestrator's view of one submitted invocation."""

    txn_hash: str
    status: SettlementStatus = SettlementStatus.PENDING
    version: Optional[int] = None
    gas_used: Optional[int] = None
    vm_status: Optional[str] = None
    reason: Optional[FailureReason] = None

    def settle(self, txn: dict[str, Any]) -> None:
        """Record the committed transaction. Allowed once, from PENDING only."""
        if self.status is not SettlementStatus.PENDING:
            raise ValueError(f"Transaction {self.txn_hash} already settled as {self.status.value}")

        self.version = int(txn["version"]) if txn.get("version") is not None else None
        self.gas_used = int(txn.get("gas_used", 0))
        self.vm_status = txn.get("vm_status")
        if txn.get("success"):
            self.status = SettlementStatus.CONFIRMED
        else:
            self.status = SettlementStatus.FAILED
            self.reason = classify_failure(self.vm_status or "")

    @property
    def hint(self) -> Optional[str]:
        return REMEDIATION_HINTS[self.reason] if self.reason else None


def check_settlement(client: Any, txn_hash: str) -> SettlementOutcome:
    """One status lookup. Unknown or still-pending hashes come back PENDING."""
    outcome = SettlementOutcome(txn_hash=txn_hash)
    try:
        txn = client.get_transaction_by_hash(txn_hash)
    except ResourceNotFound:
        return outcome
    if txn.get("type") != "pending_transaction":
        outcome.settle(txn)
    return outcome


INSUFFICIENT_BALANCE_WARNING = "InsufficientBalanceWarning"
BALANCE_UNAVAILABLE_WARNING = "BalanceUnavailableWarning"


@dataclass
class PreflightWarning:
    """A finding that does not block submission."""

    kind: str
    message: str


@dataclass
class PreflightReport:
    """Facts gathered about the ledger before submitting a batch."""

    sender: str
    total_amount: int
    recipient_count: int
    sender_registered: bool
    registered_sender: bool = False  # registration submitted during this attempt
    unregistered_recipients: list[str] = field(default_factory=list)
    balance: Optional[int] = None
    warnings: list[PreflightWarning] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.unregistered_recipients

    @property
    def balance_sufficient(self) -> Optional[bool]:
        if self.balance is None:
            return None
        return self.balance >= self.total_amount

    def summary(self) -> str:
        """Human-readable preflight report."""
        lines = [
            "=== Moove Money - Preflight ===",
            f"Sender: {self.sender}",
            f"Sender registered: {'yes' if self.sender_registered else 'no'}"
            + (" (registered now)" if self.registered_sender else ""),
            f"Recipients: {self.recipient_count}",
            f"Total to send: {format_move(self.total_amount)} ({self.total_amount} octas)",
        ]
        if self.balance is not None:
            lines.append(f"Sender balance: {format_move(self.balance)}")
        if self.unregistered_recipients:
            lines.append("Unregistered recipients:")
            lines.extend(f"  - {addr}" for addr in self.unregistered_recipients)
        for warning in self.warnings:
            lines.append(f"Warning: {warning.message}")
        lines.append(f"Ready to submit: {'yes' if self.ok else 'no'}")
        return "\n".join(lines)


@dataclass
class DisbursementResult:
    """Result of one settled disbursement attempt."""

    outcome: SettlementOutcome
    recipients: list[str]
    amounts: list[int]
    preflight: PreflightReport
    duration_seconds: float = 0.0
    explorer_link: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.outcome.status is SettlementStatus.CONFIRMED

    @property
    def total_amount(self) -> int:
        return sum_amounts(self.amounts)

    def summary(self) -> str:
        """Human-readable summary of the disbursement."""
        status = "SUCCESS" if self.success else "FAILED"
        lines = [
            f"=== Moove Money Batch Transfer - {status} ===",
            f"Recipients: {len(self.recipients)}",
            f"Total amount: {format_move(self.total_amount)}",
            f"Transaction hash: {self.outcome.txn_hash}",
        ]
        if self.outcome.version is not None:
            lines.append(f"Version: {self.outcome.version}")
        if self.outcome.gas_used is not None:
            lines.append(f"Gas used: {self.outcome.gas_used}")
        lines.append(f"Duration: {self.duration_seconds:.1f}s")
        if self.explorer_link:
            lines.append(f"Explorer: {self.explorer_link}")
        if not self.success:
            lines.append(f"Error: {self.outcome.vm_status}")
            lines.append(f"Tip: {self.outcome.hint}")
        return "\n".join(lines)


class DisbursementOrchestrator:
    """
    Runs batch disbursements from one sender.

    ``client`` is anything with the ledger query/submit calls
    (``LedgerClient`` for a fullnode, ``Ledger`` in-process).
    ``signer`` exposes ``address``, ``public_key_hex`` and ``sign(bytes)``.
    """

    def __init__(
        self,
        client: Any,
        signer: Any,
        settings: DisbursementSettings,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.signer = signer
        self.settings = settings
        self.sender = normalize_address(signer.address)
        self._sleep = sleep
        self._clock = clock

    # ── Ledger reads ───────────────────────────────────────────

    def is_registered(self, address: str) -> bool:
        try:
            self.client.get_account_resource(address, coin_store_type(self.settings.coin_type))
        except ResourceNotFound:
            return False
        return True

    def get_balance(self, address: str) -> int:
        try:
            resource = self.client.get_account_resource(
                address, coin_store_type(self.settings.coin_type)
            )
        except ResourceNotFound:
            return 0
        return int(resource["data"]["coin"]["value"])

    # ── Building ───────────────────────────────────────────────

    def _build(
        self, recipients: Sequence[str], source: AmountSource
    ) -> tuple[list[str], list[int]]:
        recipients = [normalize_address(r) for r in recipients]
        amounts = source.expand(len(recipients))
        check_batch_shape(recipients, amounts)

        errors = []
        for i, (address, amount) in enumerate(zip(recipients, amounts)):
            for err in Recipient(address=address, amount=amount).validate():
                errors.append(f"Recipient {i + 1}: {err}")
        if errors:
            raise InvalidBatchEntries(errors)
        return recipients, amounts

    # ── Preflight ──────────────────────────────────────────────

    def ensure_registered(self) -> bool:
        """Register the sender for the coin if needed. True if a registration was submitted."""
        if self.is_registered(self.sender):
            return False

        logger.info("Sender %s not registered for %s; registering", self.sender, self.settings.coin_type)
        txn_hash = self.submit(register_payload(self.settings.coin_type))
        outcome = self.await_settlement(txn_hash)
        if outcome.status is not SettlementStatus.CONFIRMED:
            raise RegistrationError(self.sender, outcome.vm_status or "unknown")
        logger.info("Sender %s registered in %s", self.sender, txn_hash)
        return True

    def _find_unregistered(self, recipients: Sequence[str], amounts: Sequence[int]) -> list[str]:
        """Recipients that would be credited but have no coin store.

        Zero-amount entries are skipped by the ledger, so their addresses are
        only checked when they also receive a positive amount elsewhere.
        """
        unique = list(dict.fromkeys(r for r, a in zip(recipients, amounts) if a > 0))
        if not unique:
            return []
        workers = min(self.settings.preflight_workers, len(unique))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            registered = list(pool.map(self.is_registered, unique))

        unregistered = []
        for address, ok in zip(unique, registered):
            if ok:
                logger.debug("Recipient %s registered", address)
            else:
                logger.info("Recipient %s NOT registered", address)
                unregistered.append(address)
        return unregistered

    def _preflight(
        self, recipients: list[str], amounts: list[int], register_sender: bool
    ) -> PreflightReport:
        if register_sender:
            registered_now = self.ensure_registered()
            sender_registered = True
        else:
            registered_now = False
            sender_registered = self.is_registered(self.sender)

        report = PreflightReport(
            sender=self.sender,
            total_amount=sum_amounts(amounts),
            recipient_count=len(recipients),
            sender_registered=sender_registered,
            registered_sender=registered_now,
            unregistered_recipients=self._find_unregistered(recipients, amounts),
        )

        try:
            report.balance = self.get_balance(self.sender)
        except MooveMoneyError as e:
            report.warnings.append(
                PreflightWarning(BALANCE_UNAVAILABLE_WARNING, f"Could not check balance: {e}")
            )
        else:
            if report.balance < report.total_amount:
                report.warnings.append(PreflightWarning(
                    INSUFFICIENT_BALANCE_WARNING,
                    f"Insufficient balance. Need {format_move(report.total_amount)} "
                    f"but have {format_move(report.balance)}",
                ))
        return report

    def preflight(
        self,
        recipients: Sequence[str],
        amounts: Sequence[int],
        register_sender: bool = False,
    ) -> PreflightReport:
        """
        Check a batch against the ledger without submitting it.

        With ``register_sender`` left off this performs reads only.
        """
        recipients, amounts = self._build(recipients, ExplicitAmounts(tuple(amounts)))
        return self._preflight(recipients, amounts, register_sender)

    # ── Submission and settlement ──────────────────────────────

    def submit(self, payload: EntryFunctionPayload) -> str:
        """Sign and submit one invocation; returns its hash."""
        pending = self.client.submit_transaction(payload, self.signer)
        txn_hash = pending["hash"]
        logger.info("Submitted %s: %s", payload.function_name, txn_hash)
        return txn_hash

    def check_settlement(self, txn_hash: str) -> SettlementOutcome:
        return check_settlement(self.client, txn_hash)

    def await_settlement(self, txn_hash: str, max_wait: Optional[float] = None) -> SettlementOutcome:
        """
        Poll until the ledger finalizes ``txn_hash``.

        Transient query failures are retried. After ``max_wait`` seconds
        (``settings.max_wait`` by default) ``SettlementTimeout`` is raised and
        the real outcome is left unresolved.
        """
        max_wait = self.settings.max_wait if max_wait is None else max_wait
        start = self._clock()

        while True:
            try:
                outcome = self.check_settlement(txn_hash)
            except TransientQueryFailure as e:
                logger.warning("Status query for %s failed, retrying: %s", txn_hash, e)
            else:
                if outcome.status is not SettlementStatus.PENDING:
                    return outcome

            waited = self._clock() - start
            if waited >= max_wait:
                raise SettlementTimeout(txn_hash, waited)
            self._sleep(min(self.settings.poll_interval, max_wait - waited))

    # ── Full attempt ───────────────────────────────────────────

    def _enter(self, stage: Stage, detail: str = "") -> None:
        logger.info("[%s] %s", stage.value, detail)

    def _run(
        self, recipients: Sequence[str], source: AmountSource, max_wait: Optional[float]
    ) -> DisbursementResult:
        start_time = time.time()

        self._enter(Stage.BUILDING, f"{len(recipients)} recipients from {self.sender}")
        recipients, amounts = self._build(recipients, source)

        self._enter(Stage.PREFLIGHT)
        report = self._preflight(recipients, amounts, register_sender=True)
        if report.unregistered_recipients:
            raise UnregisteredRecipients(report.unregistered_recipients)
        for warning in report.warnings:
            logger.warning("%s: %s", warning.kind, warning.message)

        self._enter(Stage.SUBMITTING)
        if isinstance(source, ExplicitAmounts):
            source = ExplicitAmounts(tuple(amounts))
        txn_hash = self.submit(batch_payload(self.settings.module_address, recipients, source))

        self._enter(Stage.AWAITING_SETTLEMENT, txn_hash)
        outcome = self.await_settlement(txn_hash, max_wait)

        if outcome.status is SettlementStatus.CONFIRMED:
            self._enter(Stage.CONFIRMED, f"gas used {outcome.gas_used}")
        else:
            self._enter(Stage.FAILED, outcome.vm_status or "")
            logger.error("Batch %s failed (%s). %s", txn_hash, outcome.reason.value, outcome.hint)

        return DisbursementResult(
            outcome=outcome,
            recipients=recipients,
            amounts=amounts,
            preflight=report,
            duration_seconds=time.time() - start_time,
            explorer_link=f"{self.settings.explorer_url.rstrip('/')}/{txn_hash}",
        )

    def disburse(
        self,
        recipients: Sequence[str],
        amounts: Sequence[int],
        max_wait: Optional[float] = None,
    ) -> DisbursementResult:
        """
        Send ``amounts[i]`` to ``recipients[i]`` in one atomic invocation.

        Raises:
            BatchValidationError: malformed batch, nothing sent
            UnregisteredRecipients: listing every recipient that must register first
            SettlementTimeout: submitted, outcome unknown
        """
        return self._run(recipients, ExplicitAmounts(tuple(amounts)), max_wait)

    def disburse_equal(
        self,
        recipients: Sequence[str],
        amount: int,
        max_wait: Optional[float] = None,
    ) -> DisbursementResult:
        """Send the same ``amount`` to every recipient in one atomic invocation."""
        return self._run(recipients, EqualAmount(amount), max_wait)

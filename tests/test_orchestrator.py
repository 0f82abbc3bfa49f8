import pytest

from moove_money.crypto import LocalAccount
from moove_money.errors import (
    BatchSizeExceeded,
    EmptyRecipients,
    InvalidBatchEntries,
    LedgerError,
    RegistrationError,
    SettlementTimeout,
    TransientQueryFailure,
    UnregisteredRecipients,
    VectorLengthMismatch,
)
from moove_money.orchestrator import (
    INSUFFICIENT_BALANCE_WARNING,
    DisbursementOrchestrator,
    FailureReason,
    SettlementOutcome,
    SettlementStatus,
    classify_failure,
)


class LedgerProxy:
    """Passes everything through to the in-process ledger."""

    def __init__(self, ledger):
        self.ledger = ledger

    def __getattr__(self, name):
        return getattr(self.ledger, name)


class FlakyStatusClient(LedgerProxy):
    def __init__(self, ledger, failures):
        super().__init__(ledger)
        self.failures = failures
        self.status_calls = 0

    def get_transaction_by_hash(self, txn_hash):
        self.status_calls += 1
        if self.failures:
            self.failures -= 1
            raise TransientQueryFailure("503: node busy", 503)
        return self.ledger.get_transaction_by_hash(txn_hash)


class PendingClient(LedgerProxy):
    def __init__(self, ledger, pending_polls):
        super().__init__(ledger)
        self.pending_polls = pending_polls

    def get_transaction_by_hash(self, txn_hash):
        if self.pending_polls is None or self.pending_polls > 0:
            if self.pending_polls:
                self.pending_polls -= 1
            return {"type": "pending_transaction", "hash": txn_hash}
        return self.ledger.get_transaction_by_hash(txn_hash)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.now += seconds


def sent_count(ledger, account):
    return int(ledger.get_account(account.address)["sequence_number"])


def test_disburse_confirmed(orchestrator, ledger, sender, make_recipient):
    r1, r2 = make_recipient(), make_recipient()

    result = orchestrator.disburse([r1, r2], [100, 200])

    assert result.success
    assert result.outcome.status is SettlementStatus.CONFIRMED
    assert result.outcome.gas_used > 0
    assert result.outcome.version is not None
    assert result.explorer_link.endswith(result.outcome.txn_hash)
    assert result.preflight.balance == 1000
    assert result.preflight.warnings == []
    assert [ledger.balance_of(a) for a in (sender.address, r1, r2)] == [700, 100, 200]
    assert ledger.events[-1].total_amount == 300


def test_disburse_equal(orchestrator, ledger, make_recipient):
    recipients = [make_recipient() for _ in range(3)]

    result = orchestrator.disburse_equal(recipients, 100)

    assert result.success
    assert result.amounts == [100, 100, 100]
    assert ledger.events[-1].num_recipients == 3
    assert ledger.events[-1].total_amount == 300


def test_unregistered_recipients_block_submission(orchestrator, ledger, sender, make_recipient):
    r1 = make_recipient()
    r3 = make_recipient(registered=False)
    r4 = make_recipient(registered=False)

    with pytest.raises(UnregisteredRecipients) as exc:
        orchestrator.disburse([r1, r3, r4, r3], [1, 2, 3, 4])

    assert exc.value.recipients == [r3, r4]
    assert sent_count(ledger, sender) == 0
    assert ledger.balance_of(sender.address) == 1000


def test_structural_errors_are_local(orchestrator, ledger, sender, make_recipient):
    r1 = make_recipient()

    with pytest.raises(EmptyRecipients):
        orchestrator.disburse([], [])
    with pytest.raises(VectorLengthMismatch):
        orchestrator.disburse([r1], [1, 2])
    with pytest.raises(InvalidBatchEntries):
        orchestrator.disburse(["nope"], [1])

    assert sent_count(ledger, sender) == 0


def test_oversized_batch_rejected_locally(orchestrator, ledger, sender, make_recipient):
    r1 = make_recipient()

    with pytest.raises(BatchSizeExceeded):
        orchestrator.disburse([r1] * 101, [1] * 101)
    with pytest.raises(BatchSizeExceeded):
        orchestrator.disburse_equal([r1] * 101, 1)

    assert sent_count(ledger, sender) == 0
    assert ledger.balance_of(r1) == 0


def test_full_batch_of_one_hundred(orchestrator, ledger, make_recipient):
    recipients = [make_recipient() for _ in range(100)]

    result = orchestrator.disburse_equal(recipients, 1)

    assert result.success
    assert ledger.events[-1].num_recipients == 100
    assert all(ledger.balance_of(r) == 1 for r in recipients)


def test_zero_amount_entries_need_no_registration(orchestrator, ledger, sender, make_recipient):
    r1 = make_recipient()
    pad = make_recipient(registered=False)

    assert orchestrator.preflight([r1, pad], [10, 0]).unregistered_recipients == []
    result = orchestrator.disburse([r1, pad], [10, 0])

    assert result.success
    assert ledger.events[-1].num_recipients == 2
    assert not ledger.is_registered(pad)
    assert ledger.balance_of(r1) == 10


def test_padded_address_still_blocks_when_paid_elsewhere(orchestrator, ledger, sender, make_recipient):
    r1 = make_recipient()
    pad = make_recipient(registered=False)

    with pytest.raises(UnregisteredRecipients) as exc:
        orchestrator.disburse([pad, r1, pad], [0, 5, 3])

    assert exc.value.recipients == [pad]
    assert sent_count(ledger, sender) == 0


def test_all_zero_equal_batch(orchestrator, ledger, sender, make_recipient):
    recipients = [make_recipient(registered=False) for _ in range(3)]

    result = orchestrator.disburse_equal(recipients, 0)

    assert result.success
    assert ledger.events[-1].total_amount == 0
    assert ledger.balance_of(sender.address) == 1000


def test_low_balance_is_advisory_and_ledger_decides(orchestrator, ledger, sender, make_recipient):
    r1, r2 = make_recipient(), make_recipient()

    result = orchestrator.disburse([r1, r2], [600, 600])

    assert [w.kind for w in result.preflight.warnings] == [INSUFFICIENT_BALANCE_WARNING]
    assert not result.success
    assert result.outcome.reason is FailureReason.INSUFFICIENT_BALANCE
    assert "Insufficient balance" in result.outcome.hint
    # one submission, no automatic retry, nothing moved
    assert sent_count(ledger, sender) == 1
    assert [ledger.balance_of(a) for a in (sender.address, r1, r2)] == [1000, 0, 0]


def test_unregistered_sender_registers_first(ledger, settings, make_recipient):
    newcomer = LocalAccount.generate()
    orchestrator = DisbursementOrchestrator(ledger, newcomer, settings, sleep=lambda _: None)
    r1 = make_recipient()

    result = orchestrator.disburse([r1], [10])

    assert result.preflight.registered_sender
    assert ledger.is_registered(newcomer.address)
    assert result.outcome.reason is FailureReason.INSUFFICIENT_BALANCE
    assert sent_count(ledger, newcomer) == 2


def test_failed_sender_registration_raises(ledger, settings, make_recipient):
    newcomer = LocalAccount.generate()

    class RejectingClient(LedgerProxy):
        def get_transaction_by_hash(self, txn_hash):
            return {"type": "user_transaction", "success": False, "version": "9",
                    "gas_used": "3", "vm_status": "OUT_OF_GAS"}

    orchestrator = DisbursementOrchestrator(
        RejectingClient(ledger), newcomer, settings, sleep=lambda _: None
    )
    with pytest.raises(RegistrationError):
        orchestrator.disburse([make_recipient()], [1])


def test_transient_status_failures_are_retried(ledger, sender, settings, make_recipient):
    client = FlakyStatusClient(ledger, failures=3)
    orchestrator = DisbursementOrchestrator(client, sender, settings, sleep=lambda _: None)

    result = orchestrator.disburse([make_recipient()], [5])

    assert result.success
    assert client.status_calls == 4


def test_pending_then_confirmed(ledger, sender, settings, make_recipient):
    client = PendingClient(ledger, pending_polls=2)
    orchestrator = DisbursementOrchestrator(client, sender, settings, sleep=lambda _: None)

    assert orchestrator.disburse([make_recipient()], [5]).success


def test_settlement_timeout_leaves_outcome_unresolved(ledger, sender, settings, make_recipient):
    clock = FakeClock()
    client = PendingClient(ledger, pending_polls=None)
    orchestrator = DisbursementOrchestrator(client, sender, settings, sleep=clock.sleep, clock=clock)
    r1 = make_recipient()

    with pytest.raises(SettlementTimeout) as exc:
        orchestrator.disburse([r1], [5], max_wait=0.5)

    assert exc.value.waited >= 0.5
    # the transfer did land; a later lookup resolves it
    assert ledger.balance_of(r1) == 5
    assert DisbursementOrchestrator(ledger, sender, settings).check_settlement(
        exc.value.txn_hash
    ).status is SettlementStatus.CONFIRMED


def test_check_settlement_unknown_hash_is_pending(orchestrator):
    assert orchestrator.check_settlement("0xdead").status is SettlementStatus.PENDING


def test_preflight_reads_only(ledger, settings, make_recipient):
    newcomer = LocalAccount.generate()
    orchestrator = DisbursementOrchestrator(ledger, newcomer, settings)
    r1 = make_recipient()
    r2 = make_recipient(registered=False)

    report = orchestrator.preflight([r1, r2], [1, 2])

    assert not report.sender_registered
    assert not ledger.is_registered(newcomer.address)
    assert report.unregistered_recipients == [r2]
    assert report.balance == 0
    assert report.balance_sufficient is False
    assert not report.ok
    assert "Ready to submit: no" in report.summary()


def test_hard_query_errors_propagate(ledger, sender, settings, make_recipient):
    class BrokenResources(LedgerProxy):
        def get_account_resource(self, address, resource_type):
            raise LedgerError("400: bad request", 400)

    orchestrator = DisbursementOrchestrator(BrokenResources(ledger), sender, settings)
    with pytest.raises(LedgerError):
        orchestrator.preflight([make_recipient()], [1])


def test_outcome_settles_once():
    outcome = SettlementOutcome(txn_hash="0x1")
    outcome.settle({"version": "3", "gas_used": "12", "success": True, "vm_status": "Executed successfully"})

    assert outcome.status is SettlementStatus.CONFIRMED
    assert outcome.hint is None
    with pytest.raises(ValueError):
        outcome.settle({"version": "4", "success": False, "vm_status": "OUT_OF_GAS"})


@pytest.mark.parametrize("vm_status,reason", [
    ("Move abort in 0x1::coin: EINSUFFICIENT_BALANCE(0x10006): ...", FailureReason.INSUFFICIENT_BALANCE),
    ("Move abort in 0x1::coin: ECOIN_STORE_NOT_PUBLISHED(0x60005): ...", FailureReason.RECIPIENT_NOT_REGISTERED),
    ("Move abort in 0xab::moove_money: E_VECTOR_LENGTH_MISMATCH(0x10002): ...", FailureReason.VECTOR_LENGTH_MISMATCH),
    ("ARITHMETIC_ERROR in 0x1::coin: Deposit of 5 to 0x2 overflows u64", FailureReason.BALANCE_OVERFLOW),
    ("OUT_OF_GAS", FailureReason.OUT_OF_GAS),
    ("SEQUENCE_NUMBER_TOO_OLD", FailureReason.SEQUENCE_NUMBER),
    ("MISSING_DATA", FailureReason.UNKNOWN),
])
def test_classify_failure(vm_status, reason):
    assert classify_failure(vm_status) is reason

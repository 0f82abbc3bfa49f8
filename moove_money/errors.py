"""Exception hierarchy for Moove Money."""

from __future__ import annotations

from typing import Optional


class MooveMoneyError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(MooveMoneyError):
    """Raised when a profile or settings value is missing or invalid."""


# ── Structural ─────────────────────────────────────────────────


class BatchValidationError(MooveMoneyError):
    """A batch is malformed. Detected locally, before any ledger call."""

    abort_name = ""


class EmptyRecipients(BatchValidationError):
    abort_name = "E_EMPTY_RECIPIENTS"

    def __init__(self) -> None:
        super().__init__("At least one recipient is required")


class BatchSizeExceeded(BatchValidationError):
    abort_name = "E_BATCH_SIZE_EXCEEDED"

    def __init__(self, size: int, limit: int) -> None:
        self.size = size
        self.limit = limit
        super().__init__(f"Batch of {size} recipients exceeds the limit of {limit}")


class VectorLengthMismatch(BatchValidationError):
    abort_name = "E_VECTOR_LENGTH_MISMATCH"

    def __init__(self, recipients: int, amounts: int) -> None:
        self.recipients = recipients
        self.amounts = amounts
        super().__init__(
            f"Recipients and amounts must have the same length "
            f"({recipients} recipients, {amounts} amounts)"
        )


class InvalidBatchEntries(BatchValidationError):
    """Some entries carry a malformed address or an amount that is not a u64."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


# ── Preconditions ──────────────────────────────────────────────


class UnregisteredRecipients(MooveMoneyError):
    """One or more recipients cannot hold the coin yet."""

    def __init__(self, recipients: list[str]) -> None:
        self.recipients = list(recipients)
        super().__init__(
            f"{len(self.recipients)} recipient(s) not registered for the coin: "
            + ", ".join(self.recipients)
        )


class RegistrationError(MooveMoneyError):
    """Self-registration of an account did not settle successfully."""

    def __init__(self, address: str, vm_status: str) -> None:
        self.address = address
        self.vm_status = vm_status
        super().__init__(f"Registration of {address} failed: {vm_status}")


# ── Ledger-authoritative ───────────────────────────────────────


class LedgerAbort(MooveMoneyError):
    """An invocation aborted inside the ledger. All of its effects are void."""

    def __init__(self, location: str, name: str, code: int, description: str) -> None:
        self.location = location
        self.name = name
        self.code = code
        self.description = description
        super().__init__(self.vm_status)

    @property
    def vm_status(self) -> str:
        return f"Move abort in {self.location}: {self.name}(0x{self.code:x}): {self.description}"


class InsufficientBalance(LedgerAbort):
    def __init__(self, address: str, available: int, requested: int) -> None:
        self.address = address
        self.available = available
        self.requested = requested
        super().__init__(
            "0x1::coin",
            "EINSUFFICIENT_BALANCE",
            0x10006,
            f"Not enough coins to complete transaction ({available} < {requested})",
        )


class RecipientStoreNotPublished(LedgerAbort):
    def __init__(self, address: str) -> None:
        self.address = address
        super().__init__(
            "0x1::coin",
            "ECOIN_STORE_NOT_PUBLISHED",
            0x60005,
            f"Account {address} hasn't registered `CoinStore` resource",
        )


class BalanceOverflow(LedgerAbort):
    """A credit would push a coin store past the u64 range."""

    def __init__(self, address: str, balance: int, amount: int) -> None:
        self.address = address
        self.balance = balance
        self.amount = amount
        super().__init__(
            "0x1::coin",
            "ARITHMETIC_ERROR",
            0,
            f"Deposit of {amount} to {address} overflows u64",
        )

    @property
    def vm_status(self) -> str:
        return f"ARITHMETIC_ERROR in {self.location}: {self.description}"


# ── Transport / timing ─────────────────────────────────────────


class LedgerError(MooveMoneyError):
    """The ledger RPC rejected a request."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class ResourceNotFound(LedgerError):
    """The requested account, resource or transaction does not exist."""


class TransientQueryFailure(LedgerError):
    """A query failed for a reason that may go away on retry."""


class SettlementTimeout(MooveMoneyError):
    """The invocation did not settle within the allowed wait.

    The transfer may still land; re-query by ``txn_hash`` before retrying.
    """

    def __init__(self, txn_hash: str, waited: float) -> None:
        self.txn_hash = txn_hash
        self.waited = waited
        super().__init__(
            f"Transaction {txn_hash} not settled after {waited:.1f}s; outcome unknown"
        )

"""Entry-function payloads understood by the ledger."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence

from moove_money.batch import AmountSource, EqualAmount, ExplicitAmounts

COIN_TYPE = "0x1::aptos_coin::AptosCoin"
REGISTER_FUNCTION = "0x1::managed_coin::register"

MODULE_NAME = "moove_money"
SEND_TO_MULTIPLE = "send_move_to_multiple"
SEND_EQUAL_TO_MULTIPLE = "send_move_equal_to_multiple"


def coin_store_type(coin_type: str = COIN_TYPE) -> str:
    return f"0x1::coin::CoinStore<{coin_type}>"


@dataclass(frozen=True)
class EntryFunctionPayload:
    """
    One entry-function call.

    u64 arguments travel as decimal strings, addresses as ``0x`` hex.
    Argument order is part of the on-ledger interface.
    """

    function: str
    arguments: list[Any] = field(default_factory=list)
    type_arguments: list[str] = field(default_factory=list)

    @property
    def function_name(self) -> str:
        return self.function.rsplit("::", 1)[1]

    def to_json(self) -> dict[str, Any]:
        return {
            "type": "entry_function_payload",
            "function": self.function,
            "type_arguments": list(self.type_arguments),
            "arguments": list(self.arguments),
        }


def batch_payload(
    module_address: str, recipients: Sequence[str], source: AmountSource
) -> EntryFunctionPayload:
    """Build the batch-transfer call matching the amount source."""
    prefix = f"{module_address}::{MODULE_NAME}"
    if isinstance(source, EqualAmount):
        return EntryFunctionPayload(
            function=f"{prefix}::{SEND_EQUAL_TO_MULTIPLE}",
            arguments=[list(recipients), str(source.amount)],
        )
    if isinstance(source, ExplicitAmounts):
        return EntryFunctionPayload(
            function=f"{prefix}::{SEND_TO_MULTIPLE}",
            arguments=[list(recipients), [str(a) for a in source.amounts]],
        )
    raise TypeError(f"Unsupported amount source: {source!r}")


def register_payload(coin_type: str = COIN_TYPE) -> EntryFunctionPayload:
    return EntryFunctionPayload(function=REGISTER_FUNCTION, type_arguments=[coin_type])

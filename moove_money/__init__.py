"""
Moove Money - Batch MOVE payments for Movement / Aptos-compatible ledgers.

Sends MOVE to up to 100 recipients in a single entry-function call
(``moove_money::send_move_to_multiple``). The call is atomic: if any
transfer fails, the whole batch is reverted, so no partial payments.
"""

__version__ = "0.1.0"

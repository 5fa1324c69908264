"""NGN wallet and escrow ledger."""

from .ledger import (
    WalletLedger,
    deletion_refund_reference,
    escrow_hold_reference,
    payout_reference,
    rejection_refund_reference,
)

__all__ = [
    "WalletLedger",
    "escrow_hold_reference",
    "payout_reference",
    "rejection_refund_reference",
    "deletion_refund_reference",
]

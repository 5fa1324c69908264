"""Wallet ledger: NGN balances plus the append-only transaction log.

Every balance change is written as a compare-and-swap on the balance that
was read, then paired with a ``wallet_transactions`` row. If the row cannot
be appended the balance write is reverted, so a balance never moves without
its ledger entry. ``wallet_transactions`` carries a unique key on
``(reference, transaction_type)``; a second payout with the same reference
is rejected by the database even if two requests pass the existence probe
at the same time.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from supabase import Client

from ..database import (
    RPC_CREATE_USER_WALLET,
    USER_WALLETS_TABLE,
    WALLET_TRANSACTIONS_TABLE,
    call_rpc,
    execute,
    fetch_all,
    fetch_one,
)
from ..errors import AlreadyProcessed, InsufficientFunds, RemoteFailure, ValidationError
from ..logging_config import get_logger, log_money_movement
from ..models import LedgerResult, TransactionType, Wallet, WalletTransaction

logger = get_logger("craftnet.wallet")

# Attempts at the balance compare-and-swap before giving up
BALANCE_WRITE_ATTEMPTS = 3


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _millis() -> int:
    return int(_now().timestamp() * 1000)


# =============================================================================
# References (idempotency keys)
# =============================================================================


def escrow_hold_reference() -> str:
    # Random suffix keeps holds placed in the same millisecond distinct
    return f"JOB-ESCROW-{_millis()}-{secrets.token_hex(4)}"


def payout_reference(job_id: str) -> str:
    return f"JOB-PAYMENT-{job_id}"


def rejection_refund_reference(job_id: str) -> str:
    # A job can be rejected again after resubmission; each rejection refunds
    return f"JOB-REFUND-{job_id}-{_millis()}-{secrets.token_hex(4)}"


def deletion_refund_reference(job_id: str) -> str:
    return f"JOB-DELETE-{job_id}-{_millis()}"


# =============================================================================
# Ledger
# =============================================================================


class WalletLedger:
    """Stateless ledger operations; every method receives a Supabase `Client`."""

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    async def get_wallet(db: Client, user_id: str) -> Wallet:
        """Return the user's wallet, creating an empty one if none exists."""
        row = await fetch_one(
            db.table(USER_WALLETS_TABLE).select("*").eq("user_id", user_id).limit(1)
        )
        if row:
            return Wallet(**row)

        try:
            await call_rpc(db, RPC_CREATE_USER_WALLET, {"p_user_id": user_id})
        except RemoteFailure as e:
            logger.warning("create_user_wallet RPC failed for %s, inserting directly: %s", user_id, e)
            try:
                await execute(
                    db.table(USER_WALLETS_TABLE).insert(
                        {"user_id": user_id, "balance_ngn": "0", "created_at": _now().isoformat()}
                    )
                )
            except AlreadyProcessed:
                # Created concurrently
                pass

        row = await fetch_one(
            db.table(USER_WALLETS_TABLE).select("*").eq("user_id", user_id).limit(1)
        )
        if not row:
            raise RemoteFailure(f"Failed to create wallet for user {user_id}")
        logger.info("Created wallet for user %s", user_id)
        return Wallet(**row)

    @staticmethod
    async def get_balance(db: Client, user_id: str) -> Decimal:
        wallet = await WalletLedger.get_wallet(db, user_id)
        return wallet.balance_ngn

    @staticmethod
    async def has_transaction(
        db: Client,
        reference: str,
        transaction_type: TransactionType,
    ) -> bool:
        """Whether a transaction with this reference and type was already recorded."""
        row = await fetch_one(
            db.table(WALLET_TRANSACTIONS_TABLE)
            .select("id")
            .eq("reference", reference)
            .eq("transaction_type", transaction_type.value)
            .limit(1)
        )
        return row is not None

    @staticmethod
    async def list_transactions(
        db: Client,
        user_id: str,
        limit: int = 50,
        offset: int = 0,
    ) -> list[WalletTransaction]:
        rows = await fetch_all(
            db.table(WALLET_TRANSACTIONS_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .order("created_at", desc=True)
            .range(offset, offset + limit - 1)
        )
        return [WalletTransaction(**r) for r in rows]

    # ------------------------------------------------------------------
    # Movements
    # ------------------------------------------------------------------

    @staticmethod
    async def debit(
        db: Client,
        user_id: str,
        amount: Decimal,
        *,
        transaction_type: TransactionType,
        reference: str,
        description: str,
        metadata: dict[str, Any] | None = None,
        field: str | None = None,
    ) -> LedgerResult:
        """Take ``amount`` from the wallet.

        Raises:
            InsufficientFunds: balance is lower than ``amount``; nothing is written.
        """
        return await WalletLedger._move(
            db,
            user_id,
            -amount,
            transaction_type=transaction_type,
            reference=reference,
            description=description,
            metadata=metadata,
            field=field,
        )

    @staticmethod
    async def credit(
        db: Client,
        user_id: str,
        amount: Decimal,
        *,
        transaction_type: TransactionType,
        reference: str,
        description: str,
        metadata: dict[str, Any] | None = None,
    ) -> LedgerResult:
        """Add ``amount`` to the wallet."""
        return await WalletLedger._move(
            db,
            user_id,
            amount,
            transaction_type=transaction_type,
            reference=reference,
            description=description,
            metadata=metadata,
        )

    @staticmethod
    async def release_payout(
        db: Client,
        apprentice_id: str,
        amount: Decimal,
        *,
        job_id: str,
        description: str,
        metadata: dict[str, Any] | None = None,
    ) -> LedgerResult:
        """Pay an apprentice for a job at most once.

        Returns ``skipped=True`` when an ``escrow_release`` with the job's
        payment reference already exists, either found by the probe or
        rejected by the unique key on insert.
        """
        reference = payout_reference(job_id)
        if await WalletLedger.has_transaction(db, reference, TransactionType.escrow_release):
            logger.warning("Payout %s already processed, skipping", reference)
            balance = await WalletLedger.get_balance(db, apprentice_id)
            return LedgerResult(balance=balance, skipped=True)

        try:
            return await WalletLedger.credit(
                db,
                apprentice_id,
                amount,
                transaction_type=TransactionType.escrow_release,
                reference=reference,
                description=description,
                metadata=metadata,
            )
        except AlreadyProcessed:
            logger.warning("Payout %s recorded concurrently, skipping", reference)
            balance = await WalletLedger.get_balance(db, apprentice_id)
            return LedgerResult(balance=balance, skipped=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    async def _write_balance(db: Client, user_id: str, expected: Decimal, new: Decimal) -> bool:
        """Compare-and-swap the balance. Returns False if it changed since it was read."""
        result = await execute(
            db.table(USER_WALLETS_TABLE)
            .update({"balance_ngn": str(new), "updated_at": _now().isoformat()})
            .eq("user_id", user_id)
            .eq("balance_ngn", str(expected))
        )
        return bool(result.data)

    @staticmethod
    async def _move(
        db: Client,
        user_id: str,
        delta: Decimal,
        *,
        transaction_type: TransactionType,
        reference: str,
        description: str,
        metadata: dict[str, Any] | None = None,
        field: str | None = None,
    ) -> LedgerResult:
        if delta == 0:
            raise ValidationError("Amount must be greater than zero", field=field)

        previous = new_balance = None
        for _ in range(BALANCE_WRITE_ATTEMPTS):
            wallet = await WalletLedger.get_wallet(db, user_id)
            previous = wallet.balance_ngn
            if delta < 0 and previous < -delta:
                raise InsufficientFunds(required=-delta, available=previous, field=field)
            new_balance = previous + delta
            if await WalletLedger._write_balance(db, user_id, previous, new_balance):
                break
            logger.warning("Balance for user %s changed concurrently, retrying", user_id)
        else:
            raise RemoteFailure("Wallet balance is changing too quickly, please try again")

        entry = {
            "user_id": user_id,
            "transaction_type": transaction_type.value,
            "amount_ngn": str(delta),
            "reference": reference,
            "description": description,
            "status": "completed",
            "metadata": metadata or {},
            "created_at": _now().isoformat(),
        }
        try:
            result = await execute(db.table(WALLET_TRANSACTIONS_TABLE).insert(entry))
        except (AlreadyProcessed, RemoteFailure):
            # Balance must not move without its ledger entry
            if not await WalletLedger._write_balance(db, user_id, new_balance, previous):
                logger.error(
                    "Could not revert balance for user %s after failed ledger insert (%s)",
                    user_id,
                    reference,
                )
            raise

        if not result.data:
            raise RemoteFailure(f"Failed to record transaction {reference}")

        log_money_movement(transaction_type.value, user_id, delta, reference)
        return LedgerResult(balance=new_balance, transaction=WalletTransaction(**result.data[0]))

"""
Wallet ledger: one running balance per (tenant, user) with an append-only
transaction history. Nothing here commits; the caller owns the transaction.
"""
import logging
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models
from .exceptions import PersistenceError, ValidationError
from .pricing_service import Number, round_money, to_decimal

logger = logging.getLogger(__name__)


def _locked_wallet(db: Session, tenant_id: str, user_id: str) -> Optional[models.Wallet]:
    return db.query(models.Wallet).filter(
        models.Wallet.tenant_id == tenant_id,
        models.Wallet.user_id == user_id
    ).with_for_update().first()


def get_or_create_wallet(
    db: Session,
    tenant_id: str,
    user_id: str,
    currency: Optional[str] = None,
) -> models.Wallet:
    """Fetch the wallet under lock, creating it with a zero balance on first use"""
    wallet = _locked_wallet(db, tenant_id, user_id)
    if wallet is not None:
        return wallet

    # Insert-or-fetch: a concurrent first debit may win the unique (tenant, user) slot
    try:
        with db.begin_nested():
            db.add(models.Wallet(
                tenant_id=tenant_id,
                user_id=user_id,
                balance=Decimal("0.00"),
                currency=currency or models.DEFAULT_CURRENCY
            ))
    except IntegrityError:
        logger.info(f"Wallet for user {user_id} was created concurrently, reusing it")

    wallet = _locked_wallet(db, tenant_id, user_id)
    if wallet is None:
        # The insert failed for a reason other than the unique (tenant, user) slot
        logger.error(f"Wallet for user {user_id} could be neither created nor loaded")
        raise PersistenceError("Failed to load wallet")
    return wallet


def _next_sequence(db: Session, wallet_id: str) -> int:
    last = db.query(func.max(models.WalletTransaction.sequence)).filter(
        models.WalletTransaction.wallet_id == wallet_id
    ).scalar()
    return (last or 0) + 1


def _apply(
    db: Session,
    tenant_id: str,
    user_id: str,
    transaction_type: models.TransactionType,
    amount: Number,
    reference_type: Optional[str],
    reference_id: Optional[str],
    description: Optional[str],
    currency: Optional[str],
) -> models.WalletTransaction:
    amount = round_money(amount)
    if amount <= 0:
        raise ValidationError(
            f"Wallet {transaction_type.value} amount must be positive",
            details={"amount": str(amount)}
        )

    wallet = get_or_create_wallet(db, tenant_id, user_id, currency)

    current = to_decimal(wallet.balance)
    if transaction_type == models.TransactionType.DEBIT:
        new_balance = round_money(current - amount)
    else:
        new_balance = round_money(current + amount)

    wallet.balance = new_balance

    entry = models.WalletTransaction(
        wallet_id=wallet.id,
        sequence=_next_sequence(db, wallet.id),
        type=transaction_type,
        amount=amount,
        balance_after=new_balance,
        reference_type=reference_type,
        reference_id=reference_id,
        description=description
    )
    db.add(entry)
    db.flush()

    logger.info(
        f"Wallet {wallet.id} {transaction_type.value} {amount}: "
        f"{current} -> {new_balance} ({reference_type}:{reference_id})"
    )
    return entry


def debit(
    db: Session,
    tenant_id: str,
    user_id: str,
    amount: Number,
    reference_type: Optional[str] = None,
    reference_id: Optional[str] = None,
    description: Optional[str] = None,
    currency: Optional[str] = None,
) -> models.WalletTransaction:
    """Subtract amount from the wallet; the balance is allowed to go negative"""
    return _apply(
        db, tenant_id, user_id, models.TransactionType.DEBIT,
        amount, reference_type, reference_id, description, currency
    )


def credit(
    db: Session,
    tenant_id: str,
    user_id: str,
    amount: Number,
    reference_type: Optional[str] = None,
    reference_id: Optional[str] = None,
    description: Optional[str] = None,
    currency: Optional[str] = None,
) -> models.WalletTransaction:
    """Add amount to the wallet (compensating entries, manual adjustments)"""
    return _apply(
        db, tenant_id, user_id, models.TransactionType.CREDIT,
        amount, reference_type, reference_id, description, currency
    )


def get_wallet_statement(
    db: Session,
    tenant_id: str,
    user_id: str,
    limit: int = 50,
) -> Tuple[Optional[models.Wallet], List[models.WalletTransaction]]:
    """Wallet and its latest transactions, newest first"""
    wallet = db.query(models.Wallet).filter(
        models.Wallet.tenant_id == tenant_id,
        models.Wallet.user_id == user_id
    ).first()

    if wallet is None:
        return None, []

    transactions = db.query(models.WalletTransaction).filter(
        models.WalletTransaction.wallet_id == wallet.id
    ).order_by(
        models.WalletTransaction.sequence.desc()
    ).limit(limit).all()

    return wallet, transactions

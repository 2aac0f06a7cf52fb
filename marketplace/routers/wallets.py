from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import logging

from .. import models, schemas, wallet_service
from ..audit_service import AuditEvent, AuditSink, client_info, get_audit_sink
from ..database import get_db
from ..exceptions import DomainError, ForbiddenError, NotFoundError, PersistenceError
from ..permissions import is_admin
from ..security import get_current_principal

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Wallets"])


def _wallet_response(user_id: str, wallet, transactions) -> schemas.WalletResponse:
    if wallet is None:
        return schemas.WalletResponse(user_id=user_id, balance=0.0, currency=models.DEFAULT_CURRENCY)

    return schemas.WalletResponse(
        wallet_id=wallet.id,
        user_id=user_id,
        balance=float(wallet.balance),
        currency=wallet.currency,
        transactions=[schemas.WalletTransactionResponse.model_validate(t) for t in transactions]
    )


@router.get("/api/wallets/me", response_model=schemas.WalletResponse)
def read_my_wallet(
    limit: int = Query(50, ge=1, le=200),
    principal: schemas.Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Current balance and latest ledger entries of the caller's wallet"""
    wallet, transactions = wallet_service.get_wallet_statement(db, principal.tenant_id, principal.user_id, limit)
    return _wallet_response(principal.user_id, wallet, transactions)


@router.post(
    "/api/admin/wallets/{user_id}/credit",
    response_model=schemas.WalletResponse,
    status_code=status.HTTP_201_CREATED
)
def credit_wallet(
    user_id: str,
    credit: schemas.WalletCreditRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    principal: schemas.Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
    audit_sink: AuditSink = Depends(get_audit_sink)
):
    """Compensating credit on a user's wallet (admin only)"""
    if not is_admin(principal.role):
        raise ForbiddenError("Only admins can adjust wallets")

    try:
        user = db.query(models.User).filter(
            models.User.id == user_id,
            models.User.tenant_id == principal.tenant_id
        ).first()
        if user is None:
            raise NotFoundError("User not found", details={"userId": user_id})

        entry = wallet_service.credit(
            db,
            principal.tenant_id,
            user_id,
            credit.amount,
            reference_type=credit.reference_type,
            reference_id=credit.reference_id,
            description=credit.description or f"Manual credit by {principal.user_id}"
        )
        db.commit()
    except DomainError:
        db.rollback()
        raise
    except SQLAlchemyError:
        db.rollback()
        logger.exception(f"Failed to credit wallet of user {user_id}")
        raise PersistenceError("Failed to credit wallet")

    info = client_info(request)
    background_tasks.add_task(audit_sink.record, AuditEvent(
        tenant_id=principal.tenant_id,
        user_id=principal.user_id,
        action="admin.wallet.credit",
        resource_type="wallet",
        resource_id=entry.wallet_id,
        changes={"userId": user_id, "amount": float(credit.amount)},
        ip_address=info["ip_address"],
        user_agent=info["user_agent"]
    ))

    wallet, transactions = wallet_service.get_wallet_statement(db, principal.tenant_id, user_id)
    return _wallet_response(user_id, wallet, transactions)

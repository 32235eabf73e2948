from dataclasses import asdict
from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ..api.dependencies import get_db
from ..auth.jwt import get_current_user
from ..constants import PaymentStatus
from ..models.models import PaymentTransaction, User
from ..schemas.schemas import PaymentRequestCreate, PaymentRequestRead, PaymentTransactionRead
from ..services import payments as payment_service
from ..services.gateway import parse_webhook

router = APIRouter()


@router.post("/dues/request", response_model=PaymentRequestRead)
def build_dues_payment_request(
    payload: PaymentRequestCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> PaymentRequestRead:
    request = payment_service.build_payment_request(db, user.id, payload.months)
    return PaymentRequestRead(**asdict(request))


@router.post("/dues/checkout", response_model=PaymentTransactionRead)
def start_dues_checkout(
    payload: PaymentRequestCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> PaymentTransaction:
    return payment_service.start_dues_checkout(db, user, payload.months)


@router.post("/{order_id}/cancel", response_model=PaymentTransactionRead)
def cancel_transaction(
    order_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> PaymentTransaction:
    return payment_service.cancel_pending(db, user, order_id)


@router.get("/history", response_model=List[PaymentTransactionRead])
def read_history(
    user_id: Optional[int] = None,
    status: Optional[PaymentStatus] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> List[PaymentTransaction]:
    return payment_service.list_transactions(db, user, user_id=user_id, status=status)


@router.post("/webhook")
async def gateway_webhook(
    request: Request,
    db: Session = Depends(get_db),
) -> dict:
    payload = await request.body()
    notification = parse_webhook(payload, request.headers.get("stripe-signature"))
    if notification is not None:
        payment_service.apply_gateway_status(
            db,
            notification.order_id,
            notification.status,
            reference=notification.reference,
        )
    return {"received": True}

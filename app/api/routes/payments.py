"""
Razorpay webhook receiver.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.orm import Session

from app.api.dependencies import raise_app_error
from app.core.exceptions import AppError
from app.database import get_db
from app.integrations.razorpay import RazorpayClient, get_payment_gateway
from app.services.payments import handle_webhook

router = APIRouter()


@router.post("/webhook")
async def razorpay_webhook(
    request: Request,
    x_razorpay_signature: str = Header(default=""),
    db: Session = Depends(get_db),
    gateway: RazorpayClient = Depends(get_payment_gateway),
) -> dict:
    body = await request.body()
    try:
        return handle_webhook(db, body, x_razorpay_signature, gateway)
    except AppError as exc:
        raise_app_error(exc)

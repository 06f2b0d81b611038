"""
User accounts and customer delivery addresses.
"""
from __future__ import annotations

import logging
import uuid
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.core.exceptions import NotAuthenticatedError, NotFoundError, UnauthorizedError, ValidationError
from app.core.security import hash_password, verify_password
from app.models import Address, Subscription, User
from app.services.vendors import as_uuid, create_vendor

logger = logging.getLogger(__name__)

SIGNUP_ROLES = ("customer", "vendor")


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def signup(
    db: Session,
    email: str,
    password: str,
    full_name: Optional[str] = None,
    phone: Optional[str] = None,
    role: str = "customer",
    vendor_name: Optional[str] = None,
) -> User:
    email = normalize_email(email)
    if "@" not in email:
        raise ValidationError("A valid email is required")
    if len(password or "") < 8:
        raise ValidationError("Password must be at least 8 characters")
    if role not in SIGNUP_ROLES:
        raise ValidationError(f"Role must be one of {', '.join(SIGNUP_ROLES)}")
    if db.query(User.id).filter(User.email == email).first():
        raise ValidationError("An account with this email already exists")

    user = User(
        email=email,
        full_name=full_name,
        phone=phone,
        password_hash=hash_password(password),
        roles=["customer"],
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    if role == "vendor":
        create_vendor(db, user, vendor_name or full_name or email.split("@")[0])
        db.refresh(user)
    logger.info("User %s signed up as %s", email, role)
    return user


def authenticate(db: Session, email: str, password: str) -> User:
    user = db.query(User).filter(User.email == normalize_email(email)).first()
    if user is None or not user.is_active or not verify_password(password, user.password_hash):
        raise NotAuthenticatedError("Invalid credentials")
    return user


def serialize_user(user: User) -> dict[str, Any]:
    return {
        "id": str(user.id),
        "email": user.email,
        "full_name": user.full_name,
        "phone": user.phone,
        "roles": list(user.roles or []),
    }


def list_addresses(db: Session, user: User) -> list[Address]:
    return (
        db.query(Address)
        .filter(Address.user_id == user.id)
        .order_by(Address.is_default.desc(), Address.created_at.asc())
        .all()
    )


def add_address(db: Session, user: User, data: dict[str, Any]) -> Address:
    for key in ("line1", "city", "pincode"):
        if not (data.get(key) or "").strip():
            raise ValidationError(f"{key.capitalize()} is required")
    make_default = bool(data.get("is_default")) or not list_addresses(db, user)
    if make_default:
        db.query(Address).filter(Address.user_id == user.id).update({Address.is_default: False})
    address = Address(
        user_id=user.id,
        label=data.get("label"),
        line1=data["line1"].strip(),
        line2=data.get("line2"),
        city=data["city"].strip(),
        state=data.get("state"),
        pincode=data["pincode"].strip(),
        is_default=make_default,
    )
    db.add(address)
    db.commit()
    db.refresh(address)
    return address


def delete_address(db: Session, user: User, address_id: uuid.UUID | str) -> None:
    address = db.get(Address, as_uuid(address_id))
    if address is None:
        raise NotFoundError("Address not found")
    if address.user_id != user.id:
        raise UnauthorizedError("Address belongs to another account")
    in_use = db.query(Subscription.id).filter(Subscription.delivery_address_id == address.id).first()
    if in_use is not None:
        raise ValidationError("Address is used by a subscription")
    db.delete(address)
    db.commit()


def serialize_address(address: Address) -> dict[str, Any]:
    return {
        "id": str(address.id),
        "label": address.label,
        "line1": address.line1,
        "line2": address.line2,
        "city": address.city,
        "state": address.state,
        "pincode": address.pincode,
        "is_default": address.is_default,
    }

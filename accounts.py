import logging
from typing import Any, Dict, Optional, Tuple

from pydantic import EmailStr, TypeAdapter, ValidationError
from pymongo.database import Database

from database import create_document, now
from errors import NotFound, ValidationFailed
from schemas import ForgotPasswordRequest, ProfileUpdate, RegisterRequest, User
from security import create_access_token, hash_password, verify_password

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6

_email = TypeAdapter(EmailStr)


def public_user(user: dict) -> Dict[str, Any]:
    return {
        "id": str(user["_id"]),
        "name": user.get("name"),
        "email": user.get("email"),
        "phone": user.get("phone"),
        "address": user.get("address"),
        "role": user.get("role", 0),
    }


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def register(db: Database, body: RegisterRequest) -> Tuple[dict, bool]:
    """Return (user, created); an already registered email is not an error"""
    for field, label in (
        ("name", "Name"),
        ("email", "Email"),
        ("password", "Password"),
        ("phone", "Phone number"),
        ("address", "Address"),
        ("answer", "Answer"),
    ):
        if _blank(getattr(body, field)):
            raise ValidationFailed(f"{label} is Required")
    try:
        email = _email.validate_python(body.email).lower()
    except ValidationError:
        raise ValidationFailed("Email format is invalid")

    existing = db["user"].find_one({"email": email})
    if existing:
        return existing, False

    user = User(
        name=body.name,
        email=email,
        password=hash_password(body.password),
        phone=body.phone,
        address=body.address,
        answer=body.answer,
    )
    user_id = create_document(db, "user", user)
    logger.info("registered user %s", user_id)
    return db["user"].find_one({"_id": user_id}), True


def login(db: Database, email: Optional[str], password: Optional[str]) -> Tuple[Optional[dict], Optional[str]]:
    """Return (user, token); token is None when the password does not match"""
    if _blank(email) or _blank(password):
        raise NotFound("Invalid email or password")
    user = db["user"].find_one({"email": email.strip().lower()})
    if not user:
        raise NotFound("Email is not registered")
    if not verify_password(password, user.get("password", "")):
        return user, None
    return user, create_access_token({"sub": str(user["_id"])})


def forgot_password(db: Database, body: ForgotPasswordRequest) -> None:
    if _blank(body.email):
        raise ValidationFailed("Email is required")
    if _blank(body.answer):
        raise ValidationFailed("Answer is required")
    if _blank(body.newPassword):
        raise ValidationFailed("New Password is required")
    user = db["user"].find_one({"email": body.email.strip().lower(), "answer": body.answer})
    if not user:
        raise NotFound("Wrong Email or Answer")
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"password": hash_password(body.newPassword), "updated_at": now()}},
    )


def update_profile(db: Database, user: dict, patch: ProfileUpdate) -> dict:
    """Fields left out of the patch keep their stored value"""
    if patch.password is not None and len(patch.password) < MIN_PASSWORD_LENGTH:
        raise ValidationFailed("Password is required and 6 character long")
    current = db["user"].find_one({"_id": user["_id"]})
    if not current:
        raise NotFound("User not found")
    update = {
        "name": patch.name if patch.name is not None else current.get("name"),
        "password": hash_password(patch.password) if patch.password is not None else current.get("password"),
        "phone": patch.phone if patch.phone is not None else current.get("phone"),
        "address": patch.address if patch.address is not None else current.get("address"),
        "updated_at": now(),
    }
    db["user"].update_one({"_id": current["_id"]}, {"$set": update})
    return db["user"].find_one({"_id": current["_id"]})

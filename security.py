import os
import re
import json
import hmac
import base64
import hashlib
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, Header
from passlib.context import CryptContext
from pymongo.database import Database

from database import get_db, to_object_id
from errors import Forbidden, NotAuthenticated, NotFound, ServiceError
from schemas import Role

from dotenv import load_dotenv
load_dotenv()

logger = logging.getLogger(__name__)

# HS256 tokens built on hmac, same wire format as any JWT library
JWT_SECRET = os.getenv("JWT_SECRET", "devsecret")
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24 * 7

BEARER_RE = re.compile(r"^Bearer\s+([A-Za-z0-9\-_=]+\.[A-Za-z0-9\-_=]+\.[A-Za-z0-9\-_.+/=]*)$")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


class TokenExpired(ValueError):
    pass


def _b64url_encode(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).rstrip(b"=").decode()


def _b64url_decode(s: str) -> bytes:
    pad = '=' * (-len(s) % 4)
    return base64.urlsafe_b64decode(s + pad)


def jwt_encode(payload: dict, secret: str) -> str:
    header = {"alg": "HS256", "typ": "JWT"}
    header_b64 = _b64url_encode(json.dumps(header, separators=(',', ':')).encode())
    payload_b64 = _b64url_encode(json.dumps(payload, default=str, separators=(',', ':')).encode())
    signing_input = f"{header_b64}.{payload_b64}".encode()
    signature = hmac.new(secret.encode(), signing_input, hashlib.sha256).digest()
    sig_b64 = _b64url_encode(signature)
    return f"{header_b64}.{payload_b64}.{sig_b64}"


def jwt_decode(token: str, secret: str) -> dict:
    try:
        header_b64, payload_b64, sig_b64 = token.split('.')
        signing_input = f"{header_b64}.{payload_b64}".encode()
        expected_sig = hmac.new(secret.encode(), signing_input, hashlib.sha256).digest()
        if not hmac.compare_digest(_b64url_encode(expected_sig), sig_b64):
            raise ValueError("Invalid signature")
        payload = json.loads(_b64url_decode(payload_b64))
    except (ValueError, TypeError) as e:
        raise ValueError(str(e))
    if not isinstance(payload, dict):
        raise ValueError("Malformed payload")
    # exp is seconds since epoch
    if 'exp' in payload:
        exp = datetime.fromtimestamp(payload['exp'], tz=timezone.utc)
        if datetime.now(timezone.utc) > exp:
            raise TokenExpired("Token expired")
    return payload


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": int(expire.timestamp())})
    return jwt_encode(to_encode, JWT_SECRET)


def hash_password(password) -> str:
    if password is None:
        raise ValueError("Password cannot be null or undefined")
    return pwd_context.hash(str(password))


def verify_password(password, hashed: str) -> bool:
    if password is None:
        raise ValueError("Password cannot be null or undefined")
    if not hashed or not isinstance(hashed, str):
        raise ValueError("Invalid hashed password provided for comparison")
    return pwd_context.verify(str(password), hashed)


# Dependencies
def get_current_user(
    authorization: Optional[str] = Header(None),
    db: Database = Depends(get_db),
) -> dict:
    if not authorization or not authorization.strip():
        raise NotAuthenticated("Authentication required")
    match = BEARER_RE.match(authorization.strip())
    if not match:
        raise NotAuthenticated("Invalid token format")
    try:
        payload = jwt_decode(match.group(1), JWT_SECRET)
        user_id = to_object_id(payload.get("sub"), "user id")
    except TokenExpired:
        raise NotAuthenticated("Token has expired, please login again")
    except (ValueError, ServiceError):
        logger.info("rejected bearer token")
        raise NotAuthenticated("Invalid or expired token")
    user = db["user"].find_one({"_id": user_id})
    if not user:
        raise NotFound("User not found")
    return user


def require_admin(current_user: dict = Depends(get_current_user)) -> dict:
    if current_user.get("role") != Role.ADMIN:
        raise Forbidden("Forbidden: Admin privileges required")
    return current_user

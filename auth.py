import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
import structlog
from fastapi import APIRouter, Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pymongo.errors import DuplicateKeyError

import settings
from database import create_document, get_db, serialize_doc, to_object_id
from errors import NotFoundError, UnauthorizedError, ValidationError
from schemas import LoginBody, ProfileUpdateBody, SignupBody, User as UserSchema

logger = structlog.get_logger(__name__)

security = HTTPBearer(auto_error=False)

_HASH_ITERATIONS = 100_000


def hash_password(password: str, salt: Optional[str] = None) -> str:
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), _HASH_ITERATIONS).hex()
    return f"{salt}${digest}"


def verify_password(password: str, password_hash: str) -> bool:
    salt, _, _ = (password_hash or "").partition("$")
    return hmac.compare_digest(hash_password(password, salt), password_hash or "")


def create_token(payload: dict) -> str:
    exp = datetime.now(timezone.utc) + timedelta(days=settings.TOKEN_TTL_DAYS)
    to_encode = {**payload, "exp": exp}
    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGO)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGO])
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Token expired")
    except jwt.InvalidTokenError:
        raise UnauthorizedError("Invalid token")


def public_user(user: dict) -> dict:
    doc = serialize_doc(user)
    for private in ("password_hash", "cart", "cart_version", "last_checkout_key", "wishlist"):
        doc.pop(private, None)
    return doc


async def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> str:
    """Resolve the bearer token to the id of an existing user."""
    if credentials is None:
        raise UnauthorizedError("Not authenticated")
    payload = decode_token(credentials.credentials)
    user_id = payload.get("id")
    if not user_id or not isinstance(user_id, str):
        raise UnauthorizedError("Invalid token payload")
    try:
        oid = to_object_id(user_id)
    except ValidationError:
        raise UnauthorizedError("Invalid token payload")
    if get_db()["user"].find_one({"_id": oid}, {"_id": 1}) is None:
        raise UnauthorizedError("User not found")
    return user_id


# ----------------------- Auth -----------------------
auth_router = APIRouter(prefix="/auth", tags=["auth"])


@auth_router.post("/signup")
def signup(body: SignupBody):
    db = get_db()
    if db["user"].find_one({"email": body.email}):
        raise ValidationError("Email already registered")
    user = UserSchema(
        name=body.name,
        email=body.email,
        password_hash=hash_password(body.password),
        is_admin=False,
    )
    try:
        user_id = create_document("user", user)
    except DuplicateKeyError:
        raise ValidationError("Email already registered")
    logger.info("user_registered", user_id=user_id)
    token = create_token({"id": user_id, "email": body.email, "is_admin": False})
    return {"token": token, "user": {"id": user_id, "name": body.name, "email": body.email, "is_admin": False}}


@auth_router.post("/login")
def login(body: LoginBody):
    user = get_db()["user"].find_one({"email": body.email})
    if not user or not verify_password(body.password, user.get("password_hash")):
        raise UnauthorizedError("Invalid credentials")
    suser = public_user(user)
    token = create_token({"id": suser["id"], "email": suser["email"], "is_admin": suser.get("is_admin", False)})
    return {"token": token, "user": suser}


# ----------------------- Profile -----------------------
profile_router = APIRouter(prefix="/user", tags=["user"])


@profile_router.get("/profile")
def get_profile(user_id: str = Depends(get_current_user)):
    user = get_db()["user"].find_one({"_id": to_object_id(user_id)})
    if not user:
        raise NotFoundError("User not found")
    return public_user(user)


@profile_router.put("/profile")
def update_profile(body: ProfileUpdateBody, user_id: str = Depends(get_current_user)):
    update = body.model_dump(exclude_none=True)
    update["updated_at"] = datetime.now(timezone.utc)
    db = get_db()
    res = db["user"].update_one({"_id": to_object_id(user_id)}, {"$set": update})
    if res.matched_count == 0:
        raise NotFoundError("User not found")
    user = db["user"].find_one({"_id": to_object_id(user_id)})
    return {"message": "Profile updated successfully", "user": public_user(user)}

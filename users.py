"""
Account routes: signup, login, token refresh, profile and role admin.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Cookie, Depends, Response
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import settings
from database import create_document, get_db, get_documents, now_utc, parse_object_id, serialize_doc
from errors import AuthError, ConflictError, NotFoundError, ValidationError
from schemas import CamelModel, User as UserSchema
from security import (
    REFRESH,
    Principal,
    create_access_token,
    create_refresh_token,
    current_principal,
    decode_token,
    hash_password,
    require_admin,
    verify_password,
)
import validators

logger = logging.getLogger(__name__)

router = APIRouter(tags=["users"])

PRIVATE_FIELDS = ("password_hash",)


def public_user(user: Optional[dict]) -> Optional[dict]:
    return serialize_doc(user, exclude=PRIVATE_FIELDS)


def get_user(db: Database, user_id: str) -> dict:
    user = db["user"].find_one({"_id": parse_object_id(user_id, "user")})
    if not user:
        raise NotFoundError("User not found")
    return user


def signup(db: Database, payload: Dict[str, Any]) -> dict:
    validators.validate_signup(payload)
    if db["user"].find_one({"email": payload["email"]}):
        raise ConflictError("User already exists")

    role = "admin" if settings.DEFAULT_ADMIN_EMAIL and payload["email"] == settings.DEFAULT_ADMIN_EMAIL else "user"
    user = UserSchema(
        name=payload["name"],
        age=payload["age"],
        email=payload["email"],
        password_hash=hash_password(payload["password"]),
        role=role,
        address=payload["address"],
        contact=payload["contact"],
    )
    try:
        user_id = create_document(db, "user", user)
    except DuplicateKeyError:
        raise ConflictError("User already exists")
    logger.info("User %s signed up (%s)", user_id, role)
    return get_user(db, user_id)


def login(db: Database, email: Optional[str], password: Optional[str]) -> dict:
    if not email or not password:
        raise ValidationError("All fields are required")
    user = db["user"].find_one({"email": email.strip().lower()})
    if not user:
        raise NotFoundError("User not found")
    if not verify_password(password, user.get("password_hash", "")):
        logger.warning("Failed login for %s", user["_id"])
        raise AuthError("Invalid password")
    return user


def refresh_access_token(db: Database, refresh_token: Optional[str]) -> str:
    if not refresh_token:
        raise AuthError("No refresh token")
    payload = decode_token(refresh_token, REFRESH)
    user = db["user"].find_one({"_id": parse_object_id(payload["sub"], "user")})
    if not user:
        raise NotFoundError("User not found")
    return create_access_token(user)


def update_password(db: Database, user_id: str, old_password: Optional[str], new_password: Optional[str]) -> None:
    if not old_password or not new_password:
        raise ValidationError("All fields are required")
    user = get_user(db, user_id)
    if not verify_password(old_password, user.get("password_hash", "")):
        raise AuthError("Old password is incorrect")
    validators.validate_password(new_password, field="newPassword")
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"password_hash": hash_password(new_password), "updated_at": now_utc()}},
    )
    logger.info("Password updated for %s", user_id)


def update_profile(db: Database, user_id: str, payload: Dict[str, Any]) -> dict:
    updates = validators.validate_profile_update(payload)
    updated = db["user"].find_one_and_update(
        {"_id": parse_object_id(user_id, "user")},
        {"$set": {**updates, "updated_at": now_utc()}},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise NotFoundError("User not found")
    return updated


def list_users(db: Database) -> List[dict]:
    return get_documents(db, "user")


def update_user_role(db: Database, user_id: str, role: Optional[str]) -> dict:
    validators.validate_role(role)
    updated = db["user"].find_one_and_update(
        {"_id": parse_object_id(user_id, "user")},
        {"$set": {"role": role, "updated_at": now_utc()}},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise NotFoundError("User not found")
    logger.info("User %s role set to %s", user_id, role)
    return updated


# Request models
class SignupIn(CamelModel):
    name: Optional[str] = None
    age: Optional[int] = None
    email: Optional[str] = None
    password: Optional[str] = None
    address: Optional[str] = None
    contact: Optional[Union[int, str]] = None


class LoginIn(CamelModel):
    email: Optional[str] = None
    password: Optional[str] = None


class PasswordUpdateIn(CamelModel):
    old_password: Optional[str] = None
    new_password: Optional[str] = None


class ProfileUpdateIn(CamelModel):
    name: Optional[str] = None
    age: Optional[int] = None
    address: Optional[str] = None
    contact: Optional[Union[int, str]] = None


class RoleUpdateIn(CamelModel):
    role: Optional[str] = None


# Routes
@router.post("/signup", status_code=201)
def signup_route(data: SignupIn, db: Database = Depends(get_db)):
    user = signup(db, data.model_dump())
    return {"success": True, "message": "User created successfully", "user": public_user(user)}


@router.post("/login")
def login_route(data: LoginIn, response: Response, db: Database = Depends(get_db)):
    user = login(db, data.email, data.password)
    response.set_cookie(
        settings.REFRESH_COOKIE_NAME,
        create_refresh_token(user),
        httponly=True,
        samesite="strict",
        secure=False,
        max_age=settings.REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60,
    )
    return {
        "success": True,
        "message": "Login successful",
        "accessToken": create_access_token(user),
        "user": public_user(user),
    }


@router.post("/refresh")
def refresh_route(refresh_token: Optional[str] = Cookie(default=None, alias=settings.REFRESH_COOKIE_NAME),
                  db: Database = Depends(get_db)):
    return {"success": True, "accessToken": refresh_access_token(db, refresh_token)}


@router.post("/logout")
def logout_route(response: Response):
    response.delete_cookie(settings.REFRESH_COOKIE_NAME, httponly=True, samesite="strict")
    return {"success": True, "message": "Logged out successfully"}


@router.put("/update-password")
def update_password_route(data: PasswordUpdateIn, principal: Principal = Depends(current_principal),
                          db: Database = Depends(get_db)):
    update_password(db, principal.id, data.old_password, data.new_password)
    return {"success": True, "message": "Password updated successfully"}


@router.get("/me")
def get_profile_route(principal: Principal = Depends(current_principal), db: Database = Depends(get_db)):
    return {"success": True, "user": public_user(get_user(db, principal.id))}


@router.put("/me")
def update_profile_route(data: ProfileUpdateIn, principal: Principal = Depends(current_principal),
                         db: Database = Depends(get_db)):
    user = update_profile(db, principal.id, data.model_dump(exclude_none=True))
    return {"success": True, "message": "Profile updated successfully", "user": public_user(user)}


@router.get("/all")
def list_users_route(admin: Principal = Depends(require_admin), db: Database = Depends(get_db)):
    return {"success": True, "users": [public_user(u) for u in list_users(db)]}


@router.put("/updateRole/{user_id}")
def update_role_route(user_id: str, data: RoleUpdateIn, admin: Principal = Depends(require_admin),
                      db: Database = Depends(get_db)):
    return {"success": True, "user": public_user(update_user_role(db, user_id, data.role))}

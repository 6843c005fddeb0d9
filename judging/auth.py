from __future__ import annotations

import logging
import secrets
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel

from .db import db, new_id, now_iso, sha256

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


class SignupRequest(BaseModel):
    name: str
    email: str
    password: str


class LoginRequest(BaseModel):
    email: str
    password: str


def hash_password(password: str, salt: str) -> str:
    return sha256(salt + password)


def public_profile(row) -> Dict[str, Any]:
    return {"id": row["id"], "name": row["name"], "email": row["email"], "role": "admin"}


def _bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def current_profile(authorization: Optional[str] = Header(None)) -> Optional[Dict[str, Any]]:
    """Organizer behind the bearer token, or None for anonymous callers."""
    token = _bearer(authorization)
    if token is None:
        return None
    with db() as conn:
        row = conn.execute(
            "SELECT p.* FROM sessions s JOIN profiles p ON p.id = s.profile_id WHERE s.token=?",
            (token,),
        ).fetchone()
    return public_profile(row) if row else None


def require_profile(profile: Optional[Dict[str, Any]] = Depends(current_profile)) -> Dict[str, Any]:
    if profile is None:
        raise HTTPException(401, "Sign in required.")
    return profile


def _open_session(conn, profile_id: str) -> str:
    token = secrets.token_urlsafe(32)
    conn.execute(
        "INSERT INTO sessions(token, profile_id, created_at) VALUES(?,?,?)",
        (token, profile_id, now_iso()),
    )
    return token


@router.post("/signup")
def signup(body: SignupRequest):
    email = body.email.strip().lower()
    if not email or not body.password:
        raise HTTPException(400, "Email and password are required.")

    salt = secrets.token_hex(8)
    with db() as conn:
        if conn.execute("SELECT 1 FROM profiles WHERE email=?", (email,)).fetchone():
            raise HTTPException(409, "An account with this email already exists.")
        profile_id = new_id()
        conn.execute(
            "INSERT INTO profiles(id, name, email, password_hash, password_salt, created_at) VALUES(?,?,?,?,?,?)",
            (profile_id, body.name.strip(), email, hash_password(body.password, salt), salt, now_iso()),
        )
        token = _open_session(conn, profile_id)
        row = conn.execute("SELECT * FROM profiles WHERE id=?", (profile_id,)).fetchone()

    logger.info("New organizer profile %s", profile_id)
    return {"token": token, "profile": public_profile(row)}


@router.post("/login")
def login(body: LoginRequest):
    with db() as conn:
        row = conn.execute("SELECT * FROM profiles WHERE email=?", (body.email.strip().lower(),)).fetchone()
        if not row or not secrets.compare_digest(
            hash_password(body.password, row["password_salt"]), row["password_hash"]
        ):
            logger.warning("Failed sign-in for %s", body.email)
            raise HTTPException(401, "Invalid email or password.")
        token = _open_session(conn, row["id"])
    return {"token": token, "profile": public_profile(row)}


@router.post("/logout")
def logout(authorization: Optional[str] = Header(None)):
    token = _bearer(authorization)
    if token:
        with db() as conn:
            conn.execute("DELETE FROM sessions WHERE token=?", (token,))
    return {"success": True}


@router.get("/session")
def session(profile: Dict[str, Any] = Depends(require_profile)):
    return {"profile": profile}

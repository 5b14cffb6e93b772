import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..errors import Forbidden, NotFound, Unauthorized
from ..models.models import Employee
from ..services.permissions import PermissionChecker


pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
http_bearer = HTTPBearer(auto_error=False)

LEGACY_BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")


@dataclass(frozen=True)
class TokenIdentity:
    id: uuid.UUID
    email: str
    designation: str


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    # Hashes imported from the previous system are bcrypt; verify them with the bcrypt module directly
    if hashed.startswith(LEGACY_BCRYPT_PREFIXES):
        pb = plain.encode("utf-8")[:72]
        try:
            return bcrypt.checkpw(pb, hashed.encode("utf-8"))
        except ValueError:
            return False
    try:
        return pwd_context.verify(plain, hashed)
    except ValueError:
        return False


def create_access_token(employee: Employee, ttl_seconds: Optional[int] = None) -> str:
    now = datetime.now(tz=timezone.utc)
    ttl = settings.jwt_ttl_seconds if ttl_seconds is None else ttl_seconds
    payload = {
        "id": str(employee.id),
        "email": employee.email,
        "designation": employee.designation,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=ttl)).timestamp()),
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["exp", "iat"]},
        )
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Token expired")
    except jwt.InvalidTokenError:
        raise Unauthorized("Invalid token")


def authenticate(credential: Optional[str]) -> TokenIdentity:
    """Verify a bearer credential and return the identity it carries.

    Stateless: the employee row is not consulted, so the designation is the
    one recorded when the token was issued.
    """
    if not credential:
        raise Unauthorized("Unauthorized")
    payload = decode_token(credential)
    email = payload.get("email")
    designation = payload.get("designation")
    try:
        employee_id = uuid.UUID(str(payload.get("id")))
    except ValueError:
        raise Unauthorized("Invalid token subject")
    if not email or not designation:
        raise Unauthorized("Invalid token payload")
    return TokenIdentity(id=employee_id, email=email, designation=designation)


def get_current_user(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    db: Session = Depends(get_db),
) -> Employee:
    identity = authenticate(creds.credentials if creds else None)
    # Re-read the employee: the designation may have changed since the token was issued
    employee = db.query(Employee).filter(Employee.id == identity.id).first()
    if employee is None:
        raise NotFound("User not found")
    return employee


def get_approved_user(user: Employee = Depends(get_current_user)) -> Employee:
    if not user.is_approved:
        raise Forbidden("Account is pending approval")
    if user.employment_status != "Active":
        raise Forbidden("Account is not active")
    return user


def get_permission_checker(request: Request) -> PermissionChecker:
    return request.app.state.permissions


def route_template(request: Request) -> str:
    """Path template of the matched route, for example /api/tasks/{task_id}/start."""
    route = request.scope.get("route")
    path = getattr(route, "path", None)
    if path:
        return path
    return request.url.path


def authorize_endpoint(
    request: Request,
    user: Employee = Depends(get_approved_user),
    checker: PermissionChecker = Depends(get_permission_checker),
) -> Employee:
    if not checker.can_access_endpoint(user.designation, request.method, route_template(request)):
        raise Forbidden("Forbidden: insufficient permissions")
    return user

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from app.errors import ApiError, AuthorizationError
from app.settings import get_settings

bearer_scheme = HTTPBearer(auto_error=False)

ROLE_EMPLOYEE = "employee"
ROLE_PM = "pm"
ROLE_DM = "dm"
ROLE_GM = "gm"
ROLE_ADMIN = "admin"

KNOWN_ROLES: tuple[str, ...] = (ROLE_EMPLOYEE, ROLE_PM, ROLE_DM, ROLE_GM, ROLE_ADMIN)
APPROVER_ROLES: tuple[str, ...] = (ROLE_PM, ROLE_DM, ROLE_GM)
MANAGER_ROLES: tuple[str, ...] = (ROLE_DM, ROLE_GM, ROLE_ADMIN)


@dataclass(frozen=True, slots=True)
class Actor:
    employee_id: int
    roles: frozenset[str] = field(default_factory=lambda: frozenset({ROLE_EMPLOYEE}))

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def has_any_role(self, roles: Iterable[str]) -> bool:
        return any(role in self.roles for role in roles)

    @property
    def is_admin(self) -> bool:
        return ROLE_ADMIN in self.roles

    @property
    def is_manager(self) -> bool:
        return self.has_any_role(MANAGER_ROLES)


def normalize_roles(raw: Any) -> frozenset[str]:
    if isinstance(raw, str):
        items: Iterable[Any] = raw.split(",")
    elif isinstance(raw, (list, tuple, set, frozenset)):
        items = raw
    else:
        items = ()
    roles = {str(item).strip().lower() for item in items}
    roles = {role for role in roles if role in KNOWN_ROLES}
    roles.add(ROLE_EMPLOYEE)
    return frozenset(roles)


def decode_token(token: str) -> Actor:
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"require_sub": True, "require_iat": True, "require_exp": True},
        )
    except JWTError as exc:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token is invalid.") from exc

    if payload.get("typ") != "access":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token type is invalid.")

    subject = payload.get("sub")
    try:
        employee_id = int(subject)
    except (TypeError, ValueError) as exc:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token subject is invalid.") from exc

    return Actor(employee_id=employee_id, roles=normalize_roles(payload.get("roles")))


def require_actor(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Actor:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Missing bearer token.")

    actor = decode_token(credentials.credentials)
    request.state.actor = ",".join(sorted(actor.roles))
    request.state.actor_id = str(actor.employee_id)
    return actor


def require_roles(*roles: str) -> Callable[..., Actor]:
    unknown = [role for role in roles if role not in KNOWN_ROLES]
    if unknown:
        raise ValueError(f"Unknown role(s): {', '.join(unknown)}")

    def _dependency(actor: Actor = Depends(require_actor)) -> Actor:
        if not actor.has_any_role(roles):
            raise AuthorizationError()
        return actor

    return _dependency

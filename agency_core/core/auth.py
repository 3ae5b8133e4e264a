from dataclasses import dataclass

from fastapi import HTTPException, status
from jose import JWTError, jwt
from starlette.requests import Request

from agency_core.core.config import Settings, get_settings
from agency_core.errors import AuthenticationRequired


SERVICE_ROLE = "authz.service"


@dataclass(frozen=True)
class Identity:
    """Authenticated session holder. The operator capability is decided once, here."""

    user_id: str
    email: str | None = None
    is_platform_operator: bool = False


@dataclass
class AuthUser:
    sub: str
    roles: list[str]

    @property
    def is_service(self) -> bool:
        return SERVICE_ROLE in self.roles


def _decode(token: str, settings: Settings) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        raise AuthenticationRequired("invalid or expired token") from exc


def resolve_identity(token: str | None, settings: Settings | None = None) -> Identity:
    if not token:
        raise AuthenticationRequired()
    settings = settings or get_settings()
    payload = _decode(token, settings)

    subject = payload.get("sub")
    if not subject:
        raise AuthenticationRequired("token has no subject")

    email = payload.get("email")
    operator_emails = {item.strip().lower() for item in settings.platform_operator_emails}
    is_operator = payload.get("platform_operator") is True or (
        isinstance(email, str) and email.strip().lower() in operator_emails
    )
    return Identity(user_id=str(subject), email=email, is_platform_operator=is_operator)


def _bearer_token(request: Request) -> str:
    auth_header = request.headers.get("authorization", "")
    return auth_header.removeprefix("Bearer ").strip() if auth_header.startswith("Bearer ") else ""


async def get_current_user(request: Request) -> AuthUser:
    token = _bearer_token(request)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")

    try:
        payload = _decode(token, get_settings())
    except AuthenticationRequired as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc

    subject = str(payload.get("sub", ""))
    if not subject:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    roles = payload.get("roles", [])
    if not isinstance(roles, list):
        roles = []
    return AuthUser(sub=subject, roles=[str(role) for role in roles])

from uuid import UUID

from fastapi import Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt

from core.constants import JWT_ALGORITHM
from core.environment import settings
from core.exceptions import UnauthorizedException
from core.logger import app_logger


oauth_scheme = HTTPBearer(auto_error=False)


def _claim_uuid(claims: dict, key: str) -> UUID:
    value = claims.get(key)
    if value is None:
        app_logger.debug(f"No {key} claim in token")
        raise UnauthorizedException()
    try:
        return UUID(str(value))
    except ValueError:
        app_logger.debug(f"Claim {key} is not a UUID")
        raise UnauthorizedException()


async def verify_access_token(
    request: Request,
    token: HTTPAuthorizationCredentials | None = Security(oauth_scheme),
):
    """Scope the request to the company and user named by the bearer token."""
    if token is None:
        raise UnauthorizedException()

    try:
        claims: dict = jwt.decode(
            token.credentials, settings.ACCESS_TOKEN_SECRET, algorithms=[JWT_ALGORITHM]
        )
    except jwt.InvalidTokenError as exc:
        app_logger.debug("Invalid Token")
        app_logger.debug(f"Error: {exc}")
        raise UnauthorizedException()

    request.state.user_id = _claim_uuid(claims, "sub")
    request.state.company_id = _claim_uuid(claims, "company_id")


def generate_access_token(user_id: UUID, company_id: UUID, **claims) -> str:
    payload = {"sub": str(user_id), "company_id": str(company_id), **claims}
    return jwt.encode(payload, settings.ACCESS_TOKEN_SECRET, algorithm=JWT_ALGORITHM)

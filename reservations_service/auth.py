from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from .config import ALGORITHM, SECRET_KEY

ADMIN_ROLE = "admin"
SYSTEM_ROLE = "system"

security = HTTPBearer()


@dataclass(frozen=True)
class Principal:
    """
    Authenticated caller acting on reservations.

    Attributes
    ----------
    user_id : int
        Identifier of the user (requester / approver).
    username : str
        Login name from the token subject.
    role : str
        Role claim; ``admin`` grants the administrative override.
    name : str
        Display name, used when the caller is the responsible party.
    person_id : int
        External person identifier, if the caller has one.
    """
    user_id: int
    username: str
    role: str
    name: Optional[str] = None
    person_id: Optional[int] = None

    @property
    def is_admin(self) -> bool:
        return self.role in (ADMIN_ROLE, SYSTEM_ROLE)

    @property
    def display_name(self) -> str:
        return self.name or self.username


# Acts on behalf of the automatic-approval job
SYSTEM_PRINCIPAL = Principal(user_id=0, username="auto_approval", role=SYSTEM_ROLE)


def principal_from_claims(claims: Dict[str, Any]) -> Principal:
    return Principal(
        user_id=int(claims["user_id"]),
        username=claims["sub"],
        role=claims["role"],
        name=claims.get("name"),
        person_id=claims.get("person_id"),
    )


async def get_current_principal(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Principal:
    """
    Decode a JWT bearer token into the acting principal.

    Parameters
    ----------
    credentials : HTTPAuthorizationCredentials
        Authorization header parsed by FastAPI's HTTPBearer.

    Returns
    -------
    Principal
        The caller identified by the token claims.

    Raises
    ------
    HTTPException
        If the token is missing, invalid, or lacks required claims.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(credentials.credentials, SECRET_KEY, algorithms=[ALGORITHM])
        if payload.get("sub") is None or payload.get("role") is None or payload.get("user_id") is None:
            raise credentials_exception
        return principal_from_claims(payload)
    except (JWTError, ValueError, TypeError):
        raise credentials_exception


def require_roles(*allowed_roles: str) -> Callable:
    """
    Build a dependency that enforces a set of allowed roles.

    Parameters
    ----------
    allowed_roles : str
        One or more role names permitted to access a route.

    Returns
    -------
    Callable
        A FastAPI dependency returning the principal, or raising HTTP 403.
    """

    async def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Not enough permissions",
            )
        return principal

    return dependency

"""
HTTP Basic login for the back-office API.

One shared operator login guards the imports and OLX routers. The health
endpoints stay open for load balancers. Outside development a password must
be configured; in development the login falls back to admin / changeme.
"""

import secrets
from typing import Tuple

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from app.core.config import Settings, get_settings

DEV_USERNAME = "admin"
DEV_PASSWORD = "changeme"

security = HTTPBasic()


def operator_login(settings: Settings) -> Tuple[str, str]:
    """The (username, password) operators must present."""
    username = settings.BASIC_AUTH_USERNAME or DEV_USERNAME
    password = settings.BASIC_AUTH_PASSWORD
    if not password:
        if settings.ENVIRONMENT != "development":
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Back-office password is not configured (BASIC_AUTH_PASSWORD)",
            )
        password = DEV_PASSWORD
    return username, password


def _same(given: str, expected: str) -> bool:
    return secrets.compare_digest(given.encode("utf8"), expected.encode("utf8"))


def get_current_username(credentials: HTTPBasicCredentials = Depends(security)) -> str:
    username, password = operator_login(get_settings())

    username_ok = _same(credentials.username, username)
    password_ok = _same(credentials.password, password)
    if not (username_ok and password_ok):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Basic"},
        )
    return credentials.username


def require_auth():
    """Router dependency: include_router(router, dependencies=[require_auth()])"""
    return Depends(get_current_username)

"""
OLX authentication for a shop.

The token lives on the shop's OlxCredential row. Reads are cheap and
lock-free; the only writer is authenticate(), which stores a new token with a
compare-and-swap on OlxCredential.version. If two workers log in at the same
time, the loser discards its own token and uses the winner's.
"""

import logging
from datetime import timedelta
from typing import Callable, Optional

from sqlalchemy import select, update

from app.core.config import get_settings
from app.core.exceptions import OLXAuthenticationError
from app.database import async_session, utc_now
from app.models.shop import OlxCredential
from app.services.olx.client import OLXClient

logger = logging.getLogger(__name__)


class OLXAuthManager:
    """
    Manages OLX tokens for shops, refreshing when close to expiry
    """

    def __init__(self, session_factory: Callable = async_session, login_client: Optional[OLXClient] = None):
        self.settings = get_settings()
        self.session_factory = session_factory
        # unauthenticated client used only for /auth/login
        self.login_client = login_client or OLXClient()

    async def get_credential(self, shop_id: int) -> OlxCredential:
        async with self.session_factory() as db:
            stmt = select(OlxCredential).where(OlxCredential.shop_id == shop_id)
            credential = (await db.execute(stmt)).scalar_one_or_none()
        if credential is None:
            raise OLXAuthenticationError(f"Shop {shop_id} has no OLX credentials configured")
        return credential

    async def get_token(self, shop_id: int, force_refresh: bool = False) -> str:
        """
        Get a valid access token, authenticating if necessary
        """
        credential = await self.get_credential(shop_id)
        margin = self.settings.OLX_TOKEN_REFRESH_MARGIN_MINUTES

        if not force_refresh and credential.token_is_fresh(margin):
            logger.debug(f"[OLX Auth] Using cached token for shop {shop_id}")
            return credential.access_token

        logger.info(f"[OLX Auth] {'Forced refresh' if force_refresh else 'No valid token'} for shop {shop_id}, logging in")
        return await self.authenticate(shop_id, credential=credential)

    async def authenticate(self, shop_id: int, credential: Optional[OlxCredential] = None) -> str:
        """Log in with the shop's username/password and store the token."""
        credential = credential or await self.get_credential(shop_id)
        if not credential.username:
            raise OLXAuthenticationError("OLX username is required")
        if not credential.password:
            raise OLXAuthenticationError("OLX password is required")

        seen_version = credential.version
        data = await self.login_client.login(credential.username, credential.password)

        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            message = (data or {}).get("message") or (data or {}).get("error") or "Authentication failed"
            logger.error(f"[OLX Auth] Login for shop {shop_id} returned no token: {message}")
            raise OLXAuthenticationError(message)

        user = data.get("user") or {}
        values = {
            "access_token": token,
            "token_expires_at": utc_now() + timedelta(days=self.settings.OLX_TOKEN_TTL_DAYS),
            "version": OlxCredential.version + 1,
        }
        if user.get("id") is not None:
            values["olx_user_id"] = str(user["id"])
        if user.get("username"):
            values["olx_user_name"] = user["username"]

        async with self.session_factory() as db:
            result = await db.execute(
                update(OlxCredential)
                .where(OlxCredential.id == credential.id)
                .where(OlxCredential.version == seen_version)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await db.commit()

        if result.rowcount == 1:
            logger.info(f"[OLX Auth] Successfully authenticated shop {shop_id}")
            return token

        # Lost the race: someone stored a token after we read the row
        winner = await self.get_credential(shop_id)
        logger.info(f"[OLX Auth] Token for shop {shop_id} was refreshed concurrently (v{winner.version}), using it")
        if not winner.access_token:
            raise OLXAuthenticationError(f"Concurrent authentication for shop {shop_id} left no token")
        return winner.access_token

    def client_for(self, shop_id: int) -> OLXClient:
        """An API client that authenticates as the given shop."""
        async def provider(force_refresh: bool) -> str:
            return await self.get_token(shop_id, force_refresh=force_refresh)
        return OLXClient(token_provider=provider)

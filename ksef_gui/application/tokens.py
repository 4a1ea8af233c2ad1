"""Decides whether a stored credential is reused, refreshed or re-issued."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from ksef_gui.domain import Credential, Profile
from ksef_gui.infrastructure.ksef import Authenticator
from ksef_gui.infrastructure.tokens import TokenStore

logger = logging.getLogger(__name__)

ACCESS_TOKEN_MARGIN = timedelta(minutes=10)
REFRESH_TOKEN_MARGIN = timedelta(minutes=1)
STATUS_REFRESH_MARGIN = timedelta(minutes=1)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenCache:
    """Credential state machine keyed by identity.

    * no stored credential, or refresh token within one minute of expiry:
      full authentication;
    * access token within ten minutes of expiry: refresh;
    * otherwise the stored credential is reused without any network call.

    With ``no_cache`` every request authenticates and nothing is persisted.
    """

    def __init__(
        self,
        store: TokenStore | None,
        *,
        no_cache: bool = False,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._no_cache = no_cache or store is None
        self._clock = clock

    @property
    def no_cache(self) -> bool:
        return self._no_cache

    async def _load(self, key: str) -> Credential | None:
        if self._no_cache:
            return None
        return await asyncio.to_thread(self._store.get, key)

    async def _persist(self, key: str, credential: Credential) -> None:
        if self._no_cache:
            return
        await asyncio.to_thread(self._store.set, key, credential)

    async def get_credential(self, profile: Profile, authenticator: Authenticator) -> Credential:
        key = profile.identity().cache_key
        stored = await self._load(key)
        now = self._clock()

        if stored is None or stored.refresh_token_valid_until - now <= REFRESH_TOKEN_MARGIN:
            if stored is not None:
                logger.info("Refresh token for %s expires soon, re-authenticating", profile.name)
            return await self.force_authenticate(profile, authenticator)

        if stored.access_token_valid_until - now <= ACCESS_TOKEN_MARGIN:
            logger.info("Access token for %s expires soon, refreshing", profile.name)
            refreshed = await authenticator.refresh(profile, stored)
            await self._persist(key, refreshed)
            return refreshed

        logger.debug("Reusing cached access token for %s", profile.name)
        return stored

    async def get_access_token(self, profile: Profile, authenticator: Authenticator) -> str:
        credential = await self.get_credential(profile, authenticator)
        return credential.access_token

    async def force_authenticate(self, profile: Profile, authenticator: Authenticator) -> Credential:
        credential = await authenticator.authenticate(profile)
        await self._persist(profile.identity().cache_key, credential)
        logger.info(
            "Authenticated %s, access token valid until %s",
            profile.name,
            credential.access_token_valid_until.isoformat(),
        )
        return credential

    async def status(self, profile: Profile, authenticator: Authenticator) -> dict[str, Any]:
        empty = {"accessTokenValidUntil": None, "refreshTokenValidUntil": None}
        key = profile.identity().cache_key
        try:
            stored = await self._load(key)
            if stored is None:
                return empty
            now = self._clock()
            if (
                stored.access_token_valid_until - now <= STATUS_REFRESH_MARGIN
                and stored.refresh_token_valid_until > now
            ):
                stored = await authenticator.refresh(profile, stored)
                await self._persist(key, stored)
        except Exception:
            logger.exception("Could not determine token status for %s", profile.name)
            return empty
        return {
            "accessTokenValidUntil": stored.access_token_valid_until.isoformat(),
            "refreshTokenValidUntil": stored.refresh_token_valid_until.isoformat(),
        }

"""Async client for the KSeF 2.0 REST API."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Protocol

import httpx

from ksef_gui.core.filters import QueryFilters
from ksef_gui.domain import (
    AuthenticationError,
    Credential,
    Profile,
    ProfileError,
    RateLimitError,
    RemoteServiceError,
    ResultItem,
)

logger = logging.getLogger(__name__)

BASE_URLS: dict[str, str] = {
    "test": "https://ksef-test.mf.gov.pl/api/v2",
    "demo": "https://ksef-demo.mf.gov.pl/api/v2",
    "prod": "https://ksef.mf.gov.pl/api/v2",
}

AUTH_PENDING = 100
AUTH_OK = 200

# (plaintext "token|timestampMs", environment) -> base64 ciphertext
TokenEncryptor = Callable[[str, str], str]
# (unsigned auth request xml, profile) -> signed xml
XadesSigner = Callable[[str, Profile], str]


@dataclass(slots=True)
class InvoicePage:
    items: list[ResultItem] = field(default_factory=list)
    has_more: bool = False


class RemoteInvoiceService(Protocol):
    """Paginated metadata query plus single document fetch."""

    async def query_metadata(
        self, filters: QueryFilters, access_token: str, *, offset: int, size: int
    ) -> InvoicePage:
        ...

    async def get_invoice(self, ksef_number: str, access_token: str) -> str:
        ...


class Authenticator(Protocol):
    async def authenticate(self, profile: Profile) -> Credential:
        ...

    async def refresh(self, profile: Profile, credential: Credential) -> Credential:
        ...


class InvoiceBackend(RemoteInvoiceService, Authenticator, Protocol):
    """Everything the orchestrator needs from one identity's remote connection."""


def resolve_base_url(environment: str) -> str:
    try:
        return BASE_URLS[environment.strip().lower()]
    except KeyError as exc:
        raise ProfileError(f"Unknown KSeF environment: {environment}") from exc


def _parse_instant(value: Any) -> datetime:
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _retry_after(response: httpx.Response) -> float:
    header = response.headers.get("Retry-After")
    try:
        return max(float(header), 0.0) if header is not None else 1.0
    except ValueError:
        return 1.0


class KsefClient:
    """Implements both the invoice service and the authenticator over httpx."""

    def __init__(
        self,
        environment: str,
        *,
        token_encryptor: TokenEncryptor | None = None,
        xades_signer: XadesSigner | None = None,
        base_url: str | None = None,
        timeout: float = 30.0,
        poll_interval: float = 1.0,
        poll_timeout: float = 120.0,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._environment = environment.strip().lower()
        self._base_url = (base_url or resolve_base_url(environment)).rstrip("/")
        self._token_encryptor = token_encryptor
        self._xades_signer = xades_signer
        self._poll_interval = poll_interval
        self._poll_timeout = poll_timeout
        self._sleep = sleep
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    @property
    def environment(self) -> str:
        return self._environment

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _url(self, path: str) -> str:
        return f"{self._base_url}{path}"

    @staticmethod
    def _bearer(token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    @staticmethod
    def _check(response: httpx.Response) -> httpx.Response:
        if response.status_code == 429:
            raise RateLimitError(_retry_after(response))
        if response.status_code >= 400:
            detail = response.text.strip()[:300]
            raise RemoteServiceError(
                f"KSeF request failed with HTTP {response.status_code}: {detail}",
                status_code=response.status_code,
            )
        return response

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        response = await self._client.request(method, self._url(path), **kwargs)
        return self._check(response)

    @staticmethod
    def _credential_from(payload: dict[str, Any], fallback: Credential | None = None) -> Credential:
        access = payload.get("accessToken") or {}
        refresh = payload.get("refreshToken") or {}
        if not access.get("token"):
            raise AuthenticationError("KSeF response did not contain an access token")
        if refresh.get("token"):
            refresh_token = str(refresh["token"])
            refresh_until = _parse_instant(refresh["validUntil"])
        elif fallback is not None:
            refresh_token = fallback.refresh_token
            refresh_until = fallback.refresh_token_valid_until
        else:
            raise AuthenticationError("KSeF response did not contain a refresh token")
        return Credential(
            access_token=str(access["token"]),
            access_token_valid_until=_parse_instant(access["validUntil"]),
            refresh_token=refresh_token,
            refresh_token_valid_until=refresh_until,
        )

    async def _submit_token(self, profile: Profile, challenge: dict[str, Any]) -> dict[str, Any]:
        if self._token_encryptor is None:
            raise AuthenticationError("KSeF token encryption is not configured")
        timestamp_ms = int(_parse_instant(challenge["timestamp"]).timestamp() * 1000)
        encrypted = self._token_encryptor(f"{profile.token}|{timestamp_ms}", self._environment)
        body = {
            "challenge": challenge["challenge"],
            "contextIdentifier": {"type": "Nip", "value": profile.nip},
            "encryptedToken": encrypted,
        }
        response = await self._request("POST", "/auth/ksef-token", json=body)
        return response.json()

    async def _submit_signature(self, profile: Profile, challenge: dict[str, Any]) -> dict[str, Any]:
        if self._xades_signer is None:
            raise AuthenticationError("Certificate authentication requires a XAdES signer")
        unsigned = (
            '<?xml version="1.0" encoding="utf-8"?>'
            '<AuthTokenRequest xmlns="http://ksef.mf.gov.pl/auth/token/2.0">'
            f"<Challenge>{challenge['challenge']}</Challenge>"
            f"<ContextIdentifier><Nip>{profile.nip}</Nip></ContextIdentifier>"
            "<SubjectIdentifierType>certificateSubject</SubjectIdentifierType>"
            "</AuthTokenRequest>"
        )
        signed = self._xades_signer(unsigned, profile)
        response = await self._request(
            "POST",
            "/auth/xades-signature",
            content=signed.encode("utf-8"),
            headers={"Content-Type": "application/xml"},
        )
        return response.json()

    async def _wait_for_auth(self, reference: str, auth_token: str) -> None:
        max_polls = max(int(self._poll_timeout / self._poll_interval), 1)
        started = time.monotonic()
        for attempt in range(max_polls):
            response = await self._request("GET", f"/auth/{reference}", headers=self._bearer(auth_token))
            status = response.json().get("status") or {}
            code = int(status.get("code") or 0)
            logger.debug("Auth status %s: %s", code, status.get("description"))
            if code == AUTH_OK:
                return
            timed_out = time.monotonic() - started >= self._poll_timeout or attempt == max_polls - 1
            if code != AUTH_PENDING or timed_out:
                raise AuthenticationError(
                    f"Authentication failed or timed out. Code: {code}, Description: {status.get('description')}"
                )
            await self._sleep(self._poll_interval)

    # ------------------------------------------------------------------
    # Authenticator
    # ------------------------------------------------------------------
    async def authenticate(self, profile: Profile) -> Credential:
        logger.info("Authenticating profile %s (%s) against %s", profile.name, profile.auth_method, self._environment)
        challenge = (await self._request("POST", "/auth/challenge")).json()
        if profile.certificate is not None:
            submission = await self._submit_signature(profile, challenge)
        else:
            submission = await self._submit_token(profile, challenge)

        auth_token = str((submission.get("authenticationToken") or {}).get("token") or "")
        reference = str(submission.get("referenceNumber") or "")
        if not auth_token or not reference:
            raise AuthenticationError("KSeF did not accept the authentication request")

        await self._wait_for_auth(reference, auth_token)
        redeemed = await self._request("POST", "/auth/token/redeem", headers=self._bearer(auth_token))
        return self._credential_from(redeemed.json())

    async def refresh(self, profile: Profile, credential: Credential) -> Credential:
        logger.info("Refreshing access token for profile %s", profile.name)
        response = await self._request(
            "POST", "/auth/token/refresh", headers=self._bearer(credential.refresh_token)
        )
        return self._credential_from(response.json(), fallback=credential)

    # ------------------------------------------------------------------
    # RemoteInvoiceService
    # ------------------------------------------------------------------
    async def query_metadata(
        self, filters: QueryFilters, access_token: str, *, offset: int, size: int
    ) -> InvoicePage:
        response = await self._request(
            "POST",
            "/invoices/query/metadata",
            params={"pageOffset": offset, "pageSize": size},
            json=filters.to_payload(),
            headers=self._bearer(access_token),
        )
        payload = response.json()
        invoices = payload.get("invoices") or []
        return InvoicePage(
            items=[ResultItem.from_remote(entry) for entry in invoices if isinstance(entry, dict)],
            has_more=bool(payload.get("hasMore")),
        )

    async def get_invoice(self, ksef_number: str, access_token: str) -> str:
        response = await self._request(
            "GET",
            f"/invoices/ksef/{ksef_number}",
            headers={**self._bearer(access_token), "Accept": "application/xml"},
        )
        return response.text

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def client_for_profile(
    profile: Profile,
    *,
    token_encryptor: TokenEncryptor | None = None,
    xades_signer: XadesSigner | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> KsefClient:
    """Build a client for ``profile``; fails if the profile cannot authenticate at all."""

    if not profile.nip:
        raise ProfileError(f"Profile '{profile.name}' has no NIP")
    if profile.certificate is None and not profile.token:
        raise ProfileError(f"Profile '{profile.name}' has neither a token nor a certificate")
    if profile.certificate is not None:
        cert = profile.certificate
        if not cert.private_key_file or not cert.certificate_file:
            raise ProfileError(f"Profile '{profile.name}' certificate is missing key or certificate file")
    return KsefClient(
        profile.environment,
        token_encryptor=token_encryptor,
        xades_signer=xades_signer,
        http_client=http_client,
    )


__all__ = [
    "Authenticator",
    "BASE_URLS",
    "InvoiceBackend",
    "InvoicePage",
    "KsefClient",
    "RemoteInvoiceService",
    "TokenEncryptor",
    "XadesSigner",
    "client_for_profile",
    "resolve_base_url",
]

"""Domain entities for invoice retrieval sessions."""
from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


@dataclass(slots=True, frozen=True)
class Identity:
    """The profile a session operates under."""

    name: str
    nip: str
    environment: str

    @property
    def cache_key(self) -> str:
        raw = f"{self.name}|{self.nip}|{self.environment.lower()}"
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()


@dataclass(slots=True)
class CertificateSettings:
    private_key_file: str | None = None
    certificate_file: str | None = None
    password: str | None = None
    password_env: str | None = None
    password_file: str | None = None


@dataclass(slots=True)
class Profile:
    """A named entry of the profile configuration file."""

    name: str
    nip: str
    environment: str
    token: str | None = None
    certificate: CertificateSettings | None = None

    @property
    def auth_method(self) -> str:
        return "certificate" if self.certificate is not None else "token"

    def identity(self) -> Identity:
        return Identity(name=self.name, nip=self.nip, environment=self.environment)


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(slots=True)
class Credential:
    """Bearer access token plus the longer-lived refresh token."""

    access_token: str
    access_token_valid_until: datetime
    refresh_token: str
    refresh_token_valid_until: datetime

    def to_dict(self) -> dict[str, str]:
        return {
            "accessToken": self.access_token,
            "accessTokenValidUntil": self.access_token_valid_until.isoformat(),
            "refreshToken": self.refresh_token,
            "refreshTokenValidUntil": self.refresh_token_valid_until.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Credential":
        return cls(
            access_token=str(data["accessToken"]),
            access_token_valid_until=_parse_timestamp(data["accessTokenValidUntil"]),
            refresh_token=str(data["refreshToken"]),
            refresh_token_valid_until=_parse_timestamp(data["refreshTokenValidUntil"]),
        )


@dataclass(slots=True, frozen=True)
class SearchQuery:
    """Search parameters as submitted by the user."""

    subject_type: str
    date_from: str
    date_type: str
    date_to: str | None = None

    def to_dict(self) -> dict[str, str | None]:
        return {
            "subjectType": self.subject_type,
            "from": self.date_from,
            "to": self.date_to,
            "dateType": self.date_type,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SearchQuery":
        return cls(
            subject_type=str(data["subjectType"]),
            date_from=str(data["from"]),
            date_to=data.get("to") or None,
            date_type=str(data["dateType"]),
        )


@dataclass(slots=True)
class ResultItem:
    """One invoice summary returned by a metadata query."""

    ksef_number: str
    invoice_number: str | None = None
    issue_date: str | None = None
    seller_name: str | None = None
    seller_nip: str | None = None
    buyer_name: str | None = None
    gross_amount: float | None = None
    net_amount: float | None = None
    vat_amount: float | None = None
    currency: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_remote(cls, data: dict[str, Any]) -> "ResultItem":
        seller = data.get("seller") or {}
        buyer = data.get("buyer") or {}
        return cls(
            ksef_number=str(data.get("ksefNumber") or ""),
            invoice_number=data.get("invoiceNumber"),
            issue_date=data.get("issueDate"),
            seller_name=seller.get("name"),
            seller_nip=seller.get("nip"),
            buyer_name=buyer.get("name"),
            gross_amount=data.get("grossAmount"),
            net_amount=data.get("netAmount"),
            vat_amount=data.get("vatAmount"),
            currency=data.get("currency"),
            raw=dict(data),
        )

    def to_remote(self) -> dict[str, Any]:
        """Summary in the remote service's shape, used for storage and JSON export."""

        if self.raw:
            return dict(self.raw)
        return {
            "ksefNumber": self.ksef_number,
            "invoiceNumber": self.invoice_number,
            "issueDate": self.issue_date,
            "seller": {"name": self.seller_name, "nip": self.seller_nip},
            "buyer": {"name": self.buyer_name},
            "grossAmount": self.gross_amount,
            "netAmount": self.net_amount,
            "vatAmount": self.vat_amount,
            "currency": self.currency,
        }

    def projection(self) -> dict[str, Any]:
        return {
            "ksefNumber": self.ksef_number,
            "invoiceNumber": self.invoice_number,
            "issueDate": self.issue_date,
            "sellerName": self.seller_name,
            "sellerNip": self.seller_nip,
            "buyerName": self.buyer_name,
            "grossAmount": self.gross_amount,
            "netAmount": self.net_amount,
            "vatAmount": self.vat_amount,
            "currency": self.currency,
        }


FORMAT_RAW = "raw"
FORMAT_SUMMARY = "summary"
FORMAT_RENDERED = "rendered"

FORMAT_EXTENSIONS: dict[str, str] = {
    FORMAT_RAW: "xml",
    FORMAT_SUMMARY: "json",
    FORMAT_RENDERED: "pdf",
}


@dataclass(slots=True)
class DownloadJob:
    """Transient description of one download request."""

    target_dir: str
    formats: frozenset[str]
    selected_indices: list[int] | None = None
    per_identity_subdir: bool = False
    custom_filenames: bool = False


@dataclass(slots=True)
class ProgressEvent:
    type: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class CachedResults:
    """Row returned by the result cache."""

    items: list[ResultItem]
    query: SearchQuery | None
    fetched_at: datetime | None

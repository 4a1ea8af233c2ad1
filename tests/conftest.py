from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from ksef_gui.application.events import EventHub
from ksef_gui.application.orchestrator import JobOrchestrator
from ksef_gui.application.tokens import TokenCache
from ksef_gui.domain import Credential, Profile, ProfileError, RenderError, ResultItem
from ksef_gui.infrastructure.config import ConfigStore, ProfileConfig
from ksef_gui.infrastructure.ksef import InvoicePage
from ksef_gui.infrastructure.prefs import InMemoryPreferencesStore
from ksef_gui.infrastructure.results import ResultCache
from ksef_gui.infrastructure.tokens import TokenStore

FA3 = "http://crd.gov.pl/wzor/2025/06/25/13775/"


def make_credential(
    *, access_in: timedelta = timedelta(hours=1), refresh_in: timedelta = timedelta(days=7), now: datetime | None = None
) -> Credential:
    now = now or datetime.now(timezone.utc)
    return Credential(
        access_token="access-token",
        access_token_valid_until=now + access_in,
        refresh_token="refresh-token",
        refresh_token_valid_until=now + refresh_in,
    )


def make_items(count: int, prefix: str = "KSEF") -> list[ResultItem]:
    return [
        ResultItem.from_remote(
            {
                "ksefNumber": f"{prefix}-{index:04d}",
                "invoiceNumber": f"FV/{index}/2024",
                "issueDate": "2024-01-15",
                "seller": {"name": "ACME Sp. z o.o.", "nip": "5260000000"},
                "buyer": {"name": "Buyer SA"},
                "grossAmount": 123.0,
                "netAmount": 100.0,
                "vatAmount": 23.0,
                "currency": "PLN",
            }
        )
        for index in range(count)
    ]


def invoice_xml(ksef_number: str) -> str:
    return (
        f'<Faktura xmlns="{FA3}"><Naglowek><SystemInfo>{ksef_number}</SystemInfo></Naglowek>'
        "<Fa><KodWaluty>PLN</KodWaluty><P_15>123.00</P_15></Fa></Faktura>"
    )


class FakeBackend:
    """In-memory stand-in for the remote invoice service and authenticator."""

    def __init__(self, items: list[ResultItem] | None = None) -> None:
        self.items = list(items or [])
        self.metadata_calls: list[int] = []
        self.invoice_calls: list[str] = []
        self.auth_calls = 0
        self.refresh_calls = 0
        self.metadata_error: Exception | None = None
        self.invoice_error: Exception | None = None
        self.closed = False

    async def authenticate(self, profile: Profile) -> Credential:
        self.auth_calls += 1
        return make_credential()

    async def refresh(self, profile: Profile, credential: Credential) -> Credential:
        self.refresh_calls += 1
        refreshed = make_credential()
        refreshed.refresh_token = credential.refresh_token
        refreshed.refresh_token_valid_until = credential.refresh_token_valid_until
        return refreshed

    async def query_metadata(self, filters, access_token: str, *, offset: int, size: int) -> InvoicePage:
        self.metadata_calls.append(offset)
        if self.metadata_error is not None:
            raise self.metadata_error
        chunk = self.items[offset : offset + size]
        return InvoicePage(items=list(chunk), has_more=offset + size < len(self.items))

    async def get_invoice(self, ksef_number: str, access_token: str) -> str:
        self.invoice_calls.append(ksef_number)
        if self.invoice_error is not None:
            raise self.invoice_error
        return invoice_xml(ksef_number)

    async def aclose(self) -> None:
        self.closed = True


class FakeRenderer:
    def __init__(self, fail_on: set[str] | None = None) -> None:
        self.fail_on = fail_on or set()
        self.rendered: list[str] = []

    async def render(self, xml: str) -> bytes:
        for ksef_number in self.fail_on:
            if ksef_number in xml:
                raise RenderError(f"cannot render {ksef_number}")
        self.rendered.append(xml)
        return b"%PDF-1.7 fake"


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_profiles() -> ProfileConfig:
    return ProfileConfig(
        active_profile="main",
        profiles={
            "main": Profile(name="main", nip="1111111111", environment="test", token="main-token"),
            "other": Profile(name="other", nip="2222222222", environment="test", token="other-token"),
            "broken": Profile(name="broken", nip="3333333333", environment="test"),
        },
    )


class Harness:
    """Orchestrator wired to fakes, plus handles on every collaborator."""

    def __init__(self, tmp_path: Path, config_store: ConfigStore | None = None) -> None:
        self.tmp_path = tmp_path
        self.backends = {"main": FakeBackend(), "other": FakeBackend()}
        self.renderer = FakeRenderer()
        self.sleep = RecordingSleep()
        self.prefs = InMemoryPreferencesStore()
        self.hub = EventHub()
        self.results = ResultCache(tmp_path / "cache.duckdb")
        self.token_store = TokenStore(tmp_path / "tokens.json")
        self.output_dir = tmp_path / "out"
        self.orchestrator = JobOrchestrator(
            profiles=make_profiles(),
            service_factory=self.service_factory,
            token_cache=TokenCache(self.token_store),
            result_cache=self.results,
            renderer=self.renderer,
            prefs=self.prefs,
            hub=self.hub,
            default_output_dir=self.output_dir,
            config_store=config_store,
            sleep=self.sleep,
        )

    def service_factory(self, profile: Profile) -> FakeBackend:
        if not profile.token and profile.certificate is None:
            raise ProfileError(f"Profile '{profile.name}' has neither a token nor a certificate")
        return self.backends[profile.name]

    @property
    def main(self) -> FakeBackend:
        return self.backends["main"]


@pytest.fixture()
def harness(tmp_path):
    instance = Harness(tmp_path)
    yield instance
    instance.results.close()

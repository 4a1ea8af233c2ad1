"""Session state and the long-running search/download jobs."""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, TypeVar

from ksef_gui.application.details import parse_invoice_details
from ksef_gui.application.events import EventHub
from ksef_gui.application.tokens import TokenCache
from ksef_gui.core.files import build_file_name, job_workdir, publish_file, resolve_output_dir
from ksef_gui.core.filters import QueryFilters, build_filters
from ksef_gui.core.schema import ConfigEditorData
from ksef_gui.domain import (
    FORMAT_EXTENSIONS,
    FORMAT_RAW,
    FORMAT_RENDERED,
    FORMAT_SUMMARY,
    DownloadJob,
    Identity,
    Profile,
    ProfileError,
    RateLimitError,
    ResultItem,
    SearchQuery,
    ValidationError,
)
from ksef_gui.infrastructure.config import (
    ConfigStore,
    ProfileConfig,
    config_to_editor,
    editor_profile_prefs,
    editor_to_config,
)
from ksef_gui.infrastructure.ksef import InvoiceBackend
from ksef_gui.infrastructure.prefs import PreferencesStore
from ksef_gui.infrastructure.renderer import DocumentRenderer
from ksef_gui.infrastructure.results import ResultCache

logger = logging.getLogger(__name__)

T = TypeVar("T")

PAGE_SIZE = 100
MAX_RATE_LIMIT_ATTEMPTS = 5
BACKOFF_STEP_SECONDS = 2.0
PAGE_DELAY_SECONDS = 0.2

DEFAULT_BACKGROUND_QUERY = SearchQuery(subject_type="Subject2", date_from="thismonth", date_type="Issue")

ServiceFactory = Callable[[Profile], InvoiceBackend]


@dataclass(slots=True)
class ActiveSession:
    profile: Profile
    service: InvoiceBackend

    @property
    def identity(self) -> Identity:
        return self.profile.identity()


async def _close_service(service: InvoiceBackend) -> None:
    close = getattr(service, "aclose", None)
    if close is not None:
        await close()


class JobOrchestrator:
    """Owns the active identity and the current result set of one server instance."""

    def __init__(
        self,
        *,
        profiles: ProfileConfig,
        service_factory: ServiceFactory,
        token_cache: TokenCache,
        result_cache: ResultCache,
        renderer: DocumentRenderer,
        prefs: PreferencesStore,
        hub: EventHub,
        default_output_dir: Path,
        config_store: ConfigStore | None = None,
        setup_required: bool = False,
        use_invoice_number: bool = False,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._profiles = profiles
        self._service_factory = service_factory
        self._tokens = token_cache
        self._results = result_cache
        self._renderer = renderer
        self._prefs = prefs
        self._hub = hub
        self._default_output_dir = Path(default_output_dir)
        self._config_store = config_store
        self._setup_required = setup_required
        self._use_invoice_number = use_invoice_number
        self._sleep = sleep

        self._session: ActiveSession | None = None
        self._items: list[ResultItem] = []
        self._query: SearchQuery | None = None

    # ------------------------------------------------------------------
    # state
    # ------------------------------------------------------------------
    @property
    def hub(self) -> EventHub:
        return self._hub

    @property
    def identity(self) -> Identity | None:
        return self._session.identity if self._session else None

    @property
    def active_profile(self) -> str | None:
        return self._session.profile.name if self._session else None

    @property
    def setup_required(self) -> bool:
        return self._setup_required

    @property
    def items(self) -> list[ResultItem]:
        return list(self._items)

    @property
    def query(self) -> SearchQuery | None:
        return self._query

    @property
    def default_output_dir(self) -> Path:
        return self._default_output_dir

    def _require_session(self) -> ActiveSession:
        if self._session is None:
            if self._setup_required:
                raise ProfileError("No profile configured yet. Open the settings and save a profile first.")
            raise ProfileError("No active profile")
        return self._session

    def _item_at(self, index: int) -> ResultItem:
        if index < 0 or index >= len(self._items):
            raise ValidationError(f"Invalid invoice index: {index}")
        return self._items[index]

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    async def start(self) -> None:
        """Activate the configured profile and restore its cached results."""

        if self._setup_required or not self._profiles.profiles:
            logger.info("No usable configuration, starting in setup mode")
            return
        try:
            await self.switch_identity(None)
        except ProfileError as exc:
            logger.warning("Could not activate configured profile: %s", exc)

    async def close(self) -> None:
        if self._session is not None:
            await _close_service(self._session.service)
            self._session = None

    # ------------------------------------------------------------------
    # remote calls
    # ------------------------------------------------------------------
    async def _with_backoff(self, operation: Callable[[], Awaitable[T]], description: str) -> T:
        for attempt in range(1, MAX_RATE_LIMIT_ATTEMPTS + 1):
            try:
                return await operation()
            except RateLimitError as exc:
                if attempt == MAX_RATE_LIMIT_ATTEMPTS:
                    logger.error("Rate limit persisted after %d attempts: %s", attempt, description)
                    raise
                delay = exc.recommended_delay + (attempt - 1) * BACKOFF_STEP_SECONDS
                logger.warning(
                    "Rate limited on %s, retrying in %.1fs (attempt %d/%d)",
                    description,
                    delay,
                    attempt,
                    MAX_RATE_LIMIT_ATTEMPTS,
                )
                await self._sleep(delay)
        raise AssertionError("unreachable")

    async def _fetch_all(
        self, profile: Profile, service: InvoiceBackend, filters: QueryFilters
    ) -> list[ResultItem]:
        token = await self._tokens.get_access_token(profile, service)
        items: list[ResultItem] = []
        offset = 0
        while True:
            page = await self._with_backoff(
                lambda: service.query_metadata(filters, token, offset=offset, size=PAGE_SIZE),
                f"metadata page {offset}",
            )
            items.extend(page.items)
            logger.debug("Fetched page at offset %d: %d items (hasMore=%s)", offset, len(page.items), page.has_more)
            if not page.has_more:
                return items
            offset += PAGE_SIZE
            await self._sleep(PAGE_DELAY_SECONDS)

    # ------------------------------------------------------------------
    # search
    # ------------------------------------------------------------------
    async def search(self, query: SearchQuery, *, source: str | None = None) -> list[dict[str, Any]]:
        session = self._require_session()
        filters = build_filters(query)
        logger.info(
            "Search [profile=%s, subject=%s, from=%s, to=%s, dateType=%s, source=%s]",
            session.profile.name,
            filters.subject_type,
            query.date_from,
            query.date_to or "-",
            filters.date_type,
            source or "manual",
        )

        items = await self._fetch_all(session.profile, session.service, filters)

        if self._session is not session:
            logger.warning("Profile changed while searching, discarding %d results", len(items))
            return [item.projection() for item in items]

        self._items = items
        automatic = source == "auto"
        if not automatic:
            self._query = query
        await self._store_results(session.identity.cache_key, query, items, automatic=automatic)
        logger.info("Search finished: %d invoices", len(items))
        return [item.projection() for item in items]

    async def _store_results(
        self, key: str, query: SearchQuery, items: list[ResultItem], *, automatic: bool
    ) -> None:
        try:
            if automatic:
                updated = await asyncio.to_thread(self._results.save_items_only, key, items)
                if updated:
                    return
            await asyncio.to_thread(self._results.save, key, query, items)
        except Exception:
            logger.exception("Could not write search results to the cache")

    def cached_results(self) -> dict[str, Any]:
        return {
            "invoices": [item.projection() for item in self._items],
            "params": self._query.to_dict() if self._query else None,
        }

    # ------------------------------------------------------------------
    # download
    # ------------------------------------------------------------------
    def _select_indices(self, job: DownloadJob) -> list[int]:
        if job.selected_indices:
            return sorted({index for index in job.selected_indices if 0 <= index < len(self._items)})
        return list(range(len(self._items)))

    async def download(self, job: DownloadJob) -> int:
        session = self._require_session()
        if not self._items:
            raise ValidationError("No invoices found. Search first.")
        if not job.formats:
            raise ValidationError("Select at least one export format")

        items = list(self._items)
        indices = self._select_indices(job)
        target = resolve_output_dir(
            job.target_dir,
            self._default_output_dir,
            nip=session.profile.nip,
            per_identity=job.per_identity_subdir,
        )
        total = len(indices)
        logger.info("Download of %d invoice(s) to %s (%s)", total, target, ", ".join(sorted(job.formats)))

        current: int | None = None
        try:
            await asyncio.to_thread(target.mkdir, parents=True, exist_ok=True)
            with job_workdir() as workdir:
                for position, index in enumerate(indices, start=1):
                    current = index
                    await self._download_item(
                        session, job, items[index], index, position, total, target, workdir
                    )
            await self._hub.publish("job-done", {"count": total})
        except Exception as exc:
            payload: dict[str, Any] = {"message": str(exc)}
            if current is not None:
                payload["index"] = current
            await self._hub.publish("error", payload)
            raise

        await asyncio.to_thread(
            self._prefs.update,
            outputDir=job.target_dir,
            exportXml=FORMAT_RAW in job.formats,
            exportJson=FORMAT_SUMMARY in job.formats,
            exportPdf=FORMAT_RENDERED in job.formats,
            customFilenames=job.custom_filenames,
            separateByNip=job.per_identity_subdir,
        )
        logger.info("Download finished: %d invoice(s)", total)
        return total

    async def _download_item(
        self,
        session: ActiveSession,
        job: DownloadJob,
        item: ResultItem,
        index: int,
        position: int,
        total: int,
        target: Path,
        workdir: Path,
    ) -> None:
        base = build_file_name(item, custom=job.custom_filenames, use_invoice_number=self._use_invoice_number)
        await self._hub.publish("item-started", {"index": index, "name": base, "position": position, "total": total})

        # looked up per item; the cache refreshes it near expiry
        token = await self._tokens.get_access_token(session.profile, session.service)
        xml = await self._with_backoff(
            lambda: session.service.get_invoice(item.ksef_number, token),
            f"invoice {item.ksef_number}",
        )

        staging = workdir / str(index)
        staged: dict[str, Path] = {}
        if FORMAT_RAW in job.formats:
            staged[FORMAT_RAW] = staging / f"{base}.{FORMAT_EXTENSIONS[FORMAT_RAW]}"
            await asyncio.to_thread(_write_text, staged[FORMAT_RAW], xml)
        if FORMAT_SUMMARY in job.formats:
            staged[FORMAT_SUMMARY] = staging / f"{base}.{FORMAT_EXTENSIONS[FORMAT_SUMMARY]}"
            summary = json.dumps(item.to_remote(), indent=2, ensure_ascii=False)
            await asyncio.to_thread(_write_text, staged[FORMAT_SUMMARY], summary)

        primary = next(
            (target / path.name for fmt, path in staged.items() if fmt in (FORMAT_RAW, FORMAT_SUMMARY)),
            None,
        )
        if FORMAT_RENDERED in job.formats:
            await self._hub.publish(
                "item-partially-done",
                {"index": index, "file": str(primary) if primary else None, "position": position, "total": total},
            )
            document = await self._renderer.render(xml)
            staged[FORMAT_RENDERED] = staging / f"{base}.{FORMAT_EXTENSIONS[FORMAT_RENDERED]}"
            await asyncio.to_thread(_write_bytes, staged[FORMAT_RENDERED], document)

        final: dict[str, Path] = {}
        for fmt, path in staged.items():
            final[fmt] = await asyncio.to_thread(publish_file, path, target / path.name)
            logger.debug("Saved %s", final[fmt])

        done: dict[str, Any] = {
            "index": index,
            "file": str(final.get(FORMAT_RAW) or final.get(FORMAT_SUMMARY) or final.get(FORMAT_RENDERED)),
            "position": position,
            "total": total,
        }
        if FORMAT_RENDERED in final:
            done["pdf"] = str(final[FORMAT_RENDERED])
        await self._hub.publish("item-done", done)

    def check_existing(self, output_dir: str, *, custom_filenames: bool, separate_by_nip: bool) -> list[dict[str, bool]]:
        if not self._items or self._session is None:
            return []
        target = resolve_output_dir(
            output_dir,
            self._default_output_dir,
            nip=self._session.profile.nip,
            per_identity=separate_by_nip,
        )
        result = []
        for item in self._items:
            base = build_file_name(item, custom=custom_filenames, use_invoice_number=self._use_invoice_number)
            result.append(
                {
                    "xml": (target / f"{base}.xml").exists(),
                    "pdf": (target / f"{base}.pdf").exists(),
                    "json": (target / f"{base}.json").exists(),
                }
            )
        return result

    # ------------------------------------------------------------------
    # details and credentials
    # ------------------------------------------------------------------
    async def invoice_details(self, index: int) -> dict[str, Any]:
        session = self._require_session()
        item = self._item_at(index)
        token = await self._tokens.get_access_token(session.profile, session.service)
        xml = await self._with_backoff(
            lambda: session.service.get_invoice(item.ksef_number, token),
            f"invoice {item.ksef_number}",
        )
        return parse_invoice_details(xml)

    async def authenticate(self) -> str:
        session = self._require_session()
        logger.info("Session refresh [profile=%s, nip=%s]", session.profile.name, session.profile.nip)
        credential = await self._tokens.force_authenticate(session.profile, session.service)
        valid_until = credential.access_token_valid_until.astimezone().strftime("%H:%M:%S")
        return f"Token valid until {valid_until}"

    async def token_status(self) -> dict[str, Any]:
        if self._session is None:
            return {"accessTokenValidUntil": None, "refreshTokenValidUntil": None}
        return await self._tokens.status(self._session.profile, self._session.service)

    # ------------------------------------------------------------------
    # identity switching
    # ------------------------------------------------------------------
    async def switch_identity(self, profile_name: str | None) -> Identity:
        """Make ``profile_name`` active. On failure the previous session stays untouched."""

        profile = self._profiles.resolve(profile_name)
        service = self._service_factory(profile)
        try:
            cached = await asyncio.to_thread(self._results.load, profile.identity().cache_key)
        except BaseException:
            await _close_service(service)
            raise

        previous = self._session
        self._session = ActiveSession(profile=profile, service=service)
        self._items = list(cached.items) if cached else []
        self._query = cached.query if cached else None
        if previous is not None and previous.service is not service:
            await _close_service(previous.service)

        logger.info(
            "Profile switched to %s (NIP %s, %s), %d cached invoice(s)",
            profile.name,
            profile.nip,
            profile.environment,
            len(self._items),
        )
        return profile.identity()

    async def apply_config(self, config: ProfileConfig) -> Identity:
        """Install a new profile set and activate its active profile, or keep the old one."""

        previous = self._profiles
        self._profiles = config
        try:
            identity = await self.switch_identity(config.active_profile or None)
        except BaseException:
            self._profiles = previous
            raise
        self._setup_required = False
        return identity

    # ------------------------------------------------------------------
    # preferences and configuration editor
    # ------------------------------------------------------------------
    def preferences(self) -> dict[str, Any]:
        prefs = self._prefs.load()
        prefs.update(
            {
                "profileName": self.active_profile,
                "selectedProfile": self.active_profile,
                "allProfiles": self._profiles.names(),
                "setupRequired": self._setup_required,
            }
        )
        return prefs

    async def save_preferences(self, payload: dict[str, Any]) -> None:
        selected = payload.get("selectedProfile")
        if selected and selected != self.active_profile:
            await self.switch_identity(str(selected))
        stored = {key: value for key, value in payload.items() if key not in {"profileName", "allProfiles", "setupRequired"}}
        await asyncio.to_thread(self._prefs.save, stored)

    def config_editor(self) -> dict[str, Any]:
        path = self._config_store.path if self._config_store else Path("config.yaml")
        profile_prefs = self._prefs.load().get("profilePrefs") or {}
        return config_to_editor(self._profiles, path, profile_prefs)

    async def save_config(self, data: ConfigEditorData) -> None:
        if self._config_store is None:
            raise ProfileError("Configuration file location is not set")
        config = editor_to_config(data)
        await self.apply_config(config)
        await asyncio.to_thread(self._config_store.save, config)
        await asyncio.to_thread(self._prefs.update, profilePrefs=editor_profile_prefs(data))

    # ------------------------------------------------------------------
    # background refresh
    # ------------------------------------------------------------------
    def refresh_candidates(self) -> list[str]:
        profile_prefs = self._prefs.load().get("profilePrefs") or {}
        names = []
        for name in self._profiles.profiles:
            if name == self.active_profile:
                continue
            if (profile_prefs.get(name) or {}).get("includeInAutoRefresh") is False:
                continue
            names.append(name)
        return names

    async def refresh_profile(self, profile_name: str) -> int:
        """Fetch a non-active profile's results with its stored query. Returns the new-item count."""

        profile = self._profiles.resolve(profile_name)
        service = self._service_factory(profile)
        try:
            key = profile.identity().cache_key
            cached = await asyncio.to_thread(self._results.load, key)
            query = cached.query if cached and cached.query else DEFAULT_BACKGROUND_QUERY
            items = await self._fetch_all(profile, service, build_filters(query))
        finally:
            await _close_service(service)

        known = {item.ksef_number for item in cached.items} if cached else set()
        new_count = sum(1 for item in items if item.ksef_number not in known)
        if cached is None:
            await asyncio.to_thread(self._results.save, key, query, items)
        else:
            await asyncio.to_thread(self._results.save_items_only, key, items)

        logger.info("Background refresh of %s: %d invoices, %d new", profile.name, len(items), new_count)
        await self._hub.publish(
            "background-refresh",
            {"profileName": profile.name, "count": len(items), "newCount": new_count},
        )
        return new_count


def _write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def _write_bytes(path: Path, content: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)

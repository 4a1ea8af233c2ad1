#!/usr/bin/env python
from __future__ import annotations

import argparse
import functools
import importlib
import logging
import os
import threading
import webbrowser
from typing import Any, Callable

import uvicorn

from ksef_gui.app import create_app
from ksef_gui.application.events import EventHub
from ksef_gui.application.orchestrator import JobOrchestrator
from ksef_gui.application.tokens import TokenCache
from ksef_gui.core.settings import Settings
from ksef_gui.domain import ProfileError
from ksef_gui.infrastructure import (
    ConfigStore,
    JsonPreferencesStore,
    PdfGeneratorRenderer,
    ProfileConfig,
    ResultCache,
    TokenStore,
    client_for_profile,
)
from ksef_gui.workers.refresh import BackgroundRefresher

logger = logging.getLogger("ksef_gui")


def _load_callable(reference: str | None) -> Callable[..., Any] | None:
    """Import ``package.module:function``."""

    if not reference:
        return None
    module_name, _, attribute = reference.partition(":")
    if not attribute:
        raise SystemExit(f"Expected 'module:function', got '{reference}'")
    return getattr(importlib.import_module(module_name), attribute)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ksef-gui", description="Local web UI for searching and downloading KSeF invoices")
    parser.add_argument("--config", dest="config_path", help="profile configuration file (YAML)")
    parser.add_argument("--active", dest="active_profile", help="profile to activate instead of active_profile")
    parser.add_argument("--cache-dir", dest="cache_dir", help="directory for tokens, result cache and preferences")
    parser.add_argument("--output-dir", dest="output_dir", help="default download directory")
    parser.add_argument("--port", type=int, help="port to listen on")
    parser.add_argument("--lan", action="store_true", default=None, help="listen on all interfaces")
    parser.add_argument("--no-token-cache", action="store_true", default=None, help="authenticate on every request")
    parser.add_argument("--use-invoice-number", action="store_true", default=None, help="name files after the invoice number")
    parser.add_argument("--pdf-command", help="PDF generator command (default: ksef-pdf-generator)")
    parser.add_argument("--token-encryptor", default=os.getenv("KSEF_GUI_TOKEN_ENCRYPTOR"), help="module:function encrypting KSeF tokens")
    parser.add_argument("--xades-signer", default=os.getenv("KSEF_GUI_XADES_SIGNER"), help="module:function signing certificate auth requests")
    parser.add_argument("--no-browser", dest="open_browser", action="store_false", default=None, help="do not open a browser window")
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="only warnings and errors")
    return parser


def configure_logging(verbose: bool, quiet: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING if quiet else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)-7s %(name)s: %(message)s")


def load_profiles(store: ConfigStore, active_override: str | None) -> tuple[ProfileConfig, bool]:
    """Return the profile set and whether the UI must start in setup mode."""

    if not store.exists():
        store.write_template()
        logger.warning("No configuration found, created template at %s", store.path)
        return ProfileConfig(), True
    try:
        config = store.load()
    except ProfileError as exc:
        logger.error("%s", exc)
        return ProfileConfig(), True
    if active_override:
        config.active_profile = active_override
    return config, False


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose, args.quiet)

    settings = Settings.from_env().with_overrides(
        config_path=args.config_path,
        cache_dir=args.cache_dir,
        output_dir=args.output_dir,
        port=args.port,
        lan=args.lan,
        no_token_cache=args.no_token_cache,
        use_invoice_number=args.use_invoice_number,
        open_browser=args.open_browser,
        pdf_command=tuple(args.pdf_command.split()) if args.pdf_command else None,
    )
    settings.cache_dir.mkdir(parents=True, exist_ok=True)

    config_store = ConfigStore(settings.config_path)
    profiles, setup_required = load_profiles(config_store, args.active_profile)
    prefs = JsonPreferencesStore(settings.prefs_path)
    hub = EventHub()

    service_factory = functools.partial(
        client_for_profile,
        token_encryptor=_load_callable(args.token_encryptor),
        xades_signer=_load_callable(args.xades_signer),
    )
    orchestrator = JobOrchestrator(
        profiles=profiles,
        service_factory=service_factory,
        token_cache=TokenCache(TokenStore(settings.token_store_path), no_cache=settings.no_token_cache),
        result_cache=ResultCache(settings.result_cache_path),
        renderer=PdfGeneratorRenderer(settings.pdf_command),
        prefs=prefs,
        hub=hub,
        default_output_dir=settings.output_dir,
        config_store=config_store,
        setup_required=setup_required,
        use_invoice_number=settings.use_invoice_number,
    )

    server: uvicorn.Server | None = None

    def request_exit() -> None:
        if server is not None:
            server.should_exit = True

    app = create_app(orchestrator, refresher=BackgroundRefresher(orchestrator, prefs), on_quit=request_exit)
    server = uvicorn.Server(uvicorn.Config(app, host=settings.host, port=settings.port, log_level="warning"))

    url = f"http://localhost:{settings.port}/"
    logger.info("Listening on %s:%d%s", settings.host, settings.port, " (LAN)" if settings.lan else "")
    if settings.open_browser:
        threading.Timer(1.0, webbrowser.open, args=[url]).start()
    server.run()


if __name__ == "__main__":
    main()

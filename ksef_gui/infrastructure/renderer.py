"""PDF rendering hooks.

Rendering is delegated to the external ``ksef-pdf-generator`` tool. The
orchestrator only depends on :class:`DocumentRenderer`, so tests can plug in a
deterministic fake.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
import shutil
import tempfile
from pathlib import Path
from typing import Protocol, Sequence

from ksef_gui.domain import RenderError

logger = logging.getLogger(__name__)


class DocumentRenderer(Protocol):
    """Contract for invoice XML to PDF conversion."""

    async def render(self, xml: str) -> bytes:
        """Return the rendered document for ``xml``."""


def _default_command() -> list[str]:
    if shutil.which("ksef-pdf-generator"):
        return ["ksef-pdf-generator"]
    if shutil.which("npx"):
        return ["npx", "--yes", "github:kamilcuk/ksef-pdf-generator"]
    return ["ksef-pdf-generator"]


class PdfGeneratorRenderer:
    """Runs ``<command> invoice in.xml out.pdf`` in a scratch directory."""

    def __init__(self, command: Sequence[str] | None = None, *, timeout: float = 120.0) -> None:
        self._command = list(command) if command else _default_command()
        self._timeout = timeout

    async def render(self, xml: str) -> bytes:
        with tempfile.TemporaryDirectory(prefix="ksef-pdf-") as scratch:
            source = Path(scratch) / "invoice.xml"
            target = Path(scratch) / "invoice.pdf"
            await asyncio.to_thread(source.write_text, xml, encoding="utf-8")

            argv = [*self._command, "invoice", str(source), str(target)]
            logger.debug("Running PDF generator: %s", " ".join(argv))
            try:
                process = await asyncio.create_subprocess_exec(
                    *argv,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except FileNotFoundError as exc:
                raise RenderError(
                    f"PDF generator '{self._command[0]}' not found; install ksef-pdf-generator or disable PDF export"
                ) from exc

            try:
                _, stderr = await asyncio.wait_for(process.communicate(), timeout=self._timeout)
            except asyncio.TimeoutError as exc:
                raise RenderError(f"PDF generator timed out after {self._timeout:.0f}s") from exc
            finally:
                # timeout or cancellation: the generator must not outlive the render
                if process.returncode is None:
                    with contextlib.suppress(ProcessLookupError):
                        process.kill()
                    await process.wait()

            if process.returncode != 0:
                message = stderr.decode("utf-8", errors="replace").strip()[:500]
                raise RenderError(f"PDF generator failed with exit code {process.returncode}: {message}")
            if not await asyncio.to_thread(target.exists):
                raise RenderError("PDF generator did not produce an output file")
            return await asyncio.to_thread(target.read_bytes)

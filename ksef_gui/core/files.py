from __future__ import annotations

import os
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from ksef_gui.domain import ResultItem, ValidationError

_INVALID_FILENAME_CHARS = set('<>:"/\\|?*') | {chr(code) for code in range(32)}
MAX_FILENAME_PART = 60


def sanitize_file_name(name: str) -> str:
    """Replace characters that are invalid on any common filesystem."""

    sanitized = "".join("_" if char in _INVALID_FILENAME_CHARS or char == " " else char for char in name)
    return sanitized[:MAX_FILENAME_PART].strip()


def build_file_name(item: ResultItem, *, custom: bool = False, use_invoice_number: bool = False) -> str:
    """Return the base filename (without extension) for ``item``."""

    if not custom:
        if use_invoice_number and item.invoice_number:
            return sanitize_file_name(item.invoice_number)
        return item.ksef_number

    issue_date = (item.issue_date or "")[:10] or "unknown"
    seller = sanitize_file_name(item.seller_name or "unknown")
    currency = item.currency or "PLN"
    return f"{issue_date}-{seller}-{currency}-{item.ksef_number}"


def resolve_output_dir(
    requested: str | None,
    default: Path,
    *,
    nip: str | None = None,
    per_identity: bool = False,
) -> Path:
    """Combine the requested directory with the optional per-identity suffix."""

    base = Path(requested).expanduser() if requested and requested.strip() else default
    if per_identity and nip:
        base = base / nip
    return base.resolve()


def list_directories(path: str | None, default: Path) -> dict[str, object]:
    """Describe ``path`` for the directory picker; hidden entries are skipped."""

    current = Path(path).expanduser() if path else default
    current = current.resolve()
    if not current.is_dir():
        raise ValidationError(f"Directory not found: {current}")

    dirs: list[str] = []
    try:
        for entry in current.iterdir():
            if entry.name.startswith("."):
                continue
            if entry.is_dir():
                dirs.append(str(entry))
    except PermissionError:
        dirs = []

    parent = current.parent if current.parent != current else None
    return {
        "current": str(current),
        "parent": str(parent) if parent is not None else None,
        "dirs": sorted(dirs, key=str.lower),
    }


def make_directory(path: str) -> Path:
    if not path or not path.strip():
        raise ValidationError("Missing path")
    target = Path(path).expanduser().resolve()
    target.mkdir(parents=True, exist_ok=True)
    return target


def publish_file(source: Path, destination: Path) -> Path:
    """Move a finished file into place, replacing any previous version."""

    destination.parent.mkdir(parents=True, exist_ok=True)
    try:
        os.replace(source, destination)
    except OSError:
        # cross-device: copy next to the target first so the final rename stays atomic
        staging = destination.with_name(f".{destination.name}.partial")
        shutil.copy2(source, staging)
        os.replace(staging, destination)
        source.unlink(missing_ok=True)
    return destination


@contextmanager
def job_workdir(prefix: str = "ksef-gui-") -> Iterator[Path]:
    """Private scratch directory removed on every exit path."""

    workdir = Path(tempfile.mkdtemp(prefix=prefix))
    try:
        yield workdir
    finally:
        shutil.rmtree(workdir, ignore_errors=True)

"""Source acquirer -- fetch a component's source tree with git fallback.

Tries the code host's generated release archive first (cheap, no history),
then falls back to a shallow ``git clone`` of the same ref.  Archive
naming differs between hosts, so the extracted directory name is always
read from the archive's table of contents, never guessed.
"""

from __future__ import annotations

import logging
import shutil
import tarfile
from pathlib import Path

import httpx

from cosmic_deb import git_client
from cosmic_deb.contracts import Component
from cosmic_deb.errors import SourceAcquisitionError
from cosmic_deb.runner import Runner, run

logger = logging.getLogger(__name__)

ARCHIVE_SUFFIX = ".tar.gz"
DOWNLOAD_TIMEOUT_S = 300.0


class ArchiveUnusable(Exception):
    """The archive path failed; the caller should fall back to git."""


# ── Shared HTTP client (connection pooling) ─────────────────────────────────

_client: httpx.AsyncClient | None = None


def _get_client() -> httpx.AsyncClient:
    """Return (or create) the shared httpx client for archive downloads."""
    global _client
    if _client is None:
        _client = httpx.AsyncClient(timeout=DOWNLOAD_TIMEOUT_S, follow_redirects=True)
    return _client


async def close_client() -> None:
    """Close the shared HTTP client.  Called at the end of a run."""
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None


# ── Helpers ──────────────────────────────────────────────────────────────────


def archive_url(component: Component, *, tag: str | None, branch: str) -> str:
    """Release-archive URL for a tag, or a branch snapshot otherwise."""
    if tag:
        return f"{component.url}/archive/refs/tags/{tag}{ARCHIVE_SUFFIX}"
    return f"{component.url}/archive/refs/heads/{branch}{ARCHIVE_SUFFIX}"


def detect_extracted_dir(work_dir: str | Path, archive_path: str | Path) -> Path:
    """Return ``work_dir / <first path segment of the first archive entry>``.

    Raises
    ------
    ArchiveUnusable
        When the archive cannot be listed or is empty.
    """
    try:
        with tarfile.open(archive_path, "r:*") as tf:
            first = tf.next()
    except (tarfile.TarError, OSError) as exc:
        raise ArchiveUnusable(f"failed to list archive contents: {exc}") from exc
    if first is None:
        raise ArchiveUnusable("archive appears to be empty")

    name = first.name.removeprefix("./")
    top = name.split("/", 1)[0]
    if not top or top in (".", ".."):
        raise ArchiveUnusable(f"archive has no top-level directory (first entry: {first.name!r})")
    return Path(work_dir) / top


def extract_archive(archive_path: str | Path, work_dir: str | Path) -> None:
    try:
        with tarfile.open(archive_path, "r:*") as tf:
            tf.extractall(work_dir, filter="data")
    except (tarfile.TarError, OSError) as exc:
        raise ArchiveUnusable(f"failed to extract archive: {exc}") from exc


async def download_archive(
    url: str,
    dest: str | Path,
    *,
    client: httpx.AsyncClient | None = None,
) -> None:
    """Stream *url* into *dest*. Raises ``ArchiveUnusable`` on any HTTP error."""
    http = client or _get_client()
    try:
        async with http.stream("GET", url, follow_redirects=True) as response:
            response.raise_for_status()
            with open(dest, "wb") as fh:
                async for chunk in response.aiter_bytes():
                    fh.write(chunk)
    except (httpx.HTTPError, OSError) as exc:
        raise ArchiveUnusable(f"download of {url} failed: {exc}") from exc


# ── Acquisition ──────────────────────────────────────────────────────────────


async def _fetch_via_archive(
    component: Component,
    url: str,
    work_dir: Path,
    dest: Path,
    *,
    client: httpx.AsyncClient | None,
) -> None:
    archive_path = work_dir / f"{component.name}{ARCHIVE_SUFFIX}"
    try:
        logger.info("Downloading source archive: %s", component.name)
        await download_archive(url, archive_path, client=client)
        extracted = detect_extracted_dir(work_dir, archive_path)
        try:
            extract_archive(archive_path, work_dir)
            if not extracted.is_dir():
                raise ArchiveUnusable(f"expected extracted directory '{extracted.name}' not found")
        except ArchiveUnusable:
            # partial extraction must not linger in the shared work dir
            if extracted.exists():
                shutil.rmtree(extracted, ignore_errors=True)
            raise
        if extracted != dest:
            try:
                extracted.rename(dest)
            except OSError as exc:
                raise SourceAcquisitionError(
                    component.name, None, f"cannot rename '{extracted}' to '{dest}': {exc}"
                ) from exc
    finally:
        archive_path.unlink(missing_ok=True)


async def acquire_source(
    component: Component,
    tag: str | None,
    work_dir: str | Path,
    *,
    runner: Runner = run,
    client: httpx.AsyncClient | None = None,
) -> Path:
    """Return ``work_dir / component.name`` populated with the source tree.

    Already-present sources are reused untouched.

    Raises
    ------
    SourceAcquisitionError
        When both the archive and the git clone paths fail.
    """
    work_dir = Path(work_dir)
    dest = work_dir / component.name
    if dest.exists():
        logger.info("Source already present: %s", component.name)
        return dest

    branch = ""
    if not tag:
        branch = component.branch or await git_client.default_branch(component.url, runner=runner)
        if not component.branch:
            logger.info("Detected default branch for %s: %s", component.name, branch)

    url = archive_url(component, tag=tag, branch=branch)
    try:
        await _fetch_via_archive(component, url, work_dir, dest, client=client)
        return dest
    except ArchiveUnusable as exc:
        logger.warning("%s for %s; falling back to git clone", exc, component.name)

    if dest.exists():
        shutil.rmtree(dest, ignore_errors=True)

    ref = tag or branch
    logger.info("Cloning %s from %s", component.name, git_client.clone_url(component.url))
    try:
        await git_client.clone_repo(component.url, dest, ref=ref, runner=runner)
    except RuntimeError as exc:
        raise SourceAcquisitionError(component.name, ref, str(exc)) from exc
    return dest

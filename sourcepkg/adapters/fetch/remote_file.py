"""
Remote file adapter — fetch a source archive into the build cache.

The fetch is create-if-missing: when the destination already exists the
adapter reports ``skipped`` and touches nothing. Otherwise the archive
is downloaded (``http``, ``https``, ``ftp``, ``file`` URLs) or copied
from a local files directory, verified against an optional checksum,
and moved into place in one rename.

Receipt mapping:
    ok       archive fetched (something changed)
    skipped  archive already present
    failed   download, copy, or checksum failed
"""

from __future__ import annotations

import hashlib
import logging
import shutil
import tempfile
import urllib.request
from pathlib import Path
from urllib.parse import urlparse

from sourcepkg.adapters.base import Adapter, ExecutionContext
from sourcepkg.core.models.action import Receipt

logger = logging.getLogger(__name__)

URL_SCHEMES = frozenset({"http", "https", "ftp", "file"})
USER_AGENT = "sourcepkg/0.1"


def is_url(source: str) -> bool:
    """Whether ``source`` names a URL rather than a local path."""
    return urlparse(source).scheme.lower() in URL_SCHEMES


def verify_checksum(path: Path, expected: str) -> bool:
    """Verify file checksum.  Format: ``algo:hex`` or bare sha256 hex.

    Args:
        path: Path to the fetched file.
        expected: Checksum string like ``sha256:abc123...``.

    Returns:
        True if the file's computed digest matches ``expected``.
    """
    if ":" in expected:
        algo, expected_hash = expected.split(":", 1)
    else:
        algo, expected_hash = "sha256", expected
    h = hashlib.new(algo.lower())
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            h.update(chunk)
    return h.hexdigest().lower() == expected_hash.strip().lower()


def resolve_local_source(
    source: str,
    files_dir: str | None = None,
    cookbook: str | None = None,
) -> Path | None:
    """Find a local source file.

    Absolute paths are used as-is. Relative paths are looked up in
    ``files_dir/<cookbook>/``, then ``files_dir/``, then the current
    directory.
    """
    candidate = Path(source).expanduser()
    if candidate.is_absolute():
        return candidate if candidate.is_file() else None

    search: list[Path] = []
    if files_dir:
        root = Path(files_dir)
        if cookbook:
            search.append(root / cookbook)
        search.append(root)
    search.append(Path.cwd())

    for base in search:
        path = base / candidate
        if path.is_file():
            return path
    return None


class RemoteFileAdapter(Adapter):
    """Fetch a file to a destination path if it is not already there.

    Action params:
        source (str): URL or local path of the archive.
        dest (str): Destination file path.
        checksum (str): Optional ``algo:hex`` digest to verify.
        files_dir (str): Root directory for relative local sources.
        cookbook (str): Sub-directory of ``files_dir`` searched first.
        timeout (int): Network timeout in seconds (default: 60).
    """

    @property
    def name(self) -> str:
        return "remote_file"

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        params = context.action.params
        if not params.get("source"):
            return False, "Missing required param: 'source'"
        if not params.get("dest"):
            return False, "Missing required param: 'dest'"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        params = context.action.params
        source = params["source"]
        dest = Path(params["dest"])
        checksum = params.get("checksum")

        if dest.exists():
            logger.debug("%s already present, not fetching", dest)
            return Receipt.skip(
                adapter=self.name,
                action_id=context.action.id,
                reason=f"{dest} already exists",
                details={"dest": str(dest)},
            )

        dest.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=dest.parent, prefix=".fetch_", suffix=".part")
        tmp = Path(tmp_name)

        try:
            with open(fd, "wb") as out:
                if is_url(source):
                    self._download(source, out, timeout=params.get("timeout", 60))
                else:
                    local = resolve_local_source(
                        source, params.get("files_dir"), params.get("cookbook"),
                    )
                    if local is None:
                        raise FileNotFoundError(f"Source file not found: {source}")
                    with open(local, "rb") as src:
                        shutil.copyfileobj(src, out)

            if checksum and not verify_checksum(tmp, checksum):
                raise ValueError(f"Checksum mismatch for {source} (expected {checksum})")

            tmp.replace(dest)
        except (OSError, ValueError) as e:
            tmp.unlink(missing_ok=True)
            logger.warning("Fetching %s failed: %s", source, e)
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=str(e),
                details={"source": source, "dest": str(dest)},
            )

        size = dest.stat().st_size
        logger.info("Fetched %s → %s (%d bytes)", source, dest, size)
        return Receipt.success(
            adapter=self.name,
            action_id=context.action.id,
            output=f"Fetched {source}",
            details={"source": source, "dest": str(dest), "size": size},
        )

    @staticmethod
    def _download(url: str, out, timeout: int = 60) -> None:
        req = urllib.request.Request(url, headers={"User-Agent": USER_AGENT})
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            shutil.copyfileobj(resp, out)

"""
Local archive storage for finished exports.

Archives live under ``EXPORT_ROOT/<owner>/<name>``. Download URLs carry an
HMAC-signed token naming the archive and its expiry, so the file server
needs nothing but the signing secret to check a request.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import hmac
import logging
import re
import shutil
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path

from config import (
    EXPORT_BASE_URL,
    EXPORT_RETENTION_COUNT,
    EXPORT_ROOT,
    EXPORT_SIGNING_SECRET,
    EXPORT_URL_TTL_HOURS,
)
from core.exceptions import ValidationError

logger = logging.getLogger(__name__)

_SAFE_NAME = re.compile(r"[^A-Za-z0-9._-]+")


def _safe_segment(value: str) -> str:
    cleaned = _SAFE_NAME.sub("_", value).strip("._")
    if not cleaned:
        msg = f"Invalid archive path segment: {value!r}"
        raise ValidationError(msg)
    return cleaned


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


@dataclass
class StoredArchive:
    path: Path
    url: str
    expires_at: datetime
    size_bytes: int


class ArchiveStorage:
    def __init__(
        self,
        root: Path | None = None,
        *,
        base_url: str | None = None,
        secret: str | None = None,
        retention: int | None = None,
    ) -> None:
        self.root = Path(root or EXPORT_ROOT)
        self.base_url = (base_url or EXPORT_BASE_URL).rstrip("/")
        self._secret = (secret or EXPORT_SIGNING_SECRET).encode("utf-8")
        self.retention = EXPORT_RETENTION_COUNT if retention is None else retention

    def _owner_dir(self, owner_id: str) -> Path:
        return self.root / _safe_segment(owner_id)

    def _sign(self, payload: str) -> str:
        return hmac.new(self._secret, payload.encode("utf-8"), hashlib.sha256).hexdigest()

    def sign_url(self, path: Path, expires_at: datetime) -> str:
        relative = path.relative_to(self.root).as_posix()
        payload = f"{relative}|{int(expires_at.timestamp())}"
        token = f"{_b64encode(payload.encode('utf-8'))}.{self._sign(payload)}"
        return f"{self.base_url}/{token}"

    def verify(self, token: str, *, now: datetime | None = None) -> Path | None:
        """Resolve a download token to its archive, or None if it is not valid."""
        encoded, _, signature = token.rpartition(".")
        if not encoded or not signature:
            return None
        try:
            payload = _b64decode(encoded).decode("utf-8")
        except (ValueError, UnicodeDecodeError):
            return None
        if not hmac.compare_digest(self._sign(payload), signature):
            return None

        relative, _, expires = payload.rpartition("|")
        try:
            expires_at = datetime.fromtimestamp(int(expires), tz=UTC)
        except (ValueError, OverflowError):
            return None
        if (now or datetime.now(UTC)) > expires_at:
            return None

        path = (self.root / relative).resolve()
        if not path.is_relative_to(self.root.resolve()) or not path.is_file():
            return None
        return path

    async def upload(
        self,
        owner_id: str,
        name: str,
        data: bytes | Path,
        expires_in: timedelta | None = None,
    ) -> StoredArchive:
        """Store ``data`` (bytes, or a file that is moved) and sign its URL."""
        expires_in = expires_in or timedelta(hours=EXPORT_URL_TTL_HOURS)
        target = self._owner_dir(owner_id) / _safe_segment(name)

        def _write() -> int:
            target.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(data, Path):
                shutil.move(str(data), target)
            else:
                target.write_bytes(data)
            return target.stat().st_size

        size = await asyncio.to_thread(_write)
        expires_at = datetime.now(UTC) + expires_in
        logger.info("Stored archive %s (%d bytes)", target, size)

        await self.prune(owner_id)
        return StoredArchive(
            path=target,
            url=self.sign_url(target, expires_at),
            expires_at=expires_at,
            size_bytes=size,
        )

    async def list_archives(self, owner_id: str) -> list[Path]:
        """Owner's archives, newest first."""
        owner_dir = self._owner_dir(owner_id)

        def _list() -> list[Path]:
            if not owner_dir.is_dir():
                return []
            files = [path for path in owner_dir.iterdir() if path.is_file()]
            return sorted(
                files,
                key=lambda path: (path.stat().st_mtime_ns, path.name),
                reverse=True,
            )

        return await asyncio.to_thread(_list)

    async def delete(self, path: Path) -> bool:
        path = Path(path)
        if not path.resolve().is_relative_to(self.root.resolve()):
            msg = f"Refusing to delete outside the archive root: {path}"
            raise ValidationError(msg)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            return False
        logger.debug("Deleted archive %s", path)
        return True

    async def prune(self, owner_id: str, keep: int | None = None) -> int:
        keep = self.retention if keep is None else keep
        archives = await self.list_archives(owner_id)
        removed = 0
        for path in archives[keep:]:
            if await self.delete(path):
                removed += 1
        if removed:
            logger.info("Pruned %d old archives for %s", removed, owner_id)
        return removed

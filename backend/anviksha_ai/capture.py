from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Protocol

from .models import BlobPart


class CaptureError(Exception):
    def __init__(self, message: str, *, status_code: int = 400) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class CapturedBlob:
    data: bytes
    mime_type: str
    file_name: str = "capture"

    def as_part(self) -> BlobPart:
        return BlobPart(data=self.data, mime_type=self.mime_type)


class CaptureDevice(Protocol):
    async def open(self) -> None: ...

    async def capture(self) -> CapturedBlob: ...

    async def close(self) -> None: ...


@asynccontextmanager
async def acquire_capture(device: CaptureDevice) -> AsyncIterator[CaptureDevice]:
    """Hold a capture device for one capture; it is released on every exit path."""
    await device.open()
    try:
        yield device
    finally:
        await device.close()


async def capture_once(device: CaptureDevice) -> CapturedBlob:
    async with acquire_capture(device) as active:
        return await active.capture()


class UploadCapture:
    """Capture device backed by an uploaded file (camera roll, recorder upload)."""

    def __init__(
        self,
        upload: Any,
        *,
        max_bytes: int,
        allowed_prefixes: tuple[str, ...],
        fallback_name: str = "capture",
    ) -> None:
        self._upload = upload
        self._max_bytes = max_bytes
        self._allowed_prefixes = allowed_prefixes
        self._fallback_name = fallback_name

    async def open(self) -> None:
        mime_type = (getattr(self._upload, "content_type", None) or "").lower().strip()
        if not mime_type.startswith(self._allowed_prefixes):
            raise CaptureError(f"Unsupported capture format: {mime_type or 'unknown'}.", status_code=415)

    async def capture(self) -> CapturedBlob:
        raw = await self._upload.read(self._max_bytes + 1)
        if len(raw) > self._max_bytes:
            raise CaptureError(
                f"Capture exceeds {self._max_bytes // (1024 * 1024)}MB limit.",
                status_code=413,
            )
        if not raw:
            raise CaptureError("Captured file is empty.")
        file_name = (getattr(self._upload, "filename", None) or "").strip() or self._fallback_name
        return CapturedBlob(
            data=raw,
            mime_type=(self._upload.content_type or "application/octet-stream").lower().strip(),
            file_name=file_name,
        )

    async def close(self) -> None:
        await self._upload.close()

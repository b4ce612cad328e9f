"""
HTTP client for the remote media store.

The service exposes two endpoints:

- ``POST /api/docdata/image-save``: multipart form with ``hash``, ``chatId``,
  ``mime`` and ``file``
- ``GET /api/docdata/image-get?hash=...&chatId=...``: raw bytes, MIME type in
  the ``Content-Type`` header

Requests carry the opaque session credential in ``X-Session-ID``. Without a
credential the client is disabled and every call is a no-op.
"""

import http.client
import logging
import urllib.error
import urllib.parse
import urllib.request
import uuid
from typing import Callable

from office2md.exceptions import RemoteStorageError

logger = logging.getLogger(__name__)

IMAGE_SAVE_ENDPOINT = "/api/docdata/image-save"
IMAGE_GET_ENDPOINT = "/api/docdata/image-get"
SESSION_HEADER = "X-Session-ID"

MIME_TO_EXTENSION = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
    "image/bmp": "bmp",
    "image/svg+xml": "svg",
}


def mime_to_extension(mime: str | None) -> str:
    return MIME_TO_EXTENSION.get(mime or "", "bin")


def encode_multipart(
    fields: dict[str, str], file_field: str, filename: str, data: bytes, mime: str
) -> tuple[bytes, str]:
    """Encode form fields plus one file as ``multipart/form-data``."""
    boundary = f"----office2md{uuid.uuid4().hex}"
    lines: list[bytes] = []
    for name, value in fields.items():
        lines.append(f"--{boundary}".encode())
        lines.append(f'Content-Disposition: form-data; name="{name}"'.encode())
        lines.append(b"")
        lines.append(value.encode("utf-8"))
    lines.append(f"--{boundary}".encode())
    lines.append(
        f'Content-Disposition: form-data; name="{file_field}"; filename="{filename}"'.encode()
    )
    lines.append(f"Content-Type: {mime}".encode())
    lines.append(b"")
    lines.append(data)
    lines.append(f"--{boundary}--".encode())
    lines.append(b"")
    return b"\r\n".join(lines), f"multipart/form-data; boundary={boundary}"


class RemoteMediaClient:
    """
    Minimal client for the remote media endpoints.

    ``request_func`` defaults to ``urllib.request.urlopen`` and is called as
    ``request_func(request, timeout)``, which lets tests replace the transport.
    """

    def __init__(
        self,
        base_url: str | None,
        session_id: str | None,
        *,
        timeout: float | None = None,
        request_func: Callable | None = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.session_id = session_id
        self.timeout = timeout
        self._request_func = request_func or urllib.request.urlopen

    @property
    def enabled(self) -> bool:
        return bool(self.base_url) and bool(self.session_id)

    def _headers(self) -> dict[str, str]:
        headers = {}
        if self.session_id:
            headers[SESSION_HEADER] = self.session_id
        return headers

    def _open(self, request: urllib.request.Request):
        try:
            return self._request_func(request, self.timeout)
        except urllib.error.HTTPError as exc:
            body = exc.read().decode("utf-8", errors="replace") if exc.fp else ""
            raise RemoteStorageError(
                f"HTTP {exc.code} for {request.full_url}: {body}".strip(),
                status=exc.code,
            ) from exc
        except (urllib.error.URLError, OSError) as exc:
            raise RemoteStorageError(
                f"Request to {request.full_url} failed: {exc}"
            ) from exc

    def upload(self, content_id: str, data: bytes, mime: str, chat_id: str) -> bool:
        """
        Upload bytes for ``(content_id, chat_id)``.

        Returns False when the client is disabled or arguments are missing,
        raises ``RemoteStorageError`` when the service rejects the upload.
        """
        if not self.enabled or not content_id or not data or not chat_id:
            return False
        mime = mime or "application/octet-stream"
        body, content_type = encode_multipart(
            {"hash": content_id, "chatId": chat_id, "mime": mime},
            "file",
            f"{content_id}.{mime_to_extension(mime)}",
            data,
            mime,
        )
        headers = self._headers()
        headers["Content-Type"] = content_type
        request = urllib.request.Request(
            self.base_url + IMAGE_SAVE_ENDPOINT, data=body, headers=headers, method="POST"
        )
        with self._open(request) as response:
            status = response.getcode()
        if status is not None and status >= 400:
            raise RemoteStorageError(
                f"Remote image upload failed with HTTP {status}", status=status
            )
        logger.debug("Uploaded %s for chat %s", content_id, chat_id)
        return True

    def fetch(self, content_id: str, chat_id: str | None) -> tuple[bytes, str] | None:
        """Fetch ``(bytes, mime)`` or None when unavailable; never raises."""
        if not self.enabled or not content_id or not chat_id:
            return None
        query = urllib.parse.urlencode({"hash": content_id, "chatId": chat_id})
        request = urllib.request.Request(
            f"{self.base_url}{IMAGE_GET_ENDPOINT}?{query}",
            headers=self._headers(),
            method="GET",
        )
        try:
            with self._open(request) as response:
                status = response.getcode()
                if status is not None and status >= 400:
                    return None
                data = response.read()
                headers = response.headers
                mime = headers.get("Content-Type") if headers else None
        except RemoteStorageError as exc:
            if exc.status is None:
                logger.warning("Remote image fetch failed: %s", exc)
            return None
        except (OSError, http.client.HTTPException) as exc:
            logger.warning("Remote image fetch of %s failed: %s", content_id, exc)
            return None
        return data, mime or "application/octet-stream"

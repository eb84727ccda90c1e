# blobs.py
# Local-disk blob storage for thumbnails and quiz images, injected through deps.
import os
import secrets
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from werkzeug.utils import secure_filename

MAX_BLOB_BYTES = 5 * 1024 * 1024

# (signature, offset, mime)
_SIGNATURES = (
    (b"\xff\xd8\xff", 0, "image/jpeg"),
    (b"\x89PNG\r\n\x1a\n", 0, "image/png"),
    (b"GIF87a", 0, "image/gif"),
    (b"GIF89a", 0, "image/gif"),
)


def sniff_image(data: bytes) -> Optional[str]:
    """Mime type read from the file's own header bytes; None when it is not a known image."""
    if not data:
        return None
    for sig, offset, mime in _SIGNATURES:
        if data[offset:offset + len(sig)] == sig:
            return mime
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return None


@dataclass(frozen=True)
class PutResult:
    ok: bool
    error: Optional[str] = None
    content_type: Optional[str] = None


class LocalBlobStorage:
    def __init__(self, root: str, url_prefix: str = "/uploads", max_bytes: int = MAX_BLOB_BYTES):
        self.root = Path(root).resolve()
        self.url_prefix = url_prefix.rstrip("/")
        self.max_bytes = max_bytes

    def _full(self, path: str) -> Path:
        full = (self.root / path.lstrip("/")).resolve()
        if self.root != full and self.root not in full.parents:
            raise ValueError(f"path escapes storage root: {path}")
        return full

    @staticmethod
    def new_name(filename: Optional[str]) -> str:
        base = secure_filename(filename or "") or "upload"
        return f"{secrets.token_hex(8)}-{base}"

    def put(self, path: str, data: bytes, content_type: Optional[str] = None) -> PutResult:
        if len(data) > self.max_bytes:
            return PutResult(False, "File is larger than 5MB")
        sniffed = sniff_image(data)
        if sniffed is None:
            return PutResult(False, "Only JPEG, PNG, GIF and WEBP images are allowed")
        if content_type and content_type.startswith("image/") and content_type != sniffed:
            print(f"[blobs] declared {content_type} but content is {sniffed}: {path}")
        full = self._full(path)
        full.parent.mkdir(parents=True, exist_ok=True)
        tmp = full.with_name(full.name + ".part")
        tmp.write_bytes(data)
        os.replace(tmp, full)
        return PutResult(True, content_type=sniffed)

    def delete(self, path: str) -> None:
        """Missing files count as deleted; any other OSError propagates."""
        try:
            self._full(path).unlink()
        except FileNotFoundError:
            pass

    def exists(self, path: str) -> bool:
        return self._full(path).is_file()

    def public_url(self, path: str) -> str:
        return f"{self.url_prefix}/{path.lstrip('/')}"

"""Content-addressed image storage for receipt images and thumbnails"""
import re
import hashlib
import logging
from pathlib import Path
from typing import Optional

from .errors import NotFound, StorageError


logger = logging.getLogger(__name__)

_REFERENCE = re.compile(r"^[0-9a-f]{64}\.[a-z0-9]{1,5}$")


def generate_image_hash(file_bytes: bytes) -> str:
    """Generate SHA-256 hash of an image; identical uploads share one file"""
    return hashlib.sha256(file_bytes).hexdigest()


class LocalImageStorage:
    """Stores image bytes on the local filesystem.

    References are opaque to the rest of the package: documents only ever
    hold the string returned by ``store``.
    """

    def __init__(self, root: str, base_url: Optional[str] = None):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/") if base_url else None

    def _path(self, reference: str) -> Path:
        if not _REFERENCE.match(reference):
            raise NotFound(f"Unknown image reference: {reference}")
        return self.root / reference

    def store(self, data: bytes, suffix: str = "jpg") -> str:
        reference = f"{generate_image_hash(data)}.{suffix.lstrip('.').lower()}"
        path = self._path(reference)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            if not path.exists():
                path.write_bytes(data)
        except OSError as e:
            raise StorageError(f"Failed to store image: {e}")
        logger.info("Stored image %s (%d bytes)", reference, len(data))
        return reference

    def exists(self, reference: str) -> bool:
        try:
            return self._path(reference).is_file()
        except NotFound:
            return False

    def read(self, reference: str) -> bytes:
        path = self._path(reference)
        if not path.is_file():
            raise NotFound(f"Unknown image reference: {reference}")
        try:
            return path.read_bytes()
        except OSError as e:
            raise StorageError(f"Failed to read image: {e}")

    def resolve(self, reference: str) -> str:
        """Return a URL the client can load the image from"""
        path = self._path(reference)
        if not path.is_file():
            raise NotFound(f"Unknown image reference: {reference}")
        if self.base_url:
            return f"{self.base_url}/{reference}"
        return path.resolve().as_uri()

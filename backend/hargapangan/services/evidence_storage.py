"""Evidence image storage for market price reports and override requests"""
import hashlib
import io
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import imagehash
from PIL import Image, UnidentifiedImageError

from hargapangan.core.config import settings
from hargapangan.core.errors import ValidationFailed

logger = logging.getLogger(__name__)

ALLOWED_FORMATS = {"JPEG": "jpg", "PNG": "png", "WEBP": "webp", "GIF": "gif"}


@dataclass
class StoredImage:
    storage_key: str
    sha256: str
    phash: str
    width: int
    height: int
    bytes: int
    mime_type: str


class EvidenceStorage:
    """
    Content-addressed image store on the local filesystem.

    Files land under {root}/{year}/{month}/{sha256[:2]}/{sha256}.{ext}; the
    same bytes uploaded twice map to the same file.
    """

    def __init__(self, root: Optional[Path] = None, max_bytes: Optional[int] = None):
        self.root = Path(root) if root else Path(settings.DATA_DIR) / "evidence"
        self.max_bytes = max_bytes or settings.MAX_UPLOAD_BYTES

    def _inspect(self, data: bytes):
        try:
            with Image.open(io.BytesIO(data)) as probe:
                probe.verify()
            # verify() leaves the image unusable, so reopen for size and hashing
            image = Image.open(io.BytesIO(data))
        except (UnidentifiedImageError, OSError, SyntaxError) as e:
            raise ValidationFailed(f"Uploaded file is not a valid image: {e}")

        if image.format not in ALLOWED_FORMATS:
            raise ValidationFailed(f"Unsupported image format: {image.format}")
        return image

    def save(self, data: bytes) -> StoredImage:
        if not data:
            raise ValidationFailed("Uploaded image is empty")
        if len(data) > self.max_bytes:
            raise ValidationFailed(f"Image too large. Max size is {self.max_bytes} bytes.")

        image = self._inspect(data)
        sha256 = hashlib.sha256(data).hexdigest()
        extension = ALLOWED_FORMATS[image.format]
        phash = str(imagehash.phash(image))

        now = datetime.now(timezone.utc)
        subdir = f"{now.year}/{now.month:02d}/{sha256[:2]}"
        storage_dir = self.root / subdir
        storage_dir.mkdir(parents=True, exist_ok=True)

        filename = f"{sha256}.{extension}"
        path = storage_dir / filename
        if not path.exists():
            path.write_bytes(data)

        logger.info("Stored evidence image %s (%dx%d, %d bytes)", filename, image.width, image.height, len(data))
        return StoredImage(
            storage_key=f"{subdir}/{filename}",
            sha256=sha256,
            phash=phash,
            width=image.width,
            height=image.height,
            bytes=len(data),
            mime_type=Image.MIME.get(image.format, "application/octet-stream"),
        )

    def path_for(self, storage_key: str) -> Path:
        return self.root / storage_key

    def delete(self, storage_key: Optional[str]) -> bool:
        if not storage_key:
            return False
        path = self.path_for(storage_key)
        try:
            path.unlink()
        except FileNotFoundError:
            logger.warning("Evidence file already gone: %s", storage_key)
            return False
        return True


def phash_distance(a: str, b: str) -> int:
    return imagehash.hex_to_hash(a) - imagehash.hex_to_hash(b)

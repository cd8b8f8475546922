from __future__ import annotations

import base64
import io
import logging
import mimetypes
import secrets
import time
from pathlib import Path
from typing import Optional

import cloudinary
import cloudinary.uploader
from cloudinary.exceptions import Error as CloudinaryError
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from errors import StorageError, ValidationError

log = logging.getLogger(__name__)

MAX_IMAGE_BYTES = 5 * 1024 * 1024


def read_upload(upload: FileStorage, max_bytes: int = MAX_IMAGE_BYTES) -> bytes:
    if not (upload.mimetype or "").startswith("image/"):
        raise ValidationError("Only image files are allowed!")
    data = upload.read(max_bytes + 1)
    if len(data) > max_bytes:
        raise ValidationError(f"Image must be {max_bytes // (1024 * 1024)} MB or smaller")
    if not data:
        raise ValidationError("Uploaded image is empty")
    return data


def data_uri(data: bytes, mimetype: str) -> str:
    return f"data:{mimetype};base64,{base64.b64encode(data).decode('ascii')}"


class InlineImageStorage:
    """Keeps images inside the post itself as data URIs."""

    name = "inline"

    def __init__(self, max_bytes: int = MAX_IMAGE_BYTES) -> None:
        self.max_bytes = max_bytes

    def save(self, upload: FileStorage) -> str:
        data = read_upload(upload, self.max_bytes)
        return self.store_bytes(data, upload.filename or "", upload.mimetype)

    def store_bytes(self, data: bytes, filename: str, mimetype: str) -> str:
        return data_uri(data, mimetype)

    def owns(self, ref: Optional[str]) -> bool:
        return False

    def discard(self, ref: Optional[str]) -> bool:
        return False


class LocalImageStorage(InlineImageStorage):
    """Files under ``upload_dir``, referenced as ``/uploads/<name>``."""

    name = "local"
    url_prefix = "/uploads/"

    def __init__(self, upload_dir, max_bytes: int = MAX_IMAGE_BYTES) -> None:
        super().__init__(max_bytes)
        self.upload_dir = Path(upload_dir)

    def store_bytes(self, data: bytes, filename: str, mimetype: str) -> str:
        ext = Path(secure_filename(filename)).suffix.lower()
        if not ext:
            ext = mimetypes.guess_extension(mimetype) or ""
        name = f"blog-{int(time.time() * 1000)}-{secrets.randbelow(10 ** 9)}{ext}"
        try:
            self.upload_dir.mkdir(parents=True, exist_ok=True)
            (self.upload_dir / name).write_bytes(data)
        except OSError as exc:
            log.error("Could not store upload %s: %s", name, exc)
            raise StorageError("Could not store image") from exc
        log.info("Stored upload %s", name)
        return self.url_prefix + name

    def path_for(self, ref: Optional[str]) -> Optional[Path]:
        if not ref or not ref.startswith(self.url_prefix):
            return None
        name = ref[len(self.url_prefix):]
        if not name or name != secure_filename(name):
            return None
        return self.upload_dir / name

    def owns(self, ref: Optional[str]) -> bool:
        return self.path_for(ref) is not None

    def discard(self, ref: Optional[str]) -> bool:
        path = self.path_for(ref)
        if path is None:
            return False
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            log.warning("Could not delete image %s: %s", path, exc)
            return False
        log.info("Deleted image %s", path)
        return True


class CloudinaryImageStorage(InlineImageStorage):
    name = "cloudinary"

    def __init__(
        self,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        max_bytes: int = MAX_IMAGE_BYTES,
        folder: str = "blog",
    ) -> None:
        super().__init__(max_bytes)
        self.folder = folder
        cloudinary.config(
            cloud_name=cloud_name,
            api_key=api_key,
            api_secret=api_secret,
            secure=True,
        )

    def store_bytes(self, data: bytes, filename: str, mimetype: str) -> str:
        try:
            result = cloudinary.uploader.upload(
                io.BytesIO(data), folder=self.folder, resource_type="image"
            )
            return result["secure_url"]
        except (CloudinaryError, OSError, KeyError) as exc:
            log.warning("Cloudinary upload failed, storing image inline: %s", exc)
            return super().store_bytes(data, filename, mimetype)


def build_image_storage(settings) -> InlineImageStorage:
    backend = str(settings.get("IMAGE_BACKEND", "local")).lower()
    max_bytes = settings.get("MAX_IMAGE_BYTES", MAX_IMAGE_BYTES)
    if backend == "local":
        return LocalImageStorage(settings["UPLOAD_DIR"], max_bytes)
    if backend == "cloudinary":
        credentials = (
            settings.get("CLOUDINARY_CLOUD_NAME"),
            settings.get("CLOUDINARY_API_KEY"),
            settings.get("CLOUDINARY_API_SECRET"),
        )
        if all(credentials):
            return CloudinaryImageStorage(*credentials, max_bytes=max_bytes)
        log.warning("Cloudinary credentials are incomplete, storing images inline")
        return InlineImageStorage(max_bytes)
    if backend == "inline":
        return InlineImageStorage(max_bytes)
    raise ValueError(f"Unknown image backend: {backend}")

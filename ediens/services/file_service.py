"""
Ediens Backend — Image Upload Service
=======================================

What:  Validates, processes and stores food-post images and avatars.
Why:   Phones upload multi-megabyte photos; the apps only ever display an
       800px image and a 300px thumbnail, so we store those and drop the
       original.
How:
    1. Extension check (.jpg .jpeg .png .webp)
    2. Size check against settings.max_file_size (5MB default)
    3. Content check: python-magic reads the magic bytes; where libmagic
       is not installed, Pillow identifies the format instead
    4. Raw bytes are written to a temp file (aiofiles)
    5. Pillow renders the variants in Starlette's threadpool:
         post image  fit inside 800×800, no enlargement, JPEG q85 progressive
         thumbnail   300×300 center crop, JPEG q80
         avatar      200×200 and 100×100 center crops
    6. Variants are written under a date directory with UUID names
    7. The temp file is always removed

Directory Structure:
    uploads/
    ├── tmp/                         raw uploads being processed
    ├── images/2026/10/16/<uuid>.jpg
    ├── thumbnails/2026/10/16/<uuid>.jpg
    └── avatars/2026/10/16/<uuid>.jpg, <uuid>-small.jpg
"""

import logging
import os
import uuid
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import List, Optional, Tuple

import aiofiles
from PIL import Image, ImageOps, UnidentifiedImageError
from starlette.concurrency import run_in_threadpool

from ediens.config import settings
from ediens.exceptions import FileStorageError, NotFoundError, ValidationError
from ediens.models.common import utcnow

logger = logging.getLogger(__name__)

ALLOWED_MIME_TYPES = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
}
ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp"}

# Decompression-bomb guard for tiny files that declare huge canvases
MAX_PIXELS = 40_000_000


@dataclass(frozen=True)
class Upload:
    filename: str
    content: bytes
    content_length: Optional[int] = None


def _render_jpeg(source: Path, size: int, crop: bool, quality: int) -> bytes:
    """Open `source`, resize or center-crop to `size`, encode as JPEG."""
    with Image.open(source) as opened:
        if opened.width * opened.height > MAX_PIXELS:
            raise ValidationError(message="Image dimensions are too large", field="file")
        img = ImageOps.exif_transpose(opened)
        if img.mode != "RGB":
            img = img.convert("RGB")
        if crop:
            img = ImageOps.fit(img, (size, size), Image.Resampling.LANCZOS)
        else:
            # thumbnail() only ever shrinks
            img.thumbnail((size, size), Image.Resampling.LANCZOS)
        buffer = BytesIO()
        img.save(buffer, "JPEG", quality=quality, progressive=True, optimize=True)
        return buffer.getvalue()


def _pillow_mime_type(content: bytes) -> str:
    try:
        with Image.open(BytesIO(content)) as img:
            return Image.MIME.get(img.format or "", "application/octet-stream")
    except (UnidentifiedImageError, OSError):
        return "application/octet-stream"


class FileService:
    """Upload validation, image processing and storage lifecycle."""

    def __init__(self, storage_root: Optional[str] = None):
        self.storage_root = Path(storage_root or settings.storage_root).resolve()
        self.storage_root.mkdir(parents=True, exist_ok=True)
        logger.info("FileService initialized with storage_root=%s", self.storage_root)

    # ══════════════════════════════════════════════════════════════════════
    # Validation
    # ══════════════════════════════════════════════════════════════════════

    def validate_extension(self, filename: str) -> str:
        ext = Path(filename or "").suffix.lower()
        if ext not in ALLOWED_EXTENSIONS:
            raise ValidationError(
                message=(
                    f"File type '{ext}' is not supported. "
                    f"Allowed types: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
                ),
                field="file",
                context={"extension": ext, "allowed": sorted(ALLOWED_EXTENSIONS)},
            )
        return ext

    def validate_size(self, content_length: Optional[int], actual_size: int) -> None:
        """Checks the declared Content-Length first, then the bytes received."""
        max_mb = settings.max_file_size / (1024 * 1024)

        if content_length and content_length > settings.max_file_size:
            raise ValidationError(
                message=f"File size exceeds maximum of {max_mb:.0f}MB. Please upload a smaller image.",
                field="file",
                context={"max_size_mb": max_mb, "reported_size": content_length},
            )
        if actual_size == 0:
            raise ValidationError(message="Uploaded file is empty", field="file")
        if actual_size > settings.max_file_size:
            raise ValidationError(
                message=f"File size ({actual_size / (1024 * 1024):.1f}MB) exceeds maximum of {max_mb:.0f}MB.",
                field="file",
                context={"max_size_mb": max_mb, "actual_size": actual_size},
            )

    def validate_mime_type(self, file_content: bytes) -> str:
        """Detect the real content type from the file's bytes."""
        try:
            import magic
            mime_type = magic.from_buffer(file_content, mime=True)
        except ImportError:
            # python-magic needs the libmagic system library
            logger.warning("libmagic not available; identifying image format with Pillow")
            mime_type = _pillow_mime_type(file_content)
        except Exception as e:
            logger.error("MIME type detection failed: %s", str(e))
            raise FileStorageError(
                message="Could not verify file type. Please try again.",
                context={"error": str(e)},
            )

        if mime_type not in ALLOWED_MIME_TYPES:
            raise ValidationError(
                message=(
                    f"File content type '{mime_type}' is not supported. "
                    f"Only JPEG, PNG and WebP images are allowed."
                ),
                field="file",
                context={"detected_mime": mime_type, "allowed": sorted(set(ALLOWED_MIME_TYPES))},
            )
        return mime_type

    def validate_upload(self, upload: Upload) -> str:
        """Cheapest check first: extension, size, then content sniffing."""
        ext = self.validate_extension(upload.filename)
        self.validate_size(upload.content_length, len(upload.content))
        self.validate_mime_type(upload.content)
        return ext

    def validate_batch(self, uploads: List[Upload]) -> None:
        if not uploads:
            raise ValidationError(message="No files uploaded", field="files")
        if len(uploads) > settings.max_files_per_upload:
            raise ValidationError(
                message=f"Too many files. Maximum is {settings.max_files_per_upload} per upload.",
                field="files",
            )

    # ══════════════════════════════════════════════════════════════════════
    # Storage
    # ══════════════════════════════════════════════════════════════════════

    def _generate_storage_path(self, kind: str, name: str) -> Tuple[Path, str]:
        """<kind>/YYYY/MM/DD/<name>; returns (absolute, relative)."""
        relative_path = f"{kind}/{utcnow().strftime('%Y/%m/%d')}/{name}"
        return self.storage_root / relative_path, relative_path

    async def _write(self, absolute_path: Path, content: bytes) -> None:
        try:
            absolute_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(absolute_path, "wb") as f:
                await f.write(content)
        except OSError as e:
            logger.error("Failed to store file at %s: %s", absolute_path, str(e))
            raise FileStorageError(
                message="Failed to save uploaded image. Please try again.",
                context={"os_error": str(e)},
            )

    async def _store_temp(self, content: bytes, extension: str) -> Path:
        temp_path = self.storage_root / "tmp" / f"{uuid.uuid4()}{extension}"
        await self._write(temp_path, content)
        return temp_path

    async def _render(self, source: Path, size: int, crop: bool, quality: int) -> bytes:
        try:
            return await run_in_threadpool(_render_jpeg, source, size, crop, quality)
        except ValidationError:
            raise
        except (UnidentifiedImageError, OSError) as e:
            raise ValidationError(
                message="The uploaded file could not be read as an image",
                field="file",
                context={"error": str(e)},
            )

    async def cleanup_file(self, file_path: str) -> None:
        """Best-effort delete; failures are logged, never raised."""
        try:
            path = Path(file_path)
            if path.exists():
                os.remove(path)
                logger.debug("Cleaned up file: %s", path.name)
        except OSError as e:
            logger.warning("Failed to clean up file %s: %s", file_path, str(e))

    # ══════════════════════════════════════════════════════════════════════
    # Pipelines
    # ══════════════════════════════════════════════════════════════════════

    async def process_post_image(self, upload: Upload) -> dict:
        """Store the main image and its thumbnail; returns their relative paths."""
        ext = self.validate_upload(upload)
        temp_path = await self._store_temp(upload.content, ext)
        try:
            main = await self._render(temp_path, settings.image_max_dimension, False, settings.image_quality)
            thumb = await self._render(temp_path, settings.thumbnail_size, True, settings.thumbnail_quality)

            name = f"{uuid.uuid4()}.jpg"
            main_abs, main_rel = self._generate_storage_path("images", name)
            thumb_abs, thumb_rel = self._generate_storage_path("thumbnails", name)
            await self._write(main_abs, main)
            await self._write(thumb_abs, thumb)
        finally:
            await self.cleanup_file(str(temp_path))

        logger.info("Post image stored: %s (%d bytes in, %d out)", main_rel, len(upload.content), len(main))
        return {"url": main_rel, "thumbnail": thumb_rel}

    async def process_post_images(self, uploads: List[Upload]) -> List[dict]:
        self.validate_batch(uploads)
        return [await self.process_post_image(upload) for upload in uploads]

    async def process_avatar(self, upload: Upload) -> dict:
        ext = self.validate_upload(upload)
        temp_path = await self._store_temp(upload.content, ext)
        try:
            large = await self._render(temp_path, settings.avatar_size, True, settings.image_quality)
            small = await self._render(temp_path, settings.avatar_small_size, True, settings.image_quality)

            stem = str(uuid.uuid4())
            large_abs, large_rel = self._generate_storage_path("avatars", f"{stem}.jpg")
            small_abs, small_rel = self._generate_storage_path("avatars", f"{stem}-small.jpg")
            await self._write(large_abs, large)
            await self._write(small_abs, small)
        finally:
            await self.cleanup_file(str(temp_path))

        return {"url": large_rel, "small": small_rel}

    # ══════════════════════════════════════════════════════════════════════
    # Serving
    # ══════════════════════════════════════════════════════════════════════

    def resolve_stored_path(self, relative_path: str) -> Path:
        """
        Map a stored relative path back to disk.

        Raises:
            ValidationError: the path escapes the storage root
            NotFoundError: nothing stored there
        """
        full_path = (self.storage_root / relative_path).resolve()
        if not full_path.is_relative_to(self.storage_root):
            raise ValidationError(message="Invalid file path")
        # Raw uploads in tmp/ are never served
        if full_path.relative_to(self.storage_root).parts[:1] == ("tmp",):
            raise ValidationError(message="Invalid file path")
        if not full_path.is_file():
            raise NotFoundError(resource="file", resource_id=relative_path)
        return full_path


file_service = FileService()

"""
Upload validation: magic-byte sniffing, suspicious-content detection, size and
type allow-lists, plus server-side JPEG recompression for oversized uploads.
"""
from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field

from PIL import Image, ImageOps, UnidentifiedImageError

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 50 * 1024 * 1024
COMPRESSION_THRESHOLD_BYTES = 4 * 1024 * 1024
ANALYSIS_ALLOWED_TYPES = ("jpg", "png", "webp")

MIME_TYPES = {
    "jpg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
    "gif": "image/gif",
    "bmp": "image/bmp",
    "tiff": "image/tiff",
}
EXTENSIONS = {
    "jpg": ("jpg", "jpeg"),
    "png": ("png",),
    "webp": ("webp",),
    "gif": ("gif",),
    "bmp": ("bmp",),
    "tiff": ("tif", "tiff"),
}

_JPEG_MARKERS = (0xE0, 0xE1, 0xE2, 0xE3, 0xE8, 0xDB)
_SUSPICIOUS_SIGNATURES = (
    (b"MZ", "exécutable Windows"),
    (b"\x7fELF", "exécutable Linux"),
    (b"%PDF", "document PDF"),
    (b"PK\x03\x04", "archive ZIP"),
    (b"Rar!", "archive RAR"),
    (b"#!", "script"),
    (b"<html", "HTML"),
    (b"<?xml", "XML"),
)


@dataclass
class FileValidationResult:
    is_valid: bool
    detected_type: str | None = None
    mime_type: str | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "isValid": self.is_valid,
            "detectedType": self.detected_type,
            "mimeType": self.mime_type,
            "errors": self.errors,
            "warnings": self.warnings,
        }


def detect_image_type(data: bytes) -> str | None:
    if len(data) >= 4 and data[:3] == b"\xff\xd8\xff" and data[3] in _JPEG_MARKERS:
        return "jpg"
    if data[:8] == b"\x89PNG\r\n\x1a\n":
        return "png"
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "webp"
    if data[:6] in (b"GIF87a", b"GIF89a"):
        return "gif"
    if data[:2] == b"BM":
        return "bmp"
    if data[:4] in (b"II*\x00", b"MM\x00*"):
        return "tiff"
    return None


def detect_suspicious_content(data: bytes) -> str | None:
    head = data[:16]
    lowered = head.lower()
    for signature, label in _SUSPICIOUS_SIGNATURES:
        sample = lowered if signature.startswith(b"<") else head
        if sample.startswith(signature):
            return label
    return None


def _extension(filename: str | None) -> str:
    if not filename or "." not in filename:
        return ""
    return filename.rsplit(".", 1)[1].lower()


def validate_file_signature(data: bytes, filename: str | None = None) -> FileValidationResult:
    if len(data) < 8:
        return FileValidationResult(is_valid=False, errors=["Fichier trop petit ou corrompu"])

    suspicious = detect_suspicious_content(data)
    if suspicious:
        return FileValidationResult(
            is_valid=False,
            errors=[f"Contenu suspect détecté ({suspicious})"],
        )

    detected = detect_image_type(data)
    if detected is None:
        return FileValidationResult(is_valid=False, errors=["Format de fichier non reconnu comme image"])

    result = FileValidationResult(is_valid=True, detected_type=detected, mime_type=MIME_TYPES[detected])
    ext = _extension(filename)
    if ext and ext not in EXTENSIONS[detected]:
        result.warnings.append(f"Extension .{ext} incompatible avec le type détecté ({detected})")
    if detected == "jpg" and not data.rstrip(b"\x00").endswith(b"\xff\xd9"):
        result.warnings.append("Fichier JPEG potentiellement tronqué (marqueur de fin absent)")
    if detected == "png" and data[12:16] != b"IHDR":
        result.warnings.append("Structure PNG inhabituelle (IHDR manquant)")
    return result


def validate_upload(
    data: bytes,
    filename: str | None = None,
    *,
    max_size: int = MAX_UPLOAD_BYTES,
    allowed_types: tuple[str, ...] = ANALYSIS_ALLOWED_TYPES,
    strict: bool = False,
) -> FileValidationResult:
    if len(data) > max_size:
        return FileValidationResult(
            is_valid=False,
            errors=[f"Fichier trop volumineux (max {max_size // (1024 * 1024)} Mo)"],
        )
    result = validate_file_signature(data, filename)
    if not result.is_valid:
        return result
    if result.detected_type not in allowed_types:
        result.is_valid = False
        result.errors.append(
            f"Type de fichier non autorisé ({result.detected_type}). Types acceptés: {', '.join(allowed_types)}"
        )
    if strict and result.warnings:
        result.is_valid = False
        result.errors.extend(result.warnings)
    return result


def image_dimensions(data: bytes) -> tuple[int, int] | None:
    try:
        with Image.open(io.BytesIO(data)) as img:
            return img.size
    except (UnidentifiedImageError, OSError) as e:
        logger.debug("Unable to read image dimensions: %s", e)
        return None


def compress_image(
    data: bytes,
    *,
    target_bytes: int = COMPRESSION_THRESHOLD_BYTES,
    start_quality: int = 80,
    min_quality: int = 40,
    start_width: int = 1200,
    min_width: int = 640,
) -> bytes:
    """
    Re-encode as JPEG, stepping quality and width down until the result fits
    `target_bytes` or the floor is reached. Returns the smallest attempt.
    """
    with Image.open(io.BytesIO(data)) as img:
        img = ImageOps.exif_transpose(img)
        if img.mode not in {"RGB", "L"}:
            img = img.convert("RGB")
        quality = start_quality
        width = start_width
        best = data
        while True:
            candidate = img.copy()
            candidate.thumbnail((width, width * 4))
            buffer = io.BytesIO()
            candidate.save(buffer, format="JPEG", quality=quality, optimize=True)
            out = buffer.getvalue()
            if len(out) < len(best):
                best = out
            if len(out) <= target_bytes or (quality <= min_quality and width <= min_width):
                return best
            quality = max(min_quality, quality - 10)
            width = max(min_width, int(width * 0.8))

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

from PIL import UnidentifiedImageError
from sqlalchemy.exc import SQLAlchemyError

from app.judgemyjpeg.audit import record_event
from app.judgemyjpeg.constants import (
    DEFAULT_LANGUAGE,
    DEFAULT_TONE,
    TOP_PHOTO_SCORE,
    VALID_LANGUAGES,
    VALID_TONES,
)
from app.judgemyjpeg.modules.collections.service import CollectionError, add_to_top_photos
from app.judgemyjpeg.modules.photos.analysis import AnalysisCache, PhotoAnalyzer, normalize_analysis
from app.judgemyjpeg.modules.photos.moderation import ModerationResult, moderate_image
from app.judgemyjpeg.modules.photos.validation import (
    COMPRESSION_THRESHOLD_BYTES,
    compress_image,
    image_dimensions,
    validate_upload,
)
from app.judgemyjpeg.modules.subscription.service import (
    Entitlement,
    EntitlementError,
    MSG_LIMIT_REACHED,
    consume_analysis,
    get_user_subscription,
)
from app.judgemyjpeg.storage import Storage, StorageError, photo_storage_key
from app.judgemyjpeg.utils import isoformat, load_metadata, utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.judgemyjpeg.models import User
    from app.judgemyjpeg.modules.photos.models import Favorite, Photo

logger = logging.getLogger(__name__)


class UploadRejected(ValueError):
    def __init__(self, message: str, errors: list[str], warnings: list[str] | None = None):
        super().__init__(message)
        self.errors = errors
        self.warnings = warnings or []


class ContentFlagged(ValueError):
    def __init__(self, moderation: ModerationResult):
        super().__init__(moderation.reason or "Contenu non autorisé")
        self.moderation = moderation


class QuotaExceeded(EntitlementError):
    def __init__(self, entitlement: Entitlement):
        super().__init__(MSG_LIMIT_REACHED)
        self.entitlement = entitlement


@dataclass(frozen=True)
class PreparedUpload:
    data: bytes
    filename: str
    content_type: str
    sha256: str
    width: int | None
    height: int | None
    original_size: int
    compressed: bool


@dataclass(frozen=True)
class AnalysisOutcome:
    photo: "Photo"
    analysis: dict[str, Any]
    cache_hit: bool
    image_hash: str
    source: str
    is_top_photo: bool


def normalize_tone(value: str | None) -> str:
    value = (value or "").strip().lower()
    return value if value in VALID_TONES else DEFAULT_TONE


def normalize_language(value: str | None) -> str:
    value = (value or "").strip().lower()
    return value if value in VALID_LANGUAGES else DEFAULT_LANGUAGE


def prepare_upload(data: bytes, filename: str, exif: dict[str, Any] | None = None) -> PreparedUpload:
    """Validate, moderate and (when oversized) recompress an uploaded image."""
    result = validate_upload(data, filename)
    if not result.is_valid:
        raise UploadRejected("Fichier invalide", result.errors, result.warnings)
    if result.warnings:
        logger.info("Upload accepted with warnings filename=%s warnings=%s", filename, result.warnings)

    dims = image_dimensions(data)
    if dims is None:
        raise UploadRejected("Fichier invalide", ["Image illisible ou corrompue"], result.warnings)
    width, height = dims
    moderation = moderate_image(filename, exif, width, height)
    if moderation.flagged:
        raise ContentFlagged(moderation)

    content_type = result.mime_type or "application/octet-stream"
    final = data
    compressed = False
    if len(data) > COMPRESSION_THRESHOLD_BYTES:
        try:
            final = compress_image(data)
            compressed = True
            content_type = "image/jpeg"
            dims = image_dimensions(final)
            width, height = dims if dims else (width, height)
            logger.info("Compressed upload %s -> %s bytes", len(data), len(final))
        except (UnidentifiedImageError, OSError, ValueError) as e:
            logger.warning("Compression failed, keeping original upload: %s", e)
            final = data

    if compressed and not filename.lower().endswith((".jpg", ".jpeg")):
        filename = filename.rsplit(".", 1)[0] + ".jpg"
    return PreparedUpload(
        data=final,
        filename=filename,
        content_type=content_type,
        sha256=hashlib.sha256(final).hexdigest(),
        width=width,
        height=height,
        original_size=len(data),
        compressed=compressed,
    )


def run_analysis(
    s: "Session",
    user: "User",
    upload: PreparedUpload,
    *,
    tone: str,
    language: str,
    exif: dict[str, Any] | None,
    analyzer: PhotoAnalyzer,
    cache: AnalysisCache,
    storage: Storage,
    free_limit: int,
    now: datetime | None = None,
) -> AnalysisOutcome:
    """
    Entitlement check, cached/remote analysis, storage, quota consumption and
    Photo creation. The caller commits.
    """
    from app.judgemyjpeg.modules.photos.models import Photo

    now = now or utcnow()
    entitlement = get_user_subscription(s, user, now, free_limit=free_limit)
    if not entitlement.can_analyze:
        raise QuotaExceeded(entitlement)

    cache_key = cache.key(upload.sha256, tone, language)
    analysis = cache.get(cache_key)
    cache_hit = analysis is not None
    if analysis is None:
        analysis = normalize_analysis(analyzer.analyze(upload.data, tone=tone, language=language, exif=exif))
        cache.set(cache_key, analysis)

    storage_key = photo_storage_key(user.id, upload.sha256, upload.filename, now)
    source = consume_analysis(s, user, now, free_limit=free_limit)

    score = int(analysis["score"])
    is_top = score >= TOP_PHOTO_SCORE
    photo = Photo(
        user_id=user.id,
        storage_key=storage_key,
        filename=upload.filename[:255],
        content_type=upload.content_type,
        sha256=upload.sha256,
        size_bytes=len(upload.data),
        width=upload.width,
        height=upload.height,
        score=score,
        potential_score=analysis.get("potentialScore"),
        tone=tone,
        language=language,
        analysis_json=json.dumps(analysis, ensure_ascii=False),
        is_top_photo=is_top,
        created_at=now,
    )
    s.add(photo)
    s.flush()
    # rows are flushed but uncommitted: a failed write here is rolled back by the caller
    storage.put_bytes(storage_key, upload.data, content_type=upload.content_type)

    if is_top:
        try:
            with s.begin_nested():
                add_to_top_photos(s, user, photo)
        except (CollectionError, SQLAlchemyError) as e:
            logger.warning("Could not file photo %s into top photos: %s", photo.id, e)

    record_event(
        s,
        actor=user,
        action="photo_analysis",
        entity_type="Photo",
        entity_id=str(photo.id),
        metadata={
            "score": score,
            "tone": tone,
            "language": language,
            "cache_hit": cache_hit,
            "source": source,
            "compressed": upload.compressed,
            "size": len(upload.data),
        },
    )
    return AnalysisOutcome(
        photo=photo,
        analysis=analysis,
        cache_hit=cache_hit,
        image_hash=upload.sha256,
        source=source,
        is_top_photo=is_top,
    )


def photo_to_dict(photo: "Photo", *, viewer_id: int | None = None, include_analysis: bool = True) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": photo.id,
        "filename": photo.filename,
        "url": f"/api/photos/{photo.id}/image",
        "contentType": photo.content_type,
        "size": photo.size_bytes,
        "width": photo.width,
        "height": photo.height,
        "score": photo.score,
        "potentialScore": photo.potential_score,
        "tone": photo.tone,
        "language": photo.language,
        "isTopPhoto": photo.is_top_photo,
        "favoriteCount": len(photo.favorites),
        "isFavorite": viewer_id is not None and any(f.user_id == viewer_id for f in photo.favorites),
        "createdAt": isoformat(photo.created_at),
    }
    if include_analysis:
        data["analysis"] = load_metadata(photo.analysis_json)
    return data


def list_photos(s: "Session", user: "User") -> list["Photo"]:
    from app.judgemyjpeg.modules.photos.models import Photo

    return (
        s.query(Photo)
        .filter(Photo.user_id == user.id)
        .order_by(Photo.created_at.desc(), Photo.id.desc())
        .all()
    )


def top_photos(s: "Session", user: "User", limit: int = 50) -> list["Photo"]:
    """Photos scoring >= 85, best first; backfills the is_top_photo flag."""
    from app.judgemyjpeg.modules.photos.models import Photo

    photos = (
        s.query(Photo)
        .filter(Photo.user_id == user.id, Photo.score >= TOP_PHOTO_SCORE)
        .order_by(Photo.score.desc(), Photo.created_at.desc())
        .limit(limit)
        .all()
    )
    for photo in photos:
        if not photo.is_top_photo:
            photo.is_top_photo = True
    return photos


def delete_photo(s: "Session", photo: "Photo", user: "User", storage: Storage) -> None:
    from app.judgemyjpeg.modules.collections.models import CollectionItem

    s.query(CollectionItem).filter(CollectionItem.photo_id == photo.id).delete(synchronize_session=False)
    record_event(
        s,
        actor=user,
        action="photo_delete",
        entity_type="Photo",
        entity_id=str(photo.id),
        metadata={"filename": photo.filename, "score": photo.score},
    )
    storage_key = photo.storage_key
    s.delete(photo)
    s.flush()
    try:
        storage.delete(storage_key)
    except StorageError as e:
        logger.warning("Photo %s deleted but stored object remains (%s): %s", photo.id, storage_key, e)


def add_favorite(s: "Session", user: "User", photo: "Photo") -> tuple["Favorite", bool]:
    """Returns (favorite, created)."""
    from app.judgemyjpeg.modules.photos.models import Favorite

    existing = (
        s.query(Favorite).filter(Favorite.user_id == user.id, Favorite.photo_id == photo.id).one_or_none()
    )
    if existing:
        return existing, False
    favorite = Favorite(user_id=user.id, photo_id=photo.id, created_at=utcnow())
    photo.favorites.append(favorite)
    s.flush()
    return favorite, True


def remove_favorite(s: "Session", user: "User", photo: "Photo") -> bool:
    for favorite in list(photo.favorites):
        if favorite.user_id == user.id:
            photo.favorites.remove(favorite)
            s.flush()
            return True
    return False

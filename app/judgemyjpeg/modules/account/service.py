from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import func

from app.judgemyjpeg.constants import (
    AVERAGE_PHOTO_SCORE,
    GOOD_PHOTO_SCORE,
    TOP_PHOTO_SCORE,
    VALID_LANGUAGES,
    VALID_TONES,
)
from app.judgemyjpeg.models import AuditEvent, BannedIP, VerificationToken
from app.judgemyjpeg.modules.collections.models import Collection, CollectionItem
from app.judgemyjpeg.modules.collections.service import collection_to_dict
from app.judgemyjpeg.modules.feedback.models import Feedback
from app.judgemyjpeg.modules.feedback.service import feedback_to_dict
from app.judgemyjpeg.modules.photos.models import Favorite, Photo
from app.judgemyjpeg.modules.photos.service import photo_to_dict
from app.judgemyjpeg.modules.reports.models import Report
from app.judgemyjpeg.modules.reports.service import report_to_dict
from app.judgemyjpeg.storage import Storage
from app.judgemyjpeg.utils import isoformat, utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.judgemyjpeg.models import User
    from app.judgemyjpeg.modules.subscription.service import Entitlement

logger = logging.getLogger(__name__)

DELETE_CONFIRMATION = "SUPPRIMER"
MAX_DISPLAY_NAME_LENGTH = 100
RECENT_PHOTOS = 6
TOP_COLLECTIONS = 5


def validate_preferences(payload: dict) -> list[str]:
    errors = []
    name = payload.get("displayName")
    if not isinstance(name, str) or not name.strip():
        errors.append("Nom d'affichage requis")
    elif len(name.strip()) > MAX_DISPLAY_NAME_LENGTH:
        errors.append(f"Nom d'affichage trop long (max {MAX_DISPLAY_NAME_LENGTH} caractères)")
    language = payload.get("preferredLanguage")
    if language is not None and language not in VALID_LANGUAGES:
        errors.append("Langue non supportée")
    tone = payload.get("preferredTone")
    if tone is not None and tone not in VALID_TONES:
        errors.append("Ton non supporté")
    return errors


def update_preferences(user: "User", payload: dict) -> "User":
    user.name = payload["displayName"].strip()
    if payload.get("preferredLanguage"):
        user.preferred_language = payload["preferredLanguage"]
    if payload.get("preferredTone"):
        user.preferred_tone = payload["preferredTone"]
    return user


def score_distribution(scores: list[int]) -> dict[str, int]:
    dist = {"excellent": 0, "good": 0, "average": 0, "poor": 0}
    for score in scores:
        if score >= TOP_PHOTO_SCORE:
            dist["excellent"] += 1
        elif score >= GOOD_PHOTO_SCORE:
            dist["good"] += 1
        elif score >= AVERAGE_PHOTO_SCORE:
            dist["average"] += 1
        else:
            dist["poor"] += 1
    return dist


def dashboard_stats(s: "Session", user: "User", now: datetime | None = None) -> dict[str, Any]:
    now = now or utcnow()
    scores = [row[0] for row in s.query(Photo.score).filter(Photo.user_id == user.id).all()]
    favorites = s.query(func.count(Favorite.id)).filter(Favorite.user_id == user.id).scalar() or 0
    collections_count = s.query(func.count(Collection.id)).filter(Collection.user_id == user.id).scalar() or 0
    last_week = (
        s.query(func.count(Photo.id))
        .filter(Photo.user_id == user.id, Photo.created_at >= now - timedelta(days=7))
        .scalar()
        or 0
    )
    recent = (
        s.query(Photo)
        .filter(Photo.user_id == user.id)
        .order_by(Photo.created_at.desc(), Photo.id.desc())
        .limit(RECENT_PHOTOS)
        .all()
    )
    collections = s.query(Collection).filter(Collection.user_id == user.id).all()
    collections.sort(key=lambda c: (len(c.items), c.created_at), reverse=True)

    return {
        "overview": {
            "totalPhotos": len(scores),
            "topPhotos": sum(1 for sc in scores if sc >= TOP_PHOTO_SCORE),
            "favorites": favorites,
            "collections": collections_count,
            "averageScore": round(sum(scores) / len(scores), 1) if scores else 0,
            "photosLast7Days": last_week,
        },
        "distribution": score_distribution(scores),
        "recentPhotos": [photo_to_dict(p, viewer_id=user.id, include_analysis=False) for p in recent],
        "topCollections": [collection_to_dict(c, include_items=False) for c in collections[:TOP_COLLECTIONS]],
    }


def export_user_data(s: "Session", user: "User", entitlement: "Entitlement") -> dict[str, Any]:
    """Everything stored about `user`, minus credentials and billing secrets."""
    photos = s.query(Photo).filter(Photo.user_id == user.id).order_by(Photo.created_at.asc()).all()
    collections = s.query(Collection).filter(Collection.user_id == user.id).order_by(Collection.created_at.asc()).all()
    favorites = s.query(Favorite).filter(Favorite.user_id == user.id).all()
    feedbacks = s.query(Feedback).filter(Feedback.user_id == user.id).all()
    reports = s.query(Report).filter(Report.reporter_id == user.id).all()
    return {
        "exportedAt": isoformat(utcnow()),
        "profile": {
            "id": user.id,
            "email": user.email,
            "name": user.name,
            "emailVerifiedAt": isoformat(user.email_verified_at),
            "preferredLanguage": user.preferred_language,
            "preferredTone": user.preferred_tone,
            "createdAt": isoformat(user.created_at),
        },
        "subscription": entitlement.to_dict(),
        "photos": [photo_to_dict(p, viewer_id=user.id) for p in photos],
        "collections": [collection_to_dict(c) for c in collections],
        "favorites": [{"photoId": f.photo_id, "createdAt": isoformat(f.created_at)} for f in favorites],
        "feedbacks": [feedback_to_dict(f) for f in feedbacks],
        "reports": [report_to_dict(r) for r in reports],
    }


def purge_user(s: "Session", user: "User", storage: Storage) -> int:
    """
    Delete a user with every row and stored image they own. Returns the number
    of photos removed. Caller commits.
    """
    photos = s.query(Photo).filter(Photo.user_id == user.id).all()
    photo_ids = [p.id for p in photos]
    storage_keys = [p.storage_key for p in photos]
    collection_ids = [c.id for c in s.query(Collection.id).filter(Collection.user_id == user.id).all()]

    if collection_ids:
        s.query(CollectionItem).filter(CollectionItem.collection_id.in_(collection_ids)).delete(synchronize_session=False)
    if photo_ids:
        s.query(CollectionItem).filter(CollectionItem.photo_id.in_(photo_ids)).delete(synchronize_session=False)
        s.query(Favorite).filter(Favorite.photo_id.in_(photo_ids)).delete(synchronize_session=False)
        s.query(Report).filter(Report.photo_id.in_(photo_ids)).update({Report.photo_id: None}, synchronize_session=False)
    s.query(Favorite).filter(Favorite.user_id == user.id).delete(synchronize_session=False)
    s.query(Collection).filter(Collection.user_id == user.id).delete(synchronize_session=False)
    s.query(Report).filter(Report.reporter_id == user.id).delete(synchronize_session=False)
    s.query(Report).filter(Report.reviewed_by_user_id == user.id).update(
        {Report.reviewed_by_user_id: None}, synchronize_session=False
    )
    s.query(Feedback).filter(Feedback.user_id == user.id).update({Feedback.user_id: None}, synchronize_session=False)
    s.query(VerificationToken).filter(VerificationToken.user_id == user.id).delete(synchronize_session=False)
    s.query(AuditEvent).filter(AuditEvent.actor_user_id == user.id).update(
        {AuditEvent.actor_user_id: None}, synchronize_session=False
    )
    s.query(BannedIP).filter(BannedIP.banned_by_user_id == user.id).update(
        {BannedIP.banned_by_user_id: None}, synchronize_session=False
    )
    s.query(Photo).filter(Photo.user_id == user.id).delete(synchronize_session=False)
    s.expire_all()
    s.delete(user)
    s.flush()

    for key in storage.delete_many(storage_keys):
        logger.warning("Stored image %s left behind after account deletion", key)
    return len(photo_ids)

from __future__ import annotations

from flask import Blueprint, current_app, g, request, send_file
from sqlalchemy.exc import SQLAlchemyError

from app.judgemyjpeg.audit import record_event
from app.judgemyjpeg.db import db_session
from app.judgemyjpeg.errors import ApiError, BadGateway, BadRequest, Forbidden, NotFound
from app.judgemyjpeg.models import User
from app.judgemyjpeg.modules.photos.analysis import AnalyzerError
from app.judgemyjpeg.modules.photos.models import Photo
from app.judgemyjpeg.modules.photos.service import (
    ContentFlagged,
    QuotaExceeded,
    UploadRejected,
    add_favorite,
    delete_photo,
    list_photos,
    normalize_language,
    normalize_tone,
    photo_to_dict,
    prepare_upload,
    remove_favorite,
    run_analysis,
    top_photos,
)
from app.judgemyjpeg.modules.subscription.routes import free_limit
from app.judgemyjpeg.rbac import require_login
from app.judgemyjpeg.storage import StorageError
from app.judgemyjpeg.utils import json_body, parse_json_field

bp = Blueprint("photos", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _discard_stored_object(key: str) -> None:
    try:
        current_app.extensions["storage"].delete(key)
    except StorageError as e:
        current_app.logger.warning("Orphaned stored image %s: %s", key, e)


def _owned_photo(s, photo_id: int, user: User) -> Photo:
    photo = s.get(Photo, photo_id)
    if not photo or photo.user_id != user.id:
        raise NotFound("Photo non trouvée")
    return photo


def _photo_id_from_body() -> int:
    raw = json_body().get("photoId")
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise BadRequest("Photo ID requis")


@bp.post("/api/photos/analyze")
@require_login
def photos_analyze():
    s = db_session()
    user = _current_user()
    upload = request.files.get("photo")
    if not upload or not upload.filename:
        raise BadRequest("Aucune photo fournie")
    data = upload.read()
    filename = upload.filename

    exif, exif_err = parse_json_field(request.form.get("exifData"))
    if exif_err:
        current_app.logger.info("Ignoring malformed exifData: %s", exif_err)
        exif = None

    try:
        prepared = prepare_upload(data, filename, exif)
    except UploadRejected as e:
        record_event(
            s,
            actor=user,
            action="file_upload_rejected",
            entity_type="Photo",
            reason=str(e),
            metadata={"filename": filename, "size": len(data), "errors": e.errors},
            risk_level="medium",
            success=False,
        )
        s.commit()
        raise BadRequest("Fichier invalide", details={"details": e.errors})
    except ContentFlagged as e:
        record_event(
            s,
            actor=user,
            action="content_flagged",
            entity_type="Photo",
            reason=e.moderation.reason,
            metadata={"filename": filename, "categories": list(e.moderation.categories)},
            risk_level="medium",
            success=False,
        )
        s.commit()
        raise BadRequest("Contenu non autorisé", details={"reason": e.moderation.reason})

    tone = normalize_tone(request.form.get("tone"))
    language = normalize_language(request.form.get("language"))
    try:
        outcome = run_analysis(
            s,
            user,
            prepared,
            tone=tone,
            language=language,
            exif=exif,
            analyzer=current_app.extensions["photo_analyzer"],
            cache=current_app.extensions["analysis_cache"],
            storage=current_app.extensions["storage"],
            free_limit=free_limit(),
        )
    except QuotaExceeded as e:
        s.rollback()
        ent = e.entitlement
        raise Forbidden(
            "Limite d'analyses atteinte",
            details={
                "message": "Vous avez utilisé toutes vos analyses gratuites ce mois-ci. Passez Premium pour des analyses illimitées.",
                "subscription": {
                    "current": ent.monthly_analysis_count,
                    "max": ent.max_monthly_analyses,
                    "daysUntilReset": ent.days_until_reset,
                },
            },
        )
    except AnalyzerError as e:
        s.rollback()
        current_app.logger.error("Photo analysis failed user_id=%s: %s", user.id, e)
        raise BadGateway("Erreur lors de l'analyse de la photo")
    except StorageError as e:
        s.rollback()
        current_app.logger.error("Photo storage failed user_id=%s: %s", user.id, e)
        raise ApiError("Erreur lors de l'enregistrement de la photo")
    stored_key = outcome.photo.storage_key
    try:
        s.commit()
    except SQLAlchemyError:
        s.rollback()
        _discard_stored_object(stored_key)
        raise

    return {
        "photo": photo_to_dict(outcome.photo, viewer_id=user.id, include_analysis=False),
        "analysis": outcome.analysis,
        "cache": {"hit": outcome.cache_hit, "imageHash": outcome.image_hash[:8]},
        "tracking": {
            "tone": tone,
            "language": language,
            "score": outcome.photo.score,
            "isTopPhoto": outcome.is_top_photo,
            "source": outcome.source,
            "compressed": prepared.compressed,
            "originalSize": prepared.original_size,
            "finalSize": len(prepared.data),
        },
    }


@bp.get("/api/photos/all")
@require_login
def photos_all():
    s = db_session()
    user = _current_user()
    photos = list_photos(s, user)
    return {"photos": [photo_to_dict(p, viewer_id=user.id) for p in photos], "total": len(photos)}


@bp.get("/api/photos/top")
@require_login
def photos_top():
    s = db_session()
    user = _current_user()
    photos = top_photos(s, user)
    s.commit()
    return {"photos": [photo_to_dict(p, viewer_id=user.id) for p in photos], "total": len(photos)}


@bp.get("/api/photos/<int:photo_id>")
@require_login
def photos_detail(photo_id: int):
    s = db_session()
    user = _current_user()
    return {"photo": photo_to_dict(_owned_photo(s, photo_id, user), viewer_id=user.id)}


@bp.get("/api/photos/<int:photo_id>/image")
@require_login
def photos_image(photo_id: int):
    s = db_session()
    photo = _owned_photo(s, photo_id, _current_user())
    storage = current_app.extensions["storage"]
    try:
        fobj = storage.open(photo.storage_key)
    except StorageError as e:
        current_app.logger.warning("Stored image missing for photo %s: %s", photo.id, e)
        raise NotFound("Image non trouvée")
    return send_file(fobj, mimetype=photo.content_type or "application/octet-stream", download_name=photo.filename)


@bp.delete("/api/photos/<int:photo_id>")
@require_login
def photos_delete(photo_id: int):
    s = db_session()
    user = _current_user()
    photo = _owned_photo(s, photo_id, user)
    delete_photo(s, photo, user, current_app.extensions["storage"])
    s.commit()
    return {"success": True, "message": "Photo supprimée"}


@bp.post("/api/photos/favorite")
@require_login
def favorite_add():
    s = db_session()
    user = _current_user()
    photo = _owned_photo(s, _photo_id_from_body(), user)
    _, created = add_favorite(s, user, photo)
    if not created:
        return {"message": "Déjà en favori", "isFavorite": True}
    s.commit()
    return {"message": "Ajouté aux favoris", "isFavorite": True}, 201


@bp.delete("/api/photos/favorite")
@require_login
def favorite_remove():
    s = db_session()
    user = _current_user()
    photo = _owned_photo(s, _photo_id_from_body(), user)
    if not remove_favorite(s, user, photo):
        raise NotFound("Favori non trouvé")
    s.commit()
    return {"message": "Retiré des favoris", "isFavorite": False}

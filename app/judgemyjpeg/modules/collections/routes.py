from __future__ import annotations

from flask import Blueprint, g

from app.judgemyjpeg.db import db_session
from app.judgemyjpeg.errors import BadRequest, Conflict, NotFound
from app.judgemyjpeg.models import User
from app.judgemyjpeg.modules.collections.models import Collection
from app.judgemyjpeg.modules.collections.service import (
    DuplicateCollection,
    DuplicateItem,
    add_photo,
    collection_to_dict,
    create_collection,
    delete_collection,
    remove_photo,
    validate_collection_payload,
)
from app.judgemyjpeg.modules.photos.models import Photo
from app.judgemyjpeg.rbac import require_login
from app.judgemyjpeg.utils import json_body

bp = Blueprint("collections", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _owned_collection(s, collection_id: int, user: User) -> Collection:
    collection = s.get(Collection, collection_id)
    if not collection or collection.user_id != user.id:
        raise NotFound("Collection non trouvée")
    return collection


def _photo_id_from_body() -> int:
    raw = json_body().get("photoId")
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise BadRequest("Photo ID requis")


@bp.get("/api/collections")
@require_login
def collections_list():
    s = db_session()
    user = _current_user()
    collections = (
        s.query(Collection)
        .filter(Collection.user_id == user.id)
        .order_by(Collection.created_at.desc(), Collection.id.desc())
        .all()
    )
    return {"collections": [collection_to_dict(c) for c in collections]}


@bp.post("/api/collections")
@require_login
def collections_create():
    payload = json_body()
    errors = validate_collection_payload(payload)
    if errors:
        raise BadRequest(errors[0], details={"details": errors})
    s = db_session()
    try:
        collection = create_collection(s, payload, _current_user())
    except DuplicateCollection as e:
        raise Conflict(str(e))
    s.commit()
    return {"collection": collection_to_dict(collection)}, 201


@bp.delete("/api/collections/<int:collection_id>")
@require_login
def collections_delete(collection_id: int):
    s = db_session()
    user = _current_user()
    collection = _owned_collection(s, collection_id, user)
    delete_collection(s, collection, user)
    s.commit()
    return {"message": "Collection supprimée"}


@bp.post("/api/collections/<int:collection_id>/photos")
@require_login
def collection_add_photo(collection_id: int):
    s = db_session()
    user = _current_user()
    photo_id = _photo_id_from_body()
    collection = _owned_collection(s, collection_id, user)
    photo = s.get(Photo, photo_id)
    if not photo or photo.user_id != user.id:
        raise NotFound("Photo non trouvée")
    try:
        item = add_photo(s, collection, photo)
    except DuplicateItem as e:
        raise Conflict(str(e))
    s.commit()
    return {"message": "Photo ajoutée à la collection", "itemId": item.id, "collection": collection_to_dict(collection)}, 201


@bp.delete("/api/collections/<int:collection_id>/photos")
@require_login
def collection_remove_photo(collection_id: int):
    s = db_session()
    user = _current_user()
    photo_id = _photo_id_from_body()
    collection = _owned_collection(s, collection_id, user)
    if not remove_photo(s, collection, photo_id):
        raise NotFound("Photo non trouvée dans cette collection")
    s.commit()
    return {"message": "Photo retirée de la collection"}

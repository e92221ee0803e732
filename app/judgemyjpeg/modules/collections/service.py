from __future__ import annotations

import re
from typing import TYPE_CHECKING

from app.judgemyjpeg.audit import record_event
from app.judgemyjpeg.constants import DEFAULT_COLLECTION_COLOR, TOP_PHOTOS_COLLECTION_NAME
from app.judgemyjpeg.utils import isoformat, str_field, utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.judgemyjpeg.models import User
    from app.judgemyjpeg.modules.collections.models import Collection, CollectionItem
    from app.judgemyjpeg.modules.photos.models import Photo

_COLOR_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")
MAX_NAME_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 500


class CollectionError(ValueError):
    pass


class DuplicateCollection(CollectionError):
    pass


class DuplicateItem(CollectionError):
    pass


def validate_collection_payload(payload: dict) -> list[str]:
    """Validate collection creation payload. Returns list of errors."""
    errors = []
    name = str_field(payload, "name")
    if not name:
        errors.append("Nom de collection requis")
    elif len(name) > MAX_NAME_LENGTH:
        errors.append(f"Nom de collection trop long (max {MAX_NAME_LENGTH} caractères)")
    color = str_field(payload, "color")
    if color and not _COLOR_RE.match(color):
        errors.append("Couleur invalide (format attendu: #RRGGBB)")
    description = str_field(payload, "description")
    if len(description) > MAX_DESCRIPTION_LENGTH:
        errors.append(f"Description trop longue (max {MAX_DESCRIPTION_LENGTH} caractères)")
    return errors


def find_by_name(s: "Session", user_id: int, name: str) -> "Collection | None":
    from app.judgemyjpeg.modules.collections.models import Collection

    return s.query(Collection).filter(Collection.user_id == user_id, Collection.name == name).one_or_none()


def create_collection(s: "Session", payload: dict, user: "User") -> "Collection":
    """Create a collection; names are unique per user."""
    from app.judgemyjpeg.modules.collections.models import Collection

    name = str_field(payload, "name")
    if find_by_name(s, user.id, name):
        raise DuplicateCollection("Une collection avec ce nom existe déjà")
    now = utcnow()
    collection = Collection(
        user_id=user.id,
        name=name,
        description=str_field(payload, "description") or None,
        color=str_field(payload, "color") or DEFAULT_COLLECTION_COLOR,
        created_at=now,
        updated_at=now,
    )
    s.add(collection)
    s.flush()
    record_event(
        s,
        actor=user,
        action="collection_created",
        entity_type="Collection",
        entity_id=str(collection.id),
        metadata={"name": collection.name},
    )
    return collection


def delete_collection(s: "Session", collection: "Collection", user: "User") -> None:
    record_event(
        s,
        actor=user,
        action="collection_deleted",
        entity_type="Collection",
        entity_id=str(collection.id),
        metadata={"name": collection.name, "items": len(collection.items)},
    )
    s.delete(collection)
    s.flush()


def add_photo(s: "Session", collection: "Collection", photo: "Photo") -> "CollectionItem":
    from app.judgemyjpeg.modules.collections.models import CollectionItem

    if any(item.photo_id == photo.id for item in collection.items):
        raise DuplicateItem("Photo déjà dans cette collection")
    item = CollectionItem(collection_id=collection.id, photo_id=photo.id, photo=photo, added_at=utcnow())
    collection.items.append(item)
    collection.updated_at = utcnow()
    s.flush()
    return item


def remove_photo(s: "Session", collection: "Collection", photo_id: int) -> bool:
    for item in list(collection.items):
        if item.photo_id == photo_id:
            collection.items.remove(item)
            collection.updated_at = utcnow()
            s.flush()
            return True
    return False


def add_to_top_photos(s: "Session", user: "User", photo: "Photo") -> "Collection":
    """File a high-scoring photo into the user's auto collection (created on first use)."""
    collection = find_by_name(s, user.id, TOP_PHOTOS_COLLECTION_NAME)
    if collection is None:
        collection = create_collection(
            s,
            {
                "name": TOP_PHOTOS_COLLECTION_NAME,
                "description": "Vos meilleures photos (score ≥ 85)",
                "color": "#FFD700",
            },
            user,
        )
    if not any(item.photo_id == photo.id for item in collection.items):
        add_photo(s, collection, photo)
    return collection


def collection_to_dict(collection: "Collection", *, include_items: bool = True) -> dict:
    data = {
        "id": collection.id,
        "name": collection.name,
        "description": collection.description,
        "color": collection.color,
        "itemCount": len(collection.items),
        "createdAt": isoformat(collection.created_at),
        "updatedAt": isoformat(collection.updated_at),
    }
    if include_items:
        data["items"] = [
            {
                "id": item.id,
                "photoId": item.photo_id,
                "addedAt": isoformat(item.added_at),
                "photo": {
                    "id": item.photo.id,
                    "filename": item.photo.filename,
                    "score": item.photo.score,
                    "url": f"/api/photos/{item.photo.id}/image",
                }
                if item.photo
                else None,
            }
            for item in collection.items
        ]
    return data

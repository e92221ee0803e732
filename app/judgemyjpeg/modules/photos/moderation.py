from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from typing import Any

BANNED_KEYWORDS = {
    "violence": (
        "torture", "meurtre", "assassinat", "violence", "agression", "sang",
        "cadavre", "décès", "blessure",
    ),
    "self_harm": ("suicide", "automutilation"),
    "sexual": (
        "nu", "nue", "nudité", "seins", "sexe", "pornographie", "érotique",
        "génital", "obscène", "lubrique",
    ),
    "hate": ("nazi", "hitler", "raciste", "antisémite", "homophobe", "terroriste", "extrémiste"),
    "harassment": ("xénophobe", "discrimination"),
    "illicit": (
        "drogue", "cannabis", "cocaïne", "héroïne", "stupéfiant", "narcotique",
        "trafic", "dealer", "piratage", "fraude", "contrefaçon", "blanchiment",
    ),
}
SUSPICIOUS_EQUIPMENT = ("surveillance camera", "hidden camera", "spy camera", "security camera")
MIN_DIMENSION = 100
MAX_ASPECT_RATIO = 10


@dataclass(frozen=True)
class ModerationResult:
    flagged: bool
    categories: tuple[str, ...] = field(default_factory=tuple)
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"flagged": self.flagged, "categories": list(self.categories), "reason": self.reason}


def _fold(text: str) -> str:
    return unicodedata.normalize("NFC", text).lower()


def _tokens(text: str) -> set[str]:
    # Filenames use -, _, . and camel case as separators; match whole words only.
    spaced = re.sub(r"([a-zà-ÿ])([A-ZÀ-Ý])", r"\1 \2", text)
    return {t for t in re.split(r"[^\wÀ-ÿ]+|_", _fold(spaced)) if t}


def moderate_text(text: str) -> ModerationResult:
    tokens = _tokens(text or "")
    found: list[str] = []
    categories: list[str] = []
    for category, keywords in BANNED_KEYWORDS.items():
        hits = [k for k in keywords if k in tokens]
        if hits:
            found.extend(hits)
            categories.append(category)
    if not found:
        return ModerationResult(flagged=False)
    return ModerationResult(
        flagged=True,
        categories=tuple(categories),
        reason=f"Mots-clés interdits détectés: {', '.join(found)}",
    )


def has_suspicious_equipment(exif: dict[str, Any] | None) -> bool:
    if not exif:
        return False
    camera = f"{exif.get('make') or ''} {exif.get('model') or ''}".lower()
    return any(e in camera for e in SUSPICIOUS_EQUIPMENT)


def dimensions_acceptable(width: int, height: int) -> bool:
    if width < MIN_DIMENSION or height < MIN_DIMENSION:
        return False
    return max(width, height) / min(width, height) <= MAX_ASPECT_RATIO


def moderate_image(
    filename: str,
    exif: dict[str, Any] | None = None,
    width: int | None = None,
    height: int | None = None,
) -> ModerationResult:
    """Keyword check on the filename, then EXIF equipment, then dimensions."""
    result = moderate_text(filename)
    if result.flagged:
        return result
    if has_suspicious_equipment(exif):
        return ModerationResult(
            flagged=True,
            categories=("illicit",),
            reason="Équipement de surveillance détecté dans les métadonnées",
        )
    if width and height and not dimensions_acceptable(width, height):
        return ModerationResult(flagged=True, categories=("illicit",), reason="Dimensions d'image suspectes")
    return ModerationResult(flagged=False)

"""
Photo analysis backend seam.

The vision model lives behind an HTTP service (ANALYZER_URL). This module
posts the image, normalizes whatever comes back into the PhotoAnalysis shape
the front end renders, and keeps a short-lived in-process cache keyed by
image hash + tone + language.
"""
from __future__ import annotations

import base64
import json
import threading
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any

PARTIAL_SCORE_KEYS = ("composition", "lighting", "focus", "exposure", "creativity", "emotion", "storytelling")
TECHNICAL_KEYS = ("composition", "lighting", "focus", "exposure")
ARTISTIC_KEYS = ("creativity", "emotion", "storytelling")
IMPROVEMENT_DIFFICULTIES = ("facile", "moyen", "difficile")
TOOL_KEYS = ("lightroom", "photoshop", "snapseed")
CACHE_TTL_SECONDS = 24 * 3600


class AnalyzerError(RuntimeError):
    pass


class AnalyzerRateLimited(AnalyzerError):
    pass


class PhotoAnalyzer:
    def analyze(
        self,
        image_bytes: bytes,
        *,
        tone: str,
        language: str,
        exif: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        raise NotImplementedError


class UnconfiguredAnalyzer(PhotoAnalyzer):
    def analyze(self, image_bytes: bytes, *, tone: str, language: str, exif: dict[str, Any] | None = None) -> dict[str, Any]:
        raise AnalyzerError("Photo analyzer not configured (set ANALYZER_URL).")


@dataclass(frozen=True)
class HttpPhotoAnalyzer(PhotoAnalyzer):
    url: str
    api_key: str = ""
    timeout_seconds: int = 60
    retries: int = 2

    def analyze(self, image_bytes: bytes, *, tone: str, language: str, exif: dict[str, Any] | None = None) -> dict[str, Any]:
        body = json.dumps(
            {
                "image_base64": base64.b64encode(image_bytes).decode("ascii"),
                "tone": tone,
                "language": language,
                "exif": exif or {},
            }
        ).encode("utf-8")

        last_err: Exception | None = None
        for attempt in range(self.retries + 1):
            try:
                req = urllib.request.Request(self.url, data=body, method="POST")
                req.add_header("Content-Type", "application/json")
                req.add_header("Accept", "application/json")
                if self.api_key:
                    req.add_header("Authorization", f"Bearer {self.api_key}")
                with urllib.request.urlopen(req, timeout=self.timeout_seconds) as resp:
                    raw = resp.read()
                    try:
                        payload = json.loads(raw.decode("utf-8"))
                    except (UnicodeDecodeError, json.JSONDecodeError) as e:
                        raise AnalyzerError("Invalid JSON from analyzer") from e
                    if not isinstance(payload, dict):
                        raise AnalyzerError("Analyzer returned a non-object payload")
                    return payload
            except urllib.error.HTTPError as e:
                if e.code == 429:
                    self._backoff(attempt, min(2 * (attempt + 1), 10))
                    last_err = AnalyzerRateLimited("Rate limited (429)")
                    continue
                if e.code >= 500:
                    last_err = AnalyzerError(f"HTTP {e.code} from analyzer")
                    self._backoff(attempt, min(attempt + 1, 5))
                    continue
                try:
                    detail = e.read().decode("utf-8", errors="ignore")
                except OSError:
                    detail = ""
                raise AnalyzerError(f"HTTP {e.code} from analyzer: {detail[:300]}") from e
            except (urllib.error.URLError, TimeoutError, OSError) as e:
                last_err = e
                self._backoff(attempt, min(attempt + 1, 5))
                continue
        raise AnalyzerError(f"Analyzer request failed after retries: {last_err}")

    def _backoff(self, attempt: int, seconds: float) -> None:
        # no wait once the last attempt has failed
        if attempt < self.retries:
            time.sleep(seconds)


def analyzer_from_config(config: dict) -> PhotoAnalyzer:
    url = (config.get("ANALYZER_URL") or "").strip()
    if not url:
        return UnconfiguredAnalyzer()
    return HttpPhotoAnalyzer(
        url=url,
        api_key=(config.get("ANALYZER_API_KEY") or "").strip(),
        timeout_seconds=int(config.get("ANALYZER_TIMEOUT_SECONDS") or 60),
    )


def _clamp_score(value: Any, default: int = 0) -> int:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return int(round(min(max(number, 0), 100)))


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def normalize_analysis(raw: dict[str, Any]) -> dict[str, Any]:
    """Coerce an analyzer payload into the PhotoAnalysis shape (unknown keys dropped)."""
    if "score" not in raw:
        raise AnalyzerError("Analyzer payload has no score")
    score = _clamp_score(raw.get("score"))
    potential = _clamp_score(raw.get("potentialScore"), default=score)

    partial_raw = raw.get("partialScores") if isinstance(raw.get("partialScores"), dict) else {}
    technical_raw = raw.get("technical") if isinstance(raw.get("technical"), dict) else {}
    artistic_raw = raw.get("artistic") if isinstance(raw.get("artistic"), dict) else {}
    tools_raw = raw.get("toolRecommendations") if isinstance(raw.get("toolRecommendations"), dict) else {}

    improvements = []
    for item in raw.get("improvements") or []:
        if not isinstance(item, dict) or not _text(item.get("description")):
            continue
        difficulty = item.get("difficulty")
        improvements.append(
            {
                "impact": _text(item.get("impact")),
                "description": _text(item.get("description")),
                "difficulty": difficulty if difficulty in IMPROVEMENT_DIFFICULTIES else "moyen",
                "scoreGain": _clamp_score(item.get("scoreGain")),
            }
        )

    return {
        "score": score,
        "potentialScore": max(potential, score),
        "partialScores": {k: _clamp_score(partial_raw.get(k)) for k in PARTIAL_SCORE_KEYS},
        "technical": {k: _text(technical_raw.get(k)) for k in TECHNICAL_KEYS},
        "artistic": {k: _text(artistic_raw.get(k)) for k in ARTISTIC_KEYS},
        "suggestions": [s.strip() for s in raw.get("suggestions") or [] if isinstance(s, str) and s.strip()],
        "improvements": improvements,
        "toolRecommendations": {
            k: [t for t in tools_raw.get(k) or [] if isinstance(t, str)] for k in TOOL_KEYS if tools_raw.get(k)
        },
    }


class AnalysisCache:
    """In-process TTL cache of normalized analyses."""

    def __init__(self, ttl_seconds: int = CACHE_TTL_SECONDS, max_entries: int = 1000):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._entries: dict[str, tuple[float, dict[str, Any]]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def key(image_hash: str, tone: str, language: str) -> str:
        return f"{image_hash}:{tone}:{language}"

    def get(self, key: str, now: float | None = None) -> dict[str, Any] | None:
        now = time.time() if now is None else now
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, value = entry
            if now - stored_at > self.ttl_seconds:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: dict[str, Any], now: float | None = None) -> None:
        now = time.time() if now is None else now
        with self._lock:
            if len(self._entries) >= self.max_entries:
                oldest = min(self._entries, key=lambda k: self._entries[k][0])
                del self._entries[oldest]
            self._entries[key] = (now, value)

    def __len__(self) -> int:
        return len(self._entries)

import io
import json
import urllib.error

import pytest

from app.judgemyjpeg.modules.photos.analysis import (
    AnalysisCache,
    AnalyzerError,
    HttpPhotoAnalyzer,
    UnconfiguredAnalyzer,
    analyzer_from_config,
    normalize_analysis,
)


class _Response:
    def __init__(self, payload: bytes):
        self._payload = payload

    def read(self):
        return self._payload

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def test_normalize_clamps_and_fills_defaults():
    out = normalize_analysis(
        {
            "score": 104.6,
            "potentialScore": 80,
            "partialScores": {"composition": -5, "lighting": "12"},
            "improvements": [{"description": "Monter l'exposition", "difficulty": "impossible", "scoreGain": "4"}],
            "toolRecommendations": {"snapseed": ["Retouche", 3], "gimp": ["x"]},
        }
    )
    assert out["score"] == 100
    assert out["potentialScore"] == 100  # never below score
    assert out["partialScores"]["composition"] == 0
    assert out["partialScores"]["lighting"] == 12
    assert out["partialScores"]["storytelling"] == 0
    assert out["technical"] == {"composition": "", "lighting": "", "focus": "", "exposure": ""}
    assert out["improvements"] == [
        {"impact": "", "description": "Monter l'exposition", "difficulty": "moyen", "scoreGain": 4}
    ]
    assert out["toolRecommendations"] == {"snapseed": ["Retouche"]}
    assert out["suggestions"] == []


def test_normalize_requires_score():
    with pytest.raises(AnalyzerError):
        normalize_analysis({"suggestions": ["x"]})


def test_non_numeric_score_becomes_zero():
    assert normalize_analysis({"score": "great"})["score"] == 0


def test_cache_ttl_and_eviction():
    cache = AnalysisCache(ttl_seconds=10, max_entries=2)
    key = AnalysisCache.key("abc", "roast", "fr")
    assert key == "abc:roast:fr"
    cache.set(key, {"score": 1}, now=100)
    assert cache.get(key, now=105) == {"score": 1}
    assert cache.get(key, now=111) is None
    assert len(cache) == 0

    cache.set("a", {"score": 1}, now=1)
    cache.set("b", {"score": 2}, now=2)
    cache.set("c", {"score": 3}, now=3)
    assert len(cache) == 2
    assert cache.get("a", now=4) is None
    assert cache.get("c", now=4) == {"score": 3}


def test_analyzer_from_config():
    assert isinstance(analyzer_from_config({}), UnconfiguredAnalyzer)
    analyzer = analyzer_from_config({"ANALYZER_URL": "https://vision.internal/analyze", "ANALYZER_TIMEOUT_SECONDS": 5})
    assert isinstance(analyzer, HttpPhotoAnalyzer)
    assert analyzer.timeout_seconds == 5
    with pytest.raises(AnalyzerError):
        UnconfiguredAnalyzer().analyze(b"x", tone="roast", language="fr")


def test_http_analyzer_posts_image(monkeypatch):
    seen = {}

    def fake_urlopen(req, timeout):
        seen["url"] = req.full_url
        seen["auth"] = req.get_header("Authorization")
        seen["body"] = json.loads(req.data.decode("utf-8"))
        return _Response(json.dumps({"score": 77}).encode("utf-8"))

    monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)
    analyzer = HttpPhotoAnalyzer(url="https://vision.internal/analyze", api_key="k-123")
    out = analyzer.analyze(b"\xff\xd8\xff", tone="expert", language="de", exif={"iso": 200})
    assert out == {"score": 77}
    assert seen["auth"] == "Bearer k-123"
    assert seen["body"]["tone"] == "expert"
    assert seen["body"]["language"] == "de"
    assert seen["body"]["exif"] == {"iso": 200}
    assert seen["body"]["image_base64"] == "/9j/"


def test_http_analyzer_client_error_is_not_retried(monkeypatch):
    calls = []

    def fake_urlopen(req, timeout):
        calls.append(1)
        raise urllib.error.HTTPError(req.full_url, 400, "Bad Request", {}, io.BytesIO(b"bad image"))

    monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)
    with pytest.raises(AnalyzerError) as exc:
        HttpPhotoAnalyzer(url="https://vision.internal/analyze").analyze(b"x", tone="roast", language="fr")
    assert "400" in str(exc.value)
    assert len(calls) == 1


def test_http_analyzer_gives_up_after_retries(monkeypatch):
    calls = []

    def fake_urlopen(req, timeout):
        calls.append(1)
        raise urllib.error.URLError("connection refused")

    sleeps = []
    monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)
    monkeypatch.setattr("app.judgemyjpeg.modules.photos.analysis.time.sleep", sleeps.append)
    with pytest.raises(AnalyzerError):
        HttpPhotoAnalyzer(url="https://vision.internal/analyze", retries=2).analyze(b"x", tone="roast", language="fr")
    assert len(calls) == 3
    # backoff between attempts only, none after the last failure
    assert sleeps == [1, 2]


def test_http_analyzer_rate_limit_backoff(monkeypatch):
    def fake_urlopen(req, timeout):
        raise urllib.error.HTTPError(req.full_url, 429, "Too Many Requests", {}, None)

    sleeps = []
    monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)
    monkeypatch.setattr("app.judgemyjpeg.modules.photos.analysis.time.sleep", sleeps.append)
    with pytest.raises(AnalyzerError):
        HttpPhotoAnalyzer(url="https://vision.internal/analyze", retries=1).analyze(b"x", tone="roast", language="fr")
    assert sleeps == [2]


def test_http_analyzer_rejects_non_json(monkeypatch):
    monkeypatch.setattr("urllib.request.urlopen", lambda req, timeout: _Response(b"<html>oops</html>"))
    with pytest.raises(AnalyzerError):
        HttpPhotoAnalyzer(url="https://vision.internal/analyze").analyze(b"x", tone="roast", language="fr")

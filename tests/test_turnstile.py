import json
import urllib.error
import urllib.parse

from app.judgemyjpeg.turnstile import DEV_BYPASS_TOKEN, verify_turnstile_token


class _Response:
    def __init__(self, payload):
        self._payload = json.dumps(payload).encode("utf-8")

    def read(self):
        return self._payload

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


GOOD = {"success": True, "hostname": "judgemyjpeg.fr", "challenge_ts": "2025-01-01T00:00:00Z"}


def _verify(token="tok", **kwargs):
    kwargs.setdefault("secret", "ts-secret")
    return verify_turnstile_token(token, "203.0.113.5", **kwargs)


def test_dev_bypass_only_in_development():
    assert _verify(DEV_BYPASS_TOKEN, env="development") is True
    assert _verify(DEV_BYPASS_TOKEN, env="production") is False


def test_missing_token_or_secret():
    assert _verify(None) is False
    assert _verify("tok", secret="") is False


def test_successful_verification(monkeypatch):
    seen = {}

    def fake_urlopen(req, timeout):
        seen["form"] = urllib.parse.parse_qs(req.data.decode("utf-8"))
        return _Response(GOOD)

    monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)
    assert _verify() is True
    assert seen["form"] == {"secret": ["ts-secret"], "response": ["tok"], "remoteip": ["203.0.113.5"]}


def test_rejections(monkeypatch):
    for payload in (
        {"success": False, "error-codes": ["invalid-input-response"]},
        {"success": True, "challenge_ts": "2025-01-01T00:00:00Z"},
        {"success": True, "hostname": "judgemyjpeg.fr"},
        {"success": True, "hostname": "evil.example.com", "challenge_ts": "2025-01-01T00:00:00Z"},
    ):
        monkeypatch.setattr("urllib.request.urlopen", lambda req, timeout, p=payload: _Response(p))
        assert _verify() is False, payload


def test_custom_allowed_hostnames(monkeypatch):
    monkeypatch.setattr("urllib.request.urlopen", lambda req, timeout: _Response(GOOD))
    assert _verify(allowed_hostnames=("staging.judgemyjpeg.fr",)) is False


def test_network_error_fails_closed(monkeypatch):
    def fake_urlopen(req, timeout):
        raise urllib.error.URLError("timed out")

    monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)
    assert _verify() is False

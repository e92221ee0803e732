"""
Cache strategies for the front-end service worker.

The worker fetches `/api/cache-policy` at install time and applies the same
route classification; responses served by this app carry a matching
Cache-Control header so HTTP caches and the worker agree.
"""
from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

CACHE_VERSION = "v1.2.0"
CACHE_PREFIX = "judgemyjpeg"


class CacheStrategy(str, Enum):
    CACHE_FIRST = "cache-first"
    NETWORK_FIRST = "network-first"
    NETWORK_FIRST_WITH_FALLBACK = "network-first-with-fallback"
    STALE_WHILE_REVALIDATE = "stale-while-revalidate"
    CACHE_WITH_NETWORK_FALLBACK = "cache-with-network-fallback"
    NETWORK_ONLY = "network-only"
    NETWORK_ONLY_WITH_RETRY = "network-only-with-retry"


class RouteClass(str, Enum):
    STATIC = "static"
    PAGE = "page"
    CACHEABLE_API = "cacheable-api"
    IMAGE = "image"
    SENSITIVE = "sensitive"
    MUTATION = "mutation"
    DEFAULT = "default"


CACHE_NAMES = {
    "static": f"{CACHE_PREFIX}-static-{CACHE_VERSION}",
    "dynamic": f"{CACHE_PREFIX}-dynamic-{CACHE_VERSION}",
    "api": f"{CACHE_PREFIX}-api-{CACHE_VERSION}",
    "images": f"{CACHE_PREFIX}-images-{CACHE_VERSION}",
}

STATIC_PREFIXES = ("/static/", "/_next/static/")
STATIC_EXTENSIONS = (".js", ".css", ".woff", ".woff2", ".ttf", ".ico", ".svg", ".webmanifest")
IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".webp", ".gif", ".avif")
IMAGE_PREFIXES = ("/uploads/",)
CACHEABLE_APIS = (
    "/api/photos/top",
    "/api/dashboard/stats",
    "/api/collections",
    "/api/subscription/status",
)
SENSITIVE_MARKERS = ("/auth/", "/payment/", "/admin/", "/api/billing/")
_PHOTO_IMAGE_RE = re.compile(r"^/api/photos/\d+/image$")


@dataclass(frozen=True)
class CacheDecision:
    route_class: RouteClass
    strategy: CacheStrategy
    cache_name: str | None


_CACHE_CONTROL = {
    CacheStrategy.CACHE_FIRST: "public, max-age=31536000, immutable",
    CacheStrategy.NETWORK_FIRST: "no-cache",
    CacheStrategy.NETWORK_FIRST_WITH_FALLBACK: "no-cache",
    CacheStrategy.STALE_WHILE_REVALIDATE: "private, max-age=60, stale-while-revalidate=300",
    CacheStrategy.CACHE_WITH_NETWORK_FALLBACK: "private, max-age=86400",
    CacheStrategy.NETWORK_ONLY: "no-store",
    CacheStrategy.NETWORK_ONLY_WITH_RETRY: "no-store",
}


def _is_static(path: str) -> bool:
    if path.startswith(STATIC_PREFIXES):
        return True
    return path.lower().endswith(STATIC_EXTENSIONS) and not path.startswith("/api/")


def _is_image(path: str) -> bool:
    if _PHOTO_IMAGE_RE.match(path) or path.startswith(IMAGE_PREFIXES):
        return True
    return path.lower().endswith(IMAGE_EXTENSIONS)


def _is_cacheable_api(path: str) -> bool:
    return any(path == p or path.startswith(p + "?") for p in CACHEABLE_APIS)


def _is_sensitive(path: str) -> bool:
    candidate = path if path.endswith("/") else path + "/"
    return any(marker in candidate for marker in SENSITIVE_MARKERS)


def classify_request(method: str, path: str, *, is_navigation: bool = False) -> CacheDecision:
    """Route class + strategy for a request. Order matters: static, page, api, image, sensitive."""
    if method.upper() != "GET":
        return CacheDecision(RouteClass.MUTATION, CacheStrategy.NETWORK_ONLY_WITH_RETRY, None)
    if _is_static(path):
        # Static assets never carry sensitive data, even under an /admin/ prefix.
        return CacheDecision(RouteClass.STATIC, CacheStrategy.CACHE_FIRST, CACHE_NAMES["static"])
    if is_navigation:
        return CacheDecision(RouteClass.PAGE, CacheStrategy.NETWORK_FIRST_WITH_FALLBACK, CACHE_NAMES["dynamic"])
    if _is_cacheable_api(path):
        return CacheDecision(RouteClass.CACHEABLE_API, CacheStrategy.STALE_WHILE_REVALIDATE, CACHE_NAMES["api"])
    if _is_image(path):
        return CacheDecision(RouteClass.IMAGE, CacheStrategy.CACHE_WITH_NETWORK_FALLBACK, CACHE_NAMES["images"])
    if _is_sensitive(path):
        return CacheDecision(RouteClass.SENSITIVE, CacheStrategy.NETWORK_ONLY, None)
    return CacheDecision(RouteClass.DEFAULT, CacheStrategy.NETWORK_FIRST, CACHE_NAMES["dynamic"])


def cache_control_for(strategy: CacheStrategy) -> str:
    return _CACHE_CONTROL[strategy]


def stale_cache_names(existing: Iterable[str]) -> list[str]:
    """Cache names owned by this app but belonging to another version (deleted on activate)."""
    current = set(CACHE_NAMES.values())
    return sorted(n for n in existing if n.startswith(CACHE_PREFIX + "-") and n not in current)


def policy_manifest() -> dict:
    return {
        "version": CACHE_VERSION,
        "caches": dict(CACHE_NAMES),
        "routes": {
            "static": {
                "strategy": CacheStrategy.CACHE_FIRST.value,
                "prefixes": list(STATIC_PREFIXES),
                "extensions": list(STATIC_EXTENSIONS),
            },
            "page": {"strategy": CacheStrategy.NETWORK_FIRST_WITH_FALLBACK.value, "fallback": "/offline"},
            "cacheableApi": {"strategy": CacheStrategy.STALE_WHILE_REVALIDATE.value, "paths": list(CACHEABLE_APIS)},
            "image": {
                "strategy": CacheStrategy.CACHE_WITH_NETWORK_FALLBACK.value,
                "prefixes": list(IMAGE_PREFIXES),
                "extensions": list(IMAGE_EXTENSIONS),
                "patterns": [_PHOTO_IMAGE_RE.pattern],
            },
            "sensitive": {"strategy": CacheStrategy.NETWORK_ONLY.value, "markers": list(SENSITIVE_MARKERS)},
            "mutation": {"strategy": CacheStrategy.NETWORK_ONLY_WITH_RETRY.value, "methods": ["POST", "PUT", "PATCH", "DELETE"]},
            "default": {"strategy": CacheStrategy.NETWORK_FIRST.value},
        },
    }

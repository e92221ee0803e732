from app.judgemyjpeg.cache_policy import (
    CACHE_NAMES,
    CacheStrategy,
    RouteClass,
    cache_control_for,
    classify_request,
    policy_manifest,
    stale_cache_names,
)


def test_mutations_are_network_only():
    d = classify_request("POST", "/api/photos/analyze")
    assert d.route_class == RouteClass.MUTATION
    assert d.strategy == CacheStrategy.NETWORK_ONLY_WITH_RETRY
    assert d.cache_name is None


def test_static_assets():
    assert classify_request("GET", "/static/app.js").strategy == CacheStrategy.CACHE_FIRST
    d = classify_request("GET", "/admin/app.css")
    assert d.route_class == RouteClass.STATIC
    assert d.cache_name == CACHE_NAMES["static"]


def test_navigation():
    d = classify_request("GET", "/dashboard", is_navigation=True)
    assert d.route_class == RouteClass.PAGE
    assert d.strategy == CacheStrategy.NETWORK_FIRST_WITH_FALLBACK


def test_cacheable_apis():
    for path in ("/api/photos/top", "/api/dashboard/stats", "/api/collections", "/api/subscription/status"):
        assert classify_request("GET", path).strategy == CacheStrategy.STALE_WHILE_REVALIDATE
    # sub-resources are not covered
    assert classify_request("GET", "/api/collections/5/photos").route_class == RouteClass.DEFAULT


def test_images():
    assert classify_request("GET", "/api/photos/12/image").route_class == RouteClass.IMAGE
    assert classify_request("GET", "/uploads/a").route_class == RouteClass.IMAGE
    assert classify_request("GET", "/media/shot.webp").strategy == CacheStrategy.CACHE_WITH_NETWORK_FALLBACK


def test_sensitive_routes():
    for path in ("/api/auth/me", "/api/admin", "/api/admin/users", "/api/billing/events", "/payment/success"):
        d = classify_request("GET", path)
        assert d.route_class == RouteClass.SENSITIVE, path
        assert d.strategy == CacheStrategy.NETWORK_ONLY


def test_default_route():
    d = classify_request("get", "/api/photos/all")
    assert d.route_class == RouteClass.DEFAULT
    assert d.strategy == CacheStrategy.NETWORK_FIRST


def test_cache_control():
    assert cache_control_for(CacheStrategy.NETWORK_ONLY) == "no-store"
    assert "immutable" in cache_control_for(CacheStrategy.CACHE_FIRST)


def test_stale_cache_names():
    existing = ["judgemyjpeg-static-v1.1.0", CACHE_NAMES["api"], "other-cache"]
    assert stale_cache_names(existing) == ["judgemyjpeg-static-v1.1.0"]


def test_policy_manifest():
    manifest = policy_manifest()
    assert manifest["version"] == "v1.2.0"
    assert manifest["routes"]["sensitive"]["strategy"] == "network-only"
    assert manifest["caches"] == CACHE_NAMES

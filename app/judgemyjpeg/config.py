import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    log_level: str

    storage_backend: str
    storage_local_root: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str

    admin_secret: str

    turnstile_secret_key: str
    turnstile_allowed_hostnames: tuple[str, ...]

    analyzer_url: str
    analyzer_api_key: str
    analyzer_timeout_seconds: int

    billing_webhook_secret: str
    price_id_starter: str
    price_id_monthly: str
    price_id_annual: str

    free_monthly_analyses: int
    starter_pack_analyses: int
    starter_pack_shares: int
    starter_pack_exports: int

    rate_limit_enabled: bool


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise RuntimeError(f"{name} must be an integer (got {raw!r}).") from e


def _getenv_bool(name: str, default: bool) -> bool:
    raw = _getenv(name).lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    hostnames = _getenv("TURNSTILE_ALLOWED_HOSTNAMES", "judgemyjpeg.fr,www.judgemyjpeg.fr,localhost")
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///judgemyjpeg.db"),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        storage_local_root=_getenv("STORAGE_LOCAL_ROOT", ""),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "fra1"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        admin_secret=_getenv("ADMIN_SECRET", ""),
        turnstile_secret_key=_getenv("TURNSTILE_SECRET_KEY", ""),
        turnstile_allowed_hostnames=tuple(h.strip().lower() for h in hostnames.split(",") if h.strip()),
        analyzer_url=_getenv("ANALYZER_URL", ""),
        analyzer_api_key=_getenv("ANALYZER_API_KEY", ""),
        analyzer_timeout_seconds=_getenv_int("ANALYZER_TIMEOUT_SECONDS", 60),
        billing_webhook_secret=_getenv("BILLING_WEBHOOK_SECRET", ""),
        price_id_starter=_getenv("PRICE_ID_STARTER", ""),
        price_id_monthly=_getenv("PRICE_ID_MONTHLY", ""),
        price_id_annual=_getenv("PRICE_ID_ANNUAL", ""),
        free_monthly_analyses=_getenv_int("FREE_MONTHLY_ANALYSES", 3),
        starter_pack_analyses=_getenv_int("STARTER_PACK_ANALYSES", 3),
        starter_pack_shares=_getenv_int("STARTER_PACK_SHARES", 1),
        starter_pack_exports=_getenv_int("STARTER_PACK_EXPORTS", 1),
        rate_limit_enabled=_getenv_bool("RATE_LIMIT_ENABLED", True),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "LOG_LEVEL": s.log_level,
        "STORAGE_BACKEND": s.storage_backend,
        "STORAGE_LOCAL_ROOT": s.storage_local_root,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        "ADMIN_SECRET": s.admin_secret,
        "TURNSTILE_SECRET_KEY": s.turnstile_secret_key,
        "TURNSTILE_ALLOWED_HOSTNAMES": s.turnstile_allowed_hostnames,
        "ANALYZER_URL": s.analyzer_url,
        "ANALYZER_API_KEY": s.analyzer_api_key,
        "ANALYZER_TIMEOUT_SECONDS": s.analyzer_timeout_seconds,
        "BILLING_WEBHOOK_SECRET": s.billing_webhook_secret,
        "PRICE_ID_STARTER": s.price_id_starter,
        "PRICE_ID_MONTHLY": s.price_id_monthly,
        "PRICE_ID_ANNUAL": s.price_id_annual,
        "FREE_MONTHLY_ANALYSES": s.free_monthly_analyses,
        "STARTER_PACK_ANALYSES": s.starter_pack_analyses,
        "STARTER_PACK_SHARES": s.starter_pack_shares,
        "STARTER_PACK_EXPORTS": s.starter_pack_exports,
        "RATE_LIMIT_ENABLED": s.rate_limit_enabled,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        "SESSION_COOKIE_NAME": "jmj_session",
        # uploads are validated at 50MB in the analyze handler; leave headroom for form fields
        "MAX_CONTENT_LENGTH": 52 * 1024 * 1024,
    }

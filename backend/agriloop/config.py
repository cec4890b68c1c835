from __future__ import annotations

import os

PROD_ENVS = ("prod", "production")


def env_int(name: str, default: int, *, minimum: int = 1, maximum: int = 100000) -> int:
    raw = (os.getenv(name) or "").strip()
    try:
        value = int(raw) if raw else int(default)
    except ValueError:
        value = int(default)
    return max(minimum, min(value, maximum))


def env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def deployment_env() -> str:
    return (os.getenv("AGRILOOP_ENV") or "dev").strip().lower() or "dev"


def _database_url(instance_dir: str) -> str:
    url = (os.getenv("SQLALCHEMY_DATABASE_URI") or os.getenv("DATABASE_URL") or "").strip()
    if not url:
        return "sqlite:///" + os.path.join(instance_dir, "agriloop.db").replace(os.sep, "/")
    # Heroku-style URLs still use the deprecated scheme.
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    return url


def _engine_options(database_url: str) -> dict:
    options = {
        "pool_pre_ping": True,
        "pool_recycle": env_int("DB_POOL_RECYCLE_SECONDS", 1800, minimum=60, maximum=86400),
    }
    if database_url.startswith("sqlite"):
        return options
    options.update(
        pool_size=env_int("DB_POOL_SIZE", 10, minimum=1, maximum=200),
        max_overflow=env_int("DB_MAX_OVERFLOW", 20, minimum=0, maximum=500),
        pool_timeout=env_int("DB_POOL_TIMEOUT_SECONDS", 30, minimum=1, maximum=300),
    )
    return options


def cors_origins(env: str) -> list[str]:
    configured = [o.strip() for o in (os.getenv("CORS_ORIGINS") or "").split(",") if o.strip()]
    if configured or env in PROD_ENVS:
        return configured
    return ["*"]


def load_settings(app, env: str) -> None:
    """Fill ``app.config`` from the environment.

    Production refuses to boot with a weak SECRET_KEY or without an
    explicit database URL.
    """
    if env in PROD_ENVS:
        secret = (os.getenv("SECRET_KEY") or "").strip()
        if len(secret) < 16:
            raise RuntimeError("SECRET_KEY must be set and at least 16 chars in production")
        if not (os.getenv("DATABASE_URL") or os.getenv("SQLALCHEMY_DATABASE_URI") or "").strip():
            raise RuntimeError("DATABASE_URL (or SQLALCHEMY_DATABASE_URI) must be set in production")

    instance_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "instance"))
    os.makedirs(instance_dir, exist_ok=True)
    database_url = _database_url(instance_dir)

    app.config.update(
        AGRILOOP_ENV=env,
        SECRET_KEY=os.getenv("SECRET_KEY", "dev-secret"),
        SQLALCHEMY_TRACK_MODIFICATIONS=False,
        SQLALCHEMY_DATABASE_URI=database_url,
        SQLALCHEMY_ENGINE_OPTIONS=_engine_options(database_url),
        NOTIFY_DISPATCH=(os.getenv("NOTIFY_DISPATCH") or "inline").strip().lower(),
        CELERY_TASK_ALWAYS_EAGER=env_bool("CELERY_TASK_ALWAYS_EAGER", False),
    )
    pool = app.config["SQLALCHEMY_ENGINE_OPTIONS"]
    if "pool_size" in pool:
        app.logger.info(
            "db_pooling_enabled pool_size=%s max_overflow=%s pool_timeout=%s",
            pool["pool_size"],
            pool["max_overflow"],
            pool["pool_timeout"],
        )

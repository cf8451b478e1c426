"""
Settings read from environment variables, plus one-time logging setup.
Env: ADMIN_PASSWORD, SESSION_MODE, SESSION_SECRET, STORE_BACKEND, SUPABASE_URL,
SUPABASE_SERVICE_ROLE_KEY (or SUPABASE_ANON_KEY), RESEND_API_KEY, ...
"""
import logging
import os
import tempfile
from dataclasses import dataclass

DEFAULT_MOUNT_PREFIXES = ("/.netlify/functions/membership", "/api/membership")


def _env_bool(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() in {"1", "true", "yes"}


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


@dataclass
class Settings:
    admin_password: str = ""
    session_mode: str = "signed"
    session_secret: str = ""
    session_ttl_seconds: int = 24 * 60 * 60
    max_sessions: int = 100
    store_backend: str = "memory"
    data_file: str = ""
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_table: str = "members"
    mount_prefixes: tuple = DEFAULT_MOUNT_PREFIXES
    debug: bool = False
    log_level: str = "INFO"
    resend_api_key: str = ""
    email_from: str = "Membership <noreply@example.org>"


def load_settings() -> Settings:
    """Build Settings from the current environment."""
    backend = os.environ.get("STORE_BACKEND", "").strip().lower()
    supabase_url = os.environ.get("SUPABASE_URL", "")
    supabase_key = os.environ.get("SUPABASE_SERVICE_ROLE_KEY") or os.environ.get("SUPABASE_ANON_KEY", "")
    if not backend:
        backend = "supabase" if supabase_url and supabase_key else "memory"

    data_file = os.environ.get("DATA_FILE", "")
    if not data_file and backend == "tmp":
        data_file = os.path.join(tempfile.gettempdir(), "membership_data.json")
    elif not data_file:
        data_file = "data.json"

    prefixes = os.environ.get("MOUNT_PREFIXES", "")
    mount_prefixes = tuple(p.strip().rstrip("/") for p in prefixes.split(",") if p.strip()) or DEFAULT_MOUNT_PREFIXES

    return Settings(
        admin_password=os.environ.get("ADMIN_PASSWORD", ""),
        session_mode=os.environ.get("SESSION_MODE", "signed").strip().lower(),
        session_secret=os.environ.get("SESSION_SECRET", ""),
        session_ttl_seconds=_env_int("SESSION_TTL_SECONDS", 24 * 60 * 60),
        max_sessions=_env_int("MAX_SESSIONS", 100),
        store_backend=backend,
        data_file=data_file,
        supabase_url=supabase_url,
        supabase_key=supabase_key,
        supabase_table=os.environ.get("SUPABASE_TABLE", "members"),
        mount_prefixes=mount_prefixes,
        debug=_env_bool("DEBUG"),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        resend_api_key=os.environ.get("RESEND_API_KEY", ""),
        email_from=os.environ.get("EMAIL_FROM", "Membership <noreply@example.org>"),
    )


def setup_logging(level: str = "INFO") -> None:
    """Attach a console handler to the root logger once."""
    root = logging.getLogger()
    if root.handlers:
        return
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    root.addHandler(console)

"""
Environment-driven settings for the judging portal.
Values come from the process environment, with a .env file loaded first.
"""
from __future__ import annotations

import hashlib
import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()

# Persisted file next to this package (NOTE: on Render free tier, disk can reset on redeploy)
DEFAULT_DB_PATH = os.path.join(os.path.dirname(__file__), "judging.sqlite")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def sha256(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    backend: str = "sqlite"
    db_path: str = DEFAULT_DB_PATH
    supabase_url: str = ""
    supabase_key: str = ""
    remote_timeout_seconds: float = 10.0
    admin_pw_hash: str = sha256("admin123")
    # Backend reachable but write rejected by policy: keep the local change and warn
    policy_rejection_saves_locally: bool = True
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            backend=os.getenv("JUDGING_BACKEND", "sqlite").strip().lower(),
            db_path=os.getenv("JUDGING_DB_PATH") or DEFAULT_DB_PATH,
            supabase_url=os.getenv("SUPABASE_URL", ""),
            supabase_key=os.getenv("SUPABASE_KEY", ""),
            remote_timeout_seconds=float(os.getenv("REMOTE_TIMEOUT_SECONDS") or 10),
            admin_pw_hash=sha256(os.getenv("ADMIN_PASSWORD") or "admin123"),
            policy_rejection_saves_locally=_env_bool("POLICY_REJECTION_SAVES_LOCALLY", True),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)

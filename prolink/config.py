from __future__ import annotations

import os
from pathlib import Path
from typing import List


class Settings:
    """Centralized configuration for the relationship & permission backend."""

    def __init__(self) -> None:
        base_dir = Path(__file__).resolve().parent
        repo_root = base_dir.parent
        data_root_default = repo_root / "data"

        self.data_root: Path = Path(
            os.environ.get("PROLINK_DATA_ROOT") or data_root_default
        ).expanduser()
        self.app_db_path: Path = Path(
            os.environ.get("PROLINK_DB_PATH") or (self.data_root / "prolink.db")
        ).expanduser()
        # Seconds a writer waits for the database lock before giving up.
        self.db_timeout: float = float(os.environ.get("PROLINK_DB_TIMEOUT") or "30")

        # In production you MUST set PROLINK_JWT_SECRET. The dev fallback keeps local demos easy.
        self.jwt_secret: str = os.environ.get("PROLINK_JWT_SECRET") or "dev-secret-change-me"
        self.token_ttl_days: int = int(os.environ.get("PROLINK_TOKEN_TTL_DAYS") or "7")
        self.cookie_secure: bool = (os.environ.get("PROLINK_COOKIE_SECURE") or "").strip() in {"1", "true", "True"}

        # Invitation token hashing secret (defaults to JWT secret if not provided).
        self.invite_secret: str = os.environ.get("PROLINK_INVITE_SECRET") or self.jwt_secret
        self.invite_ttl_days: int = int(os.environ.get("PROLINK_INVITE_TTL_DAYS") or "7")
        self.invite_base_url: str = os.environ.get(
            "PROLINK_INVITE_BASE_URL", "http://localhost:5173/pro/accept-invite"
        )

        admins = os.environ.get("PROLINK_ADMIN_EMAILS", "")
        self.admin_emails: List[str] = [
            email.strip().lower() for email in admins.split(",") if email.strip()
        ]

        self.log_level: str = os.environ.get("PROLINK_LOG_LEVEL", "INFO")

        cors = os.environ.get("PROLINK_CORS_ORIGINS", "*")
        if cors.strip() == "*":
            self.cors_origins: List[str] = ["*"]
        else:
            self.cors_origins = [
                origin.strip() for origin in cors.split(",") if origin.strip()
            ]


settings = Settings()

import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        token_secret: str,
        notification_job_secret: Optional[str],
        alert_interval_minutes: int,
        alert_spend_scope: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.token_secret = token_secret
        self.notification_job_secret = notification_job_secret
        self.alert_interval_minutes = alert_interval_minutes
        self.alert_spend_scope = alert_spend_scope


ALERT_SPEND_SCOPES = ("period", "since_start")


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINTRACK_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "fintrack.db"
    database_url = os.getenv("FINTRACK_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINTRACK_TIMEZONE", "UTC")
    token_secret = os.getenv(
        "FINTRACK_TOKEN_SECRET",
        "5b0c7f0e9d1f4bb2a0e86f3f1d6a9c24e3b7d8c1f0a2b4c6d8e0f1a3b5c7d9e1",
    )
    notification_job_secret = os.getenv("FINTRACK_NOTIFICATION_JOB_SECRET") or None
    alert_interval_minutes = int(os.getenv("FINTRACK_ALERT_INTERVAL_MINUTES", "60"))
    alert_spend_scope = os.getenv("FINTRACK_ALERT_SPEND_SCOPE", "period").lower()
    if alert_spend_scope not in ALERT_SPEND_SCOPES:
        raise ValueError(
            f"FINTRACK_ALERT_SPEND_SCOPE must be one of {', '.join(ALERT_SPEND_SCOPES)}"
        )
    return Settings(
        database_url=database_url,
        timezone=timezone,
        token_secret=token_secret,
        notification_job_secret=notification_job_secret,
        alert_interval_minutes=alert_interval_minutes,
        alert_spend_scope=alert_spend_scope,
    )

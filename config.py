import os
from functools import lru_cache
from pathlib import Path


DEFAULT_CATEGORIES = "food,education,health,housing,sports"
DEFAULT_TEAM = "Emil Davidov,Dor Cohen"


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        categories: tuple[str, ...],
        created_at_tolerance_secs: float,
        log_retention_days: int,
        public_base_url: str,
        log_level: str,
        team: tuple[tuple[str, str], ...],
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.categories = categories
        self.created_at_tolerance_secs = created_at_tolerance_secs
        self.log_retention_days = log_retention_days
        self.public_base_url = public_base_url
        self.log_level = log_level
        self.team = team


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("COSTS_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def parse_categories(raw: str) -> tuple[str, ...]:
    seen: list[str] = []
    for part in raw.split(","):
        name = part.strip().lower()
        if name and name not in seen:
            seen.append(name)
    if not seen:
        raise ValueError("At least one cost category must be configured")
    return tuple(seen)


def parse_team(raw: str) -> tuple[tuple[str, str], ...]:
    members = []
    for part in raw.split(","):
        names = part.split()
        if not names:
            continue
        members.append((names[0], " ".join(names[1:])))
    return tuple(members)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "costs.db"
    database_url = os.getenv("COSTS_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("COSTS_TIMEZONE", "UTC")
    categories = parse_categories(os.getenv("COSTS_CATEGORIES", DEFAULT_CATEGORIES))
    created_at_tolerance_secs = float(
        os.getenv("COSTS_CREATED_AT_TOLERANCE_SECS", "5")
    )
    log_retention_days = int(os.getenv("COSTS_LOG_RETENTION_DAYS", "30"))
    public_base_url = os.getenv("COSTS_PUBLIC_BASE_URL", "http://localhost:8000")
    log_level = os.getenv("COSTS_LOG_LEVEL", "INFO").upper()
    team = parse_team(os.getenv("COSTS_TEAM", DEFAULT_TEAM))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        categories=categories,
        created_at_tolerance_secs=created_at_tolerance_secs,
        log_retention_days=log_retention_days,
        public_base_url=public_base_url.rstrip("/"),
        log_level=log_level,
        team=team,
    )

from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

TIMER_CONFLICT_POLICIES = ("reject", "flush")
CLOCK_OUT_POLICIES = ("flush", "discard")


class Settings(BaseSettings):
    """Application runtime configuration."""

    model_config = SettingsConfigDict(env_file=".env", env_prefix="PT_", case_sensitive=False)

    app_name: str = "PracticeTrack"
    host: str = os.getenv("PT_HOST", "127.0.0.1")
    port: int = int(os.getenv("PT_PORT", "8080"))
    log_level: str = "INFO"
    cors_origins: List[str] = Field(
        default_factory=lambda: ["http://127.0.0.1:5173", "http://localhost:5173"]
    )

    sqlite_path: Path = Path("./data/practicetrack.db")
    export_dir: Path = Path("./data/exports")

    timezone: str = os.getenv("TZ", "Asia/Kolkata")

    # Flat labour cost per tracked hour used for project yield.
    hourly_cost_rate: float = 500.0
    branch_cost_rates: Dict[str, float] = Field(default_factory=dict)

    timer_conflict_policy: str = "reject"
    clock_out_policy: str = "flush"
    timer_poll_seconds: int = 1

    upcoming_window_days: int = 7
    overdue_sweep_on_startup: bool = True

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: str | List[str]) -> List[str]:
        if isinstance(value, list):
            return value
        if not value:
            return []
        return [origin.strip() for origin in value.split(",") if origin.strip()]

    @field_validator("timer_conflict_policy")
    @classmethod
    def _check_conflict_policy(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in TIMER_CONFLICT_POLICIES:
            raise ValueError(f"timer_conflict_policy must be one of {', '.join(TIMER_CONFLICT_POLICIES)}")
        return normalized

    @field_validator("clock_out_policy")
    @classmethod
    def _check_clock_out_policy(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in CLOCK_OUT_POLICIES:
            raise ValueError(f"clock_out_policy must be one of {', '.join(CLOCK_OUT_POLICIES)}")
        return normalized

    def cost_rate_for(self, branch: Optional[str]) -> float:
        if branch and branch in self.branch_cost_rates:
            return float(self.branch_cost_rates[branch])
        return float(self.hourly_cost_rate)


settings = Settings()

# Ensure essential directories exist
settings.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
settings.export_dir.mkdir(parents=True, exist_ok=True)

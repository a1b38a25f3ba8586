from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf
from pydantic import BaseModel, Field

_HERE = Path(__file__).resolve()
_CANDIDATE_CONFIG_PATHS = [_HERE.parent / "config/config.yaml"] + [
    parent / "config/config.yaml" for parent in _HERE.parents[:3]
]

CONFIG_PATH = next((path for path in _CANDIDATE_CONFIG_PATHS if path.exists()), None)
if CONFIG_PATH is None:  # pragma: no cover - fail fast in broken installs
    raise FileNotFoundError("Default config.yaml could not be located next to the conference_backend package.")


class AppSettings(BaseModel):
    title: str = "Conference Review API"
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    master_key: str = ""
    log_level: str = "INFO"
    admin_email: str = ""


class DatabaseSettings(BaseModel):
    url: str


class StorageSettings(BaseModel):
    bucket: str = ""
    prefix: str = "uploads"
    presign_expiration: int = Field(3600, gt=0)


class MailSettings(BaseModel):
    host: str = ""
    port: int = 587
    user: str = ""
    password: str = ""
    from_email: str
    use_starttls: bool = True
    connection_timeout: float = Field(10, gt=0)
    socket_timeout: float = Field(20, gt=0)
    retry_attempts: int = Field(3, ge=1)
    cooldown_hours: float = Field(25, gt=0)


class ReminderSettings(BaseModel):
    interval_hours: float = Field(24, ge=0)
    check_every_min: float = Field(60, gt=0)
    max_reminders: int = Field(5, ge=0)
    disabled: bool = False
    initial_delay_seconds: float = Field(60, ge=0)


class IntakeSettings(BaseModel):
    max_paper_id_attempts: int = Field(6, ge=1)


class Settings(BaseModel):
    app: AppSettings
    database: DatabaseSettings
    storage: StorageSettings
    mail: MailSettings
    review_reminder: ReminderSettings
    intake: IntakeSettings


@lru_cache(maxsize=1)
def _load_default_config() -> DictConfig:
    if not CONFIG_PATH.exists():
        raise FileNotFoundError(f"Default config not found at {CONFIG_PATH}")
    return OmegaConf.load(CONFIG_PATH)


def make_runtime_config(overrides: Optional[Dict[str, Any]] = None) -> DictConfig:
    """
    Merge caller overrides on top of the YAML defaults.

    The defaults are in struct mode, so an override naming an unknown key
    raises instead of being silently ignored.
    """
    base_container = OmegaConf.to_container(_load_default_config(), resolve=False)
    base = OmegaConf.create(base_container)
    OmegaConf.set_struct(base, True)

    cli_config = OmegaConf.create(overrides or {})
    merged = DictConfig(OmegaConf.merge(base, cli_config))
    return merged


def load_settings(overrides: Optional[Dict[str, Any]] = None) -> Settings:
    """
    Build validated settings from defaults, the environment and overrides.

    A ``.env`` file in the working directory is loaded first so its values
    feed the ``oc.env`` interpolations. Settings are meant to be read once at
    process start.
    """
    load_dotenv()
    resolved = OmegaConf.to_container(make_runtime_config(overrides), resolve=True)
    return Settings.model_validate(resolved)

# Runtime configuration: read once from the environment (and .env) at startup.

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

from apex_height.errors import ConfigError

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).resolve().parent / "data"
DEFAULT_KNOWLEDGE_BASE_PATH = DATA_DIR / "known_object_dimensions.json"
DEFAULT_PROTOCOL_PROMPT_PATH = DATA_DIR / "apex_fusion_protocol.md"

REQUIRED_ENV = ("AZURE_VISION_KEY", "AZURE_VISION_ENDPOINT", "GEMINI_API_KEY")


@dataclass(frozen=True)
class Settings:
    azure_vision_key: str
    azure_vision_endpoint: str
    gemini_api_key: str
    gemini_model: str = "gemini-1.5-flash-latest"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    quota_capacity: int = 20
    quota_period_seconds: int = 3600
    vision_timeout: int = 30
    reasoning_timeout: int = 60
    analysis_timeout: int = 90
    max_images: int = 4
    max_image_bytes: int = 10 * 1024 * 1024
    max_body_bytes: int = 50 * 1024 * 1024
    knowledge_base_path: Path = DEFAULT_KNOWLEDGE_BASE_PATH
    protocol_prompt_path: Path = DEFAULT_PROTOCOL_PROMPT_PATH
    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"


def _int_env(name: str, default: int) -> int:
    v = os.environ.get(name)
    if not v:
        return default
    try:
        return int(v)
    except ValueError:
        logger.warning("Invalid %s=%r, using default %d", name, v, default)
        return default


def log_level_env(name: str = "LOG_LEVEL", default: str = "INFO") -> str:
    v = (os.environ.get(name) or default).upper()
    if not isinstance(logging.getLevelName(v), int):
        logger.warning("Invalid %s=%r, using default %s", name, v, default)
        return default
    return v


def load_settings(dotenv_path: str | None = None) -> Settings:
    """Build Settings from the process environment.

    A ``.env`` file is loaded first (without overriding variables that are
    already set). Raises ConfigError when any upstream credential is missing.
    """
    load_dotenv(dotenv_path or find_dotenv(usecwd=True))

    missing = [name for name in REQUIRED_ENV if not os.environ.get(name)]
    if missing:
        raise ConfigError(f"Missing required environment variables: {', '.join(missing)}")

    return Settings(
        azure_vision_key=os.environ["AZURE_VISION_KEY"],
        azure_vision_endpoint=os.environ["AZURE_VISION_ENDPOINT"],
        gemini_api_key=os.environ["GEMINI_API_KEY"],
        gemini_model=os.environ.get("GEMINI_MODEL") or Settings.gemini_model,
        gemini_base_url=os.environ.get("GEMINI_BASE_URL") or Settings.gemini_base_url,
        quota_capacity=_int_env("QUOTA_CAPACITY", Settings.quota_capacity),
        quota_period_seconds=_int_env("QUOTA_PERIOD_SECONDS", Settings.quota_period_seconds),
        vision_timeout=_int_env("VISION_TIMEOUT", Settings.vision_timeout),
        reasoning_timeout=_int_env("REASONING_TIMEOUT", Settings.reasoning_timeout),
        analysis_timeout=_int_env("ANALYSIS_TIMEOUT", Settings.analysis_timeout),
        max_images=_int_env("MAX_IMAGES", Settings.max_images),
        max_image_bytes=_int_env("MAX_IMAGE_BYTES", Settings.max_image_bytes),
        max_body_bytes=_int_env("MAX_BODY_BYTES", Settings.max_body_bytes),
        knowledge_base_path=Path(os.environ.get("KNOWLEDGE_BASE_PATH") or DEFAULT_KNOWLEDGE_BASE_PATH),
        protocol_prompt_path=Path(os.environ.get("PROTOCOL_PROMPT_PATH") or DEFAULT_PROTOCOL_PROMPT_PATH),
        host=os.environ.get("HOST") or Settings.host,
        port=_int_env("PORT", Settings.port),
        log_level=log_level_env(),
    )

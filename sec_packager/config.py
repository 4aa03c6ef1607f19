"""Settings read from the environment (and a `.env` file, when present)."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from sec_packager.client import DEFAULT_USER_AGENT


@dataclass(frozen=True)
class Settings:
    """Configuration shared by the CLI workflows.

    Attributes:
        sec_user_agent: User-Agent sent to SEC EDGAR (application name and contact email).
        alpha_vantage_api_key: Market data API key; market data is unavailable without it.
        finra_client_id: FINRA API client id; short interest falls back to public files without it.
        finra_client_secret: FINRA API client secret.
        output_dir: Default parent directory of downloads and packages.
        log_level: Logging level for the console.
    """

    sec_user_agent: str
    alpha_vantage_api_key: str | None
    finra_client_id: str | None
    finra_client_secret: str | None
    output_dir: Path
    log_level: int


def _optional(name: str) -> str | None:
    value = os.getenv(name, "").strip()
    return value or None


def get_settings(env_file: Path | None = None) -> Settings:
    """Load `.env` (without overriding the environment) and return a frozen `Settings`.

    Raises:
        ValueError: if SEC_PACKAGER_LOG_LEVEL is not a logging level name.
    """
    load_dotenv(env_file)

    level_name = os.getenv("SEC_PACKAGER_LOG_LEVEL", "INFO").strip().upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level '{level_name}'")

    return Settings(
        sec_user_agent=os.getenv("SEC_USER_AGENT", "").strip() or DEFAULT_USER_AGENT,
        alpha_vantage_api_key=_optional("ALPHA_VANTAGE_API_KEY"),
        finra_client_id=_optional("FINRA_CLIENT_ID"),
        finra_client_secret=_optional("FINRA_CLIENT_SECRET"),
        output_dir=Path(os.getenv("SEC_PACKAGER_OUTPUT_DIR", "") or Path.home() / "Downloads").expanduser(),
        log_level=level,
    )

# Runtime configuration
#
# Read once at start-up from the environment (and a .env file if present,
# via python-dotenv). Nothing here is consulted per request.

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import find_dotenv, load_dotenv

logger = logging.getLogger(__name__)

DATABASE_FILENAME = "strongroom.db"
KEY_FILENAME = "master.key"


def _int_env(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r", name, raw)
        return default


@dataclass
class AppConfig:
    data_dir: Path = Path("data")
    master_key: Optional[str] = None
    key_file: Optional[Path] = None
    key_id: str = "primary"
    step_up_ttl: Optional[int] = None
    session_idle_timeout: Optional[int] = 8 * 3600
    cleanup_hour: int = 3
    admin_user: Optional[str] = None
    admin_password: Optional[str] = None
    host: str = "127.0.0.1"
    port: int = 8000

    @property
    def db_path(self) -> Path:
        return self.data_dir / DATABASE_FILENAME

    @property
    def resolved_key_file(self) -> Path:
        return self.key_file or self.data_dir / KEY_FILENAME

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "AppConfig":
        """Build configuration from STRONGROOM_* environment variables."""
        if dotenv:
            load_dotenv(find_dotenv(usecwd=True))

        key_file = os.getenv("STRONGROOM_KEY_FILE")
        cleanup_hour = _int_env("STRONGROOM_CLEANUP_HOUR", 3)
        if not 0 <= cleanup_hour <= 23:
            logger.warning("STRONGROOM_CLEANUP_HOUR out of range; using 3")
            cleanup_hour = 3
        step_up_ttl = _int_env("STRONGROOM_STEP_UP_TTL", None)
        if step_up_ttl is not None and step_up_ttl <= 0:
            step_up_ttl = None
        idle_timeout = _int_env("STRONGROOM_SESSION_IDLE_TIMEOUT", 8 * 3600)
        if idle_timeout is not None and idle_timeout <= 0:
            idle_timeout = None

        return cls(
            data_dir=Path(os.getenv("STRONGROOM_DATA_DIR", "data")),
            master_key=os.getenv("STRONGROOM_MASTER_KEY") or None,
            key_file=Path(key_file) if key_file else None,
            key_id=os.getenv("STRONGROOM_KEY_ID", "primary"),
            step_up_ttl=step_up_ttl,
            session_idle_timeout=idle_timeout,
            cleanup_hour=cleanup_hour,
            admin_user=os.getenv("STRONGROOM_ADMIN_USER") or None,
            admin_password=os.getenv("STRONGROOM_ADMIN_PASSWORD") or None,
            host=os.getenv("STRONGROOM_HOST", "127.0.0.1"),
            port=_int_env("STRONGROOM_PORT", 8000),
        )

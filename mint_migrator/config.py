import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)

WORK_DIR_ENV = "MINT_MIGRATOR_WORK_DIR"
DEFAULT_WORK_DIR = Path.home() / ".mintd"


class MigrationConfig(BaseModel):
    """Locations of the legacy and SQL stores for one mint.

    All four files live in the same working directory. The auth stores are
    optional: they are only touched when the legacy auth file exists.
    """
    work_dir: Path
    source_filename: str = "mintd.kv"
    target_filename: str = "mintd.sqlite"
    auth_source_filename: str = "mintd-auth.kv"
    auth_target_filename: str = "mintd-auth.sqlite"
    # Show tqdm progress bars for per-keyset and per-quote loops
    show_progress: bool = True

    @property
    def source_path(self) -> Path:
        return self.work_dir / self.source_filename

    @property
    def target_path(self) -> Path:
        return self.work_dir / self.target_filename

    @property
    def auth_source_path(self) -> Path:
        return self.work_dir / self.auth_source_filename

    @property
    def auth_target_path(self) -> Path:
        return self.work_dir / self.auth_target_filename

    @property
    def has_auth(self) -> bool:
        return self.auth_source_path.exists()


def resolve_work_dir(work_dir: Optional[str] = None) -> Path:
    """Pick the working directory: argument, then environment, then ~/.mintd."""
    if work_dir:
        logger.info("Using work dir from command line argument")
        return Path(work_dir).expanduser()

    env_dir = os.environ.get(WORK_DIR_ENV)
    if env_dir:
        logger.info(f"Using work dir from {WORK_DIR_ENV}")
        return Path(env_dir).expanduser()

    DEFAULT_WORK_DIR.mkdir(parents=True, exist_ok=True)
    return DEFAULT_WORK_DIR

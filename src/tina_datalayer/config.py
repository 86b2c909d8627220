from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

from .core.errors import ConfigurationError


class Settings(BaseSettings):
    # Content root; every mode refuses to start without it
    root_path: Optional[str] = None

    generated_dir: str = ".tina/__generated__"
    schema_dir: str = ".tina"
    store_dirname: str = "db"

    # Version-control-aware bridge
    git_ref: str = "HEAD"
    git_author_name: Optional[str] = None
    git_author_email: Optional[str] = None

    # Indexing policy
    max_reported_errors: int = Field(default=100, ge=1)
    strict_validation: bool = False

    log_level: str = "INFO"

    # server-start
    host: str = "127.0.0.1"
    port: int = 4001

    model_config = SettingsConfigDict(
        env_prefix="TINA_",
        env_file=".env",
        extra="ignore"
    )

    def require_root(self, override: Optional[str] = None) -> Path:
        """
        Resolve the content root, preferring an explicit override.

        Raises
        ------
        ConfigurationError
            If no root path is configured.
        """
        raw = override or self.root_path
        if not raw:
            raise ConfigurationError(
                "Root path has not been configured (set TINA_ROOT_PATH or pass --root)."
            )
        return Path(raw).resolve()

settings = Settings()

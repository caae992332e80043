"""Application configuration using pydantic-settings.

Environment variables are prefixed with SSGKB_ (e.g. SSGKB_DATABASE_URL).
Defaults are set for a local single-process run against a SQLite file.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Global application settings loaded from environment variables."""

    # Database (file is created in the working directory)
    database_url: str = "sqlite+aiosqlite:///ssg.db"

    # SSG source snapshot
    source_path: str = "ssg-static"
    source_repo_url: str = ""  # Empty: use the local tree as-is
    guides_dir: str = "guides"
    tables_dir: str = "tables"
    manifests_dir: str = "manifests"
    datastreams_dir: str = "datastreams"

    # Import job tuning
    import_file_timeout_seconds: float = 300.0
    import_pause_poll_seconds: float = 1.0

    # Redis task queue broker (optional, probed by /health when set)
    redis_url: str = ""

    # API server
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Debug mode (enables SQL echo, verbose logging)
    debug: bool = False
    log_level: str = "INFO"

    model_config = {"env_prefix": "SSGKB_"}


settings = Settings()

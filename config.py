import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        data_dir: Path,
        database_url: str,
        storage_backend: str,
        timezone: str,
        autosave_quiet_secs: float,
        saved_status_secs: float,
        error_status_secs: float,
    ) -> None:
        self.data_dir = data_dir
        self.database_url = database_url
        self.storage_backend = storage_backend
        self.timezone = timezone
        self.autosave_quiet_secs = autosave_quiet_secs
        self.saved_status_secs = saved_status_secs
        self.error_status_secs = error_status_secs

    @property
    def uses_local_storage(self) -> bool:
        return self.storage_backend == "local"


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("BUDGET_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "budget.db"
    database_url = os.getenv("BUDGET_DATABASE_URL", f"sqlite:///{default_db}")
    storage_backend = os.getenv("BUDGET_STORAGE", "database").lower()
    if storage_backend not in ("database", "local"):
        raise ValueError(f"Unsupported storage backend: {storage_backend}")
    timezone = os.getenv("BUDGET_TIMEZONE", "America/Sao_Paulo")
    autosave_quiet_secs = float(os.getenv("BUDGET_AUTOSAVE_QUIET_SECS", "2"))
    saved_status_secs = float(os.getenv("BUDGET_SAVED_STATUS_SECS", "2"))
    error_status_secs = float(os.getenv("BUDGET_ERROR_STATUS_SECS", "5"))
    return Settings(
        data_dir=data_dir,
        database_url=database_url,
        storage_backend=storage_backend,
        timezone=timezone,
        autosave_quiet_secs=autosave_quiet_secs,
        saved_status_secs=saved_status_secs,
        error_status_secs=error_status_secs,
    )

from dataclasses import dataclass
from pathlib import Path
import os


@dataclass(frozen=True)
class Settings:
    app_name: str = "accessflow"
    secret_key: str = os.getenv("ACCESSFLOW_SECRET_KEY", "change-me-for-production")
    algorithm: str = "HS256"
    access_token_expire_minutes: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "120"))
    data_dir: Path = Path(os.getenv("ACCESSFLOW_DATA_DIR", str(Path(__file__).resolve().parents[2] / "data")))
    timeout_policy: str = os.getenv("ACCESSFLOW_TIMEOUT_POLICY", "block")
    seed_demo_data: bool = os.getenv("ACCESSFLOW_SEED_DEMO_DATA", "true").lower() in {"1", "true", "yes"}
    log_level: str = os.getenv("ACCESSFLOW_LOG_LEVEL", "INFO").upper()

    @property
    def event_log_path(self) -> Path:
        return self.data_dir / "events.jsonl"


settings = Settings()
settings.data_dir.mkdir(parents=True, exist_ok=True)

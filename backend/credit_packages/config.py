# backend/credit_packages/config.py

from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parents[2]  # repo root


class Settings(BaseSettings):
    database_url: str
    redis_url: str

    currency: str = "BRL"

    # Sale defaults
    default_validity_days: int = 365

    # Reports: "expiring soon" window
    expiring_soon_days: int = 30

    # Ledger: retries after a lost optimistic-lock race
    conflict_retries: int = 3

    # Expiration sweep
    expiration_sweep_enabled: bool = True
    expiration_sweep_interval: int = 3600  # seconds
    expiration_batch_size: int = 500

    # Payment tracker: discount deducted before splitting into installments
    discount_before_installments: bool = True

    # Redis queues
    events_queue: str = "events:p2p"
    income_queue: str = "ledger:income"

    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        extra="ignore",
    )

    @property
    def resolved_database_url(self) -> str:
        url = self.database_url
        if url.startswith("sqlite:///./"):
            # relative sqlite path -> absolute, anchored at the repo root
            relative_path = url.replace("sqlite:///./", "")
            absolute_path = BASE_DIR / relative_path
            return f"sqlite:///{absolute_path}"
        return url


settings = Settings()

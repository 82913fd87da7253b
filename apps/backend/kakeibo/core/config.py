from pydantic_settings import BaseSettings, SettingsConfigDict
from pathlib import Path


class Settings(BaseSettings):
    APP_NAME: str = "Kakeibo Backend"
    ENV: str = "dev"

    # apps/backend/kakeibo.sqlite3 절대경로 (CWD와 무관)
    _default_db_path = Path(__file__).resolve().parents[2] / "kakeibo.sqlite3"
    DATABASE_URL: str = f"sqlite:///{_default_db_path}"

    CORS_ORIGINS: list[str] = ["*"]
    TIMEZONE: str = "Asia/Tokyo"
    LOG_LEVEL: str = "INFO"

    # 정기 지출 스케줄 생성
    DEFAULT_HORIZON_MONTHS: int = 36
    BACKFILL_FROM_FIRST_DATE: bool = False
    HOLIDAY_CALENDAR: str = "JP"  # "JP" or "NONE"

    # 거래 후보 매칭
    CANDIDATE_WINDOW_DAYS: int = 30
    CANDIDATE_LIMIT: int = 10

    model_config = SettingsConfigDict(env_file=(".env",), env_prefix="KAKEIBO_", case_sensitive=False)


settings = Settings()

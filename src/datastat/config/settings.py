from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings managed via Pydantic Settings.
    Reads variables from environment and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    # --- Application Meta ---
    APP_NAME: str = "DataStat Workbench"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"
    LOG_FILE: str = "datastat.log"
    LOG_TO_FILE: bool = True
    LOG_MAX_BYTES: int = 5_000_000
    LOG_BACKUP_COUNT: int = 3

    # --- Server Configuration ---
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # --- Data Ingestion Limits ---
    MAX_UPLOAD_SIZE_MB: int = 10

    # --- Profiler ---
    PROFILE_SAMPLE_SIZE: int = 5
    TYPE_INFERENCE_POLICY: str = "first"  # 'first' or 'majority'
    TYPE_INFERENCE_WINDOW: int = 50

    # --- Command Interpreter ---
    LIST_DEFAULT_ROWS: int = 5
    LIST_DEFAULT_ROWS_WITH_VARS: int = 20

    # --- Aggregation (ground truth for the reasoning service) ---
    DAY_BUCKET_CAP: int = 48
    MONTH_BUCKET_CAP: int = 24
    CATEGORY_TOP_N: int = 10
    CATEGORY_CARDINALITY_CEILING: int = 50
    PROMPT_SAMPLE_ROWS: int = 3

    @field_validator("TYPE_INFERENCE_POLICY")
    @classmethod
    def validate_policy(cls, v: str) -> str:
        """Only the two documented inference policies are accepted."""
        v = v.strip().lower()
        if v not in ("first", "majority"):
            raise ValueError("TYPE_INFERENCE_POLICY must be 'first' or 'majority'")
        return v

    @field_validator("DAY_BUCKET_CAP", "MONTH_BUCKET_CAP", "CATEGORY_TOP_N")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 2:
            raise ValueError("bucket limits must be at least 2")
        return v


settings = Settings()

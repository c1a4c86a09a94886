"""
Pydantic Settings — centralized configuration loaded from environment variables.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── Application ───────────────────────────
    APP_ENV: str = "development"
    SNAPSHOT_API_VERSION: str = "v1.0.0"

    # ── Configuration files ──────────────────
    VERSIONS_CONFIG_PATH: str = "conf/versions.json"
    USERS_CONFIG_PATH: str = "conf/users.json"
    POLICY_CONFIG_PATH: str = "conf/policies.json"
    PERMISSIONS_CONFIG_PATH: str = "conf/permissions.json"

    # ── Uploads ───────────────────────────────
    UPLOAD_TMP_DIR: str = "/tmp/snapshot-gateway"
    MAX_DOCUMENT_BYTES: int = 200 * 1024 * 1024

    # ── Analysis backend ─────────────────────
    BACKEND_TIMEOUT_SECONDS: float = 600.0
    BACKEND_HEALTH_TIMEOUT_SECONDS: float = 10.0

    # ── Audit store (S3) ─────────────────────
    AWS_ACCESS_KEY_ID: str = ""
    AWS_SECRET_ACCESS_KEY: str = ""
    AWS_REGION: str = "eu-west-1"
    S3_BUCKET_NAME: str = "snapshot-audit"
    S3_FOLDER: str = "snapshot-api"

    # ── Google Sheets ────────────────────────
    GOOGLE_SHEETS_CREDENTIALS_PATH: str = "conf/googleSheets.credentials.json"

    # ── Database (individual vars, like the request-link store) ──
    POSTGRES_USER: str = "snapshot_user"
    POSTGRES_PASSWORD: str = "snapshot_pass"
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "snapshot_db"

    @property
    def DATABASE_URL(self) -> str:
        """Async URL for app runtime (asyncpg)."""
        return f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    # ── Redis / Celery ────────────────────────
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/1"

    # ── Auth / JWT ────────────────────────────
    JWT_SECRET_KEY: str = "change-this-secret-key-in-production-0000"
    JWT_ALGORITHM: str = "HS256"

    model_config = {"env_file": ["../.env", ".env"], "extra": "ignore"}


settings = Settings()

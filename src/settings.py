from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application configuration, read from ``HELPDESK_*`` environment variables
    or a local ``.env`` file.
    """

    database_url: str = "sqlite+aiosqlite:///./helpdesk.db"
    database_echo: bool = False

    # Authentication
    secret_key: str = "insecure-development-key-change-me"
    algorithm: str = "HS512"
    access_token_expire_minutes: int = 15
    refresh_token_expire_minutes: int = 10080
    password_hash_rounds: int = 300_000
    min_password_length: int = 6

    # Uploaded ticket photos
    upload_dir: str = "uploads"
    max_upload_size: int = 5 * 1024 * 1024

    # Whether the `it` role carries the same authority as `admin`
    it_role_privileged: bool = True

    # What to do with equipment types outside the stored set {PC, Laptop, Other}:
    # "reject" -> validation error, "coerce" -> store as Other, "widen" -> store as given
    equipment_type_policy: Literal["reject", "coerce", "widen"] = "reject"

    cors_origins: list[str] = [
        "http://localhost:3000",
        "https://localhost:3000",
        "http://localhost:5173",
        "https://localhost:5173",
    ]

    log_level: str = "INFO"

    # Default admin created at startup when no admin exists
    bootstrap_admin: bool = True
    bootstrap_admin_username: str = "admin"
    bootstrap_admin_email: str = "admin@company.com"
    bootstrap_admin_password: str = "admin123"
    bootstrap_admin_department: str = "IT Department"

    model_config = SettingsConfigDict(
        env_prefix="HELPDESK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()

from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Service configuration loaded from environment variables."""

    # cosign
    cosign_binary: str = "cosign"
    cosign_timeout: float = 30.0
    max_output_bytes: int = 10 * 1024 * 1024
    verify_oidc_issuer: str = "https://token.actions.githubusercontent.com"
    verify_identity: str = (
        "https://github.com/chainguard-images/images/.github/workflows/release.yaml@refs/heads/main"
    )

    # OSV vulnerability lookup
    vulnerability_lookup_enabled: bool = True
    osv_api_url: str = "https://api.osv.dev/v1/query"
    osv_timeout: float = 5.0
    osv_max_packages: int = 50
    osv_concurrency: int = 8

    cors_origins: List[str] = ["*"]
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_prefix="ATTESTGRAPH_", env_file=".env", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()

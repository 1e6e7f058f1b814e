"""
Operator settings using Pydantic.

Provides environment-based configuration loading with SECRETMANGLER_ prefix.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Operator settings."""

    # Kubernetes access
    kubeconfig: str | None = None
    context: str | None = None
    namespace: str | None = None  # None = watch all namespaces

    # SecretMangler custom resource coordinates
    crd_group: str = "secret-mangler.wreiner.at"
    crd_version: str = "v1alpha1"
    crd_plural: str = "secretmanglers"
    crd_kind: str = "SecretMangler"

    # API timeouts (seconds)
    request_timeout: float = 30.0
    watch_timeout: int = 300
    watch_retry_delay: float = 5.0

    # Controller
    workers: int = 2
    resync_interval: float = 600.0  # 0 disables periodic resync
    use_reference_index: bool = True

    # Retry backoff for store failures
    retry_backoff_base: float = 0.5
    retry_backoff_max: float = 60.0

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json, console

    @property
    def api_version(self) -> str:
        return f"{self.crd_group}/{self.crd_version}"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "SECRETMANGLER_"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

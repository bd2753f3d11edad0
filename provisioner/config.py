from __future__ import annotations

import os
from dataclasses import dataclass

STORE_BACKENDS = {"memory", "sqlite", "redis"}
ISSUERS = {"local", "cubesigner-cli", "cubesigner-api"}
LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class ConfigError(Exception):
    """Configuration error."""
    pass


def _env(name: str, default: str = "") -> str:
    return (os.getenv(name, default) or "").strip()


def _int_env(name: str, default: int) -> int:
    raw = _env(name)
    if not raw:
        return int(default)
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc


@dataclass(frozen=True)
class ProvisionerConfig:
    store_backend: str = "memory"
    db_path: str = "/app/data/provisioner.db"
    redis_url: str = "redis://localhost:6379/0"
    redis_prefix: str = "solana_to_evm:"

    issuer: str = "local"
    cubesigner_cli: str = "cs"
    cubesigner_timeout: int = 30
    cubesigner_api_base: str = "https://gamma.signer.cubist.dev"
    cubesigner_org_id: str = ""
    cubesigner_session_token: str = ""

    api_key: str = ""
    admin_key: str = ""
    log_level: str = "INFO"

    def validate(self) -> "ProvisionerConfig":
        if self.store_backend not in STORE_BACKENDS:
            raise ConfigError(f"PROVISIONER_STORE_BACKEND must be one of {sorted(STORE_BACKENDS)}, got {self.store_backend!r}")
        if self.issuer not in ISSUERS:
            raise ConfigError(f"PROVISIONER_ISSUER must be one of {sorted(ISSUERS)}, got {self.issuer!r}")
        if self.cubesigner_timeout <= 0:
            raise ConfigError("CUBESIGNER_TIMEOUT_SECONDS must be positive")
        if self.log_level not in LOG_LEVELS:
            raise ConfigError(f"PROVISIONER_LOG_LEVEL must be one of {sorted(LOG_LEVELS)}, got {self.log_level!r}")
        if self.issuer == "cubesigner-api" and not (self.cubesigner_org_id and self.cubesigner_session_token):
            raise ConfigError("cubesigner-api issuer requires CUBESIGNER_ORG_ID and CUBESIGNER_SESSION_TOKEN")
        return self

    def describe(self) -> dict:
        """Safe summary for logs / health output (no secrets)."""
        return {
            "store_backend": self.store_backend,
            "issuer": self.issuer,
            "api_key_configured": bool(self.api_key),
            "admin_key_configured": bool(self.admin_key),
        }


def load_config() -> ProvisionerConfig:
    return ProvisionerConfig(
        store_backend=_env("PROVISIONER_STORE_BACKEND", "memory").lower(),
        db_path=_env("PROVISIONER_DB_PATH", "/app/data/provisioner.db"),
        redis_url=_env("PROVISIONER_REDIS_URL", "redis://localhost:6379/0"),
        redis_prefix=_env("PROVISIONER_REDIS_PREFIX", "solana_to_evm:"),
        issuer=_env("PROVISIONER_ISSUER", "local").lower(),
        cubesigner_cli=_env("CUBESIGNER_CLI", "cs"),
        cubesigner_timeout=_int_env("CUBESIGNER_TIMEOUT_SECONDS", 30),
        cubesigner_api_base=_env("CUBESIGNER_API_BASE", "https://gamma.signer.cubist.dev"),
        cubesigner_org_id=_env("CUBESIGNER_ORG_ID"),
        cubesigner_session_token=_env("CUBESIGNER_SESSION_TOKEN"),
        api_key=_env("PROVISIONER_API_KEY"),
        admin_key=_env("PROVISIONER_ADMIN_KEY"),
        log_level=_env("PROVISIONER_LOG_LEVEL", "INFO").upper(),
    ).validate()

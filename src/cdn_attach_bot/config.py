"""Configuration loaded from environment variables."""

from dataclasses import dataclass, field
from os import environ
from pathlib import Path

from dotenv import load_dotenv

from .errors import ConfigurationError
from .policy_store import normalize_domain

MAX_FILE_SIZE = 10 * 1024 * 1024
LINK_MODES = ("policy", "domains")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class Config:
    discord_token: str
    cdn_domains: list[str] = field(default_factory=lambda: ["4cdn.org"])
    link_mode: str = "policy"
    guild_id: int | None = None
    config_dir: Path = Path("config")
    staging_dir: Path = Path("/tmp/cdn-attach-bot-staging")
    max_file_size: int = MAX_FILE_SIZE
    fetch_timeout_secs: float = 60.0
    log_level: str = "INFO"

    @property
    def policy_path(self) -> Path:
        return self.config_dir / "policies.json"

    @property
    def uses_policy(self) -> bool:
        return self.link_mode == "policy"

    @classmethod
    def from_env(cls, env_path: Path | None = None) -> "Config":
        load_dotenv(env_path)

        token = environ.get("DISCORD_TOKEN")
        if not token:
            raise ConfigurationError("DISCORD_TOKEN is required")

        domains_raw = environ.get("CDN_DOMAINS", "4cdn.org")
        try:
            cdn_domains = [normalize_domain(d) for d in domains_raw.split(",") if d.strip()]
        except ValueError as e:
            raise ConfigurationError(f"CDN_DOMAINS: {e}") from None
        if not cdn_domains:
            raise ConfigurationError("CDN_DOMAINS must name at least one domain")

        link_mode = environ.get("LINK_MODE", "policy").strip().lower()
        if link_mode not in LINK_MODES:
            raise ConfigurationError(
                f"LINK_MODE must be one of {', '.join(LINK_MODES)}, got {link_mode!r}"
            )

        guild_id_raw = environ.get("GUILD_ID", "").strip()
        guild_id = _parse_int("GUILD_ID", guild_id_raw) if guild_id_raw else None

        max_file_size = _parse_int(
            "MAX_FILE_SIZE_BYTES", environ.get("MAX_FILE_SIZE_BYTES", str(MAX_FILE_SIZE))
        )
        if max_file_size <= 0:
            raise ConfigurationError("MAX_FILE_SIZE_BYTES must be positive")

        try:
            fetch_timeout = float(environ.get("FETCH_TIMEOUT_SECS", "60"))
        except ValueError:
            raise ConfigurationError("FETCH_TIMEOUT_SECS must be a number") from None

        config_dir = Path(environ.get("CONFIG_DIR", "config")).expanduser()
        config_dir.mkdir(parents=True, exist_ok=True)

        staging_dir = Path(
            environ.get("STAGING_DIR", "/tmp/cdn-attach-bot-staging")
        ).expanduser()
        staging_dir.mkdir(parents=True, exist_ok=True)

        log_level = environ.get("LOG_LEVEL", "INFO").strip().upper()
        if log_level not in LOG_LEVELS:
            raise ConfigurationError(f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}")

        return cls(
            discord_token=token,
            cdn_domains=cdn_domains,
            link_mode=link_mode,
            guild_id=guild_id,
            config_dir=config_dir,
            staging_dir=staging_dir,
            max_file_size=max_file_size,
            fetch_timeout_secs=fetch_timeout,
            log_level=log_level,
        )


def _parse_int(name: str, raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None

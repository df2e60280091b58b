"""
Run configuration for the sync orchestrator.

Built from the YAML config document (see config.example.yaml). Credentials
may be given inline or through the environment variable named by
``cookie_env`` / ``bearer_env``.
"""
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

DEFAULT_ACADEMY_URL = "https://academy.hackthebox.com"
DEFAULT_LABS_URL = "https://labs.hackthebox.com"
DEFAULT_LABS_ORIGIN = "https://app.hackthebox.com"
DEFAULT_MACHINE_URL_BASE = "https://app.hackthebox.com/machines"

REQUIRED_SECTIONS = ["database", "academy", "labs", "sync"]
MACHINE_LOOKUP_KEYS = {"name", "id"}


class ConfigError(ValueError):
    """Invalid or incomplete run configuration."""


@dataclass
class SyncConfig:
    academy_cookie: Optional[str] = None
    labs_bearer: Optional[str] = None

    # Pacing, seconds between call starts per service
    delay_seconds: float = 2.0
    academy_delay_seconds: Optional[float] = None
    labs_delay_seconds: Optional[float] = None

    start_module_id: int = 1
    max_module_id: int = 500
    fetch_machine_tags: bool = True
    backfill_vulnerabilities: bool = True
    machine_lookup: str = "name"

    # Static module -> vulnerability ids, applied by the back-fill phase
    module_vulnerabilities: Dict[int, List[int]] = field(default_factory=dict)

    academy_base_url: str = DEFAULT_ACADEMY_URL
    labs_base_url: str = DEFAULT_LABS_URL
    labs_origin: str = DEFAULT_LABS_ORIGIN
    machine_url_base: str = DEFAULT_MACHINE_URL_BASE
    timeout_seconds: float = 30.0
    max_retries: int = 0

    def __post_init__(self):
        if self.max_module_id < self.start_module_id:
            raise ConfigError(
                f"max_module_id ({self.max_module_id}) is below start_module_id ({self.start_module_id})"
            )
        if self.delay_seconds < 0:
            raise ConfigError("delay_seconds must not be negative")
        if self.machine_lookup not in MACHINE_LOOKUP_KEYS:
            raise ConfigError(f"machine_lookup must be one of {sorted(MACHINE_LOOKUP_KEYS)}")

    def service_intervals(self) -> Dict[str, float]:
        intervals = {}
        if self.academy_delay_seconds is not None:
            intervals["academy"] = self.academy_delay_seconds
        if self.labs_delay_seconds is not None:
            intervals["labs"] = self.labs_delay_seconds
        return intervals

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "SyncConfig":
        """
        Build a SyncConfig from the parsed YAML document.

        Args:
            config: Parsed configuration with database/academy/labs/sync sections

        Returns:
            Validated SyncConfig

        Raises:
            ConfigError: If a section is missing or a value is invalid
        """
        if not isinstance(config, dict):
            raise ConfigError("Configuration must be a mapping")

        for key in REQUIRED_SECTIONS:
            if key not in config:
                raise ConfigError(f"Missing required config key: {key}")

        academy = config["academy"] or {}
        labs = config["labs"] or {}
        sync = config["sync"] or {}

        try:
            return cls(
                academy_cookie=_credential(academy, "cookie", "cookie_env", "HTB_COOKIE"),
                labs_bearer=_credential(labs, "bearer", "bearer_env", "HTB_BEARER"),
                delay_seconds=float(sync.get("delay_seconds", 2.0)),
                academy_delay_seconds=_optional_float(academy.get("delay_seconds")),
                labs_delay_seconds=_optional_float(labs.get("delay_seconds")),
                start_module_id=int(sync.get("start_module_id", 1)),
                max_module_id=int(sync.get("max_module_id", 500)),
                fetch_machine_tags=_flag(sync, "fetch_machine_tags", True),
                backfill_vulnerabilities=_flag(sync, "backfill_vulnerabilities", True),
                machine_lookup=str(sync.get("machine_lookup", "name")),
                module_vulnerabilities=_mapping(sync.get("module_vulnerabilities")),
                academy_base_url=academy.get("base_url", DEFAULT_ACADEMY_URL),
                labs_base_url=labs.get("base_url", DEFAULT_LABS_URL),
                labs_origin=labs.get("origin", DEFAULT_LABS_ORIGIN),
                machine_url_base=labs.get("machine_url_base", DEFAULT_MACHINE_URL_BASE),
                timeout_seconds=float(sync.get("timeout_seconds", 30.0)),
                max_retries=int(sync.get("max_retries", 0)),
            )
        except (TypeError, ValueError) as exc:
            if isinstance(exc, ConfigError):
                raise
            raise ConfigError(f"Invalid sync configuration: {exc}") from exc


def _credential(section: Dict[str, Any], key: str, env_key: str, default_env: str) -> Optional[str]:
    return section.get(key) or os.getenv(section.get(env_key, default_env))


def _optional_float(value: Any) -> Optional[float]:
    return None if value is None else float(value)


def _mapping(value: Any) -> Dict[int, List[int]]:
    if not value:
        return {}
    if not isinstance(value, dict):
        raise ConfigError("module_vulnerabilities must map module ids to lists of vulnerability ids")
    return {int(module_id): [int(v) for v in (vuln_ids or [])] for module_id, vuln_ids in value.items()}


def _flag(section: Dict[str, Any], key: str, default: bool) -> bool:
    value = section.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"{key} must be true or false, got {value!r}")
    return value

"""Configuration loader with layered priority.

Priority order (highest to lowest):
1. Environment variables (WUT_BROWSER, WUT_HEADLESS, WUT_PARALLEL, WUT_VERBOSE, WUT_ARTIFACTS)
2. Project config (.wut.yaml in current directory)
3. Global config (~/.wut.yaml)
4. Default values

Keys may be written in snake_case or in the camelCase used by agent JSON
configs (``retryPolicy.maxStepRetries``); both load the same fields.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# Config file paths
GLOBAL_CONFIG = Path.home() / ".wut.yaml"
PROJECT_CONFIG = Path.cwd() / ".wut.yaml"

BROWSERS = ("chromium", "chrome", "msedge", "firefox", "webkit")
MULTI_MATCH_MODES = ("first", "strict")

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


def _safe_float(value: Any, default: float) -> float:
    """Convert value to float, returning default if None or invalid."""
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _safe_int(value: Any, default: int) -> int:
    """Convert value to int, returning default if None or invalid."""
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _parse_bool(value: Any, default: bool = False) -> bool:
    """Parse boolean value from various formats.

    Handles:
    - None -> default
    - bool -> as-is
    - str -> "true", "1", "yes", "on" are True
    - other -> bool(value)
    """
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.lower() in ("true", "1", "yes", "on")
    return bool(value)


def _parse_duration_ms(value: Any, default: int) -> int:
    """Parse duration value from string ('5s', '500ms') or number (milliseconds).

    Args:
        value: Duration as string or number of milliseconds
        default: Default value if parsing fails

    Returns:
        Duration in milliseconds
    """
    if value is None:
        return default
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        value = value.strip().lower()
        try:
            if value.endswith("ms"):
                return int(float(value[:-2]))
            if value.endswith("s"):
                return int(float(value[:-1]) * 1000)
            return int(float(value))
        except ValueError:
            return default
    return default


def _snake_case(key: str) -> str:
    return _CAMEL_RE.sub("_", key).lower()


def normalize_keys(data: Any) -> Any:
    """Recursively convert camelCase mapping keys to snake_case."""
    if isinstance(data, dict):
        return {_snake_case(str(k)): normalize_keys(v) for k, v in data.items()}
    if isinstance(data, list):
        return [normalize_keys(item) for item in data]
    return data


@dataclass(frozen=True)
class RetryPolicy:
    """Per-step retry behavior, shared by every step of a run."""

    max_step_retries: int = 1
    retry_wait_ms: int = 500


@dataclass(frozen=True)
class EvidenceConfig:
    verbose: bool = False  # screenshot + DOM for every step, not only failures
    capture_console: bool = True
    capture_network: bool = True


@dataclass(frozen=True)
class ExplorationConfig:
    max_depth: int = 2
    time_budget_sec: float = 600


@dataclass(frozen=True)
class SecurityConfig:
    mask_selectors: tuple[str, ...] = ()


@dataclass(frozen=True)
class HealingConfig:
    enabled: bool = True
    min_confidence: float = 0.5


@dataclass(frozen=True)
class ResolverConfig:
    multi_match: str = "first"  # first | strict


@dataclass(frozen=True)
class AgentConfig:
    """Main configuration for wut. Immutable; use dataclasses.replace to override."""

    browser: str = "chromium"
    headless: bool = True
    explicit_timeout_ms: int = 10_000
    parallel: int = 4
    stop_on_error: bool = False
    artifacts_path: Path = Path("artifacts")
    verbose: bool = False

    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    evidence: EvidenceConfig = field(default_factory=EvidenceConfig)
    exploration: ExplorationConfig = field(default_factory=ExplorationConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    healing: HealingConfig = field(default_factory=HealingConfig)
    resolver: ResolverConfig = field(default_factory=ResolverConfig)


@dataclass(frozen=True)
class ConfigError:
    """A single validation problem."""

    field: str
    message: str

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


class ConfigLoader:
    """Loads and merges configuration from multiple sources."""

    @classmethod
    def load(cls, path: Path | None = None) -> AgentConfig:
        """Load configuration with layered priority.

        Args:
            path: Explicit config file, merged above the project config.

        Returns:
            Merged AgentConfig instance.
        """
        # Start with defaults
        config_dict: dict[str, Any] = {}

        # Layer 1: Global config (~/.wut.yaml)
        if GLOBAL_CONFIG.exists():
            global_data = cls._load_yaml(GLOBAL_CONFIG)
            config_dict = cls._deep_merge(config_dict, global_data)

        # Layer 2: Project config (.wut.yaml)
        if PROJECT_CONFIG.exists():
            project_data = cls._load_yaml(PROJECT_CONFIG)
            config_dict = cls._deep_merge(config_dict, project_data)

        if path is not None:
            config_dict = cls._deep_merge(config_dict, cls._load_yaml(path))

        # Layer 3: Environment variables (highest priority)
        env_overrides = cls._get_env_overrides()
        config_dict = cls._deep_merge(config_dict, env_overrides)

        return cls.from_dict(config_dict)

    @classmethod
    def _load_yaml(cls, path: Path) -> dict[str, Any]:
        """Load YAML file safely."""
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
                return normalize_keys(data) if isinstance(data, dict) else {}
        except (yaml.YAMLError, OSError):
            logging.getLogger("wut.config").warning("Ignoring unreadable config file %s", path)
            return {}

    @classmethod
    def _get_env_overrides(cls) -> dict[str, Any]:
        """Get configuration overrides from environment variables."""
        overrides: dict[str, Any] = {}

        if "WUT_BROWSER" in os.environ:
            overrides["browser"] = os.environ["WUT_BROWSER"]

        if "WUT_ARTIFACTS" in os.environ:
            overrides["artifacts_path"] = os.environ["WUT_ARTIFACTS"]

        if "WUT_PARALLEL" in os.environ:
            overrides["parallel"] = os.environ["WUT_PARALLEL"]

        # Boolean parsing
        if "WUT_HEADLESS" in os.environ:
            overrides["headless"] = _parse_bool(os.environ["WUT_HEADLESS"])
        if "WUT_VERBOSE" in os.environ:
            overrides["verbose"] = _parse_bool(os.environ["WUT_VERBOSE"])

        return overrides

    @classmethod
    def _deep_merge(cls, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        """Deep merge two dictionaries, with override taking precedence."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = cls._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> AgentConfig:
        """Build AgentConfig from a (possibly camelCase) dictionary."""
        config_dict = normalize_keys(config_dict)
        defaults = AgentConfig()

        retry_dict = config_dict.get("retry_policy") or {}
        evidence_dict = config_dict.get("evidence") or {}
        exploration_dict = config_dict.get("exploration") or {}
        security_dict = config_dict.get("security") or {}
        healing_dict = config_dict.get("healing") or {}
        resolver_dict = config_dict.get("resolver") or {}

        retry_policy = RetryPolicy(
            max_step_retries=_safe_int(retry_dict.get("max_step_retries"), 1),
            retry_wait_ms=_parse_duration_ms(retry_dict.get("retry_wait_ms"), 500),
        )

        evidence = EvidenceConfig(
            verbose=_parse_bool(evidence_dict.get("verbose"), False),
            capture_console=_parse_bool(evidence_dict.get("capture_console"), True),
            capture_network=_parse_bool(evidence_dict.get("capture_network"), True),
        )

        exploration = ExplorationConfig(
            max_depth=_safe_int(exploration_dict.get("max_depth"), 2),
            time_budget_sec=_safe_float(exploration_dict.get("time_budget_sec"), 600),
        )

        mask = security_dict.get("mask_selectors") or ()
        if isinstance(mask, str):
            mask = (mask,)
        security = SecurityConfig(
            mask_selectors=tuple(str(s) for s in mask),
        )

        healing = HealingConfig(
            enabled=_parse_bool(healing_dict.get("enabled"), True),
            min_confidence=_safe_float(healing_dict.get("min_confidence"), 0.5),
        )

        resolver = ResolverConfig(
            multi_match=str(resolver_dict.get("multi_match") or "first").lower(),
        )

        artifacts = config_dict.get("artifacts_path")
        return AgentConfig(
            browser=str(config_dict.get("browser") or defaults.browser).lower(),
            headless=_parse_bool(config_dict.get("headless"), defaults.headless),
            explicit_timeout_ms=_parse_duration_ms(
                config_dict.get("explicit_timeout_ms"), defaults.explicit_timeout_ms
            ),
            parallel=_safe_int(config_dict.get("parallel"), defaults.parallel),
            stop_on_error=_parse_bool(config_dict.get("stop_on_error"), defaults.stop_on_error),
            artifacts_path=Path(artifacts) if artifacts else defaults.artifacts_path,
            verbose=_parse_bool(config_dict.get("verbose"), False),
            retry_policy=retry_policy,
            evidence=evidence,
            exploration=exploration,
            security=security,
            healing=healing,
            resolver=resolver,
        )


def validate_config(config: AgentConfig) -> list[ConfigError]:
    """Check option ranges accepted for a run.

    Returns:
        List of problems; empty when the config is usable.
    """
    errors: list[ConfigError] = []

    budget = config.exploration.time_budget_sec
    if budget < 30 or budget > 3600:
        errors.append(ConfigError(
            "exploration.time_budget_sec", "time budget must be between 30 and 3600 seconds"
        ))

    if config.exploration.max_depth < 0 or config.exploration.max_depth > 5:
        errors.append(ConfigError("exploration.max_depth", "must be between 0 and 5"))

    if config.parallel < 1 or config.parallel > 20:
        errors.append(ConfigError("parallel", "must be between 1 and 20"))

    if config.retry_policy.max_step_retries < 0:
        errors.append(ConfigError("retry_policy.max_step_retries", "must not be negative"))

    if config.retry_policy.retry_wait_ms < 0:
        errors.append(ConfigError("retry_policy.retry_wait_ms", "must not be negative"))

    if config.explicit_timeout_ms <= 0:
        errors.append(ConfigError("explicit_timeout_ms", "must be positive"))

    if not 0.0 <= config.healing.min_confidence <= 1.0:
        errors.append(ConfigError("healing.min_confidence", "must be between 0 and 1"))

    if config.browser not in BROWSERS:
        errors.append(ConfigError("browser", f"must be one of: {', '.join(BROWSERS)}"))

    if config.resolver.multi_match not in MULTI_MATCH_MODES:
        errors.append(ConfigError(
            "resolver.multi_match", f"must be one of: {', '.join(MULTI_MATCH_MODES)}"
        ))

    return errors


def setup_logging(verbose: bool, log_dir: Path | None) -> Path | None:
    """Configure file-based DEBUG logging.

    Args:
        verbose: Enable logging when True
        log_dir: Directory to write debug.log

    Returns:
        Path to log file if created, None otherwise
    """
    if not verbose or log_dir is None:
        return None

    log_file = log_dir / "debug.log"
    log_dir.mkdir(parents=True, exist_ok=True)

    # Create file handler
    handler = logging.FileHandler(log_file, mode="w", encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s.%(msecs)03d [%(levelname)-5s] %(threadName)-12s %(name)-18s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    ))

    # Configure root wut logger (clear existing handlers to prevent duplicates)
    wut_logger = logging.getLogger("wut")
    for old in wut_logger.handlers:
        old.close()
    wut_logger.handlers.clear()
    wut_logger.setLevel(logging.DEBUG)
    wut_logger.addHandler(handler)

    return log_file

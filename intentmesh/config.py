"""
Configuration — Centralized settings management

Config hierarchy (highest to lowest priority):
  1. Environment variables (INTENTMESH_*)
  2. Project config (.intentmesh/config.yaml)
  3. User config (~/.intentmesh/config.yaml)
  4. Defaults

API keys are NEVER stored in config files.
They must be provided via environment variables.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .core.attribution import DEFAULT_TRACE_PATTERNS, DEFAULT_TRACES_FILE

logger = logging.getLogger(__name__)


# Supported providers and their defaults
PROVIDERS = {
    "openai": {
        "env_key": "OPENAI_API_KEY",
        "default_model": "gpt-4o-mini",
        "models": [
            "gpt-4o",
            "gpt-4o-mini",
            "gpt-4.1",
            "gpt-4.1-mini",
        ]
    },
    "claude": {
        "env_key": "ANTHROPIC_API_KEY",
        "default_model": "claude-sonnet-4-20250514",
        "models": [
            "claude-opus-4-20250514",
            "claude-sonnet-4-20250514",
            "claude-3-5-haiku-20241022",
        ]
    },
    "ollama": {
        "env_key": "",
        "default_model": "llama3.2",
        "default_base_url": "http://localhost:11434",
        "models": []  # Any locally pulled model
    },
}

DEFAULT_PROVIDER = "openai"
GROUPING_POLICIES = ("per_range", "per_file")


@dataclass
class LLMConfig:
    """LLM provider configuration."""
    provider: str = DEFAULT_PROVIDER
    model: Optional[str] = None     # None = use provider default
    base_url: Optional[str] = None  # Ollama only

    @property
    def effective_model(self) -> str:
        """Get model, falling back to provider default."""
        if self.model:
            return self.model
        return PROVIDERS.get(self.provider, {}).get("default_model", "")

    @property
    def effective_base_url(self) -> Optional[str]:
        return self.base_url or PROVIDERS.get(self.provider, {}).get("default_base_url")

    @property
    def api_key_env(self) -> str:
        """Get environment variable name for API key."""
        return PROVIDERS.get(self.provider, {}).get("env_key", "")

    @property
    def api_key(self) -> Optional[str]:
        """Get API key from environment. Never stored."""
        if not self.api_key_env:
            return None
        return os.environ.get(self.api_key_env)

    @property
    def is_local(self) -> bool:
        return self.provider == "ollama"

    def validate(self) -> Optional[str]:
        """Validate config. Returns error message or None if valid."""
        if self.provider not in PROVIDERS:
            valid = ", ".join(PROVIDERS.keys())
            return f"Unknown provider '{self.provider}'. Valid: {valid}"

        valid_models = PROVIDERS[self.provider]["models"]
        if self.model and valid_models and self.model not in valid_models:
            return f"Unknown model '{self.model}' for {self.provider}. Valid: {', '.join(valid_models)}"

        return None


@dataclass
class DetectionConfig:
    """Drift detection behaviour."""
    batch_size: int = 5           # Files analyzed concurrently per batch
    grouping: str = "per_range"   # "per_range" | "per_file"
    use_diff: bool = True         # Check only changed lines when a diff exists
    diff_context: int = 3         # Context lines around each change

    def validate(self) -> Optional[str]:
        """Validate config. Returns error message or None if valid."""
        if self.batch_size < 1:
            return f"batch_size must be >= 1, got {self.batch_size}"
        if self.grouping not in GROUPING_POLICIES:
            return f"Unknown grouping '{self.grouping}'. Valid: {', '.join(GROUPING_POLICIES)}"
        if self.diff_context < 0:
            return f"diff_context must be >= 0, got {self.diff_context}"
        return None


@dataclass
class SourcesConfig:
    """Where attribution traces and conversation transcripts live."""
    trace_patterns: List[str] = field(default_factory=lambda: list(DEFAULT_TRACE_PATTERNS))
    traces_file: str = DEFAULT_TRACES_FILE
    transcripts_dir: str = ".intentmesh/conversations"

    def validate(self) -> Optional[str]:
        if not self.transcripts_dir:
            return "transcripts_dir must not be empty"
        return None


@dataclass
class Config:
    """Application configuration."""
    llm: LLMConfig = field(default_factory=LLMConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    sources: SourcesConfig = field(default_factory=SourcesConfig)

    def validate(self) -> Optional[str]:
        for section in (self.llm, self.detection, self.sources):
            error = section.validate()
            if error:
                return error
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "llm": {
                "provider": self.llm.provider,
                "model": self.llm.model,
                "base_url": self.llm.base_url,
            },
            "detection": {
                "batch_size": self.detection.batch_size,
                "grouping": self.detection.grouping,
                "use_diff": self.detection.use_diff,
                "diff_context": self.detection.diff_context,
            },
            "sources": {
                "trace_patterns": list(self.sources.trace_patterns),
                "traces_file": self.sources.traces_file,
                "transcripts_dir": self.sources.transcripts_dir,
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Config':
        """Create from dictionary."""
        llm_data = data.get("llm") or {}
        detection_data = data.get("detection") or {}
        sources_data = data.get("sources") or {}
        defaults = SourcesConfig()

        return cls(
            llm=LLMConfig(
                provider=llm_data.get("provider", DEFAULT_PROVIDER),
                model=llm_data.get("model"),
                base_url=llm_data.get("base_url"),
            ),
            detection=DetectionConfig(
                batch_size=_to_int(detection_data.get("batch_size"), 5),
                grouping=detection_data.get("grouping", "per_range"),
                use_diff=_to_bool(detection_data.get("use_diff"), True),
                diff_context=_to_int(detection_data.get("diff_context"), 3),
            ),
            sources=SourcesConfig(
                trace_patterns=list(sources_data.get("trace_patterns") or defaults.trace_patterns),
                traces_file=sources_data.get("traces_file", defaults.traces_file),
                transcripts_dir=sources_data.get("transcripts_dir", defaults.transcripts_dir),
            ),
        )


def _to_int(value: Any, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning("Invalid integer setting %r, using %d", value, default)
        return default


def _to_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).lower() in ("true", "1", "yes", "on")


class ConfigManager:
    """
    Manages configuration loading and persistence.

    Hierarchy:
      1. Environment (INTENTMESH_LLM_PROVIDER, INTENTMESH_LLM_MODEL,
         INTENTMESH_BATCH_SIZE, INTENTMESH_GROUPING)
      2. Project config (.intentmesh/config.yaml)
      3. User config (~/.intentmesh/config.yaml)
      4. Defaults
    """

    PROJECT_CONFIG_DIR = ".intentmesh"
    CONFIG_FILE = "config.yaml"

    # Settings accepted by set(), with the parser for each value
    SETTINGS = {
        "llm.provider": str,
        "llm.model": str,
        "llm.base_url": str,
        "detection.batch_size": int,
        "detection.grouping": str,
        "detection.use_diff": lambda v: _to_bool(v, True),
        "detection.diff_context": int,
        "sources.traces_file": str,
        "sources.transcripts_dir": str,
    }

    def __init__(self, project_dir: Optional[Path] = None, user_dir: Optional[Path] = None):
        self.project_dir = Path(project_dir) if project_dir else Path.cwd()
        self.user_dir = Path(user_dir) if user_dir else Path.home() / ".intentmesh"
        self._config: Optional[Config] = None

    @property
    def project_config_path(self) -> Path:
        return self.project_dir / self.PROJECT_CONFIG_DIR / self.CONFIG_FILE

    @property
    def user_config_path(self) -> Path:
        return self.user_dir / self.CONFIG_FILE

    def _read_yaml(self, path: Path) -> Dict[str, Any]:
        if not path.exists():
            return {}
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Ignoring malformed config %s: %s", path, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring config %s: expected a mapping", path)
            return {}
        return data

    def load(self) -> Config:
        """Load configuration from all sources."""
        if self._config is not None:
            return self._config

        config_data: Dict[str, Any] = {}

        # Layer 1: User config
        config_data = self._merge(config_data, self._read_yaml(self.user_config_path))

        # Layer 2: Project config (higher priority)
        config_data = self._merge(config_data, self._read_yaml(self.project_config_path))

        # Layer 3: Environment overrides
        if os.environ.get("INTENTMESH_LLM_PROVIDER"):
            config_data.setdefault("llm", {})["provider"] = os.environ["INTENTMESH_LLM_PROVIDER"]
        if os.environ.get("INTENTMESH_LLM_MODEL"):
            config_data.setdefault("llm", {})["model"] = os.environ["INTENTMESH_LLM_MODEL"]
        if os.environ.get("INTENTMESH_BATCH_SIZE"):
            config_data.setdefault("detection", {})["batch_size"] = os.environ["INTENTMESH_BATCH_SIZE"]
        if os.environ.get("INTENTMESH_GROUPING"):
            config_data.setdefault("detection", {})["grouping"] = os.environ["INTENTMESH_GROUPING"]

        self._config = Config.from_dict(config_data)
        error = self._config.validate()
        if error:
            logger.warning("Configuration problem: %s", error)
        return self._config

    def _save(self, path: Path, config: Config):
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            yaml.safe_dump(config.to_dict(), f, default_flow_style=False)
        self._config = config

    def save_project(self, config: Config):
        """Save configuration to project config file."""
        self._save(self.project_config_path, config)

    def save_user(self, config: Config):
        """Save configuration to user config file."""
        self._save(self.user_config_path, config)

    def set(self, key: str, value: str, scope: str = "project") -> Optional[str]:
        """
        Set a configuration value.

        Args:
            key: Dot-separated key (e.g., "detection.batch_size")
            value: Value to set (parsed to the setting's type)
            scope: "project" or "user"

        Returns:
            Error message or None if successful
        """
        if key not in self.SETTINGS:
            return f"Unknown setting: {key}. Valid: {', '.join(self.SETTINGS)}"

        try:
            parsed = self.SETTINGS[key](value)
        except (TypeError, ValueError):
            return f"Invalid value for {key}: {value!r}"

        config = Config.from_dict(self.load().to_dict())
        section, setting = key.split(".")
        target = getattr(config, section)
        setattr(target, setting, parsed)

        error = target.validate()
        if error:
            return error

        if scope == "project":
            self.save_project(config)
        else:
            self.save_user(config)
        return None

    def get(self, key: str) -> Optional[str]:
        """Get a configuration value as a string."""
        parts = key.split(".")
        if len(parts) != 2:
            return None
        section, setting = parts
        config = self.load()
        if section == "llm" and setting == "model":
            return config.llm.effective_model
        value = getattr(getattr(config, section, None), setting, None)
        return None if value is None else str(value)

    def _merge(self, base: Dict, override: Dict) -> Dict:
        """Deep merge two dicts, override wins."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge(result[key], value)
            else:
                result[key] = value
        return result

    def display(self) -> str:
        """Format config for display."""
        config = self.load()

        if config.llm.is_local:
            key_status = f"local ({config.llm.effective_base_url})"
        else:
            key_status = "Set" if config.llm.api_key else f"Missing ({config.llm.api_key_env})"

        lines = [
            "Configuration:",
            "",
            "LLM:",
            f"  Provider: {config.llm.provider}",
            f"  Model: {config.llm.effective_model}",
            f"  API Key: {key_status}",
            "",
            "Detection:",
            f"  Batch size: {config.detection.batch_size}",
            f"  Grouping: {config.detection.grouping}",
            f"  Use diff: {str(config.detection.use_diff).lower()}",
            f"  Diff context: {config.detection.diff_context}",
            "",
            "Sources:",
            f"  Traces file: {config.sources.traces_file}",
            f"  Trace patterns: {', '.join(config.sources.trace_patterns)}",
            f"  Transcripts: {config.sources.transcripts_dir}",
            "",
            "Files:",
            f"  Project: {self.project_config_path}",
            f"  User: {self.user_config_path}",
        ]
        return "\n".join(lines)

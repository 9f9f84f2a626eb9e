"""
Configuration Management
========================

Provider settings and loop constants for the agent core.

Settings are loaded from environment variables and an optional
codeforge_config.json in the project directory. A .env file is honoured
through python-dotenv.
"""

import json
import logging
import os
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

MAX_TOOL_ITERATIONS = 10
DEFAULT_TEMPERATURE = 0.3
DEFAULT_MAX_TOKENS = 4096
MAX_HISTORY_MESSAGES = 50
TOOL_EXECUTION_TIMEOUT = 30.0  # seconds
MAX_AUDIT_ENTRIES = 500

# Self-improvement limits
SELF_IMPROVE_MAX_FILES = 10
OODA_TEMPERATURE = 0.2

CONFIG_FILENAME = "codeforge_config.json"
DATA_DIRNAME = ".codeforge"

PROVIDERS = ("openai", "google", "groq", "anthropic")

DEFAULT_MODELS = {
    "openai": "gpt-4o",
    "google": "gemini-2.0-flash",
    "groq": "llama-3.3-70b-versatile",
    "anthropic": "claude-sonnet-4-20250514",
}

API_KEY_ENV_VARS = {
    "openai": "OPENAI_API_KEY",
    "google": "GOOGLE_API_KEY",
    "groq": "GROQ_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}

# Paths the self-improvement cycle may never touch
PROTECTED_PATHS = (
    "lib/agent/safety/",
    "lib/agent/constants.ts",
    ".env",
    ".env.local",
    ".env.production",
)


def is_protected_path(file_path: str) -> bool:
    """Return True if file_path falls under a protected path."""
    normalized = file_path.replace("\\", "/")
    if normalized.startswith("./"):
        normalized = normalized[2:]
    return any(normalized == p or normalized.startswith(p) for p in PROTECTED_PATHS)


# =============================================================================
# Agent Configuration
# =============================================================================

@dataclass
class AgentConfig:
    """Settings for one provider connection."""
    provider: str = "groq"
    api_key: str = ""
    model: str = ""
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS
    base_url: Optional[str] = None
    # Extra HTTP headers sent with every provider request
    headers: dict = field(default_factory=dict)

    def __post_init__(self):
        if self.provider not in PROVIDERS:
            raise ValueError(
                f"Unknown provider: {self.provider} (expected one of {', '.join(PROVIDERS)})"
            )
        if not self.model:
            self.model = DEFAULT_MODELS[self.provider]

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def to_dict(self, redact: bool = True) -> dict:
        data = asdict(self)
        if redact and data["api_key"]:
            data["api_key"] = data["api_key"][:4] + "..."
        return data

    @classmethod
    def load(
        cls,
        project_dir: Optional[Path] = None,
        provider: Optional[str] = None,
        model: Optional[str] = None,
    ) -> "AgentConfig":
        """
        Load configuration from multiple sources in precedence order:
        1. Explicit arguments
        2. Environment variables (and .env)
        3. Project config file (codeforge_config.json)
        4. Default values
        """
        load_dotenv()

        config: dict = {
            "provider": "groq",
            "temperature": DEFAULT_TEMPERATURE,
            "max_tokens": DEFAULT_MAX_TOKENS,
        }

        config_path = Path(project_dir or Path.cwd()) / CONFIG_FILENAME
        if config_path.exists():
            try:
                file_config = json.loads(config_path.read_text(encoding="utf-8"))
                config.update(
                    {k: v for k, v in file_config.items() if k in cls.__dataclass_fields__}
                )
            except (json.JSONDecodeError, OSError) as e:
                logger.warning("Failed to load config file %s: %s", config_path, e)

        if os.environ.get("CODEFORGE_PROVIDER"):
            config["provider"] = os.environ["CODEFORGE_PROVIDER"]
        if os.environ.get("CODEFORGE_MODEL"):
            config["model"] = os.environ["CODEFORGE_MODEL"]
        if os.environ.get("CODEFORGE_TEMPERATURE"):
            config["temperature"] = float(os.environ["CODEFORGE_TEMPERATURE"])
        if os.environ.get("CODEFORGE_MAX_TOKENS"):
            config["max_tokens"] = int(os.environ["CODEFORGE_MAX_TOKENS"])

        if provider:
            config["provider"] = provider
            if not model:
                # Fall back to the provider default rather than a foreign model
                config.pop("model", None)
        if model:
            config["model"] = model

        if not config.get("api_key"):
            env_var = API_KEY_ENV_VARS.get(config["provider"], "")
            config["api_key"] = os.environ.get(env_var, "")

        return cls(**config)


@dataclass
class OODAConfig:
    """Credentials for the self-improvement engine (separate from chat)."""
    provider: str = "groq"
    api_key: str = ""
    model: str = ""
    temperature: float = OODA_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS
    max_files: int = SELF_IMPROVE_MAX_FILES

    @classmethod
    def from_env(cls) -> "OODAConfig":
        """Load self-improvement settings from environment variables."""
        load_dotenv()
        provider = os.environ.get("CODEFORGE_OODA_PROVIDER", "groq")
        return cls(
            provider=provider,
            api_key=os.environ.get("CODEFORGE_OODA_API_KEY")
            or os.environ.get(API_KEY_ENV_VARS.get(provider, ""), ""),
            model=os.environ.get("CODEFORGE_OODA_MODEL", ""),
            temperature=float(os.environ.get("CODEFORGE_OODA_TEMPERATURE", str(OODA_TEMPERATURE))),
        )

    def to_agent_config(self) -> AgentConfig:
        return AgentConfig(
            provider=self.provider,
            api_key=self.api_key,
            model=self.model,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )

import os
from pathlib import Path
from typing import Optional

import yaml

from prwarden_core.errors import ConfigurationError

DEFAULT_CONFIG: dict = {
    "model": "anthropic",  # LLM used for intent classification: anthropic | openai
    "llm_model": None,  # None = provider default
    "llm_base_url": None,  # OpenAI-compatible endpoint, e.g. https://openrouter.ai/api/v1
    "agent_url": "http://127.0.0.1:4096",
    "agent_model": None,  # "provider/model"; None = agent's own default
    "review_timeout": 1800,  # seconds, whole multi-pass review
    "max_retries": 1,  # whole-session retries after the first attempt
    "retry_backoff": 5,  # seconds, multiplied by the attempt number
    "idle_grace_seconds": 10,
    "loop_window": 10,
    "loop_threshold": 5,
    "problem_threshold": 5,  # findings scored below this are not posted
    "blocking_threshold": 8,  # findings scored at or above this block merging
    "require_task_info": False,
    "injection_screening": True,  # screen replies and questions before they reach the agent
    "enable_human_escalation": False,
    "human_reviewers": [],
    "manual_start_comment": True,
    "manual_end_comment": True,
    "bot_mentions": ["@prwarden", "@prwarden-bot"],
    "bot_users": ["github-actions[bot]", "prwarden[bot]"],
    "debug_logging": False,
}

_PROVIDERS = ("anthropic", "openai")
_LIST_KEYS = ("human_reviewers", "bot_mentions", "bot_users")


def load_config(config_path: str = ".prwarden.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .prwarden.yml in the current directory
      3. CLI argument overrides
    """
    config = {**DEFAULT_CONFIG, **{key: list(DEFAULT_CONFIG[key]) for key in _LIST_KEYS}}

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        config.update(file_config)

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    # Resolve credentials from environment variables
    config["github_token"] = os.environ.get("GITHUB_TOKEN")
    config["anthropic_api_key"] = os.environ.get("ANTHROPIC_API_KEY")
    config["openai_api_key"] = os.environ.get("OPENAI_API_KEY")
    config["agent_password"] = os.environ.get("OPENCODE_SERVER_PASSWORD")

    return config


def validate_config(config: dict) -> None:
    """Raise ConfigurationError when the configuration cannot drive a run."""
    model = config.get("model")
    if model not in _PROVIDERS:
        raise ConfigurationError(f"Unknown model provider {model!r}; expected one of {', '.join(_PROVIDERS)}.")
    if not config.get(f"{model}_api_key"):
        raise ConfigurationError(f"{model.upper()}_API_KEY is not set.")

    for key in ("problem_threshold", "blocking_threshold"):
        value = config.get(key)
        if not isinstance(value, int) or not 1 <= value <= 10:
            raise ConfigurationError(f"{key} must be an integer between 1 and 10, got {value!r}.")

    for key in ("review_timeout", "idle_grace_seconds", "loop_window", "loop_threshold"):
        value = config.get(key)
        if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
            raise ConfigurationError(f"{key} must be a positive number, got {value!r}.")

    for key in ("max_retries", "retry_backoff"):
        value = config.get(key)
        if not isinstance(value, (int, float)) or isinstance(value, bool) or value < 0:
            raise ConfigurationError(f"{key} must not be negative, got {value!r}.")

    if config["loop_threshold"] > config["loop_window"]:
        raise ConfigurationError("loop_threshold cannot exceed loop_window.")

    if not config.get("bot_mentions"):
        raise ConfigurationError("bot_mentions must list at least one mention.")

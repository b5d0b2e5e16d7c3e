from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_AI_NAME = "BITSoM Admissions Assistant"
DEFAULT_OWNER_NAME = "BITSoM Admissions"


@dataclass
class RuntimeEnv:
    provider_api_key: str
    provider_env_var: str


@dataclass
class AppConfig:
    provider_name: str
    model: str
    max_tokens: int
    temperature: float
    ai_name: str
    owner_name: str
    welcome_message: str
    clear_chat_text: str
    storage_enabled: bool
    storage_dir: str
    max_message_chars: int
    web_search_enabled: bool
    log_level: str
    log_consumers: list | None


def load_json_config() -> dict:
    config_path = Path.cwd() / "config.json"
    if config_path.exists():
        with open(config_path) as f:
            return json.load(f)
    return {}


def _to_bool(value: object, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return bool(value)


def default_welcome_message(ai_name: str) -> str:
    return (
        f"Hi! I'm {ai_name}. Ask me anything about the BITSoM MBA: eligibility, the application "
        "process and deadlines, fees and scholarships, the curriculum, or placements and campus life."
    )


def parse_app_config(config: dict) -> AppConfig:
    ai_name = str(config.get("AiName", DEFAULT_AI_NAME)).strip() or DEFAULT_AI_NAME
    return AppConfig(
        provider_name=config.get("Provider", "anthropic").strip().lower(),
        model=config.get("Model", "claude-sonnet-4-5-20250929"),
        max_tokens=int(config.get("MaxTokens", 4096)),
        temperature=float(config.get("Temperature", 0.7)),
        ai_name=ai_name,
        owner_name=str(config.get("OwnerName", DEFAULT_OWNER_NAME)).strip() or DEFAULT_OWNER_NAME,
        welcome_message=config.get("WelcomeMessage") or default_welcome_message(ai_name),
        clear_chat_text=config.get("ClearChatText", "New"),
        storage_enabled=_to_bool(config.get("StorageEnabled", True), default=True),
        storage_dir=str(config.get("StorageDir", ".admissions_chat")),
        max_message_chars=int(config.get("MaxMessageChars", 2000)),
        web_search_enabled=_to_bool(config.get("WebSearchEnabled", False), default=False),
        log_level=config.get("LogLevel", "INFO"),
        log_consumers=config.get("LogConsumers"),
    )


def resolve_runtime_env(provider_name: str) -> RuntimeEnv:
    if provider_name == "openai":
        provider_env_var = "OPENAI_API_KEY"
    else:
        provider_env_var = "ANTHROPIC_API_KEY"

    return RuntimeEnv(
        provider_api_key=os.environ.get(provider_env_var, ""),
        provider_env_var=provider_env_var,
    )

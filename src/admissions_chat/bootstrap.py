from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from admissions_chat.app_config import AppConfig, RuntimeEnv
from admissions_chat.chat_view import ChatView
from admissions_chat.logging_config import setup_logging
from admissions_chat.persistence import PersistenceAdapter
from admissions_chat.services.session_controller import SessionController
from admissions_chat.storage import JsonFileStorage
from admissions_chat.system_prompt import build_system_prompt
from admissions_chat.transport import create_transport


@dataclass
class AppRuntime:
    controller: SessionController
    view: ChatView
    storage_path: Path | None
    log_descriptions: list[str]


async def bootstrap_runtime(app: AppConfig, env: RuntimeEnv) -> AppRuntime:
    storage_dir = Path(app.storage_dir)
    if not storage_dir.is_absolute():
        storage_dir = Path.cwd() / storage_dir

    log_descriptions = setup_logging(level=app.log_level, consumers=app.log_consumers, log_dir=storage_dir)

    storage = JsonFileStorage(str(storage_dir)) if app.storage_enabled else None

    transport = create_transport(
        app.provider_name,
        env.provider_api_key,
        model=app.model,
        max_tokens=app.max_tokens,
        temperature=app.temperature,
        system_prompt=build_system_prompt(app.ai_name, app.owner_name),
        web_search=app.web_search_enabled,
    )

    controller = SessionController(
        PersistenceAdapter(storage),
        transport,
        welcome_message=app.welcome_message,
    )
    await controller.start()

    return AppRuntime(
        controller=controller,
        view=ChatView(ai_name=app.ai_name),
        storage_path=storage.directory if storage is not None else None,
        log_descriptions=log_descriptions,
    )

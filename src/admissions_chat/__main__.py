import asyncio
import signal
import sys

from dotenv import load_dotenv
from loguru import logger

from admissions_chat.app_config import load_json_config, parse_app_config, resolve_runtime_env
from admissions_chat.bootstrap import bootstrap_runtime
from admissions_chat.chat_view import ChatView
from admissions_chat.commands.router import HELP_LINES, CommandRouter
from admissions_chat.services.session_controller import SessionController
from admissions_chat.validation import MessageValidationError, validate_message


async def wait_for_response(controller: SessionController) -> None:
    """Wait for the current exchange; Ctrl+C stops it instead of quitting."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, controller.stop)
        installed = True
    except (NotImplementedError, RuntimeError):
        installed = False
    try:
        await controller.wait_until_settled()
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


def clear_chat(controller: SessionController, view: ChatView) -> None:
    controller.clear()
    view.render_notice("Chat cleared")
    controller.hydrate()
    view.render_transcript(controller.snapshot())


async def main() -> None:
    load_dotenv()

    app = parse_app_config(load_json_config())
    env = resolve_runtime_env(app.provider_name)
    if not env.provider_api_key:
        logger.error(f"{env.provider_env_var} environment variable is required.")
        sys.exit(1)

    runtime = await bootstrap_runtime(app, env)
    controller, view = runtime.controller, runtime.view

    view.render_loading()
    controller.hydrate()
    view.render_transcript(controller.snapshot())
    controller.subscribe(view.on_snapshot)

    router = CommandRouter(
        on_help=lambda: view.render_help(HELP_LINES),
        on_clear=lambda: clear_chat(controller, view),
        on_unknown=lambda command: view.render_notice(f"Unknown command: {command} (try /help)"),
        clear_aliases=("/clear", f"/{app.clear_chat_text.strip().lower()}"),
    )

    print(f"Chat with {app.ai_name} (type 'exit' to quit, '/help' for commands, '/clear' to start over)")
    if runtime.storage_path is not None:
        print(f"Conversation saved in: {runtime.storage_path}")
    if runtime.log_descriptions:
        print(f"Logging: {', '.join(runtime.log_descriptions)}")
    print()

    try:
        while True:
            try:
                user_input = input(ChatView.USER_PREFIX)
            except (EOFError, KeyboardInterrupt):
                break

            trimmed = user_input.strip()

            if trimmed in ("exit", "quit"):
                break

            if not trimmed:
                continue

            if router.try_handle(trimmed):
                continue

            try:
                message = validate_message(trimmed, max_chars=app.max_message_chars)
            except MessageValidationError as ex:
                view.render_notice(str(ex))
                continue

            try:
                controller.submit(message)
                await wait_for_response(controller)
            except Exception as ex:
                logger.error(f"Unhandled error: {ex}")
    finally:
        await controller.close()


if __name__ == "__main__":
    asyncio.run(main())

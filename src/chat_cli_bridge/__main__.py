import asyncio

from dotenv import load_dotenv
from loguru import logger

from chat_cli_bridge.app_config import load_json_config, parse_app_config
from chat_cli_bridge.bootstrap import bootstrap_runtime
from chat_cli_bridge.commands.router import HELP_TEXT, CommandRouter
from chat_cli_bridge.console_delivery import ConsoleDelivery
from chat_cli_bridge.rendering.formatter import HtmlFormatter
from chat_cli_bridge.rendering.plain_text import html_to_text
from chat_cli_bridge.sessions import CancelOutcome, SendStatus


async def main() -> None:
    # The assistant CLI inherits this environment, API keys included.
    load_dotenv()

    app = parse_app_config(load_json_config())
    runtime = bootstrap_runtime(app, delivery=ConsoleDelivery())
    orchestrator = runtime.orchestrator
    formatter = HtmlFormatter()
    user_id = app.console_user_id

    def show(html: str) -> None:
        print(html_to_text(html))
        print()

    async def on_help() -> None:
        print(HELP_TEXT)
        print()

    async def on_cancel() -> None:
        if orchestrator.cancel(user_id) is CancelOutcome.CANCELLED:
            print("Cancelling the running request.")
        else:
            print("Nothing is running.")

    async def on_status() -> None:
        status = orchestrator.status(user_id)
        if status is None:
            print("No active session. Send a message to start!")
            return
        show(formatter.format_status(status, model=app.model, working_directory=app.working_directory))

    async def on_end() -> None:
        status = await orchestrator.end(user_id)
        if status is None:
            print("No active session.")
            return
        print(f"Session ended after {status.message_count} message(s).")

    async def on_new() -> None:
        await orchestrator.new_session(user_id, user_id)
        print("Started a fresh session.")

    async def on_sessions() -> None:
        status = orchestrator.status(user_id)
        current = (status.session_id or status.stored_session_id) if status is not None else None
        entries = [(entry, orchestrator.summary(entry.session_id)) for entry in orchestrator.history(user_id)]
        show(formatter.format_history(entries, current))

    async def on_resume(session_id: str) -> None:
        if await orchestrator.attach(user_id, session_id, user_id):
            print(f"The next message continues session {session_id}.")
        else:
            print("A request is still running; /cancel it first.")

    def on_invalid(command: str) -> None:
        print(f"Cannot run {command!r}. Type /help for commands.")

    router = CommandRouter(
        on_help=on_help,
        on_cancel=on_cancel,
        on_status=on_status,
        on_end=on_end,
        on_new=on_new,
        on_sessions=on_sessions,
        on_resume=on_resume,
        on_invalid=on_invalid,
    )

    print("chat-cli-bridge (type 'exit' to quit, '/help' for commands)")
    print(f"Assistant: {app.assistant_executable} --model {app.model}")
    print(f"Working directory: {app.working_directory}")
    if runtime.log_descriptions:
        print(f"Logging: {', '.join(runtime.log_descriptions)}")
    print()

    try:
        while True:
            try:
                user_input = await asyncio.to_thread(input, "you> ")
            except (EOFError, KeyboardInterrupt):
                break

            trimmed = user_input.strip()
            if trimmed in ("exit", "quit"):
                break
            if not trimmed:
                continue

            try:
                if await router.try_handle(trimmed):
                    continue
                result = await orchestrator.send(user_id, trimmed, chat_id=user_id)
                if result.status is SendStatus.BUSY:
                    print("Still working on the previous request; /cancel to stop it.")
                elif result.status is SendStatus.ACCEPTED:
                    await orchestrator.join(user_id)
            except Exception as ex:
                logger.error(f"Unhandled error: {ex}")
    finally:
        await runtime.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()

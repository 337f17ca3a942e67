import asyncio
import logging
import sqlite3
import sys
from pathlib import Path

from dotenv import load_dotenv

from tllm.args import build_options, get_parser
from tllm.client import ProviderClient
from tllm.exceptions import TllmError
from tllm.io import InputOutput
from tllm.session import Session, SessionController
from tllm.store import ConversationStore

logger = logging.getLogger("tllm")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def load_dotenv_files(env_file, encoding="utf-8"):
    dotenv_files = [".env"]
    if env_file and env_file not in dotenv_files:
        dotenv_files.append(env_file)
    loaded = []
    for fname in dotenv_files:
        try:
            if Path(fname).exists():
                load_dotenv(fname, override=True, encoding=encoding)
                loaded.append(fname)
        except OSError as e:
            print(f"OSError loading {fname}: {e}")
    return loaded


def setup_logging(log_file, verbose=False):
    """Send tllm's log records to ``log_file``; the terminal only shows InputOutput messages."""
    for handler in list(logger.handlers):
        if getattr(handler, "_tllm_handler", False):
            logger.removeHandler(handler)
            handler.close()

    log_file = Path(log_file)
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_file, encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._tllm_handler = True

    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False

    logging.getLogger("LiteLLM").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    return handler


def read_system_prompt(path):
    if not path:
        return None
    prompt = Path(path).read_text(encoding="utf-8").strip()
    return prompt or None


async def run(options, io, store, client_factory=ProviderClient):
    session = Session(
        provider=options.provider,
        model=options.model,
        system_prompt=read_system_prompt(options.system_prompt_path),
        continue_after_reply=options.respond,
    )
    controller = SessionController(
        store,
        io,
        session,
        client_factory=client_factory,
        editor=options.editor_command,
        stream=options.stream,
        max_retries=options.max_retries,
        generate_name=options.generate_name,
    )

    if options.export_path:
        count = controller.export(options.export_path)
        io.tool_output(f"Exported {count} conversations to {options.export_path}")
        return 0

    if options.list:
        await controller.select_from_list()
    elif options.load_last:
        controller.load_last()

    if options.open:
        controller.show_conversation()

    # With nothing else to do, compose the message in the editor
    acted = options.list or options.load_last or options.open or options.respond
    message = controller.resolve_message(options.message)
    if options.editor or (not message and not acted):
        message = controller.compose_in_editor(initial=message or "")
        if not message:
            io.tool_output("Empty message, nothing sent.")
    elif message is not None and not message.strip():
        io.tool_output("Empty message, nothing sent.")
        message = None

    if message:
        await controller.send_message(message)

    if options.respond:
        await controller.continue_loop()

    if session.conversation is not None:
        logger.info("conversation %s saved to %s", session.conversation.id, store.path)
    return 0


def main(argv=None, output=None, client_factory=ProviderClient):
    if argv is None:
        argv = sys.argv[1:]

    parser = get_parser()
    args = parser.parse_args(argv)
    options = build_options(args)

    load_dotenv_files(options.env_file)
    setup_logging(options.log_file, options.verbose)
    logger.debug("options: %s", options)

    io = InputOutput(pretty=options.pretty, output=output)

    try:
        with ConversationStore(options.database_path) as store:
            return asyncio.run(run(options, io, store, client_factory=client_factory))
    except TllmError as err:
        logger.debug("aborted", exc_info=True)
        lines = str(err).strip().splitlines()
        io.tool_error(lines[0] if lines else type(err).__name__)
        return 1
    except (OSError, sqlite3.Error) as err:
        logger.debug("aborted", exc_info=True)
        io.tool_error(f"Error: {err}")
        return 1
    except KeyboardInterrupt:
        io.tool_warning("Interrupted.")
        return 130


if __name__ == "__main__":
    status = main()
    sys.exit(status)

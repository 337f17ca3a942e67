import argparse
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import configargparse

from tllm import __version__
from tllm.providers import DEFAULT_MAX_RETRIES, Provider


def get_config_dir() -> Path:
    return Path.home() / ".config" / "tllm"


def get_local_dir() -> Path:
    return Path.home() / ".local" / "tllm"


def default_config_files():
    return [str(get_config_dir() / "config")]


def default_database_path() -> Path:
    return get_local_dir() / "tllm.sqlite"


def default_log_file() -> Path:
    return get_local_dir() / "logs" / "debug.log"


def default_system_prompt_path() -> Path:
    return get_config_dir() / "system_prompt"


def get_parser(config_files=None):
    if config_files is None:
        config_files = default_config_files()

    parser = configargparse.ArgumentParser(
        description="tllm is a terminal client for chatting with LLM providers",
        add_config_file_help=True,
        default_config_files=config_files,
        config_file_parser_class=configargparse.DefaultConfigFileParser,
        auto_env_var_prefix="TLLM_",
    )

    ##########
    group = parser.add_argument_group("Message")
    group.add_argument(
        "message",
        metavar="MESSAGE",
        nargs="?",
        default=None,
        help="Message to send, or the path of a file whose content is the message",
    )
    group.add_argument(
        "-a",
        "--provider",
        metavar="PROVIDER",
        choices=[p.value for p in Provider],
        default=Provider.ANTHROPIC.value,
        help="Provider to send the message to (default: anthropic)",
    )
    group.add_argument(
        "-m",
        "--model",
        metavar="MODEL",
        default=None,
        help="Model to use instead of the provider's default",
    )
    group.add_argument(
        "--system-prompt",
        metavar="SYSTEM_PROMPT_FILE",
        default=None,
        help=f"File holding the system prompt (default: {default_system_prompt_path()})",
    )
    group.add_argument(
        "-s",
        "--stream",
        action=argparse.BooleanOptionalAction,
        default=False,
        help="Stream the reply as it is generated (default: False)",
    )
    group.add_argument(
        "--max-retries",
        type=int,
        default=DEFAULT_MAX_RETRIES,
        metavar="N",
        help=f"Retries for rate limits and network failures (default: {DEFAULT_MAX_RETRIES})",
    )

    ##########
    group = parser.add_argument_group("Conversations")
    group.add_argument(
        "-L",
        "--list",
        action="store_true",
        default=False,
        help="Pick a stored conversation in the editor",
    )
    group.add_argument(
        "-l",
        "--load-last",
        action="store_true",
        default=False,
        help="Continue the most recently updated conversation",
    )
    group.add_argument(
        "-e",
        "--editor",
        action="store_true",
        default=False,
        help="Write the message in $EDITOR, with the conversation so far above it",
    )
    group.add_argument(
        "-r",
        "--respond",
        action="store_true",
        default=False,
        help="Reopen the editor after every reply until an empty message is saved",
    )
    group.add_argument(
        "-o",
        "--open",
        action="store_true",
        default=False,
        help="Print the selected conversation",
    )
    group.add_argument(
        "-n",
        "--generate-name",
        action="store_true",
        default=False,
        help="Ask the provider for a short title for new conversations",
    )
    group.add_argument(
        "--export",
        metavar="EXPORT_FILE",
        default=None,
        help="Write every stored conversation to this file as JSON and exit",
    )
    group.add_argument(
        "--database",
        metavar="DATABASE_FILE",
        default=None,
        help=f"Conversation store location (default: {default_database_path()})",
    )
    group.add_argument(
        "--editor-command",
        metavar="COMMAND",
        default=None,
        help="Editor to launch instead of $VISUAL/$EDITOR",
    )

    ##########
    group = parser.add_argument_group("Other settings")
    group.add_argument(
        "-c",
        "--config",
        is_config_file=True,
        metavar="CONFIG_FILE",
        help=(
            "Specify the config file (default: search for ~/.config/tllm/config)."
            " Lines are key = value pairs named after the long options."
        ),
    )
    group.add_argument(
        "--env-file",
        metavar="ENV_FILE",
        default=".env",
        help="Specify the .env file to load (default: .env in the current dir)",
    )
    group.add_argument(
        "--log-file",
        metavar="LOG_FILE",
        default=None,
        help=f"Log file location (default: {default_log_file()})",
    )
    group.add_argument(
        "--pretty",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Enable/disable pretty, colorized output (default: True)",
    )
    group.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=False,
        help="Enable verbose logging",
    )
    group.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
        help="Show the version number and exit",
    )

    return parser


@dataclass
class Options:
    """Resolved options the session controller works from."""

    provider: Provider
    message: Optional[str] = None
    model: Optional[str] = None
    system_prompt_path: Optional[Path] = None
    list: bool = False
    load_last: bool = False
    editor: bool = False
    respond: bool = False
    stream: bool = False
    open: bool = False
    generate_name: bool = False
    export_path: Optional[Path] = None
    database_path: Path = None
    editor_command: Optional[str] = None
    max_retries: int = DEFAULT_MAX_RETRIES
    log_file: Path = None
    verbose: bool = False
    pretty: bool = True
    env_file: Optional[str] = None


def build_options(args) -> Options:
    system_prompt_path = Path(args.system_prompt) if args.system_prompt else None
    if system_prompt_path is None and default_system_prompt_path().is_file():
        system_prompt_path = default_system_prompt_path()

    return Options(
        provider=Provider(args.provider),
        message=args.message,
        model=args.model,
        system_prompt_path=system_prompt_path,
        list=args.list,
        load_last=args.load_last,
        editor=args.editor,
        respond=args.respond,
        stream=args.stream,
        open=args.open,
        generate_name=args.generate_name,
        export_path=Path(args.export) if args.export else None,
        database_path=Path(args.database) if args.database else default_database_path(),
        editor_command=args.editor_command,
        max_retries=args.max_retries,
        log_file=Path(args.log_file) if args.log_file else default_log_file(),
        verbose=args.verbose,
        pretty=args.pretty,
        env_file=args.env_file,
    )

from __future__ import annotations

import argparse
import json
import logging
import sys
from functools import partial
from pathlib import Path
from typing import Any, Never, Sequence

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.pretty import Pretty
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text
from rich_argparse import RawTextRichHelpFormatter
from snippet_runner import (
    Backend,
    CodeLanguage,
    ExecutionRequest,
    ExecutionResult,
    RunnerSettings,
    run_function_sync,
)
from snippet_runner.languages import language_display_name, parse_language
from snippet_runner.resolver import resolve_code_variables
from snippet_runner.wrapper import wrap_code

_CONSOLE = Console(no_color=False)


class _CLIHelpFormatter(RawTextRichHelpFormatter):
    """Rich formatter with explicit high-contrast CLI styles.

    Example:
        ```python
        parser = argparse.ArgumentParser(formatter_class=_CLIHelpFormatter)
        ```
    """

    styles = {
        "argparse.args": "bold cyan",
        "argparse.groups": "bold magenta",
        "argparse.help": "white",
        "argparse.metavar": "bold yellow",
        "argparse.prog": "bold bright_blue",
        "argparse.syntax": "bold bright_white",
        "argparse.text": "bright_white",
    }


_HELP_FORMATTER = partial(
    _CLIHelpFormatter,
    max_help_position=34,
    width=120,
)


class _RichArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that renders errors via Rich.

    Example:
        ```python
        parser = _RichArgumentParser(prog="snr")
        ```
    """

    def error(self, message: str) -> Never:
        """Render parse errors with Rich and exit.

        Example:
            ```python
            # parser.error("invalid usage")
            ```
        """
        _CONSOLE.print(Panel.fit(f"[bold red]Error:[/bold red] {message}", border_style="red"))
        self.print_help()
        raise SystemExit(2)


def _add_input_arguments(cmd: argparse.ArgumentParser) -> None:
    """Attach the snippet file and reference value options to a command.

    Example:
        ```python
        _add_input_arguments(sub.add_parser("resolve"))
        ```
    """
    cmd.add_argument("file", help="Snippet file to read, or '-' for stdin.")
    cmd.add_argument(
        "--language",
        default=CodeLanguage.JAVASCRIPT.value,
        choices=[language.value for language in CodeLanguage],
        help="Snippet language (default: javascript).",
    )
    cmd.add_argument(
        "--params",
        default="{}",
        help=(
            "JSON object of input parameters.\n"
            "Example: --params '{\"name\": \"Ada\"}'"
        ),
    )
    cmd.add_argument(
        "--env",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Environment variable for {{KEY}} references. Repeatable.",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser for running and inspecting snippets.

    Example:
        ```python
        parser = build_parser()
        ```
    """
    parser = _RichArgumentParser(
        prog="snr",
        description=(
            "snippet-runner CLI\n"
            "Execute JavaScript or Python snippets in a local or remote sandbox\n"
            "and inspect how references and wrappers are applied."
        ),
        epilog=(
            "Quick Examples:\n"
            "  snr run handler.js --params '{\"x\": 2}'\n"
            "  snr run handler.py --language python --local\n"
            "  snr run handler.js --env API_KEY=secret --json\n"
            "  snr resolve handler.js --params '{\"x\": 2}'\n"
            "  snr wrap handler.py --language python --remote"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    sub = parser.add_subparsers(
        dest="command",
        required=True,
        parser_class=_RichArgumentParser,
    )

    run_cmd = sub.add_parser(
        "run",
        help="Execute one snippet and show its result.",
        description=(
            "Execute a snippet through the dispatcher.\n"
            "Remote execution is used when E2B_ENABLED is set, unless --local is given."
        ),
        formatter_class=_HELP_FORMATTER,
    )
    _add_input_arguments(run_cmd)
    run_cmd.add_argument(
        "--local",
        action="store_true",
        help="Prefer the local sandbox even when remote execution is enabled.",
    )
    run_cmd.add_argument(
        "--custom-tool",
        action="store_true",
        help="Expose each parameter as its own constant (JavaScript, local only).",
    )
    run_cmd.add_argument(
        "--timeout-ms",
        type=int,
        default=None,
        help="Execution timeout in milliseconds (default: 5000).",
    )
    run_cmd.add_argument(
        "--json",
        action="store_true",
        help="Print the raw response body as JSON.",
    )
    run_cmd.add_argument(
        "--config",
        help="TOML file with runner and policy tables.",
    )
    run_cmd.add_argument(
        "--verbose",
        action="store_true",
        help="Show dispatcher logs.",
    )

    resolve_cmd = sub.add_parser(
        "resolve",
        help="Show a snippet with its references replaced.",
        description="Resolve <variable.*>, {{ENV}} and <block.path> references without executing.",
        formatter_class=_HELP_FORMATTER,
    )
    _add_input_arguments(resolve_cmd)

    wrap_cmd = sub.add_parser(
        "wrap",
        help="Show the program a backend would execute.",
        description=(
            "Resolve and wrap a snippet for a backend.\n"
            "Prints the program text and its line offset accounting."
        ),
        formatter_class=_HELP_FORMATTER,
    )
    _add_input_arguments(wrap_cmd)
    wrap_cmd.add_argument(
        "--remote",
        action="store_true",
        help="Wrap for the remote sandbox instead of the local one.",
    )
    return parser


def _read_source(path: str) -> str:
    """Read snippet text from a file path or stdin.

    Example:
        ```python
        code = _read_source("handler.js")
        ```
    """
    if path == "-":
        return sys.stdin.read()
    return Path(path).read_text(encoding="utf-8")


def _parse_params(raw: str) -> dict[str, Any]:
    """Decode the --params JSON object.

    Example:
        ```python
        _parse_params('{"x": 1}')  # {"x": 1}
        ```
    """
    value = json.loads(raw)
    if not isinstance(value, dict):
        raise ValueError("--params must be a JSON object")
    return value


def _parse_env(pairs: Sequence[str]) -> dict[str, str]:
    """Decode repeated KEY=VALUE options.

    Example:
        ```python
        _parse_env(["TOKEN=abc"])  # {"TOKEN": "abc"}
        ```
    """
    env: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"Invalid --env value '{pair}', expected KEY=VALUE")
        env[key] = value
    return env


def _configure_logging(verbose: bool) -> None:
    """Route library logs through Rich when verbose output is requested.

    Example:
        ```python
        _configure_logging(True)
        ```
    """
    if not verbose or logging.getLogger().handlers:
        return
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(name)s: %(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


def _print_error(exc: Exception) -> None:
    """Render an input or configuration error in a red panel.

    Example:
        ```python
        _print_error(ValueError("--params must be a JSON object"))
        ```
    """
    _CONSOLE.print(Panel.fit(Text.assemble(("Error: ", "bold red"), str(exc)), border_style="red"))


def _print_result(result: ExecutionResult) -> None:
    """Render an execution result as Rich panels.

    Example:
        ```python
        _print_result(ExecutionResult(success=True, result=2))
        ```
    """
    if result.success:
        _CONSOLE.print(
            Panel.fit(
                Pretty(result.result),
                title=f"Result ({result.execution_time_ms}ms)",
                border_style="green",
            )
        )
    else:
        _CONSOLE.print(
            Panel.fit(
                Text(result.error or "", style="bold red"),
                title=f"Failed ({result.execution_time_ms}ms)",
                border_style="red",
            )
        )
    if result.stdout:
        _CONSOLE.print(Panel.fit(Text(result.stdout.rstrip("\n")), title="stdout", border_style="cyan"))
    if result.debug is not None and result.debug.stack:
        _CONSOLE.print(Panel.fit(Text(result.debug.stack), title="Stack", border_style="yellow"))


def _print_bindings(bindings: dict[str, Any]) -> None:
    """Render resolved context variables in a rich table.

    Example:
        ```python
        _print_bindings({"__var_TOKEN": "abc"})
        ```
    """
    table = Table(title="Context Variables")
    table.add_column("Name", style="cyan")
    table.add_column("Value", style="magenta")
    for name, value in bindings.items():
        table.add_row(name, Text(json.dumps(value, default=str)))
    _CONSOLE.print(table)


def _lexer_for(language: CodeLanguage) -> str:
    """Return the Pygments lexer name for a snippet language.

    Example:
        ```python
        _lexer_for(CodeLanguage.PYTHON)  # "python"
        ```
    """
    return "python" if language is CodeLanguage.PYTHON else "javascript"


def main(argv: Sequence[str] | None = None) -> int:
    """Run the `snr` CLI command handler.

    Example:
        ```python
        code = main(["run", "handler.js", "--params", '{"x": 2}'])
        ```
    """
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    try:
        code = _read_source(args.file)
        params = _parse_params(args.params)
        env_vars = _parse_env(args.env)
    except (OSError, ValueError) as exc:
        _print_error(exc)
        return 2
    language = parse_language(args.language)

    if args.command == "run":
        _configure_logging(args.verbose)
        try:
            settings = (
                RunnerSettings.from_file(args.config) if args.config else RunnerSettings.from_env()
            )
            request = ExecutionRequest(
                code=code,
                language=language,
                params=params,
                env_vars=env_vars,
                prefer_local=args.local,
                is_custom_tool=args.custom_tool,
                **({"timeout_ms": args.timeout_ms} if args.timeout_ms is not None else {}),
            )
        except (OSError, ValueError) as exc:
            _print_error(exc)
            return 2
        result = run_function_sync(request, settings)
        if args.json:
            _CONSOLE.print_json(json.dumps(result.to_dict(), default=str))
        else:
            _print_result(result)
        return 0 if result.success else 1

    resolved = resolve_code_variables(code, params, env_vars)
    if args.command == "resolve":
        _CONSOLE.print(
            Panel.fit(
                Syntax(resolved.resolved_code or " ", _lexer_for(language)),
                title="Resolved Code",
                border_style="cyan",
            )
        )
        if resolved.context_variables:
            _print_bindings(resolved.context_variables)
        return 0
    if args.command == "wrap":
        backend = Backend.REMOTE if args.remote else Backend.LOCAL
        program = wrap_code(resolved, backend, language, params=params, env_vars=env_vars)
        _CONSOLE.print(
            Panel.fit(
                Syntax(program.source_text, _lexer_for(language), line_numbers=True),
                title=f"{language_display_name(language)} program ({backend.value})",
                border_style="cyan",
            )
        )
        table = Table(title="Line Offsets")
        table.add_column("Prologue", style="cyan")
        table.add_column("Wrapper", style="magenta")
        table.add_column("Offset")
        table.add_column("User code starts at")
        table.add_row(
            str(program.prologue_line_count),
            str(program.wrapper_line_count),
            str(program.offset),
            str(program.user_code_start_line),
        )
        _CONSOLE.print(table)
        return 0

    parser.error("Unhandled command")
    return 2

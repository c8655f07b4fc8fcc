"""Output formatters for human-readable and JSON output."""

import json
import sys
from typing import Any

import click


def _error_details(error: Exception) -> dict[str, Any]:
    """Extra fields carried by provider-facing errors (status, body, outcome)."""
    details: dict[str, Any] = {}
    for attr in ("status_code", "body"):
        value = getattr(error, attr, None)
        if value is not None:
            details[attr] = value

    outcome = getattr(error, "outcome", None)
    if outcome is not None:
        details["outcome"] = getattr(outcome, "value", outcome)
    return details


def format_json(data: Any, success: bool = True) -> str:
    """Wrap data in the {"success": ..., "data": ...} envelope."""
    payload = {"success": True, "data": data} if success else data
    return json.dumps(payload, indent=2, default=str)


def format_error_json(
    error: Exception,
    error_type: str | None = None,
    help_text: str | None = None,
) -> str:
    """Format an error as JSON, including any provider response it carries."""
    body: dict[str, Any] = {
        "type": error_type or type(error).__name__,
        "message": str(error),
        "help": help_text or "",
    }
    details = _error_details(error)
    if details:
        body["details"] = details

    return json.dumps({"success": False, "error": body}, indent=2, default=str)


def output_json(data: Any, success: bool = True) -> None:
    click.echo(format_json(data, success))


def output_error_json(
    error: Exception,
    error_type: str | None = None,
    help_text: str | None = None,
) -> None:
    """Print an error as JSON to stdout and exit with status 1."""
    click.echo(format_error_json(error, error_type, help_text))
    sys.exit(1)


def output_error_human(error: Exception, help_text: str | None = None) -> None:
    """Print an error in red to stderr and exit with status 1."""
    click.secho(f"Error: {error}", fg="red", err=True)
    if help_text:
        click.echo(f"\n{help_text}", err=True)
    sys.exit(1)


class OutputHandler:
    """Routes command output to JSON or human form.

    In human mode each exchange with the provider is printed as a titled
    block of pretty JSON, like the panels of a diagnostic page. In JSON
    mode only the final result of a command reaches stdout.
    """

    def __init__(self, json_mode: bool = False):
        self.json_mode = json_mode

    def success(self, data: Any, human_message: str | None = None) -> None:
        if self.json_mode:
            output_json(data)
        elif human_message:
            click.echo(human_message)
        else:
            click.echo(json.dumps(data, indent=2, default=str))

    def section(self, title: str, data: Any) -> None:
        """Print a titled JSON block (human mode only)."""
        if self.json_mode:
            return
        click.secho(f"\n{title}", bold=True)
        click.secho("─" * len(title), dim=True)
        if isinstance(data, str):
            click.echo(data)
        else:
            click.echo(json.dumps(data, indent=2, default=str))

    def status(self, message: str) -> None:
        """Print a progress message (human mode only, on stderr)."""
        if not self.json_mode:
            click.secho(message, fg="cyan", err=True)

    def warning(self, message: str) -> None:
        if not self.json_mode:
            click.secho(message, fg="yellow", err=True)

    def error(
        self,
        error: Exception,
        error_type: str | None = None,
        help_text: str | None = None,
    ) -> None:
        """Report an error and exit with status 1."""
        if self.json_mode:
            output_error_json(error, error_type, help_text)
        else:
            output_error_human(error, help_text)

    def table(self, headers: list[str], rows: list[list[str]]) -> None:
        """Print rows under aligned headers, or a list of objects in JSON mode."""
        if self.json_mode:
            output_json([dict(zip(headers, row)) for row in rows])
            return

        widths = [max([len(h)] + [len(str(row[i])) for row in rows]) for i, h in enumerate(headers)]
        header_line = "  ".join(h.ljust(widths[i]) for i, h in enumerate(headers))
        click.secho(header_line, bold=True)
        click.echo("-" * len(header_line))

        for row in rows:
            click.echo("  ".join(str(c).ljust(widths[i]) for i, c in enumerate(row)))

"""CLI entry point for chatlog-ingest.

Inspect chat exports (detect, diagnose, info, dump) and import them into
the configured session store.
"""

import json
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any

import click

from chatlog_ingest.config import STORAGE_BACKENDS, Config, load_config
from chatlog_ingest.errors import UnrecognizedFormatError, error_code
from chatlog_ingest.importer import stream_import
from chatlog_ingest.logging import setup_logging
from chatlog_ingest.models import FormatDiagnosis, ParseEvent, ParseOptions, ParseProgress
from chatlog_ingest.parser import (
    detect_format,
    diagnose_format,
    get_supported_formats,
    parse_file,
    parse_file_info,
)
from chatlog_ingest.parser.utils import format_file_size


def print_diagnosis(diagnosis: FormatDiagnosis) -> None:
    """Print a diagnosis suggestion and its partial matches to stderr."""
    click.echo(diagnosis.suggestion, err=True)
    for match in diagnosis.partial_matches:
        detail = f" (missing: {', '.join(match.missing_fields)})" if match.missing_fields else ""
        click.echo(f"  partial match: {match.format_name}{detail}", err=True)


def print_progress(progress: ParseProgress) -> None:
    click.echo(
        f"\r[{progress.stage}] {progress.percentage:3d}% "
        f"{progress.messages_processed} messages",
        nl=False,
        err=True,
    )


def event_to_json(event: ParseEvent) -> dict[str, Any]:
    """Convert a parse event to a JSON-friendly dict."""
    if event.type == "error":
        return {"type": "error", "code": error_code(event.data), "message": str(event.data)}
    if event.type == "progress":
        return {"type": "progress", "data": event.data.to_dict()}
    if event.type == "meta":
        return {"type": "meta", "data": asdict(event.data)}
    return {"type": event.type, "data": [asdict(item) for item in event.data]}


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to config.yaml",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None) -> None:
    """Detect, inspect and import chat-history exports."""
    config = load_config(config_path)
    setup_logging("cli", config.log_dir, config.log_level, console=False)
    ctx.obj = config


@cli.command()
def formats() -> None:
    """List supported formats in detection order."""
    for feature in get_supported_formats():
        click.echo(
            f"{feature.priority:>3}  {feature.id:<16} {feature.name:<24} "
            f"{feature.platform:<10} {', '.join(feature.extensions)}"
        )


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def detect(path: Path) -> None:
    """Print the format of PATH."""
    feature = detect_format(path)
    if feature is None:
        click.echo(f"Unrecognized format: {path}", err=True)
        print_diagnosis(diagnose_format(path))
        sys.exit(1)
    click.echo(f"{feature.id} ({feature.name})")


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--json", "as_json", is_flag=True, help="Print the full diagnosis as JSON")
def diagnose(path: Path, as_json: bool) -> None:
    """Explain how PATH matches each supported format."""
    diagnosis = diagnose_format(path)
    if as_json:
        click.echo(json.dumps(diagnosis.to_dict(), ensure_ascii=False, indent=2))
    else:
        for check in diagnosis.checks:
            status = "match" if check.full_match else ("partial" if check.extension_match else "-")
            click.echo(f"{check.format_id:<16} {status}")
        click.echo(diagnosis.suggestion)
    if not diagnosis.recognized:
        sys.exit(1)


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def info(path: Path) -> None:
    """Summarize PATH: format, chat name and counts."""
    try:
        file_info = parse_file_info(path)
    except UnrecognizedFormatError as e:
        click.echo(f"Unrecognized format: {path}", err=True)
        if e.diagnosis is not None:
            print_diagnosis(e.diagnosis)
        sys.exit(1)
    except Exception as e:
        click.echo(f"Error reading {path}: {e}", err=True)
        sys.exit(1)

    click.echo(f"Name:     {file_info.name}")
    click.echo(f"Format:   {file_info.format} ({file_info.platform})")
    click.echo(f"Size:     {format_file_size(file_info.file_size)}")
    click.echo(f"Members:  {file_info.member_count}")
    click.echo(f"Messages: {file_info.message_count}")


@cli.command(name="import")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--batch-size", type=click.IntRange(min=1), help="Members/messages per batch")
@click.option("--backend", type=click.Choice(STORAGE_BACKENDS), help="Session store backend")
@click.option("--timeout", type=float, help="Abort the import after this many seconds")
@click.option("--quiet", "-q", is_flag=True, help="Don't print progress")
@click.pass_obj
def import_(
    config: Config,
    path: Path,
    batch_size: int | None,
    backend: str | None,
    timeout: float | None,
    quiet: bool,
) -> None:
    """Import PATH into the session store."""
    if batch_size is not None:
        config.importer.batch_size = batch_size
    if backend is not None:
        config.storage.backend = backend

    result = stream_import(path, config, None if quiet else print_progress, timeout=timeout)
    if not quiet:
        click.echo(err=True)

    if not result.success:
        click.echo(f"Import failed [{result.error_code}]: {result.error}", err=True)
        if result.error_code == UnrecognizedFormatError.code:
            print_diagnosis(diagnose_format(path))
        sys.exit(1)

    click.echo(
        f"Imported session {result.session_id}: "
        f"{result.member_count} members, {result.message_count} messages"
    )


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--limit", "-n", type=click.IntRange(min=0), help="Stop after this many messages")
@click.option("--batch-size", type=click.IntRange(min=1), default=100, show_default=True)
@click.option("--progress", "show_progress", is_flag=True, help="Include progress events")
def dump(path: Path, limit: int | None, batch_size: int, show_progress: bool) -> None:
    """Print the parse event stream of PATH as JSON lines."""
    failed = False
    emitted = 0
    events = parse_file(ParseOptions(file_path=path, batch_size=batch_size))
    try:
        for event in events:
            if event.type == "progress" and not show_progress:
                continue
            if event.type == "messages" and limit is not None:
                remaining = limit - emitted
                if remaining <= 0:
                    break
                event = ParseEvent.messages(event.data[:remaining])
                emitted += len(event.data)
            click.echo(json.dumps(event_to_json(event), ensure_ascii=False))
            if event.type == "error":
                failed = True
                if isinstance(event.data, UnrecognizedFormatError) and event.data.diagnosis is not None:
                    print_diagnosis(event.data.diagnosis)
    finally:
        events.close()

    if failed:
        sys.exit(1)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()

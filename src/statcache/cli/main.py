"""CLI commands for statcache."""

import json
import sys
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

import click

from statcache import __version__
from statcache.binary.cache import cache_status, clean_cache
from statcache.cache.ttl import is_expired
from statcache.client import ResourceResult, StatClient
from statcache.config.loader import load_config
from statcache.config.models import ClientConfig
from statcache.errors import ConfigError
from statcache.fetch.constants import SOURCE_DATA, SOURCE_FILES
from statcache.fetch.models import FetchResult, Request
from statcache.metrics import FetchMetrics
from statcache.observability.logging import configure_logging
from statcache.settings.app import get_settings
from statcache.store.io import AtomicWriter
from statcache.updates.freshness import FreshnessChecker


@dataclass
class CliContext:
    """State shared by subcommands."""

    config: ClientConfig
    json_output: bool

    def client(self) -> StatClient:
        return StatClient(self.config)


def _emit(ctx: CliContext, payload: dict[str, object], lines: list[str]) -> None:
    if ctx.json_output:
        click.echo(json.dumps(payload, indent=2, default=str))
    else:
        for line in lines:
            click.echo(line)


def _fetch_summary(result: FetchResult) -> dict[str, object]:
    return {
        "success": result.success,
        "status_code": result.status_code,
        "attempts": result.attempts,
        "method_used": result.method_used.value if result.method_used else None,
        "bytes": result.body_size,
        "checksum": result.checksum,
        "error": result.error.message if result.error else None,
        "error_class": result.error.error_class.value if result.error else None,
        "banned": result.banned,
        "exit_code": result.exit_code,
    }


def _resource_summary(result: ResourceResult) -> dict[str, object]:
    decision = result.decision
    return {
        "resource_id": result.resource_id,
        "success": result.success,
        "skipped": result.skipped,
        "reason": decision.reason.value if decision else None,
        "attempts": result.attempts,
        "checksum": result.checksum,
        "error": result.error,
        "exit_code": result.exit_code,
    }


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Path to a YAML configuration file (or STATCACHE_CONFIG).",
)
@click.option(
    "--cache-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Cache directory (or STATCACHE_CACHE_DIR).",
)
@click.option("--json", "json_output", is_flag=True, help="Output as JSON.")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: Path | None,
    cache_dir: Path | None,
    json_output: bool,
    verbose: bool,
) -> None:
    """Rate-limited, cached access to a statistical data service."""
    settings = get_settings()
    configure_logging(
        level="DEBUG" if verbose else settings.log_level,
        json_format=settings.log_json,
    )

    try:
        config = load_config(config_path or settings.config)
    except ConfigError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)

    cache_dir = cache_dir or settings.cache_dir
    if cache_dir is not None:
        config = config.model_copy(update={"cache_dir": cache_dir})

    ctx.obj = CliContext(config=config, json_output=json_output)


@cli.command()
@click.argument("url")
@click.option(
    "--source",
    type=click.Choice([SOURCE_DATA, SOURCE_FILES]),
    default=SOURCE_DATA,
    show_default=True,
    help="Upstream source whose rate limit applies.",
)
@click.option(
    "--output",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write the payload to this file instead of stdout.",
)
@click.pass_obj
def fetch(ctx: CliContext, url: str, source: str, output: Path | None) -> None:
    """Fetch URL with throttling and retries."""
    client = ctx.client()
    result = client.fetcher.fetch(Request(url=url), source=source)

    if result.success and result.payload is not None:
        if output is not None:
            AtomicWriter(component="cli").write_bytes(output, result.payload)
        elif not ctx.json_output:
            click.echo(result.payload.decode("utf-8", errors="replace"))

    summary = _fetch_summary(result)
    if ctx.json_output or output is not None or not result.success:
        _emit(
            ctx,
            summary,
            [f"{key}: {value}" for key, value in summary.items()],
        )
    sys.exit(result.exit_code)


@cli.command()
@click.argument("url")
@click.option(
    "--source",
    type=click.Choice([SOURCE_DATA, SOURCE_FILES]),
    default=SOURCE_FILES,
    show_default=True,
)
@click.pass_obj
def head(ctx: CliContext, url: str, source: str) -> None:
    """Show Last-Modified and Content-Length for URL."""
    result = ctx.client().fetcher.head(url, source=source)
    payload = {
        "success": result.success,
        "status_code": result.status_code,
        "last_modified": result.last_modified.isoformat()
        if result.last_modified
        else None,
        "content_length": result.content_length,
        "error": result.error.message if result.error else None,
    }
    _emit(ctx, payload, [f"{key}: {value}" for key, value in payload.items()])
    sys.exit(0 if result.success else 1)


@cli.command()
@click.argument("url")
@click.argument("path", type=click.Path(dir_okay=False, path_type=Path))
@click.pass_obj
def freshness(ctx: CliContext, url: str, path: Path) -> None:
    """Check whether the local copy at PATH is stale relative to URL."""
    client = ctx.client()
    decision = FreshnessChecker(
        client.fetcher, ctx.config.freshness, source=SOURCE_FILES
    ).needs_update(url, path)
    payload = decision.model_dump(mode="json")
    _emit(
        ctx,
        payload,
        [f"needed: {decision.needed}", f"reason: {decision.reason.value}"],
    )


@cli.command()
@click.argument("url")
@click.argument("path", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--force", is_flag=True, help="Download even if the local copy is fresh.")
@click.pass_obj
def download(ctx: CliContext, url: str, path: Path, force: bool) -> None:
    """Download URL to PATH unless the local copy is still fresh."""
    result = ctx.client().download_file(url, path, force=force)
    summary = _resource_summary(result)
    _emit(ctx, summary, [f"{key}: {value}" for key, value in summary.items()])
    sys.exit(result.exit_code)


@cli.group()
def log() -> None:
    """Inspect the download log."""


@log.command("show")
@click.argument("resource_id", required=False)
@click.pass_obj
def log_show(ctx: CliContext, resource_id: str | None) -> None:
    """Show logged downloads, optionally for one resource."""
    entries = ctx.client().stores.download_log.all()
    if resource_id is not None:
        entries = {k: v for k, v in entries.items() if k == resource_id}
        if not entries:
            click.echo(f"No download logged for {resource_id}", err=True)
            sys.exit(1)

    payload = {k: v.model_dump(mode="json") for k, v in sorted(entries.items())}
    lines = [
        f"{k}: downloaded {v.last_download_time.isoformat()}, "
        f"signal {v.remote_signal.isoformat() if v.remote_signal else '-'}, "
        f"rows {v.row_count if v.row_count is not None else '-'}"
        for k, v in sorted(entries.items())
    ]
    _emit(ctx, payload, lines or ["Download log is empty"])


@cli.group()
def cache() -> None:
    """Inspect and clean the local caches."""


@cache.command("status")
@click.pass_obj
def cache_status_cmd(ctx: CliContext) -> None:
    """Show metadata cache and binary cache contents."""
    stores = ctx.client().stores
    now = datetime.now(UTC)
    entries = stores.entries.all()
    expired = sorted(i for i, e in entries.items() if is_expired(e, now))
    files = cache_status(ctx.config.binary_dir, now=now)

    payload: dict[str, object] = {
        "cache_dir": str(ctx.config.cache_dir),
        "entries": len(entries),
        "expired_entries": expired,
        "mappings": len(stores.mappings.all()),
        "downloads_logged": len(stores.download_log.all()),
        "files": [f.model_dump(mode="json") for f in files],
        "metrics": FetchMetrics.get_instance().to_dict(),
    }
    lines = [
        f"Cache directory: {ctx.config.cache_dir}",
        f"  Entries: {len(entries)} ({len(expired)} expired)",
        f"  Mappings: {payload['mappings']}",
        f"  Downloads logged: {payload['downloads_logged']}",
        f"  Cached files: {len(files)}",
    ]
    lines.extend(
        f"    {f.code}/{f.filename}: {f.size_bytes} bytes, {f.age_days} days old"
        for f in files
    )
    _emit(ctx, payload, lines)


@cache.command("clean")
@click.option("--code", default=None, help="Only clean files for this resource code.")
@click.option(
    "--max-age-days",
    type=click.FloatRange(min=0),
    default=None,
    help="Only remove files older than this many days.",
)
@click.pass_obj
def cache_clean(ctx: CliContext, code: str | None, max_age_days: float | None) -> None:
    """Remove downloaded files from the binary cache."""
    removed = clean_cache(ctx.config.binary_dir, code=code, max_age_days=max_age_days)
    _emit(ctx, {"removed": removed}, [f"Removed {removed} file(s)"])


if __name__ == "__main__":
    cli()

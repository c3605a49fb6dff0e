"""Typer CLI for streamup."""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import timedelta
from enum import Enum
from typing import BinaryIO

import typer
from botocore.exceptions import BotoCoreError, ClientError
from rich.console import Console
from tqdm import tqdm

from streamup import __version__
from streamup.backend.base import StorageBackend
from streamup.backend.s3_backend import S3Backend
from streamup.cli.display import print_object_table, print_session_table
from streamup.config.config_manager import ConfigManager, ConfigT
from streamup.config.helpers import parse_bytes, parse_duration
from streamup.config.settings import DownloadConfig, StorageConfig, UploadConfig
from streamup.const import (
    DEFAULT_CHECKSUM_ALGORITHM,
    DEFAULT_LIST_MAX_KEYS,
    DEFAULT_MAX_RETRIES,
    DEFAULT_MAX_RETRY_DELAY_MS,
    DEFAULT_QUEUE_DEPTH,
    DEFAULT_RETRY_DELAY_MS,
    DEFAULT_RETRY_MULTIPLIER,
    DEFAULT_WORKERS,
    S3_MAX_PARTS,
)
from streamup.downloader import Downloader
from streamup.exceptions import (
    DownloadError,
    StreamupError,
    UploadCancelledError,
)
from streamup.housekeeping import (
    abort_uploads,
    delete_object,
    list_incomplete_uploads,
    list_objects,
)
from streamup.limits import ServiceLimits
from streamup.models import CleanupResult, MultipartSessionInfo, ObjectInfo
from streamup.sources import STDIN_SOURCE, SourceStream, open_source
from streamup.upload.uploader import Uploader
from streamup.validation import (
    is_url,
    parse_metadata_pairs,
    validate_file_path,
    validate_object_key,
)
from streamup.version import build_info_from_env

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
EXIT_INTERRUPTED = 130

BUILD_INFO = build_info_from_env()

logger = logging.getLogger(__name__)
err_console = Console(stderr=True)
console = Console()

app = typer.Typer(
    add_completion=False,
    help="Stream large inputs into S3-compatible object storage.",
)


class LogLevel(str, Enum):
    """Log levels accepted by --log-level."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


def configure_logging(level: int = logging.WARNING) -> None:
    """Configure root logging with a concise, consistent format."""
    if logging.getLogger().handlers:
        logging.getLogger().setLevel(level)
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.basicConfig(level=level, handlers=[handler])


def create_backend(
    config: StorageConfig, workers: int = DEFAULT_WORKERS
) -> StorageBackend:
    """Build the storage backend used by a command."""
    return S3Backend(config, BUILD_INFO, workers=workers)


def _version_callback(value: bool) -> bool:
    if value:
        typer.echo(__version__)
        raise typer.Exit()
    return value


@app.callback()
def callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        help="Show the streamup version and exit.",
        callback=_version_callback,
        is_eager=True,
        is_flag=True,
    ),
    access_key: str | None = typer.Option(
        None, "--access-key", help="S3 access key ID (env S3_ACCESS_KEY_ID)."
    ),
    secret_key: str | None = typer.Option(
        None, "--secret-key", help="S3 secret access key (env S3_SECRET_ACCESS_KEY)."
    ),
    bucket: str | None = typer.Option(
        None, "--bucket", help="S3 bucket name (env S3_BUCKET)."
    ),
    account_id: str | None = typer.Option(
        None, "--account-id", help="Cloudflare R2 account ID (env R2_ACCOUNT_ID)."
    ),
    endpoint: str | None = typer.Option(
        None, "--endpoint", help="Custom S3 endpoint (env S3_ENDPOINT)."
    ),
    region: str | None = typer.Option(
        None, "--region", help="S3 region (env S3_REGION)."
    ),
    log_level: LogLevel = typer.Option(
        LogLevel.WARNING,
        "--log-level",
        case_sensitive=False,
        help="Logging verbosity.",
    ),
) -> None:
    """Handle global storage options, logging and --version."""
    configure_logging(getattr(logging, log_level.value.upper()))
    ctx.obj = {
        "access_key_id": access_key,
        "secret_access_key": secret_key,
        "bucket": bucket,
        "account_id": account_id,
        "endpoint": endpoint,
        "region": region,
    }


def _resolve(ctx: typer.Context, config: ConfigT) -> ConfigT:
    """Apply environment variables and global CLI options to ``config``."""
    return ConfigManager().resolve(config, ctx.obj)


def _parse_bytes_option(value: str, option: str) -> int:
    try:
        return parse_bytes(value)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint=option) from exc


@contextmanager
def _handle_errors(action: str) -> Iterator[None]:
    """Turn library errors into messages and exit codes."""
    try:
        yield
    except UploadCancelledError as exc:
        typer.echo(f"Cancelled: {exc}", err=True)
        raise typer.Exit(code=EXIT_INTERRUPTED) from exc
    except KeyboardInterrupt:
        typer.echo("Interrupted", err=True)
        raise typer.Exit(code=EXIT_INTERRUPTED) from None
    except (StreamupError, ClientError, BotoCoreError) as exc:
        typer.echo(f"Error: {action} failed: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    except Exception:
        logger.exception("Unexpected error during %s.", action)
        raise typer.Exit(code=1) from None


async def _run_upload(
    config: UploadConfig, stream: SourceStream, quiet: bool
) -> Uploader:
    backend = create_backend(config, config.workers)
    try:
        with tqdm(
            total=config.total_size,
            desc="Uploading",
            unit="B",
            unit_scale=True,
            unit_divisor=1024,
            disable=quiet,
            file=sys.stderr,
        ) as bar:

            def on_progress(bytes_completed: int, parts_completed: int) -> None:
                bar.update(bytes_completed - bar.n)

            uploader = Uploader(
                config.model_copy(update={"progress_callback": on_progress}),
                backend=backend,
            )
            await uploader.upload(stream)
    finally:
        await backend.close()
    return uploader


@app.command("upload")
def upload(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Object key to upload to."),
    source: str = typer.Argument(
        ..., help="Local file, http(s) URL, or '-' to read standard input."
    ),
    size: str | None = typer.Option(
        None,
        "--size",
        "-s",
        help="Input size, required when reading stdin (e.g. 70GB).",
    ),
    workers: int = typer.Option(
        DEFAULT_WORKERS, "--workers", "-w", help="Number of concurrent part uploads."
    ),
    queue_depth: int = typer.Option(
        DEFAULT_QUEUE_DEPTH, "--queue", help="Part queue buffer size."
    ),
    max_memory: int = typer.Option(
        0, "--max-memory", help="Maximum part buffer memory in MB (0 = no limit)."
    ),
    min_part_size: str = typer.Option(
        "5MB", "--min-part-size", help="Minimum part size."
    ),
    max_part_size: str = typer.Option(
        "5GB", "--max-part-size", help="Maximum part size."
    ),
    max_parts: int = typer.Option(
        S3_MAX_PARTS, "--max-parts", help="Maximum number of parts."
    ),
    max_retries: int = typer.Option(
        DEFAULT_MAX_RETRIES, "--max-retries", help="Retries per part."
    ),
    retry_delay: int = typer.Option(
        DEFAULT_RETRY_DELAY_MS, "--retry-delay", help="Initial retry delay in ms."
    ),
    max_retry_delay: int = typer.Option(
        DEFAULT_MAX_RETRY_DELAY_MS,
        "--max-retry-delay",
        help="Maximum retry delay in ms.",
    ),
    retry_multiplier: int = typer.Option(
        DEFAULT_RETRY_MULTIPLIER,
        "--retry-multiplier",
        help="Backoff multiplier between retries.",
    ),
    content_type: str | None = typer.Option(
        None, "--content-type", help="Content-Type, detected from the key if unset."
    ),
    content_disposition: str | None = typer.Option(
        None, "--content-disposition", help="Content-Disposition header."
    ),
    content_encoding: str | None = typer.Option(
        None, "--content-encoding", help="Content-Encoding, e.g. gzip or br."
    ),
    content_language: str | None = typer.Option(
        None, "--content-language", help="Content-Language header."
    ),
    cache_control: str | None = typer.Option(
        None, "--cache-control", help="Cache-Control header."
    ),
    metadata: list[str] | None = typer.Option(
        None, "--metadata", "-m", help="Custom metadata as key=value, repeatable."
    ),
    checksum: bool = typer.Option(
        True, "--checksum/--no-checksum", help="Hash the input while uploading."
    ),
    checksum_algorithm: str = typer.Option(
        DEFAULT_CHECKSUM_ALGORITHM,
        "--checksum-algorithm",
        help="Checksum algorithm (md5, sha256).",
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress progress output."
    ),
) -> None:
    """Upload a file, URL or stdin to KEY as a multipart upload."""
    stream_size = _parse_bytes_option(size, "--size") if size else None
    limits = ServiceLimits(
        min_part_size=_parse_bytes_option(min_part_size, "--min-part-size"),
        max_part_size=_parse_bytes_option(max_part_size, "--max-part-size"),
        max_parts=max_parts,
    )

    with _handle_errors("upload"):
        validate_object_key(key)
        config = _resolve(
            ctx,
            UploadConfig(
                key=key,
                workers=workers,
                queue_depth=queue_depth,
                max_memory_mb=max_memory,
                limits=limits,
                max_retries=max_retries,
                retry_delay_ms=retry_delay,
                max_retry_delay_ms=max_retry_delay,
                retry_multiplier=retry_multiplier,
                content_type=content_type,
                content_disposition=content_disposition,
                content_encoding=content_encoding,
                content_language=content_language,
                cache_control=cache_control,
                metadata=parse_metadata_pairs(metadata or []),
                calculate_checksum=checksum,
                checksum_algorithm=checksum_algorithm,
            ),
        )
        config.ensure_credentials()

        if not quiet:
            if source == STDIN_SOURCE:
                typer.echo("Reading from stdin", err=True)
            elif is_url(source):
                typer.echo(f"Downloading from {source}", err=True)

        with open_source(source, stream_size) as stream:
            config = config.model_copy(update={"total_size": stream.size})
            uploader = asyncio.run(_run_upload(config, stream, quiet))

        if not quiet:
            typer.echo(f"Uploaded s3://{config.bucket}/{key}", err=True)
            if uploader.checksum:
                typer.echo(
                    f"  {uploader.config.checksum_algorithm}: {uploader.checksum}",
                    err=True,
                )


@contextmanager
def _open_sink(output: str) -> Iterator[BinaryIO]:
    if output == STDIN_SOURCE:
        yield sys.stdout.buffer
        return
    validate_file_path(output)
    try:
        handle = open(output, "wb")
    except OSError as exc:
        raise DownloadError(f"failed to create output file {output}: {exc}") from exc
    with handle:
        yield handle


async def _run_download(
    config: DownloadConfig, output: str, show_progress: bool
) -> Downloader:
    backend = create_backend(config, workers=1)
    try:
        with tqdm(
            total=None,
            desc="Downloading",
            unit="B",
            unit_scale=True,
            unit_divisor=1024,
            disable=not show_progress,
            file=sys.stderr,
        ) as bar:

            def on_progress(downloaded: int) -> None:
                bar.update(downloaded - bar.n)

            downloader = Downloader(
                config.model_copy(update={"progress_callback": on_progress}),
                backend=backend,
            )
            bar.total = await downloader.get_size()
            bar.refresh()
            with _open_sink(output) as sink:
                await downloader.download(sink)
    finally:
        await backend.close()
    return downloader


@app.command("download")
def download(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Object key to download."),
    output: str = typer.Argument(
        STDIN_SOURCE, help="Output file, or '-' for standard output."
    ),
    checksum: bool = typer.Option(
        True, "--checksum/--no-checksum", help="Hash the object while downloading."
    ),
    checksum_algorithm: str = typer.Option(
        DEFAULT_CHECKSUM_ALGORITHM,
        "--checksum-algorithm",
        help="Checksum algorithm (md5, sha256).",
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress progress output."
    ),
) -> None:
    """Download KEY to a file or standard output."""
    show_progress = output != STDIN_SOURCE and not quiet
    with _handle_errors("download"):
        config = _resolve(
            ctx,
            DownloadConfig(
                key=key,
                calculate_checksum=checksum,
                checksum_algorithm=checksum_algorithm,
            ),
        )
        downloader = asyncio.run(_run_download(config, output, show_progress))

        if show_progress:
            typer.echo(f"Downloaded s3://{config.bucket}/{key} to {output}", err=True)
            if downloader.checksum:
                typer.echo(
                    f"  {downloader.config.checksum_algorithm}: {downloader.checksum}",
                    err=True,
                )


async def _run_list(
    storage: StorageConfig, prefix: str, max_keys: int
) -> list[ObjectInfo]:
    backend = create_backend(storage)
    try:
        return await list_objects(backend, prefix, max_keys)
    finally:
        await backend.close()


@app.command("list")
def list_command(
    ctx: typer.Context,
    prefix: str = typer.Argument("", help="Only list keys with this prefix."),
    max_keys: int = typer.Option(
        DEFAULT_LIST_MAX_KEYS, "--max-keys", help="Maximum number of keys to return."
    ),
) -> None:
    """List objects in the bucket."""
    with _handle_errors("list"):
        storage = _resolve(ctx, StorageConfig())
        storage.ensure_credentials()
        objects = asyncio.run(_run_list(storage, prefix, max_keys))

    if not objects:
        if prefix:
            typer.echo(f"No objects found with prefix {prefix!r}", err=True)
        else:
            typer.echo("No objects found in bucket", err=True)
        return
    print_object_table(console, objects)


async def _run_list_sessions(
    storage: StorageConfig,
    prefix: str,
    older_than: timedelta | None,
    max_results: int,
) -> list[MultipartSessionInfo]:
    backend = create_backend(storage)
    try:
        return await list_incomplete_uploads(backend, prefix, older_than, max_results)
    finally:
        await backend.close()


async def _run_abort_sessions(
    storage: StorageConfig, sessions: list[MultipartSessionInfo]
) -> CleanupResult:
    backend = create_backend(storage)
    try:
        return await abort_uploads(backend, sessions)
    finally:
        await backend.close()


@app.command("cleanup")
def cleanup(
    ctx: typer.Context,
    prefix: str = typer.Option(
        "", "--prefix", help="Only clean up uploads with this key prefix."
    ),
    older_than: str | None = typer.Option(
        None, "--older-than", help="Only uploads older than this, e.g. 24h or 7d."
    ),
    max_results: int = typer.Option(
        0, "--max-results", help="Maximum number of uploads to list (0 = all)."
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="List uploads without aborting them."
    ),
    force: bool = typer.Option(
        False, "--force", help="Skip the confirmation prompt."
    ),
) -> None:
    """Abort incomplete multipart uploads left behind by failed transfers."""
    age: timedelta | None = None
    if older_than:
        try:
            age = parse_duration(older_than)
        except ValueError as exc:
            raise typer.BadParameter(str(exc), param_hint="--older-than") from exc

    with _handle_errors("cleanup"):
        storage = _resolve(ctx, StorageConfig())
        storage.ensure_credentials()
        sessions = asyncio.run(
            _run_list_sessions(storage, prefix, age, max_results)
        )

        if not sessions:
            typer.echo("No incomplete multipart uploads found.", err=True)
            return

        typer.echo(
            f"Found {len(sessions)} incomplete multipart upload(s):", err=True
        )
        print_session_table(err_console, sessions)

        if dry_run:
            typer.echo("Dry run: no uploads were aborted.", err=True)
            return

        if not force and not typer.confirm(
            f"This will abort {len(sessions)} incomplete upload(s). Are you sure?",
            err=True,
        ):
            typer.echo("Nothing aborted.", err=True)
            return

        result = asyncio.run(_run_abort_sessions(storage, sessions))

    typer.echo(f"Aborted {result.total_aborted} upload(s)", err=True)
    if result.errors:
        typer.echo(f"Encountered {len(result.errors)} error(s):", err=True)
        for message in result.errors:
            typer.echo(f"  - {message}", err=True)
        raise typer.Exit(code=1)


async def _run_delete(storage: StorageConfig, key: str) -> None:
    backend = create_backend(storage)
    try:
        await delete_object(backend, key)
    finally:
        await backend.close()


@app.command("delete")
def delete(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Object key to delete."),
    force: bool = typer.Option(
        False, "--force", help="Skip the confirmation prompt."
    ),
) -> None:
    """Delete a single object."""
    with _handle_errors("delete"):
        validate_object_key(key)
        storage = _resolve(ctx, StorageConfig())
        storage.ensure_credentials()
        if not force and not typer.confirm(
            f"Delete s3://{storage.bucket}/{key}?", err=True
        ):
            typer.echo("Nothing deleted.", err=True)
            return
        asyncio.run(_run_delete(storage, key))

    typer.echo(f"Deleted s3://{storage.bucket}/{key}", err=True)


@app.command("version")
def version_command() -> None:
    """Show version, build details and the HTTP user agent."""
    typer.echo(f"streamup {BUILD_INFO.version}")
    if BUILD_INFO.is_release:
        typer.echo(f"Commit: {BUILD_INFO.git_commit}")
        typer.echo(f"Built: {BUILD_INFO.build_date}")
    typer.echo(f"User-Agent: {BUILD_INFO.user_agent()}")


def main() -> None:
    """CLI entrypoint for the streamup command."""
    app()


if __name__ == "__main__":
    main()

"""Bucket housekeeping: incomplete multipart uploads and object listings."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from streamup.backend.base import StorageBackend
from streamup.const import DEFAULT_LIST_MAX_KEYS
from streamup.models import CleanupResult, MultipartSessionInfo, ObjectInfo
from streamup.validation import validate_object_key

logger = logging.getLogger(__name__)


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


async def list_incomplete_uploads(
    backend: StorageBackend,
    prefix: str = "",
    older_than: timedelta | None = None,
    max_results: int = 0,
    now: datetime | None = None,
) -> list[MultipartSessionInfo]:
    """List multipart uploads that were started but never completed or aborted.

    Args:
        backend: Storage backend to query.
        prefix: Only uploads whose key starts with this prefix.
        older_than: Only uploads initiated at least this long ago.
        max_results: Maximum number of uploads to return, 0 for all.
        now: Reference time for the age filter, current UTC time when None.

    Returns:
        Matching uploads in listing order.
    """
    if older_than is None or older_than <= timedelta(0):
        return await backend.list_multipart_sessions(prefix, max_results)

    cutoff = _as_utc(now or datetime.now(timezone.utc)) - older_than
    sessions = [
        session
        for session in await backend.list_multipart_sessions(prefix, 0)
        if _as_utc(session.initiated) <= cutoff
    ]
    if max_results > 0:
        sessions = sessions[:max_results]
    return sessions


async def cleanup_incomplete_uploads(
    backend: StorageBackend,
    prefix: str = "",
    older_than: timedelta | None = None,
    max_results: int = 0,
    dry_run: bool = False,
    now: datetime | None = None,
) -> CleanupResult:
    """Abort incomplete multipart uploads.

    A failure to abort one upload is recorded in ``CleanupResult.errors`` and
    the remaining uploads are still processed.

    Args:
        backend: Storage backend to clean up.
        prefix: Only uploads whose key starts with this prefix.
        older_than: Only uploads initiated at least this long ago.
        max_results: Maximum number of uploads to consider, 0 for all.
        dry_run: List the uploads without aborting them.
        now: Reference time for the age filter.

    Returns:
        What was found and what was aborted.
    """
    sessions = await list_incomplete_uploads(
        backend, prefix, older_than, max_results, now
    )
    if dry_run:
        logger.info(f"Dry run: {len(sessions)} incomplete uploads left in place")
        return CleanupResult(total_found=len(sessions), sessions=sessions)
    return await abort_uploads(backend, sessions)


async def abort_uploads(
    backend: StorageBackend, sessions: list[MultipartSessionInfo]
) -> CleanupResult:
    """Abort the given multipart uploads, collecting failures instead of stopping."""
    result = CleanupResult(total_found=len(sessions), sessions=list(sessions))
    for session in sessions:
        try:
            await backend.abort_multipart(session.key, session.upload_id)
        except Exception as exc:
            message = (
                f"failed to abort {session.key} (upload ID: {session.upload_id}): {exc}"
            )
            logger.warning(message)
            result.errors.append(message)
        else:
            result.total_aborted += 1

    logger.info(
        "Aborted %d of %d incomplete uploads", result.total_aborted, result.total_found
    )
    return result


async def list_objects(
    backend: StorageBackend, prefix: str = "", max_keys: int = DEFAULT_LIST_MAX_KEYS
) -> list[ObjectInfo]:
    """List objects under ``prefix``, at most ``max_keys`` of them."""
    if max_keys <= 0:
        max_keys = DEFAULT_LIST_MAX_KEYS
    return await backend.list_objects(prefix, max_keys)


async def delete_object(backend: StorageBackend, key: str) -> None:
    """Delete a single object after validating its key.

    Raises:
        ValidationError: If the key is unsafe.
    """
    validate_object_key(key)
    await backend.delete_object(key)

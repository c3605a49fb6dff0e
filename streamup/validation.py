"""Input validation for object keys, metadata, local paths and source URLs."""

import ipaddress
import logging
import socket
from urllib.parse import urlparse

from streamup.const import (
    MAX_METADATA_KEY_CHARS,
    MAX_METADATA_VALUE_CHARS,
    MAX_OBJECT_KEY_BYTES,
)
from streamup.exceptions import ValidationError

logger = logging.getLogger(__name__)

LOCALHOST_NAMES = {"localhost", "127.0.0.1", "::1"}


def _is_control(character: str) -> bool:
    return ord(character) < 0x20 or ord(character) == 0x7F


def validate_object_key(key: str) -> None:
    """Check that an object key is safe to use.

    Raises:
        ValidationError: If the key is empty, too long, contains control
            characters or traversal sequences, or has surrounding whitespace.
    """
    if not key:
        raise ValidationError("key", "cannot be empty")

    key_bytes = len(key.encode("utf-8"))
    if key_bytes > MAX_OBJECT_KEY_BYTES:
        raise ValidationError(
            "key", f"too long (max {MAX_OBJECT_KEY_BYTES} bytes): {key_bytes} bytes"
        )

    for position, character in enumerate(key):
        if _is_control(character):
            raise ValidationError(
                "key",
                f"contains control character at position {position} "
                f"(code: 0x{ord(character):02X})",
            )

    if "../" in key or "..\\" in key:
        raise ValidationError("key", "contains path traversal sequence")

    if key.strip() != key:
        raise ValidationError("key", "has leading or trailing whitespace")

    if "//" in key:
        logger.warning(f"Object key {key!r} contains double slashes (//)")


def validate_metadata(key: str, value: str) -> None:
    """Check a custom metadata pair for header injection.

    Raises:
        ValidationError: If either side is malformed or too long.
    """
    if not key:
        raise ValidationError("metadata", "key cannot be empty")
    if len(key) > MAX_METADATA_KEY_CHARS:
        raise ValidationError(
            "metadata",
            f"key too long (max {MAX_METADATA_KEY_CHARS} chars): {len(key)} chars",
        )
    if len(value) > MAX_METADATA_VALUE_CHARS:
        raise ValidationError(
            "metadata",
            f"value too long (max {MAX_METADATA_VALUE_CHARS} chars): "
            f"{len(value)} chars",
        )
    if "\x00" in value:
        raise ValidationError("metadata", "value contains null bytes")
    for position, character in enumerate(key):
        if _is_control(character):
            raise ValidationError(
                "metadata", f"key contains control character at position {position}"
            )
    if "\r" in value or "\n" in value:
        raise ValidationError("metadata", "value contains newline characters")


def parse_metadata_pairs(pairs: list[str]) -> dict[str, str]:
    """Parse ``key=value`` strings into a validated metadata mapping.

    Raises:
        ValidationError: If a pair is malformed or fails validation.
    """
    metadata: dict[str, str] = {}
    for pair in pairs:
        key, separator, value = pair.partition("=")
        if not separator:
            raise ValidationError(
                "metadata", f"invalid format {pair!r}, expected key=value"
            )
        validate_metadata(key, value)
        metadata[key] = value
    return metadata


def validate_file_path(path: str) -> None:
    """Reject local paths that are empty, contain NUL, ``..`` or control characters.

    Raises:
        ValidationError: If the path is unsafe.
    """
    if not path:
        raise ValidationError("path", "cannot be empty")
    if "\x00" in path:
        raise ValidationError("path", "contains null bytes")
    if ".." in path:
        raise ValidationError(
            "path", "contains '..' which could indicate a path traversal attempt"
        )
    for position, character in enumerate(path):
        if ord(character) < 0x20 and character not in "\t\n\r":
            raise ValidationError(
                "path", f"contains control character at position {position}"
            )


def is_private_address(address: str) -> bool:
    """Whether an IP address points into a non-public range."""
    ip = ipaddress.ip_address(address.split("%", 1)[0])
    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_multicast
        or ip.is_reserved
        or ip.is_unspecified
    )


def validate_url(url: str) -> None:
    """Only allow http(s) URLs whose host resolves to public addresses.

    Raises:
        ValidationError: If the URL is malformed, uses another scheme, or
            targets localhost or a private network.
    """
    parsed = urlparse(url)
    if parsed.scheme not in {"http", "https"}:
        raise ValidationError(
            "url",
            f"invalid scheme: {parsed.scheme or '(none)'} "
            "(only http and https are allowed)",
        )

    hostname = parsed.hostname
    if not hostname:
        raise ValidationError("url", "must have a hostname")

    if hostname.lower() in LOCALHOST_NAMES:
        raise ValidationError("url", "access to localhost is not allowed")

    try:
        addresses = {info[4][0] for info in socket.getaddrinfo(hostname, None)}
    except socket.gaierror as exc:
        raise ValidationError("url", f"failed to resolve hostname: {exc}") from exc

    for address in sorted(addresses):
        if is_private_address(address):
            raise ValidationError(
                "url",
                "access to private IP addresses is not allowed: "
                f"{hostname} resolves to {address}",
            )


def is_url(source: str) -> bool:
    """Whether a source argument names an http(s) URL."""
    return urlparse(source).scheme in {"http", "https"}

"""Content type and encoding detection from object names."""

import mimetypes
from pathlib import PurePosixPath

DEFAULT_CONTENT_TYPE = "application/octet-stream"

# Web types missing from, or inconsistent across, platform mime databases.
CUSTOM_CONTENT_TYPES: dict[str, str] = {
    ".json": "application/json",
    ".jsonld": "application/ld+json",
    ".map": "application/json",
    ".webp": "image/webp",
    ".woff": "font/woff",
    ".woff2": "font/woff2",
    ".ttf": "font/ttf",
    ".otf": "font/otf",
    ".eot": "application/vnd.ms-fontobject",
    ".md": "text/markdown",
    ".markdown": "text/markdown",
    ".yml": "text/yaml",
    ".yaml": "text/yaml",
    ".toml": "application/toml",
    ".ts": "application/typescript",
    ".tsx": "application/typescript",
    ".mjs": "application/javascript",
    ".cjs": "application/javascript",
    ".pbf": "application/octet-stream",
    ".br": "application/x-br",
    ".zst": "application/zstd",
}

CONTENT_ENCODINGS: dict[str, str] = {
    ".gz": "gzip",
    ".gzip": "gzip",
    ".br": "br",
    ".zst": "zstd",
}

COMPRESSIBLE_PREFIXES = (
    "text/",
    "application/json",
    "application/javascript",
    "application/xml",
    "application/xhtml+xml",
    "application/ld+json",
    "image/svg+xml",
)


def _extension(name: str) -> str:
    return PurePosixPath(name).suffix.lower()


def detect_content_type(name: str) -> str:
    """Return the MIME type for an object name, without parameters.

    Args:
        name: Object key or file name.

    Returns:
        The MIME type, ``application/octet-stream`` when unknown.
    """
    ext = _extension(name)
    if not ext:
        return DEFAULT_CONTENT_TYPE

    if ext in CUSTOM_CONTENT_TYPES:
        return CUSTOM_CONTENT_TYPES[ext]

    guessed, _ = mimetypes.guess_type(f"file{ext}", strict=False)
    if guessed:
        return guessed.split(";", 1)[0].strip()
    return DEFAULT_CONTENT_TYPE


def get_content_encoding(name: str) -> str | None:
    """Return the content encoding implied by the extension, if any."""
    return CONTENT_ENCODINGS.get(_extension(name))


def should_compress(content_type: str) -> bool:
    """Whether content of this type is text-like and worth compressing."""
    return content_type.startswith(COMPRESSIBLE_PREFIXES)

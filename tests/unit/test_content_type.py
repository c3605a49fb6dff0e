import pytest

from streamup.content_type import (
    detect_content_type,
    get_content_encoding,
    should_compress,
)


@pytest.mark.parametrize(
    "name, expected",
    [
        ("index.html", "text/html"),
        ("data.json", "application/json"),
        ("font.woff2", "font/woff2"),
        ("image.webp", "image/webp"),
        ("README.md", "text/markdown"),
        ("config.yaml", "text/yaml"),
        ("photo.JPG", "image/jpeg"),
        ("dir.with.dots/archive.zip", "application/zip"),
        ("no_extension", "application/octet-stream"),
        ("file.unknownext", "application/octet-stream"),
    ],
)
def test_detect_content_type(name, expected):
    assert detect_content_type(name) == expected


@pytest.mark.parametrize(
    "name, expected",
    [
        ("dump.sql.gz", "gzip"),
        ("bundle.js.br", "br"),
        ("data.zst", "zstd"),
        ("plain.txt", None),
    ],
)
def test_get_content_encoding(name, expected):
    assert get_content_encoding(name) == expected


@pytest.mark.parametrize(
    "content_type, expected",
    [
        ("text/plain", True),
        ("application/json", True),
        ("image/svg+xml", True),
        ("image/png", False),
        ("application/zip", False),
    ],
)
def test_should_compress(content_type, expected):
    assert should_compress(content_type) is expected

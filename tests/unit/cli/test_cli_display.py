from datetime import datetime

import pytest

from streamup.cli.display import format_size, format_timestamp


@pytest.mark.parametrize(
    "num_bytes, expected",
    [
        (0, "0 B"),
        (1023, "1023 B"),
        (1024, "1.00 KB"),
        (1536, "1.50 KB"),
        (5 * 1024**2, "5.00 MB"),
        (70 * 1024**3, "70.00 GB"),
    ],
)
def test_format_size(num_bytes, expected):
    assert format_size(num_bytes) == expected


def test_format_timestamp():
    assert format_timestamp(datetime(2024, 5, 1, 8, 30)) == "2024-05-01 08:30:00"
    assert format_timestamp(None) == "-"

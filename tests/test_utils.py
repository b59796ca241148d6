from datetime import datetime, timedelta, timezone

import pytest

from knest import utils
from knest.errors import DecodeError


def test_clamp_bounds_values():
    assert utils.clamp(1.5) == 1.0
    assert utils.clamp(-0.2) == 0.0
    assert utils.clamp(0.42) == 0.42
    assert utils.clamp(42, 5, 30) == 30
    assert utils.clamp(1, 5, 30) == 5


def test_parse_timestamp_accepts_fractional_seconds_with_offset():
    parsed = utils.parse_timestamp("2025-01-27T10:00:00.123456+09:00")
    assert parsed.microsecond == 123456
    assert parsed.utcoffset() == timedelta(hours=9)


def test_parse_timestamp_accepts_plain_offset_and_zulu():
    with_offset = utils.parse_timestamp("2025-01-27T10:00:00+00:00")
    zulu = utils.parse_timestamp("2025-01-27T10:00:00Z")
    assert with_offset == zulu == datetime(2025, 1, 27, 10, 0, tzinfo=timezone.utc)
    assert zulu.tzinfo is not None


@pytest.mark.parametrize("value", ["", None, "27/01/2025", "2025-01-27 10:00"])
def test_parse_timestamp_rejects_unknown_layouts(value):
    with pytest.raises(DecodeError):
        utils.parse_timestamp(value)


def test_format_timestamp_normalizes_to_utc():
    value = datetime(2025, 1, 27, 19, 0, tzinfo=timezone(timedelta(hours=9)))
    assert utils.format_timestamp(value) == "2025-01-27T10:00:00Z"
    assert utils.parse_timestamp(utils.format_timestamp(value)) == value

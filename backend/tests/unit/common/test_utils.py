"""Unit tests for common utility functions."""

import datetime

import pytest

from telemetry_server.common.request import get_user_ip_address_from_header
from telemetry_server.common.utils import (
    clamp,
    format_bytes,
    get_day_bounds_utc,
    isoformat_utc,
    parse_bool_flag,
    parse_utc_timestamp,
)


class TestFormatBytes:
    @pytest.mark.parametrize(
        'size, expected',
        [
            (0, '0 Bytes'),
            (-5, '0 Bytes'),
            (500, '500 Bytes'),
            (1024, '1 KB'),
            (1536, '1.5 KB'),
            (1024 * 1024 * 1.25, '1.25 MB'),
            (1024**3, '1 GB'),
            (1024**5, '1024 TB'),
        ],
    )
    def test_format_bytes(self, size, expected):
        assert format_bytes(size) == expected


class TestTimestamps:
    def test_offset_is_normalised_to_naive_utc(self):
        assert parse_utc_timestamp('2024-03-10T01:30:00+02:00') == datetime.datetime(2024, 3, 9, 23, 30)

    def test_naive_strings_are_utc(self):
        assert parse_utc_timestamp('2024-03-10T23:59:59.999') == datetime.datetime(2024, 3, 10, 23, 59, 59, 999000)

    @pytest.mark.parametrize('value', [None, '', 'yesterday-ish', 12345, {'at': 'now'}])
    def test_unparseable_is_none(self, value):
        assert parse_utc_timestamp(value) is None

    def test_isoformat_utc(self):
        moment = datetime.datetime(2024, 3, 10, 23, 59, 59, 999000)
        assert isoformat_utc(moment) == '2024-03-10T23:59:59.999Z'
        assert isoformat_utc(None) is None

    def test_day_bounds(self):
        start, end = get_day_bounds_utc(datetime.date(2024, 3, 10))
        assert start == datetime.datetime(2024, 3, 10)
        assert end == datetime.datetime(2024, 3, 11)


@pytest.mark.parametrize(
    'value, expected',
    [(True, True), ('true', True), ('1', True), (' YES ', True), ('false', False), (None, False), ('', False)],
)
def test_parse_bool_flag(value, expected):
    assert parse_bool_flag(value) is expected


def test_clamp():
    assert clamp(0, 1, 10) == 1
    assert clamp(50, 1, 10) == 10
    assert clamp(5, 1, 10) == 5


def test_forwarded_header_takes_first_hop():
    assert get_user_ip_address_from_header('203.0.113.7, 10.0.0.1') == '203.0.113.7'
    assert get_user_ip_address_from_header(None) == ''

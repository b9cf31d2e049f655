from datetime import timedelta

import pytest

from pictophone.durations import format_duration, parse_duration


@pytest.mark.parametrize('text, expected', [
    ('5s', timedelta(seconds=5)),
    ('10m', timedelta(minutes=10)),
    ('2h30m', timedelta(hours=2, minutes=30)),
    ('1d2h30m', timedelta(days=1, hours=2, minutes=30)),
    ('365d', timedelta(days=365)),
    (' 3D ', timedelta(days=3)),
])
def test_parse_duration(text, expected):
    assert parse_duration(text) == expected


@pytest.mark.parametrize('text', ['', '   ', '0m', '1x', 'm5', '5m1h', None])
def test_parse_duration_rejects(text):
    with pytest.raises(ValueError):
        parse_duration(text)


def test_format_duration_rounds_off_small_units():
    assert format_duration(timedelta(days=3, hours=5)) == '3d'
    assert format_duration(timedelta(hours=10, minutes=15)) == '10h'
    assert format_duration(timedelta(hours=1, minutes=30, seconds=20)) == '1h30m'
    assert format_duration(timedelta(minutes=4, seconds=20)) == '4m20s'


def test_format_duration_exact():
    assert format_duration(timedelta(days=3, hours=5), round_off=False) == '3d5h'
    assert format_duration(timedelta(0)) == '0s'

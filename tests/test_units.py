from datetime import datetime

import pytest

from gc_diagnose.units import (
    MAX_PARALLELISM,
    calc_parallelism,
    datestamp_to_millis,
    day_diff,
    micros_to_millis,
    millis_to_micros,
    nanos_to_micros,
    option_size_to_bytes,
    parse_datestamp,
    parse_size_to_kb,
    percent,
    ratio_whole,
    secs_to_centis,
    secs_to_micros,
    years_literal,
)


def test_parse_size_to_kb_units():
    assert parse_size_to_kb("1024K") == 1024
    assert parse_size_to_kb("2M") == 2048
    assert parse_size_to_kb("1G") == 1024 * 1024
    assert parse_size_to_kb("1.5M") == 1536
    assert parse_size_to_kb("0.0B") == 0


def test_parse_size_to_kb_accepts_comma_decimal():
    assert parse_size_to_kb("1,5M") == 1536


def test_parse_size_to_kb_rejects_garbage():
    with pytest.raises(ValueError):
        parse_size_to_kb("lots")


def test_duration_conversions():
    assert secs_to_micros("0.0151290") == 15129
    assert secs_to_micros("0,5") == 500000
    assert millis_to_micros("3.123") == 3123
    assert secs_to_centis("0.05") == 5


def test_truncating_conversions():
    assert micros_to_millis(1999) == 1
    assert nanos_to_micros(1999) == 1


def test_percent_rounds_half_even():
    assert percent(1, 3) == 33
    assert percent(2, 3) == 67
    assert percent(90, 100) == 90


def test_ratio_whole():
    assert ratio_whole(7, 2) == 4
    assert ratio_whole(5, 2) == 2


def test_parallelism():
    assert calc_parallelism(5, 1, 2) == 300
    assert calc_parallelism(1, 0, 2) == 50


def test_parallelism_zero_real():
    assert calc_parallelism(0, 0, 0) == 100
    assert calc_parallelism(3, 0, 0) == MAX_PARALLELISM


def test_option_size_to_bytes():
    assert option_size_to_bytes("256m") == 256 * 1024 * 1024
    assert option_size_to_bytes("2G") == 2 * 1024 * 1024 * 1024
    assert option_size_to_bytes("1024") == 1024
    assert option_size_to_bytes("512k") == 512 * 1024
    assert option_size_to_bytes("64b") == 64
    assert option_size_to_bytes("1t") == 1024**4
    with pytest.raises(ValueError):
        option_size_to_bytes("lots")


def test_parse_datestamp_ignores_offset():
    parsed = parse_datestamp("2023-08-25T02:15:57.862-0400")
    assert parsed == datetime(2023, 8, 25, 2, 15, 57, 862000)


def test_datestamp_to_millis_from_reference_epoch():
    assert datestamp_to_millis("2000-01-01T00:00:01.500") == 1500


def test_years_literal_and_day_diff():
    assert day_diff(datetime(2020, 1, 1), datetime(2022, 5, 1)) == 851
    assert years_literal(851) == "2.3"

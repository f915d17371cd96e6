from __future__ import annotations

import math
from datetime import datetime

import pytest

from loggerlink.errors import AmbiguousSeriesError, ValidationError
from loggerlink.reporting.chart import (
    MAX_EXTRA_DECIMALS,
    Series,
    bucketize,
    build_chart,
    chart_header,
    choose_width,
    count_runs,
    label_layout,
    render_chart,
    render_single_chart,
    select_series,
    series_color,
    series_from_rows,
)
from loggerlink.timeutils import to_timestamp


def test_label_layout_widths_and_decimals():
    assert label_layout(0.0, 10.0, 19) == (8, 1)
    assert label_layout(-5.0, 5.0, 19) == (8, 1)
    assert label_layout(20.0, 20.5, 19) == (9, 2)
    assert label_layout(0.0, 100.0, 19) == (9, 1)


def test_label_layout_caps_extra_decimals():
    assert label_layout(5.0, 5.0, 19) == (7 + MAX_EXTRA_DECIMALS, 1 + MAX_EXTRA_DECIMALS)
    assert label_layout(1.0, 1.0001, 19) == (7 + MAX_EXTRA_DECIMALS, 1 + MAX_EXTRA_DECIMALS)


def test_bucketize_averages_collisions_and_clamps_last_sample():
    buckets = bucketize([(0, 1.0), (5, 3.0), (10, 5.0)], 0, 10, 2)

    assert buckets == [1.0, 4.0]


def test_bucketize_leaves_gaps_as_nan():
    buckets = bucketize([(0, 1.0), (2, 2.0), (4, 3.0)], 0, 4, 5)

    assert [math.isnan(value) for value in buckets] == [False, True, False, True, False]
    assert count_runs(buckets) == 3


def test_count_runs():
    nan = math.nan
    assert count_runs([]) == 0
    assert count_runs([1.0, nan, 2.0, 3.0, nan]) == 2
    assert count_runs([nan, nan]) == 0


def test_choose_width_stops_before_fragmentation_grows():
    dense = Series('A1', [(0, 1.0), (2, 2.0), (4, 3.0)])
    sparse = Series('B2', [(0, 1.0), (4, 2.0)])

    width = choose_width([dense, sparse], 0, 4, 5)

    assert width == 4
    baseline = max(count_runs(bucketize(s.points, 0, 4, 3)) for s in (dense, sparse))
    chosen = max(count_runs(bucketize(s.points, 0, 4, width)) for s in (dense, sparse))
    assert chosen <= baseline


def test_two_devices_with_three_samples_stay_unfragmented():
    series = [
        Series('A1', [(0, 1.0), (50, 2.0), (100, 3.0)]),
        Series('B2', [(0, 4.0), (50, 5.0), (100, 6.0)]),
    ]

    chart = build_chart(series, width=200, height=20)

    assert chart.data_width == 3
    for buckets in chart.buckets:
        assert count_runs(buckets) <= 3


def test_build_chart_rejects_empty_input():
    with pytest.raises(ValidationError):
        build_chart([Series('A1')], width=80, height=20)


def test_render_chart_draws_axis_and_segments():
    series = [Series('A1', [(0, 1.0), (1, 2.0), (2, 3.0)])]

    lines = render_chart(series, width=40, height=5, color=False).splitlines()

    assert lines[0].startswith('Device(s) A1 over period ')
    assert len(lines) == 6
    assert lines[1] == '   3.0┤ ╮'
    assert lines[-1] == '   1.0┼╯'
    assert '\x1b[' not in '\n'.join(lines)


def test_render_chart_colors_each_series():
    series = [Series('A1', [(0, 1.0), (1, 2.0)]), Series('B2', [(0, 2.0), (1, 1.0)])]

    text = render_chart(series, width=40, height=5)

    assert '\x1b[31mA1\x1b[0m' in text
    assert '\x1b[32mB2\x1b[0m' in text


def test_series_color_ranges():
    assert series_color(1) == '\x1b[31m'
    assert series_color(7) == '\x1b[37m'
    assert series_color(8) == '\x1b[90m'
    assert series_color(15) == '\x1b[97m'
    assert series_color(16) == '\x1b[38;5;16m'


def test_header_shows_dates_when_span_crosses_days():
    start = to_timestamp(datetime(2024, 1, 1, 8, 0))
    same_day = build_chart([Series('A1', [(start, 1.0), (start + 3600, 2.0)])], width=80, height=10)
    multi_day = build_chart([Series('A1', [(start, 1.0), (start + 2 * 86400, 2.0)])], width=80, height=10)

    assert chart_header(same_day, color=False) == 'Device(s) A1 over period 2024-01-01 08:00 to 2024-01-01 09:00'
    assert chart_header(multi_day, color=False) == 'Device(s) A1 over period 2024-01-01 to 2024-01-03'


def test_select_series_auto_selects_single_candidate():
    only = Series('A1', [(0, 1.0)])

    assert select_series([only]) is only


def test_select_series_lists_candidates_when_ambiguous():
    series = [Series('A1', [(0, 1.0)]), Series('B2', [(0, 1.0)])]

    with pytest.raises(AmbiguousSeriesError) as excinfo:
        select_series(series)

    assert excinfo.value.candidates == ('A1', 'B2')
    assert 'A1, B2' in str(excinfo.value)
    assert select_series(series, 'B2') is series[1]
    with pytest.raises(ValidationError):
        select_series(series, 'C3')


def test_select_series_with_no_candidates():
    with pytest.raises(AmbiguousSeriesError, match='No devices found'):
        select_series([])


def test_render_single_chart_uses_selected_series():
    series = [Series('A1', [(0, 1.0), (1, 2.0)]), Series('B2', [(0, 3.0), (1, 4.0)])]

    text = render_single_chart(series, width=40, height=5, serial_number='B2', color=False)

    assert text.splitlines()[0].startswith('Device(s) B2 over period')


def test_series_from_rows_groups_sorts_and_skips_nulls():
    rows = [
        {'serial_number': 'B2', 'timestamp': 20, 'value1': 2.0},
        {'serial_number': 'A1', 'timestamp': 10, 'value1': None},
        {'serial_number': 'A1', 'timestamp': 5, 'value1': 1.0},
        {'serial_number': 'B2', 'timestamp': 10, 'value1': 3},
    ]

    series = series_from_rows(rows, 'value1')

    assert [s.serial_number for s in series] == ['A1', 'B2']
    assert series[0].points == [(5, 1.0)]
    assert series[1].points == [(10, 3.0), (20, 2.0)]

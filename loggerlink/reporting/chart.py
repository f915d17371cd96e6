"""Terminal line charts of per-device reading series."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple

from ..errors import AmbiguousSeriesError, ValidationError
from ..timeutils import from_timestamp

MAX_EXTRA_DECIMALS = 4

# tick, axis, gap-start, gap-end, flat, down-bottom, down-top, up-bottom, up-top, vertical
SYMBOLS = ("┼", "┤", "╶", "╴", "─", "╰", "╭", "╮", "╯", "│")

RESET = "\x1b[0m"


@dataclass(slots=True)
class Series:
    """Timestamped values of one device, ordered by timestamp."""

    serial_number: str
    points: List[Tuple[int, float]] = field(default_factory=list)


@dataclass(slots=True)
class Chart:
    series: List[Series]
    buckets: List[List[float]]
    ts_min: int
    ts_max: int
    minimum: float
    maximum: float
    height: int
    label_width: int
    decimals: int

    @property
    def data_width(self) -> int:
        return len(self.buckets[0]) if self.buckets else 0


def series_from_rows(rows: Iterable[Mapping[str, object]], column: str) -> List[Series]:
    """Group store rows into one :class:`Series` per serial number, skipping nulls."""

    grouped: dict[str, Series] = {}
    for row in rows:
        value = row.get(column)
        if value is None:
            continue
        serial = str(row["serial_number"])
        series = grouped.get(serial)
        if series is None:
            series = grouped[serial] = Series(serial)
        series.points.append((int(row["timestamp"]), float(value)))
    ordered = [grouped[key] for key in sorted(grouped)]
    for series in ordered:
        series.points.sort(key=lambda point: point[0])
    return ordered


def select_series(series: Sequence[Series], serial_number: Optional[str] = None) -> Series:
    """Pick exactly one series, auto-selecting when only one candidate exists."""

    if serial_number:
        for candidate in series:
            if candidate.serial_number == serial_number:
                return candidate
        raise ValidationError(f"No readings found for {serial_number}")
    if len(series) == 1:
        return series[0]
    raise AmbiguousSeriesError([candidate.serial_number for candidate in series])


def label_layout(minimum: float, maximum: float, height: int) -> Tuple[int, int]:
    """Return ``(label_width, decimals)`` for the value axis."""

    width = 7 + int(math.floor(math.log10(max(1.0, abs(minimum), abs(maximum)))))
    if minimum < 0:
        width += 1
    decimals = 1
    value_range = maximum - minimum
    if value_range <= 0:
        extra = MAX_EXTRA_DECIMALS
    elif value_range < height:
        extra = min(max(math.ceil(math.log10(height / value_range)) - 1, 0), MAX_EXTRA_DECIMALS)
    else:
        extra = 0
    return width + extra, decimals + extra


def bucketize(points: Sequence[Tuple[int, float]], ts_min: int, span: int, width: int) -> List[float]:
    """Average *points* into *width* time buckets; empty buckets are NaN."""

    sums = [0.0] * width
    counts = [0] * width
    for ts, value in points:
        index = min((ts - ts_min) * width // span, width - 1)
        sums[index] += value
        counts[index] += 1
    return [sums[i] / counts[i] if counts[i] else math.nan for i in range(width)]


def count_runs(values: Sequence[float]) -> int:
    """Count contiguous stretches of non-empty buckets."""

    runs = 0
    inside = False
    for value in values:
        if math.isnan(value):
            inside = False
        elif not inside:
            inside = True
            runs += 1
    return runs


def choose_width(series: Sequence[Series], ts_min: int, ts_max: int, max_width: int) -> int:
    """Widest bucket count not more fragmented than the densest series' sample count.

    Starting at the largest per-series sample count, widths are tried in
    increasing order; the first width whose worst-case run count exceeds the
    starting one stops the search and the previous width wins.
    """

    count_max = max(len(s.points) for s in series)
    if count_max >= max_width:
        return max_width
    span = max(ts_max - ts_min, 1)
    baseline: Optional[int] = None
    for width in range(count_max, max_width + 1):
        runs = max(count_runs(bucketize(s.points, ts_min, span, width)) for s in series)
        if baseline is None:
            baseline = runs
        elif runs > baseline:
            return width - 1
    return max_width


def series_color(index: int) -> str:
    """ANSI escape for the 1-based series *index*."""

    if index <= 7:
        return f"\x1b[{30 + index}m"
    if index <= 15:
        return f"\x1b[{82 + index}m"
    return f"\x1b[38;5;{index % 256}m"


def build_chart(series: Sequence[Series], *, width: int, height: int) -> Chart:
    """Lay out *series* for a terminal *width* characters wide and *height* rows tall."""

    populated = [s for s in series if s.points]
    if not populated:
        raise ValidationError("No readings found")
    ts_min = min(s.points[0][0] for s in populated)
    ts_max = max(s.points[-1][0] for s in populated)
    values = [value for s in populated for _, value in s.points]
    minimum, maximum = min(values), max(values)
    rows = height - 1
    label_width, decimals = label_layout(minimum, maximum, rows)
    data_width = max(1, min(width - label_width, len(values)))
    data_width = choose_width(populated, ts_min, ts_max, data_width)
    span = max(ts_max - ts_min, 1)
    buckets = [bucketize(s.points, ts_min, span, data_width) for s in populated]
    return Chart(
        series=populated,
        buckets=buckets,
        ts_min=ts_min,
        ts_max=ts_max,
        minimum=minimum,
        maximum=maximum,
        height=rows,
        label_width=label_width,
        decimals=decimals,
    )


def chart_header(chart: Chart, color: bool = True) -> str:
    names = []
    for index, series in enumerate(chart.series, start=1):
        names.append(f"{series_color(index)}{series.serial_number}{RESET}" if color else series.serial_number)
    start, end = from_timestamp(chart.ts_min), from_timestamp(chart.ts_max)
    fmt = "%Y-%m-%d %H:%M" if start.date() == end.date() else "%Y-%m-%d"
    return f"Device(s) {', '.join(names)} over period {start.strftime(fmt)} to {end.strftime(fmt)}"


def plot(chart: Chart, color: bool = True) -> List[str]:
    """Draw the bucketed series as box-drawing line segments with a labelled axis."""

    minimum, maximum = chart.minimum, chart.maximum
    interval = maximum - minimum
    ratio = chart.height / interval if interval > 0 else 1.0
    min2 = math.floor(minimum * ratio)
    max2 = math.ceil(maximum * ratio)
    rows = max2 - min2
    width = chart.data_width

    def scaled(value: float) -> int:
        clamped = min(max(value, minimum), maximum)
        return int(round(clamped * ratio) - min2)

    grid = [[" "] * width for _ in range(rows + 1)]
    axis = [SYMBOLS[1]] * (rows + 1)
    first = chart.buckets[0][0]
    if not math.isnan(first):
        axis[rows - scaled(first)] = SYMBOLS[0]

    for index, values in enumerate(chart.buckets, start=1):
        prefix = series_color(index) if color else ""
        suffix = RESET if color else ""

        def put(row: int, column: int, symbol: str) -> None:
            grid[rows - row][column] = f"{prefix}{symbol}{suffix}"

        for x in range(len(values) - 1):
            y0, y1 = values[x], values[x + 1]
            if math.isnan(y0) and math.isnan(y1):
                continue
            if math.isnan(y0):
                put(scaled(y1), x, SYMBOLS[2])
                continue
            if math.isnan(y1):
                put(scaled(y0), x, SYMBOLS[3])
                continue
            s0, s1 = scaled(y0), scaled(y1)
            if s0 == s1:
                put(s0, x, SYMBOLS[4])
                continue
            if s0 > s1:
                put(s1, x, SYMBOLS[5])
                put(s0, x, SYMBOLS[6])
            else:
                put(s1, x, SYMBOLS[7])
                put(s0, x, SYMBOLS[8])
            for y in range(min(s0, s1) + 1, max(s0, s1)):
                put(y, x, SYMBOLS[9])

    lines = []
    for row in range(rows + 1):
        value = maximum - row * interval / (rows or 1)
        label = f"{value:.{chart.decimals}f}".rjust(chart.label_width - 1)
        lines.append((label + axis[row] + "".join(grid[row])).rstrip())
    return lines


def render_chart(series: Sequence[Series], *, width: int, height: int, color: bool = True) -> str:
    """Render the header line and plot for every series, one color each."""

    chart = build_chart(series, width=width, height=height)
    return "\n".join([chart_header(chart, color), *plot(chart, color)])


def render_single_chart(
    series: Sequence[Series],
    *,
    width: int,
    height: int,
    serial_number: Optional[str] = None,
    color: bool = True,
) -> str:
    selected = select_series(series, serial_number)
    return render_chart([selected], width=width, height=height, color=color)

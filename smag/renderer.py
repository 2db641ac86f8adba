"""Рендер дашборду у терміналі через rich.

Над графіком по рядку на команду (команда, last, min, max, p95) у кольорі
ряду, нижче braille-графік усіх рядів зі спільною віссю Y. Рендер лише
читає `SeriesStore` і нічого в ньому не змінює.
"""

from __future__ import annotations

import math
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from rich import box
from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from smag.series_store import AxisSpec, ManualRange, SeriesStore, format_tick

PALETTE = (
    "red",
    "green",
    "yellow",
    "blue",
    "magenta",
    "cyan",
    "bright_red",
    "bright_green",
    "bright_yellow",
    "bright_blue",
    "bright_magenta",
    "bright_cyan",
)
AXIS_STYLE = "grey70"
PANEL_CHROME_ROWS = 2  # верхня та нижня рамка
PANEL_CHROME_COLS = 4  # рамка + горизонтальний padding
HEADER_GAP_ROWS = 1
X_AXIS_ROWS = 2  # лінія осі та підписи меж
MIN_CHART_ROWS = 2
MIN_PLOT_WIDTH = 4
COMPACT_VALUE_THRESHOLD = 1e15  # від цього порядку значення у шапці показуються у форматі `g`

_BRAILLE_BASE = 0x2800
_BRAILLE_BITS = (
    (0x01, 0x08),
    (0x02, 0x10),
    (0x04, 0x20),
    (0x40, 0x80),
)


def build_palette(count: int) -> Tuple[str, ...]:
    """Кольори рядів за їхньою позицією; будується один раз при старті."""

    return tuple(PALETTE[idx % len(PALETTE)] for idx in range(count))


def chart_rows_for(height: int, series_count: int) -> int:
    chrome = PANEL_CHROME_ROWS + series_count + HEADER_GAP_ROWS + X_AXIS_ROWS
    return max(MIN_CHART_ROWS, int(height) - chrome)


def _set_braille(mask_grid: List[List[int]], x_sub: int, y_sub: int) -> None:
    cell_x = x_sub // 2
    cell_y = y_sub // 4
    if cell_y < 0 or cell_y >= len(mask_grid):
        return
    row = mask_grid[cell_y]
    if cell_x < 0 or cell_x >= len(row):
        return
    row[cell_x] |= _BRAILLE_BITS[y_sub % 4][x_sub % 2]


def _draw_line_braille(mask_grid: List[List[int]], x0: int, y0: int, x1: int, y1: int) -> None:
    """Bresenham у субпіксельних координатах."""
    dx = abs(x1 - x0)
    sx = 1 if x0 < x1 else -1
    dy = -abs(y1 - y0)
    sy = 1 if y0 < y1 else -1
    err = dx + dy
    x = x0
    y = y0
    while True:
        _set_braille(mask_grid, x, y)
        if x == x1 and y == y1:
            break
        e2 = 2 * err
        if e2 >= dy:
            err += dy
            x += sx
        if e2 <= dx:
            err += dx
            y += sy


def _axis_ratio(value: float, lo: float, hi: float) -> float:
    """Положення `value` між `lo` і `hi` у межах [0, 1]."""
    span = hi - lo
    if not math.isfinite(span):
        # Межі на краях діапазону float: рахуємо в половинах.
        value, lo, span = value / 2, lo / 2, hi / 2 - lo / 2
    if not span:
        return 0.0
    return max(0.0, min(1.0, (value - lo) / span))


def _plot_series(
    samples: np.ndarray,
    x_bounds: Tuple[float, float],
    y_bounds: Tuple[float, float],
    width: int,
    rows: int,
) -> List[List[int]]:
    mask_grid: List[List[int]] = [[0 for _ in range(width)] for _ in range(rows)]
    w_sub = max(2, width * 2)
    h_sub = max(4, rows * 4)
    x_lo, x_hi = x_bounds
    y_lo, y_hi = y_bounds
    x_span = (x_hi - x_lo) or 1.0

    prev: Optional[Tuple[int, int]] = None
    for x, y, present in samples.tolist():
        if not present:
            # Пропуск розриває лінію.
            prev = None
            continue
        x_sub = int(round((x - x_lo) / x_span * (w_sub - 1)))
        ratio = _axis_ratio(y, y_lo, y_hi)
        y_sub = int(round((1.0 - ratio) * (h_sub - 1)))
        if prev is None:
            _set_braille(mask_grid, x_sub, y_sub)
        else:
            _draw_line_braille(mask_grid, prev[0], prev[1], x_sub, y_sub)
        prev = (x_sub, y_sub)
    return mask_grid


def _append_braille_row(text: Text, mask_row: List[int], style_row: List[Optional[str]]) -> None:
    run: List[str] = []
    run_style: Optional[str] = None
    for bits, style in zip(mask_row, style_row):
        char = chr(_BRAILLE_BASE + bits) if bits else " "
        char_style = style if bits else None
        if run and char_style != run_style:
            text.append("".join(run), style=run_style)
            run = []
        run_style = char_style
        run.append(char)
    if run:
        text.append("".join(run), style=run_style)


def _tick_rows(axis: AxisSpec, rows: int, unit: str) -> Dict[int, str]:
    lo, hi = axis.bounds
    placed: Dict[int, str] = {}
    # Позначок буває більше, ніж рядків; беремо не більше `rows` з них.
    for value in axis.ticks(rows):
        row = int(round((1.0 - _axis_ratio(value, lo, hi)) * (rows - 1)))
        placed.setdefault(max(0, min(rows - 1, row)), format_tick(axis.increment, value, unit))
    placed.setdefault(0, format_tick(axis.increment, hi, unit))
    return placed


def _format_value(value: Optional[float], unit: str = "") -> str:
    if value is None:
        return "—"
    if abs(value) >= COMPACT_VALUE_THRESHOLD:
        text = f"{value:.6g}"
    elif float(value).is_integer():
        text = f"{int(value)}"
    else:
        text = f"{value:.2f}"
    return f"{text} {unit}" if unit else text


def build_header_table(store: SeriesStore, commands: Sequence[str], unit: str = "") -> Table:
    table = Table.grid(expand=True, padding=(0, 1))
    for _ in range(5):
        table.add_column(ratio=1, no_wrap=True, overflow="ellipsis")
    for idx, command in enumerate(commands):
        style = store.styles[idx] or None
        stats = store.stats(idx)
        samples = store.samples(idx)
        last: Optional[float] = None
        if len(samples) and bool(samples[-1]["present"]):
            last = store.last(idx)
        table.add_row(
            Text(f"Running cmd: {command}", style=style),
            Text(f"last {_format_value(last, unit)}", style=style),
            Text(f"min {_format_value(stats.minimum if stats else None, unit)}", style=style),
            Text(f"max {_format_value(stats.maximum if stats else None, unit)}", style=style),
            Text(f"p95 {_format_value(stats.p95 if stats else None, unit)}", style=style),
        )
    return table


def build_chart(
    store: SeriesStore,
    axis: AxisSpec,
    x_bounds: Tuple[float, float],
    width: int,
    rows: int,
    unit: str = "",
) -> Text:
    tick_rows = _tick_rows(axis, rows, unit)
    label_width = max((len(label) for label in tick_rows.values()), default=0)
    plot_width = max(MIN_PLOT_WIDTH, width - label_width - 1)

    combined: List[List[int]] = [[0] * plot_width for _ in range(rows)]
    cell_styles: List[List[Optional[str]]] = [[None] * plot_width for _ in range(rows)]
    for idx in range(store.series_count):
        mask = _plot_series(store.samples(idx), x_bounds, axis.bounds, plot_width, rows)
        style = store.styles[idx] or None
        for r, mask_row in enumerate(mask):
            for c, bits in enumerate(mask_row):
                if bits:
                    combined[r][c] |= bits
                    cell_styles[r][c] = style

    text = Text(no_wrap=True, overflow="crop")
    for r in range(rows):
        label = tick_rows.get(r)
        text.append((label or "").rjust(label_width), style=AXIS_STYLE)
        text.append("┤" if label is not None else "│", style=AXIS_STYLE)
        _append_braille_row(text, combined[r], cell_styles[r])
        text.append("\n")

    x_left = f"{x_bounds[0]:.0f}"
    x_right = f"{x_bounds[1]:.0f}"
    gap = max(1, plot_width - len(x_left) - len(x_right))
    text.append(" " * label_width + "└" + "─" * plot_width + "\n", style=AXIS_STYLE)
    text.append(" " * (label_width + 1) + x_left + " " * gap + x_right, style=AXIS_STYLE)
    return text


def render_dashboard(
    store: SeriesStore,
    commands: Sequence[str],
    *,
    width: int,
    height: int,
    unit: str = "",
    manual: Optional[ManualRange] = None,
) -> Panel:
    rows = chart_rows_for(height, store.series_count)
    axis = store.y_axis_bounds(rows, manual)
    inner_width = max(MIN_PLOT_WIDTH + 2, int(width) - PANEL_CHROME_COLS)
    body = Group(
        build_header_table(store, commands, unit),
        Text(""),
        build_chart(store, axis, store.x_axis_bounds(), inner_width, rows, unit),
    )
    return Panel(
        body,
        title="smag",
        subtitle="q / Esc: вихід",
        border_style="cyan",
        box=box.ROUNDED,
    )


class ChartRenderer:
    """Тонка обгортка над `rich.live.Live`; перемальовує кадр на запит."""

    def __init__(
        self,
        commands: Sequence[str],
        *,
        console: Optional[Console] = None,
        unit: str = "",
        manual: Optional[ManualRange] = None,
        screen: bool = True,
    ) -> None:
        self.commands = tuple(commands)
        self.console = console or Console()
        self.unit = unit
        self.manual = manual
        self._screen = screen
        self._live: Optional[Live] = None
        self.frames = 0

    def __enter__(self) -> "ChartRenderer":
        self._live = Live(
            Text(""),
            console=self.console,
            screen=self._screen,
            auto_refresh=False,
        )
        self._live.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001 - стандартний протокол
        if self._live is not None:
            self._live.stop()
            self._live = None

    def draw(self, store: SeriesStore) -> None:
        width, height = self.console.size
        renderable = render_dashboard(
            store,
            self.commands,
            width=width,
            height=height,
            unit=self.unit,
            manual=self.manual,
        )
        if self._live is not None:
            self._live.update(renderable, refresh=True)
        else:
            self.console.print(renderable)
        self.frames += 1

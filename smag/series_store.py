"""Сховище часових рядів: вікна по осі X, статистика та розмітка осі Y.

Кожна команда має власний `RingBuffer` зі зразками `(x, y, present)`.
Пропущені зразки (команда впала або вивела не число) займають слот, щоб
зберегти каденцію, але не беруть участі ні у статистиці, ні в автоматичному
діапазоні осі Y. Легітимний нуль є присутнім зразком.

Автоматична вісь Y підбирає «гарний» крок (1/2/5 × 10^k), щоб підписи не
стрибали від кадру до кадру, коли діапазон даних ледь змінюється.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from smag.ringbuffer import RingBuffer

SAMPLE_DTYPE = np.dtype([("x", np.float64), ("y", np.float64), ("present", np.bool_)])

ROWS_PER_TICK = 7  # цільова кількість рядків терміналу на одну позначку
MIN_TICK_SPACING_RATIO = 0.3  # нижче цієї частки від ROWS_PER_TICK позначки злипаються
MAX_BUFFER_PCT = 0.05
BUFFER_PCT_PER_ROW = 0.0025
ZERO_RANGE_FALLBACK = 2.0
MANUAL_ROWS_PER_TICK = 6
MANUAL_DEFAULT_DIVISIONS = 4
EXTRA_TICK_DECIMALS = 6  # понад порядок кроку, для кроків на кшталт 0.25
MAX_FIXED_TICK_CHARS = 16  # довші підписи переходять у формат `g`
P95_PERCENTILE = 95.0

_NICE_MULTIPLIERS = (1.0, 2.0, 5.0)
_ROUNDING_EPS = 1e-9


class ManualRangeError(ValueError):
    """Некоректний рядок ручного діапазону `min,max[,increment]`."""


@dataclass(frozen=True)
class SeriesStats:
    minimum: float
    maximum: float
    p95: float


@dataclass(frozen=True)
class AxisSpec:
    """Межі осі, кількість позначок та крок між ними."""

    bounds: Tuple[float, float]
    tick_count: int
    increment: float

    def ticks(self, max_ticks: Optional[int] = None) -> List[float]:
        """Значення позначок від нижньої межі вгору.

        `max_ticks` обмежує розмір списку: береться кожна `ceil(tick_count /
        max_ticks)`-та позначка, тож вартість не залежить від `tick_count`.
        """

        lo, hi = self.bounds
        if self.tick_count <= 2:
            return [lo, hi]
        stride = 1
        if max_ticks is not None:
            stride = max(1, math.ceil(self.tick_count / max(1, int(max_ticks))))
        return [min(lo + i * self.increment, hi) for i in range(0, self.tick_count, stride)]


@dataclass(frozen=True)
class ManualRange:
    """Діапазон осі Y, заданий користувачем; вимикає автоматичний розрахунок."""

    minimum: float
    maximum: float
    increment: Optional[float] = None

    def resolve(self, chart_height_rows: Optional[int] = None) -> AxisSpec:
        span = self.maximum - self.minimum
        increment = self.increment
        if increment is None:
            if chart_height_rows is None:
                increment = span / MANUAL_DEFAULT_DIVISIONS
            else:
                divisions = max(1, (int(chart_height_rows) - 1) // MANUAL_ROWS_PER_TICK)
                increment = span / divisions
        # Крок не перевищує діапазон.
        increment = min(increment, span)
        tick_count = int(round(span / increment)) + 1
        return AxisSpec(
            bounds=(self.minimum, self.maximum),
            tick_count=tick_count,
            increment=increment,
        )


def parse_manual_range(text: str) -> ManualRange:
    """Розбирає `"min,max"` або `"min,max,increment"`.

    Будь-яка помилка фатальна для конфігурації: викликач має відхилити
    запуск ще до старту робочих потоків.
    """

    raw = (text or "").strip()
    fields = [part.strip() for part in raw.split(",")]
    if len(fields) not in (2, 3):
        raise ManualRangeError(
            f"Діапазон {raw!r} має містити 2 або 3 значення через кому: min,max[,increment]."
        )
    try:
        numbers = [float(field) for field in fields]
    except ValueError as exc:
        raise ManualRangeError(f"Діапазон {raw!r} містить нечислове значення.") from exc
    if not all(math.isfinite(number) for number in numbers):
        raise ManualRangeError(f"Діапазон {raw!r} містить нескінченне значення.")
    minimum, maximum = numbers[0], numbers[1]
    if not minimum < maximum:
        raise ManualRangeError(f"У діапазоні {raw!r} min має бути строго менше за max.")
    increment: Optional[float] = None
    if len(numbers) == 3:
        increment = numbers[2]
        if increment <= 0:
            raise ManualRangeError(f"Крок у діапазоні {raw!r} має бути додатним.")
    return ManualRange(minimum=minimum, maximum=maximum, increment=increment)


def snap_increment(candidate: float) -> float:
    """Прив'язує крок до найближчого значення з ряду {1, 2, 5} × 10^k.

    `round(3 * log10(candidate))` одночасно обирає степінь десяти (ціла
    частина від ділення на 3) і множник (остача 0/1/2 → 1/2/5). Половинки
    округлюються вгору.
    """

    if not math.isfinite(candidate) or candidate <= 0:
        raise ValueError(f"Крок осі має бути додатним скінченним числом, отримано {candidate!r}.")
    scaled = math.floor(3.0 * math.log10(candidate) + 0.5)
    exponent, step = divmod(scaled, 3)
    return _NICE_MULTIPLIERS[step] * 10.0**exponent


def _tick_precision(increment: float) -> int:
    if not math.isfinite(increment) or increment <= 0:
        return 0
    magnitude = 0
    if increment < 1:
        magnitude = math.ceil(abs(math.log10(increment)) - _ROUNDING_EPS)
    decimals = magnitude
    # Ручний крок на кшталт 0.25 потребує більше знаків, ніж дає лише порядок.
    while (
        decimals < magnitude + EXTRA_TICK_DECIMALS
        and abs(round(increment, decimals) - increment) > increment * _ROUNDING_EPS
    ):
        decimals += 1
    return decimals


def format_tick(increment: float, value: float, unit: str = "") -> str:
    """Форматує підпис позначки з точністю, достатньою для розрізнення сусідів.

    Дуже великі або дуже дрібні значення (довший за `MAX_FIXED_TICK_CHARS`
    запис) показуються у форматі `g` з 15 значущими цифрами.
    """

    decimals = _tick_precision(increment)
    text = f"{value:.{decimals}f}"
    if len(text) > MAX_FIXED_TICK_CHARS:
        text = f"{value:.15g}"
    if float(text) == 0:
        zero = f"{0.0:.{decimals}f}"
        text = zero if len(zero) <= MAX_FIXED_TICK_CHARS else "0"
    unit = (unit or "").strip()
    if unit:
        return f"{text} {unit}"
    return text


def _buffer_percentage(chart_height_rows: int) -> float:
    raw = (chart_height_rows - ROWS_PER_TICK) * BUFFER_PCT_PER_ROW
    return min(MAX_BUFFER_PCT, max(0.0, raw))


def _target_tick_count(chart_height_rows: int) -> int:
    return max(2, (chart_height_rows - 1) // ROWS_PER_TICK)


def _extent_axis(lo_value: float, hi_value: float) -> AxisSpec:
    """Вісь рівно по межах даних, коли «гарний» крок не вміщується у float."""

    return AxisSpec(bounds=(lo_value, hi_value), tick_count=2, increment=hi_value - lo_value)


class SeriesStore:
    """Зразки всіх команд, їхні вікна по X і похідні величини для рендера.

    Мутує сховище лише контролер (єдиний споживач шини подій), тому блокувань
    тут немає.
    """

    def __init__(
        self,
        series_count: int,
        capacity: int,
        styles: Optional[Sequence[str]] = None,
    ) -> None:
        if int(series_count) < 1:
            raise ValueError("Потрібен щонайменше один часовий ряд.")
        self.capacity = int(capacity)
        self._buffers = [RingBuffer(self.capacity, dtype=SAMPLE_DTYPE) for _ in range(int(series_count))]
        self._window_min = [0.0] * len(self._buffers)
        self._window_max = [float(self.capacity)] * len(self._buffers)
        styles_list = list(styles or ())
        self.styles: Tuple[str, ...] = tuple(
            styles_list[idx] if idx < len(styles_list) else "" for idx in range(len(self._buffers))
        )

    @property
    def series_count(self) -> int:
        return len(self._buffers)

    def update(self, series_id: int, x_index: int, value: Optional[float]) -> None:
        buffer = self._buffers[series_id]
        if buffer.is_full():
            self._window_min[series_id] += 1.0
            self._window_max[series_id] += 1.0
        if value is None:
            buffer.push((float(x_index), 0.0, False))
        else:
            buffer.push((float(x_index), float(value), True))

    def samples(self, series_id: int) -> np.ndarray:
        """Read-only view зразків ряду (поля `x`, `y`, `present`)."""

        return self._buffers[series_id].as_slice()

    def window(self, series_id: int) -> Tuple[float, float]:
        return self._window_min[series_id], self._window_max[series_id]

    def last(self, series_id: int) -> float:
        latest = self._buffers[series_id].last()
        if latest is None:
            return 0.0
        _, value, present = latest
        return float(value) if present else 0.0

    def _present_values(self, series_id: int) -> np.ndarray:
        data = self._buffers[series_id].as_slice()
        return data["y"][data["present"]]

    def stats(self, series_id: int) -> Optional[SeriesStats]:
        values = self._present_values(series_id)
        if values.size == 0:
            return None
        # inverted_cdf: nearest-rank.
        p95 = np.percentile(values, P95_PERCENTILE, method="inverted_cdf")
        return SeriesStats(
            minimum=float(values.min()),
            maximum=float(values.max()),
            p95=float(p95),
        )

    def x_axis_bounds(self) -> Tuple[float, float]:
        return min(self._window_min), max(self._window_max)

    def y_axis_bounds(self, chart_height_rows: int, manual: Optional[ManualRange] = None) -> AxisSpec:
        if manual is not None:
            return manual.resolve(chart_height_rows)
        return self._auto_axis(max(1, int(chart_height_rows)))

    def _value_extent(self) -> Optional[Tuple[float, float]]:
        extents = [
            (float(values.min()), float(values.max()))
            for values in (self._present_values(idx) for idx in range(self.series_count))
            if values.size
        ]
        if not extents:
            return None
        return min(lo for lo, _ in extents), max(hi for _, hi in extents)

    def _auto_axis(self, rows: int) -> AxisSpec:
        extent = self._value_extent()
        lo_value, hi_value = extent if extent is not None else (0.0, 0.0)
        value_range = hi_value - lo_value
        if value_range <= 0:
            lo_value -= ZERO_RANGE_FALLBACK / 2
            hi_value += ZERO_RANGE_FALLBACK / 2
            value_range = ZERO_RANGE_FALLBACK

        padding = value_range * _buffer_percentage(rows)
        padded_range = value_range + 2 * padding
        if not math.isfinite(padded_range):
            return _extent_axis(lo_value, hi_value)
        increment = snap_increment(padded_range / _target_tick_count(rows))

        lo_steps = (lo_value - padding) / increment
        hi_steps = (hi_value + padding) / increment
        if not (math.isfinite(lo_steps) and math.isfinite(hi_steps)):
            return _extent_axis(lo_value, hi_value)
        lo = math.floor(lo_steps + _ROUNDING_EPS) * increment
        hi = math.ceil(hi_steps - _ROUNDING_EPS) * increment
        if hi <= lo:
            hi = lo + increment
        if not math.isfinite(hi - lo):
            return _extent_axis(lo_value, hi_value)

        tick_count = max(2, int(round((hi - lo) / increment)) + 1)
        rows_per_tick = (rows - 1) / (tick_count - 1)
        if rows_per_tick < MIN_TICK_SPACING_RATIO * ROWS_PER_TICK:
            tick_count = 2
        return AxisSpec(bounds=(lo, hi), tick_count=tick_count, increment=increment)

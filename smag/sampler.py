"""Семплер: періодичний запуск зовнішньої команди та публікація зразків.

Кожна ітерація: запуск команди → розбір stdout як float → (опційно) різниця
з попереднім успішним значенням → подія у шину → сон на залишок інтервалу.
Невдалий запуск не повторюється одразу: він дає пропущений зразок, і
каденція зберігається.
"""

from __future__ import annotations

import logging
import math
import subprocess
import time
from dataclasses import dataclass
from functools import partial
from typing import Callable, Optional

from smag.pipeline import CancellationToken, EventBus, UpdateEvent, Worker

log = logging.getLogger("smag.sampler")

OUTPUT_PREVIEW_CHARS = 40


@dataclass(frozen=True)
class CommandResult:
    value: Optional[float]
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.value is not None


def parse_output(stdout: Optional[str]) -> CommandResult:
    text = (stdout or "").strip()
    try:
        value = float(text)
    except ValueError:
        return CommandResult(None, f"нечисловий вивід: {text[:OUTPUT_PREVIEW_CHARS]!r}")
    if not math.isfinite(value):
        return CommandResult(None, f"нескінченне значення: {text!r}")
    return CommandResult(value)


def run_command(command: str, timeout: Optional[float] = None) -> CommandResult:
    """Виконує команду через системну оболонку (`sh -c` / `cmd /C`)."""

    try:
        completed = subprocess.run(
            command,
            shell=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            stdin=subprocess.DEVNULL,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        return CommandResult(None, f"перевищено таймаут {timeout} с")
    except OSError as exc:
        return CommandResult(None, f"не вдалося запустити: {exc}")
    if completed.returncode != 0:
        return CommandResult(None, f"код виходу {completed.returncode}")
    return parse_output(completed.stdout)


class Sampler(Worker):
    """Воркер однієї команди; працює, доки токен не скасовано."""

    def __init__(
        self,
        series_id: int,
        command: str,
        bus: EventBus,
        token: CancellationToken,
        *,
        interval: float,
        diff: bool = False,
        timeout: Optional[float] = None,
        runner: Optional[Callable[[str], CommandResult]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(token, name=f"sampler-{series_id}")
        self.series_id = series_id
        self.command = command
        self.interval = max(0.0, float(interval))
        self.diff = diff
        self._bus = bus
        self._runner = runner or partial(run_command, timeout=timeout)
        self._clock = clock
        self._previous: Optional[float] = None
        self._index = 0

    @property
    def index(self) -> int:
        return self._index

    def sample_once(self) -> Optional[UpdateEvent]:
        """Один запуск команди; None означає, що публікувати нічого (перший зразок у diff)."""

        result = self._runner(self.command)
        if not result.ok:
            log.debug("%s: пропуск зразка #%d (%s): %s", self.name, self._index, self.command, result.error)
            return UpdateEvent(self.series_id, self._index, None)
        value = float(result.value)  # type: ignore[arg-type]
        if not self.diff:
            return UpdateEvent(self.series_id, self._index, value)
        previous, self._previous = self._previous, value
        if previous is None:
            return None
        delta = value - previous
        if not math.isfinite(delta):
            log.debug("%s: різниця #%d виходить за межі float, зразок пропущено.", self.name, self._index)
            return UpdateEvent(self.series_id, self._index, None)
        return UpdateEvent(self.series_id, self._index, delta)

    def _run(self) -> None:
        while not self._token.cancelled:
            started = self._clock()
            event = self.sample_once()
            if event is not None:
                self._bus.publish(event)
            remaining = self.interval - (self._clock() - started)
            if remaining > 0:
                # Сон переривається скасуванням; команду в польоті не перериваємо.
                self._token.wait(remaining)
            self._index += 1

"""Конвеєр подій: токен скасування, шина подій, базовий воркер і контролер.

Потоки-продюсери (семплери команд та зчитувач клавіатури) ніколи не
торкаються `SeriesStore` напряму: вони лише публікують незмінні події у
`EventBus`. Єдиний споживач (`Controller`) застосовує їх до сховища та
запускає перемальовування, тож сховище не потребує блокувань.
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence, Tuple, Union

from smag.series_store import SeriesStore

log = logging.getLogger("smag.pipeline")

RECEIVE_TIMEOUT_SECONDS = 0.25
QUIT_KEYS = frozenset({"q", "Q", "\x1b", "\x03"})  # q, Esc, Ctrl+C


class EventBusClosed(RuntimeError):
    """Шину закрито: подію неможливо доставити споживачу."""


class PipelineError(RuntimeError):
    """Фатальна помилка одного з воркерів конвеєра."""


@dataclass(frozen=True)
class UpdateEvent:
    """Новий зразок для ряду `series_id`; `value=None` означає пропуск."""

    series_id: int
    x_index: int
    value: Optional[float]


@dataclass(frozen=True)
class InputEvent:
    key: str


Event = Union[UpdateEvent, InputEvent]


def is_quit_key(key: str) -> bool:
    return key in QUIT_KEYS


class CancellationToken:
    """Спільний прапорець зупинки, який перевіряють усі воркери."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Чекає скасування не довше `timeout`; повертає True, якщо скасовано."""

        return self._event.wait(timeout)


class EventBus:
    """Необмежений канал multi-producer / single-consumer."""

    def __init__(self) -> None:
        self._queue: "queue.Queue[Event]" = queue.Queue()
        self._closed = threading.Event()

    def publish(self, event: Event) -> None:
        if self._closed.is_set():
            raise EventBusClosed(f"Шину подій закрито, подію {event!r} не доставлено.")
        self._queue.put_nowait(event)

    def receive(self, timeout: Optional[float] = None) -> Optional[Event]:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self) -> None:
        self._closed.set()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def pending(self) -> int:
        return self._queue.qsize()


class Worker:
    """Базовий потік-воркер: `start()`/`join()` та збереження аварії.

    Виняток у `_run` не губиться: він зберігається в `error`, а токен
    скасовується, щоб контролер завершив цикл і підняв `PipelineError`.
    """

    def __init__(self, token: CancellationToken, *, name: str) -> None:
        self.name = name
        self._token = token
        self._thread: Optional[threading.Thread] = None
        self.error: Optional[BaseException] = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self.error = None
        self._thread = threading.Thread(target=self._guarded_run, name=self.name)
        self._thread.start()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout=timeout)

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _guarded_run(self) -> None:
        log.debug("%s: старт", self.name)
        try:
            self._run()
        except Exception as exc:  # noqa: BLE001 - передаємо контролеру через self.error
            self.error = exc
            log.error("%s: аварійне завершення: %s", self.name, exc)
            self._token.cancel()
        else:
            log.debug("%s: зупинено", self.name)

    def _run(self) -> None:
        raise NotImplementedError


class Renderer(Protocol):
    def draw(self, store: SeriesStore) -> None:
        ...


class Controller:
    """Єдиний споживач шини: оновлює сховище, малює, обробляє вихід."""

    def __init__(
        self,
        store: SeriesStore,
        bus: EventBus,
        token: CancellationToken,
        renderer: Renderer,
        workers: Sequence[Worker] = (),
        *,
        receive_timeout: float = RECEIVE_TIMEOUT_SECONDS,
    ) -> None:
        self.store = store
        self._bus = bus
        self._token = token
        self._renderer = renderer
        self._workers: List[Worker] = list(workers)
        self._receive_timeout = receive_timeout
        self.updates_applied = 0

    @property
    def workers(self) -> Tuple[Worker, ...]:
        return tuple(self._workers)

    def run(self) -> None:
        for worker in self._workers:
            worker.start()
        try:
            self._renderer.draw(self.store)
            while not self._token.cancelled:
                event = self._bus.receive(timeout=self._receive_timeout)
                if event is None:
                    continue
                if not self.dispatch(event):
                    break
        finally:
            self._token.cancel()
            self.shutdown()

        failed = [worker for worker in self._workers if worker.error is not None]
        if failed:
            first = failed[0]
            raise PipelineError(f"Воркер {first.name} завершився з помилкою: {first.error}") from first.error

    def dispatch(self, event: Event) -> bool:
        """Застосовує подію. Повертає False, якщо цикл треба завершити."""

        if isinstance(event, UpdateEvent):
            self.store.update(event.series_id, event.x_index, event.value)
            self.updates_applied += 1
            self._renderer.draw(self.store)
            return True
        if isinstance(event, InputEvent):
            if is_quit_key(event.key):
                log.info("Завершення за запитом користувача (%r).", event.key)
                self._token.cancel()
                return False
            return True
        log.warning("Невідомий тип події: %r", event)
        return True

    def shutdown(self) -> None:
        """Чекає завершення всіх воркерів і закриває шину."""

        for worker in self._workers:
            worker.join()
        self._bus.close()
        log.debug("Усі воркери зупинено, оброблено оновлень: %d", self.updates_applied)

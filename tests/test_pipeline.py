from __future__ import annotations

import threading
import time
import unittest

import pytest

from smag.pipeline import (
    CancellationToken,
    Controller,
    EventBus,
    EventBusClosed,
    InputEvent,
    PipelineError,
    UpdateEvent,
    Worker,
    is_quit_key,
)
from smag.sampler import CommandResult, Sampler
from smag.series_store import SeriesStore


class FakeRenderer:
    def __init__(self) -> None:
        self.frames = 0

    def draw(self, store: SeriesStore) -> None:
        self.frames += 1


class IdleWorker(Worker):
    """Крутиться до скасування, нічого не публікуючи."""

    def __init__(self, token: CancellationToken) -> None:
        super().__init__(token, name="idle")
        self.started = threading.Event()

    def _run(self) -> None:
        self.started.set()
        while not self._token.cancelled:
            self._token.wait(0.01)


class FailingWorker(Worker):
    def __init__(self, token: CancellationToken) -> None:
        super().__init__(token, name="failing")

    def _run(self) -> None:
        raise RuntimeError("boom")


class EventBusTest(unittest.TestCase):
    def test_delivers_in_publish_order(self) -> None:
        bus = EventBus()
        bus.publish(UpdateEvent(0, 0, 1.0))
        bus.publish(InputEvent("x"))

        self.assertEqual(bus.pending(), 2)
        self.assertEqual(bus.receive(timeout=0.1), UpdateEvent(0, 0, 1.0))
        self.assertEqual(bus.receive(timeout=0.1), InputEvent("x"))

    def test_receive_times_out_with_none(self) -> None:
        self.assertIsNone(EventBus().receive(timeout=0.01))

    def test_publish_after_close_raises(self) -> None:
        bus = EventBus()
        bus.close()

        self.assertTrue(bus.closed)
        with self.assertRaises(EventBusClosed):
            bus.publish(InputEvent("q"))

    def test_concurrent_producers(self) -> None:
        bus = EventBus()

        def produce(series_id: int) -> None:
            for idx in range(50):
                bus.publish(UpdateEvent(series_id, idx, float(idx)))

        threads = [threading.Thread(target=produce, args=(sid,)) for sid in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        received = []
        while True:
            event = bus.receive(timeout=0.0)
            if event is None:
                break
            received.append(event)
        self.assertEqual(len(received), 200)
        for sid in range(4):
            indices = [event.x_index for event in received if event.series_id == sid]
            self.assertEqual(indices, list(range(50)))


@pytest.mark.parametrize(("key", "expected"), [("q", True), ("Q", True), ("\x1b", True), ("\x03", True), ("x", False), ("\n", False)])
def test_quit_keys(key: str, expected: bool) -> None:
    assert is_quit_key(key) is expected


def test_cancellation_token_wait() -> None:
    token = CancellationToken()
    assert token.wait(0.01) is False

    token.cancel()

    assert token.cancelled
    assert token.wait(0.01) is True


def test_controller_applies_updates_until_quit() -> None:
    store = SeriesStore(1, capacity=10)
    bus = EventBus()
    token = CancellationToken()
    renderer = FakeRenderer()
    for idx, value in enumerate([1.0, None, 3.0]):
        bus.publish(UpdateEvent(0, idx, value))
    bus.publish(InputEvent("a"))
    bus.publish(InputEvent("q"))
    bus.publish(UpdateEvent(0, 3, 99.0))

    controller = Controller(store, bus, token, renderer, receive_timeout=0.01)
    controller.run()

    assert token.cancelled
    assert bus.closed
    assert controller.updates_applied == 3
    assert renderer.frames == 4  # початковий кадр + по одному на оновлення
    assert store.samples(0)["present"].tolist() == [True, False, True]
    assert store.last(0) == 3.0


def test_controller_stops_when_token_cancelled_elsewhere() -> None:
    token = CancellationToken()
    worker = IdleWorker(token)
    controller = Controller(SeriesStore(1, 5), EventBus(), token, FakeRenderer(), [worker], receive_timeout=0.01)

    timer = threading.Timer(0.05, token.cancel)
    timer.start()
    controller.run()
    timer.join()

    assert worker.started.is_set()
    assert not worker.is_alive()


def test_controller_joins_workers_after_quit() -> None:
    token = CancellationToken()
    bus = EventBus()
    workers = [IdleWorker(token), IdleWorker(token)]
    bus.publish(InputEvent("\x1b"))

    Controller(SeriesStore(1, 5), bus, token, FakeRenderer(), workers, receive_timeout=0.01).run()

    assert all(not worker.is_alive() for worker in workers)


def test_worker_failure_is_fatal() -> None:
    token = CancellationToken()
    controller = Controller(
        SeriesStore(1, 5),
        EventBus(),
        token,
        FakeRenderer(),
        [IdleWorker(token), FailingWorker(token)],
        receive_timeout=0.01,
    )

    with pytest.raises(PipelineError) as excinfo:
        controller.run()

    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert "failing" in str(excinfo.value)


def test_sampler_feeds_store_through_controller() -> None:
    store = SeriesStore(1, capacity=10)
    bus = EventBus()
    token = CancellationToken()
    values = iter([1.0, 2.0, 3.0])

    def runner(command: str) -> CommandResult:
        value = next(values, None)
        if value is None:
            # Четвертий запуск: користувач натискає q, поки команда виконується.
            bus.publish(InputEvent("q"))
            return CommandResult(4.0)
        return CommandResult(value)

    sampler = Sampler(0, "cmd", bus, token, interval=0.0, runner=runner)
    controller = Controller(store, bus, token, FakeRenderer(), [sampler], receive_timeout=0.01)

    started = time.monotonic()
    controller.run()

    assert time.monotonic() - started < 5.0
    assert not sampler.is_alive()
    assert store.samples(0)["y"].tolist() == [1.0, 2.0, 3.0]
    assert store.samples(0)["x"].tolist() == [0.0, 1.0, 2.0]

"""Точка входу smag: логування, збирання конвеєра та запуск.

Приклад запуску:
    $ smag "cat /proc/loadavg | cut -d' ' -f1" -n 0.5 -y load
    $ python -m smag -d "cat /sys/class/net/eth0/statistics/rx_bytes" -y B
"""

from __future__ import annotations

import logging
import sys
from logging import Logger
from typing import List, Optional, Sequence

from rich.console import Console
from rich.logging import RichHandler

from smag.config import SmagConfig, load_config
from smag.key_input import InputWatcher, KeyboardInput
from smag.pipeline import CancellationToken, Controller, EventBus, PipelineError, Renderer, Worker
from smag.renderer import ChartRenderer, build_palette
from smag.sampler import Sampler
from smag.series_store import SeriesStore

log: Logger = logging.getLogger("smag")


def setup_logging(level: int, console: Console) -> None:
    """Налаштовуємо логер `smag` з RichHandler на тій самій консолі, що й Live.

    Спільна консоль потрібна, щоб рядки логів друкувалися над дашбордом, а не
    поверх нього. Повторний виклик лише оновлює рівень.
    """

    target_logger = logging.getLogger("smag")
    target_logger.setLevel(level)
    for handler in target_logger.handlers:
        if isinstance(handler, RichHandler):
            handler.setLevel(level)
            return

    handler = RichHandler(
        console=console,
        rich_tracebacks=True,
        show_path=False,
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    target_logger.addHandler(handler)
    target_logger.propagate = False


def build_pipeline(config: SmagConfig, renderer: Renderer, keyboard: KeyboardInput) -> Controller:
    store = SeriesStore(
        len(config.commands),
        config.history,
        styles=build_palette(len(config.commands)),
    )
    bus = EventBus()
    token = CancellationToken()
    workers: List[Worker] = [
        Sampler(
            series_id,
            command,
            bus,
            token,
            interval=config.interval,
            diff=config.diff,
            timeout=config.command_timeout,
        )
        for series_id, command in enumerate(config.commands)
    ]
    workers.append(InputWatcher(bus, token, keyboard))
    return Controller(store, bus, token, renderer, workers)


def run(
    config: SmagConfig,
    *,
    console: Optional[Console] = None,
    keyboard: Optional[KeyboardInput] = None,
) -> int:
    console = console or Console()
    setup_logging(config.log_level_value, console)
    log.info(
        "Старт: %d команд(и), інтервал %.2f с, історія %d точок.",
        len(config.commands),
        config.interval,
        config.history,
    )
    with keyboard or KeyboardInput() as key_input:
        with ChartRenderer(
            config.commands,
            console=console,
            unit=config.y_label,
            manual=config.manual_range,
        ) as renderer:
            controller = build_pipeline(config, renderer, key_input)
            try:
                controller.run()
            except KeyboardInterrupt:
                log.info("Перервано користувачем (Ctrl+C).")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    config = load_config(argv)
    try:
        return run(config)
    except PipelineError as exc:
        print(f"smag завершився з помилкою: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())

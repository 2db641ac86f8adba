"""Конфігурація запуску smag: CLI-аргументи з дефолтами з ENV."""

from __future__ import annotations

import argparse
import logging
import os
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from smag.series_store import ManualRange, ManualRangeError, parse_manual_range

DEFAULT_INTERVAL_SECONDS = 1.0  # Період опитування команд
MIN_INTERVAL_SECONDS = 0.05
DEFAULT_HISTORY = 100  # Кількість точок, які «пам'ятаємо» на команду
MIN_HISTORY = 2
DEFAULT_LOG_LEVEL = "WARNING"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigError(ValueError):
    """Некоректна конфігурація; виявляється до запуску конвеєра."""


def _get_float_env(name: str, default: float, *, min_value: float) -> float:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return max(min_value, value)


def _get_int_env(name: str, default: int, *, min_value: int = 1) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(min_value, value)


def _get_log_level_env(name: str, default: str) -> str:
    raw = (os.environ.get(name) or "").strip().upper()
    return raw if raw in LOG_LEVELS else default


@dataclass(frozen=True)
class SmagConfig:
    commands: Tuple[str, ...]
    interval: float
    history: int
    y_label: str
    diff: bool
    manual_range: Optional[ManualRange]
    command_timeout: Optional[float]
    log_level: str

    @property
    def log_level_value(self) -> int:
        return getattr(logging, self.log_level, logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="smag",
        description="Show Me A Graph - like the `watch` command but with a graph of previous values.",
    )
    parser.add_argument("cmds", nargs="+", metavar="CMD", help="команда(и) для запуску")
    parser.add_argument(
        "-n",
        "--interval",
        type=float,
        default=_get_float_env("SMAG_INTERVAL", DEFAULT_INTERVAL_SECONDS, min_value=MIN_INTERVAL_SECONDS),
        help="інтервал оновлення у секундах (ENV SMAG_INTERVAL)",
    )
    parser.add_argument(
        "-H",
        "--history",
        type=int,
        default=_get_int_env("SMAG_HISTORY", DEFAULT_HISTORY, min_value=MIN_HISTORY),
        help="кількість точок, що зберігаються та малюються для кожної команди (ENV SMAG_HISTORY)",
    )
    parser.add_argument("-y", "--y-label", default="", help="одиниці осі Y (напр. 'MB', 'Seconds')")
    parser.add_argument(
        "-d",
        "--diff",
        action="store_true",
        help="малювати різницю між послідовними виводами команди",
    )
    parser.add_argument(
        "-r",
        "--range",
        dest="y_range",
        default=None,
        metavar="MIN,MAX[,INCREMENT]",
        help="фіксований діапазон осі Y замість автоматичного",
    )
    parser.add_argument(
        "-t",
        "--timeout",
        type=float,
        default=None,
        help="таймаут однієї команди у секундах (за замовчуванням без обмеження)",
    )
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=LOG_LEVELS,
        default=_get_log_level_env("SMAG_LOG_LEVEL", DEFAULT_LOG_LEVEL),
        help="рівень логування (ENV SMAG_LOG_LEVEL)",
    )
    return parser


def config_from_args(args: argparse.Namespace) -> SmagConfig:
    commands = tuple(str(cmd).strip() for cmd in args.cmds)
    if not commands or any(not cmd for cmd in commands):
        raise ConfigError("Потрібна щонайменше одна непорожня команда.")
    if args.interval < MIN_INTERVAL_SECONDS:
        raise ConfigError(f"Інтервал має бути не менше {MIN_INTERVAL_SECONDS} с, отримано {args.interval}.")
    if args.history < MIN_HISTORY:
        raise ConfigError(f"Історія має містити щонайменше {MIN_HISTORY} точки, отримано {args.history}.")
    if args.timeout is not None and args.timeout <= 0:
        raise ConfigError(f"Таймаут команди має бути додатним, отримано {args.timeout}.")

    manual_range: Optional[ManualRange] = None
    if args.y_range is not None:
        try:
            manual_range = parse_manual_range(args.y_range)
        except ManualRangeError as exc:
            raise ConfigError(str(exc)) from exc

    return SmagConfig(
        commands=commands,
        interval=float(args.interval),
        history=int(args.history),
        y_label=str(args.y_label or "").strip(),
        diff=bool(args.diff),
        manual_range=manual_range,
        command_timeout=args.timeout,
        log_level=args.log_level,
    )


def load_config(argv: Optional[Sequence[str]] = None) -> SmagConfig:
    """Розбирає CLI; помилка конфігурації завершує процес із кодом 2."""

    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return config_from_args(args)
    except ConfigError as exc:
        parser.error(str(exc))
        raise  # pragma: no cover - parser.error завжди кидає SystemExit

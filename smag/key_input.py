"""Зчитування клавіш у фоні та пересилання їх у шину подій."""

from __future__ import annotations

import logging
import os
import select
import sys
import time
from typing import Any, Optional, TextIO

from smag.pipeline import CancellationToken, EventBus, InputEvent, Worker

try:  # pragma: no cover - доступно лише на Windows
    import msvcrt  # type: ignore[import]
except ImportError:  # noqa: SIM105
    msvcrt = None

try:  # pragma: no cover - недоступно на Windows
    import termios
    import tty
except ImportError:  # noqa: SIM105
    termios = None  # type: ignore[assignment]
    tty = None  # type: ignore[assignment]

log = logging.getLogger("smag.key_input")

POLL_TIMEOUT_SECONDS = 0.25
ESCAPE_SEQUENCE_GRACE_SECONDS = 0.01
WINDOWS_POLL_STEP_SECONDS = 0.02
ESC = "\x1b"


class KeyboardInput:
    """Платформо-залежний зчитувач клавіш з обмеженим таймаутом очікування.

    На POSIX переводить tty у cbreak-режим на час роботи контексту та
    відновлює налаштування на виході. Без tty (pipe, CI) лишається неактивним.
    """

    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self._stream = stream if stream is not None else sys.stdin
        self.fd: Optional[int] = None
        self._old_settings: Any = None

    def __enter__(self) -> "KeyboardInput":
        if os.name != "nt" and termios and tty and self._stream.isatty():
            self.fd = self._stream.fileno()
            self._old_settings = termios.tcgetattr(self.fd)
            tty.setcbreak(self.fd)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001 - стандартний протокол
        if self.fd is not None and self._old_settings is not None and termios:
            termios.tcsetattr(self.fd, termios.TCSADRAIN, self._old_settings)
        self.fd = None
        self._old_settings = None

    @property
    def active(self) -> bool:
        return msvcrt is not None or self.fd is not None

    def poll(self, timeout: float = 0.0) -> Optional[str]:
        if msvcrt is not None:  # pragma: no cover - відсутній на Linux
            deadline = time.monotonic() + timeout
            while True:
                if msvcrt.kbhit():
                    ch = msvcrt.getwch()
                    return "\n" if ch == "\r" else ch
                if time.monotonic() >= deadline:
                    return None
                time.sleep(WINDOWS_POLL_STEP_SECONDS)
        if self.fd is None:
            return None
        if not self._wait_readable(timeout):
            return None
        key = self._read_char()
        if key == ESC and self._wait_readable(ESCAPE_SEQUENCE_GRACE_SECONDS):
            # Стрілки та F-клавіші надходять як ESC-послідовності, це не вихід.
            self._drain()
            return None
        return key

    def _wait_readable(self, timeout: float) -> bool:
        try:
            ready, _, _ = select.select([self.fd], [], [], max(0.0, timeout))
        except (OSError, ValueError):
            return False
        return bool(ready)

    def _read_char(self) -> Optional[str]:
        try:
            data = os.read(self.fd, 1)  # type: ignore[arg-type]
        except OSError:
            return None
        if not data:
            return None
        return data.decode("utf-8", "ignore") or None

    def _drain(self) -> None:
        while self._wait_readable(0.0):
            try:
                if not os.read(self.fd, 64):  # type: ignore[arg-type]
                    return
            except OSError:
                return


class InputWatcher(Worker):
    """Пересилає натискання у шину; рішення про вихід ухвалює контролер."""

    def __init__(
        self,
        bus: EventBus,
        token: CancellationToken,
        keyboard: KeyboardInput,
        *,
        poll_timeout: float = POLL_TIMEOUT_SECONDS,
    ) -> None:
        super().__init__(token, name="input-watcher")
        self._bus = bus
        self._keyboard = keyboard
        self._poll_timeout = poll_timeout

    def _run(self) -> None:
        if not self._keyboard.active:
            log.debug("Клавіатура недоступна (stdin не tty), вихід лише через Ctrl+C.")
        while not self._token.cancelled:
            if not self._keyboard.active:
                self._token.wait(self._poll_timeout)
                continue
            key = self._keyboard.poll(self._poll_timeout)
            if key:
                self._bus.publish(InputEvent(key))

"""Кільцевий буфер фіксованої ємності з неперервним хронологічним зрізом.

Сховище має подвійну ємність (`2 * capacity`): нові елементи просто дописуються
в кінець, а коли місце закінчується, живе вікно зсувається на початок масиву.
Так компакція відбувається раз на `capacity` вставок, а читач завжди отримує
один суцільний numpy-view без копіювання та без wraparound-індексації.
"""

from __future__ import annotations

from typing import Any, Optional

import numpy as np


class RingBuffer:
    """Буфер останніх `capacity` елементів (старі витісняються новими)."""

    def __init__(self, capacity: int, dtype: Any = float) -> None:
        if int(capacity) < 1:
            raise ValueError("Ємність кільцевого буфера має бути >= 1.")
        self._capacity = int(capacity)
        self._storage = np.zeros(2 * self._capacity, dtype=dtype)
        self._head = 0  # індекс найстаршого живого елемента
        self._end = 0  # позиція наступного запису

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def dtype(self) -> np.dtype:
        return self._storage.dtype

    def __len__(self) -> int:
        return self._end - self._head

    def is_full(self) -> bool:
        return len(self) >= self._capacity

    def push(self, item: Any) -> None:
        if self._end == self._storage.shape[0]:
            # Сховище вичерпано: лишаємо `capacity - 1` найновіших елементів на
            # початку, найстаріший витісняється записом нижче.
            keep = self._capacity - 1
            if keep:
                self._storage[:keep] = self._storage[self._end - keep : self._end]
            self._head = 0
            self._end = keep
        self._storage[self._end] = item
        self._end += 1
        if self._end - self._head > self._capacity:
            self._head += 1

    def as_slice(self) -> np.ndarray:
        """Повертає read-only view поточного вмісту у хронологічному порядку."""

        view = self._storage[self._head : self._end]
        view.flags.writeable = False
        return view

    def last(self) -> Optional[Any]:
        """Найновіший елемент (python-скаляр або tuple для structured dtype)."""

        if self._end == self._head:
            return None
        return self._storage[self._end - 1].item()

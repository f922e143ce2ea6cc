"""Кооперативная отмена операций ввода-вывода."""

from __future__ import annotations

import threading
from typing import Optional, Type

from ..errors import OperationCancelledError


class CancellationToken:
    """Потокобезопасный флаг отмены, проверяемый на границах чтения и записи."""

    __slots__ = ("_event",)

    def __init__(self) -> None:
        self._event = threading.Event()

    @classmethod
    def none(cls) -> "CancellationToken":
        """Токен, который никто не отменит."""

        return cls()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(
        self,
        error: Type[OperationCancelledError] = OperationCancelledError,
        message: Optional[str] = None,
    ) -> None:
        if self._event.is_set():
            raise error(message or "Операция отменена.")

"""Копирование из производителя несмежных сегментов (конвейерный ввод-вывод).

Источник отдаёт байты порциями, например тело HTTP-запроса. Непрочитанный
хвост сегмента остаётся в :class:`SegmentReader` и будет выдан при следующем
чтении, поэтому ограничение может прийтись на середину сегмента.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, AsyncIterable, Deque, List, Optional, Tuple

from ..errors import FlushCancelledError, InvalidArgumentError, ReadCancelledError, StreamCapabilityError
from .cancellation import CancellationToken

logger = logging.getLogger(__name__)

ERROR_READ_CANCELLED = "Чтение отменено у источника сегментов."
ERROR_FLUSH_CANCELLED = "Выгрузка отменена у приёмника сегментов."


@dataclass(slots=True)
class ReadResult:
    segments: List[memoryview] = field(default_factory=list)
    completed: bool = False
    cancelled: bool = False

    @property
    def is_empty(self) -> bool:
        return not any(len(segment) for segment in self.segments)


@dataclass(slots=True)
class FlushResult:
    cancelled: bool = False


class SegmentReader:
    """Выдаёт накопленные сегменты и хранит всё, что не было потреблено."""

    def __init__(self, source: AsyncIterable[bytes]) -> None:
        self._iterator = source.__aiter__()
        self._pending: Deque[memoryview] = deque()
        self._completed = False
        self._cancel_requested = False

    def cancel_pending_read(self) -> None:
        self._cancel_requested = True

    async def read(self) -> ReadResult:
        if self._cancel_requested:
            self._cancel_requested = False
            return ReadResult(list(self._pending), self._completed, cancelled=True)

        while not self._completed:
            try:
                segment = await self._iterator.__anext__()
            except StopAsyncIteration:
                self._completed = True
                break
            if segment:
                self._pending.append(memoryview(segment))
                break
        return ReadResult(list(self._pending), self._completed)

    def advance_to(self, consumed: int) -> None:
        """Отбросить ``consumed`` байт от начала накопленных сегментов."""

        while consumed and self._pending:
            head = self._pending[0]
            if consumed >= len(head):
                consumed -= len(head)
                self._pending.popleft()
            else:
                self._pending[0] = head[consumed:]
                consumed = 0

    @property
    def buffered(self) -> int:
        return sum(len(segment) for segment in self._pending)


class SegmentWriter:
    """Приёмник поверх anyio ByteSendStream или любого объекта с async write."""

    def __init__(self, sink: Any) -> None:
        send = getattr(sink, "send", None) or getattr(sink, "write", None)
        if not callable(send):
            raise StreamCapabilityError("Приёмник сегментов не поддерживает запись.")
        self._send = send
        self._cancel_requested = False

    def cancel_pending_flush(self) -> None:
        self._cancel_requested = True

    async def write(self, data: memoryview) -> FlushResult:
        if self._cancel_requested:
            self._cancel_requested = False
            return FlushResult(cancelled=True)
        await self._send(bytes(data))
        return FlushResult()


def _take(segment: memoryview, limit: int, copied: int) -> Tuple[memoryview, bool]:
    if limit >= 0:
        left = limit - copied
        if left <= len(segment):
            return segment[:left], True
    return segment, False


async def copy_segments(
    source: Any,
    destination: Any,
    limit: int = -1,
    *,
    cancel: Optional[CancellationToken] = None,
) -> int:
    """Переложить не более ``limit`` байт из источника сегментов в приёмник.

    Уже отправленные в приёмник байты при отмене не откатываются.
    """

    if source is None:
        raise InvalidArgumentError("Не передан источник сегментов.")
    if destination is None:
        raise InvalidArgumentError("Не передан приёмник сегментов.")
    if not isinstance(source, SegmentReader):
        source = SegmentReader(source)
    if not isinstance(destination, SegmentWriter):
        destination = SegmentWriter(destination)

    token = cancel or CancellationToken.none()
    copied = 0
    copied_all = limit == 0
    while not copied_all:
        token.raise_if_cancelled()
        read = await source.read()
        if read.cancelled:
            raise ReadCancelledError(ERROR_READ_CANCELLED)
        if read.is_empty:
            break

        consumed = 0
        try:
            for segment in read.segments:
                chunk, copied_all = _take(segment, limit, copied)
                if chunk:
                    token.raise_if_cancelled()
                    flush = await destination.write(chunk)
                    if flush.cancelled:
                        raise FlushCancelledError(ERROR_FLUSH_CANCELLED)
                    copied += len(chunk)
                    consumed += len(chunk)
                if copied_all:
                    break
        finally:
            source.advance_to(consumed)

        if read.completed:
            break

    logger.debug("Скопировано %d байт из сегментов", copied)
    return copied

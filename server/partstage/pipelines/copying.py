"""Ограниченное копирование байтов между потоками.

Единственное место, где считаются скопированные байты: все вызывающие
доверяют возвращаемому значению как точному числу записанных байтов.
"""

from __future__ import annotations

import io
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

import anyio
import anyio.to_thread

from ..errors import ArgumentOutOfRangeError, InvalidArgumentError, StreamCapabilityError
from .cancellation import CancellationToken

DEFAULT_BUFFER_SIZE = 81920

ERROR_NON_READABLE_SOURCE = "Поток-источник не поддерживает чтение."
ERROR_NON_WRITABLE_DESTINATION = "Поток-приёмник не поддерживает запись."
ERROR_INVALID_BUFFER_SIZE = "Размер буфера отрицательный или равен нулю."
ERROR_WOULD_BLOCK = "Неблокирующий поток-приёмник не принял данные; такие приёмники не поддерживаются."


class BufferPool:
    """Пул переиспользуемых буферов, разложенных по корзинам степеней двойки."""

    def __init__(self, max_per_bucket: int = 8) -> None:
        self.max_per_bucket = max_per_bucket
        self._buckets: Dict[int, List[bytearray]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def bucket_size(size: int) -> int:
        return 1 << (size - 1).bit_length()

    @contextmanager
    def rent(self, size: int) -> Iterator[bytearray]:
        """Выдать буфер не меньше ``size`` байт и вернуть его в пул на выходе."""

        if size <= 0:
            raise ArgumentOutOfRangeError(ERROR_INVALID_BUFFER_SIZE)

        bucket = self.bucket_size(size)
        with self._lock:
            free = self._buckets.get(bucket)
            buffer = free.pop() if free else None
        if buffer is None:
            buffer = bytearray(bucket)

        try:
            yield buffer
        finally:
            with self._lock:
                free = self._buckets.setdefault(bucket, [])
                if len(free) < self.max_per_bucket:
                    free.append(buffer)

    def available(self, size: int) -> int:
        with self._lock:
            return len(self._buckets.get(self.bucket_size(size), []))


shared_pool = BufferPool()


# ---------- Проверки ----------
def _underlying(stream: Any) -> Any:
    return stream.wrapped if isinstance(stream, anyio.AsyncFile) else stream


def _supports(stream: Any, capability: str, fallback: str) -> bool:
    stream = _underlying(stream)
    if getattr(stream, "closed", False):
        return False
    check = getattr(stream, capability, None)
    if callable(check):
        return bool(check())
    return callable(getattr(stream, fallback, None))


def ensure_readable(source: Any) -> None:
    if not _supports(source, "readable", "read"):
        raise StreamCapabilityError(ERROR_NON_READABLE_SOURCE)


def ensure_writable(destination: Any) -> None:
    if not _supports(destination, "writable", "write"):
        raise StreamCapabilityError(ERROR_NON_WRITABLE_DESTINATION)


def check_copy_arguments(source: Any, destination: Any, buffer_size: Optional[int]) -> None:
    if source is None:
        raise InvalidArgumentError("Не передан поток-источник.")
    if destination is None:
        raise InvalidArgumentError("Не передан поток-приёмник.")
    ensure_readable(source)
    ensure_writable(destination)
    if buffer_size is not None and buffer_size <= 0:
        raise ArgumentOutOfRangeError(ERROR_INVALID_BUFFER_SIZE)


def resolve_buffer_size(source: Any, default_buffer_size: int = DEFAULT_BUFFER_SIZE) -> int:
    """Подобрать размер буфера по остатку источника, если его можно узнать дёшево."""

    stream = _underlying(source)
    seekable = getattr(stream, "seekable", None)
    if callable(seekable) and seekable():
        position = stream.tell()
        end = stream.seek(0, io.SEEK_END)
        stream.seek(position)
        if end <= position:
            return 1
        return min(default_buffer_size, end - position)
    return default_buffer_size


def _next_read_length(limit: int, copied: int, buffer_size: int) -> int:
    if limit >= 0:
        return min(limit - copied, buffer_size)
    return buffer_size


# ---------- Блокирующий путь ----------
def _read_into(source: Any, view: memoryview) -> int:
    readinto = getattr(source, "readinto", None)
    if callable(readinto):
        return readinto(view) or 0
    chunk = source.read(len(view)) or b""
    view[: len(chunk)] = chunk
    return len(chunk)


def _fully_written(destination: Any, written: Optional[int], expected: int) -> bool:
    if written is None:
        # None от сырого потока означает "записать сейчас нельзя", а не "записано всё".
        if isinstance(_underlying(destination), io.RawIOBase):
            raise StreamCapabilityError(ERROR_WOULD_BLOCK)
        return True
    return written >= expected


def _write_all(destination: Any, data: memoryview) -> None:
    # Сырые потоки вправе записать только часть.
    while data:
        written = destination.write(data)
        if _fully_written(destination, written, len(data)):
            return
        data = data[written:]


def copy_data(
    source: Any,
    destination: Any,
    limit: int = -1,
    buffer_size: Optional[int] = None,
    *,
    cancel: Optional[CancellationToken] = None,
    pool: Optional[BufferPool] = None,
    default_buffer_size: int = DEFAULT_BUFFER_SIZE,
) -> int:
    """Скопировать не более ``limit`` байт (всё при ``limit < 0``), вернуть их число."""

    check_copy_arguments(source, destination, buffer_size)
    if limit == 0:
        return 0

    size = buffer_size or resolve_buffer_size(source, default_buffer_size)
    token = cancel or CancellationToken.none()
    copied = 0
    with (pool or shared_pool).rent(size) as buffer:
        view = memoryview(buffer)
        while True:
            read_length = _next_read_length(limit, copied, size)
            if read_length == 0:
                break
            token.raise_if_cancelled()
            count = _read_into(source, view[:read_length])
            if count == 0:
                break
            token.raise_if_cancelled()
            _write_all(destination, view[:count])
            copied += count
    return copied


# ---------- Неблокирующий путь ----------
def as_async_file(stream: Any) -> anyio.AsyncFile:
    """Обернуть обычный бинарный поток так, чтобы ввод-вывод шёл в рабочем потоке."""

    if isinstance(stream, anyio.AsyncFile):
        return stream
    return anyio.wrap_file(stream)


async def _read_into_async(source: anyio.AsyncFile, view: memoryview) -> int:
    if callable(getattr(source.wrapped, "readinto", None)):
        return await source.readinto(view) or 0
    chunk = await source.read(len(view)) or b""
    view[: len(chunk)] = chunk
    return len(chunk)


async def _write_all_async(destination: anyio.AsyncFile, data: memoryview) -> None:
    while data:
        written = await destination.write(data)
        if _fully_written(destination, written, len(data)):
            return
        data = data[written:]


async def copy_data_async(
    source: Any,
    destination: Any,
    limit: int = -1,
    buffer_size: Optional[int] = None,
    *,
    cancel: Optional[CancellationToken] = None,
    pool: Optional[BufferPool] = None,
    default_buffer_size: int = DEFAULT_BUFFER_SIZE,
) -> int:
    """Асинхронный вариант :func:`copy_data` с теми же проверками и результатом."""

    check_copy_arguments(source, destination, buffer_size)
    if limit == 0:
        return 0

    size = buffer_size or await anyio.to_thread.run_sync(resolve_buffer_size, source, default_buffer_size)
    token = cancel or CancellationToken.none()
    reader = as_async_file(source)
    writer = as_async_file(destination)
    copied = 0
    with (pool or shared_pool).rent(size) as buffer:
        view = memoryview(buffer)
        while True:
            read_length = _next_read_length(limit, copied, size)
            if read_length == 0:
                break
            token.raise_if_cancelled()
            count = await _read_into_async(reader, view[:read_length])
            if count == 0:
                break
            token.raise_if_cancelled()
            await _write_all_async(writer, view[:count])
            copied += count
    return copied

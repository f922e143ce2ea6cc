"""Типизированные ошибки сборщика."""

from __future__ import annotations

import io


class AssemblyError(Exception):
    """Базовая ошибка пакета."""


class InvalidArgumentError(AssemblyError, ValueError):
    """Обязательный аргумент отсутствует или имеет неверный вид."""


class ArgumentOutOfRangeError(InvalidArgumentError):
    """Значение аргумента вне допустимого диапазона."""


class StreamCapabilityError(AssemblyError, io.UnsupportedOperation):
    """Поток не поддерживает нужную операцию (чтение или запись)."""


class OperationCancelledError(AssemblyError):
    """Операция прервана по сигналу отмены, а не из-за сбоя."""


class ReadCancelledError(OperationCancelledError):
    """Отменено ожидание очередной порции данных у источника."""


class FlushCancelledError(OperationCancelledError):
    """Отменена выгрузка данных в приёмник."""

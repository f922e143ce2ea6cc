"""Вспомогательные экспорты модулей конвейера."""

from .cancellation import CancellationToken  # noqa: F401
from .copying import (  # noqa: F401
    DEFAULT_BUFFER_SIZE,
    BufferPool,
    copy_data,
    copy_data_async,
    resolve_buffer_size,
    shared_pool,
)
from .segments import FlushResult, ReadResult, SegmentReader, SegmentWriter, copy_segments  # noqa: F401

import io

import pytest

from partstage.config import Settings
from partstage.storage import Storage


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def settings(tmp_path):
    return Settings(data_dir=tmp_path / "data")


@pytest.fixture
def storage(settings):
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    return Storage(settings)


class WriteOnlyStream(io.RawIOBase):
    """Поток, в который можно только писать."""

    def __init__(self) -> None:
        self.data = bytearray()

    def writable(self) -> bool:
        return True

    def write(self, b) -> int:
        self.data.extend(bytes(b))
        return len(b)


class ReadOnlyStream(io.RawIOBase):
    """Поток, из которого можно только читать."""

    def __init__(self, payload: bytes = b"") -> None:
        self._inner = io.BytesIO(payload)

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        return self._inner.readinto(b)


@pytest.fixture
def write_only():
    return WriteOnlyStream()


@pytest.fixture
def read_only():
    return ReadOnlyStream(b"\x01\x02")

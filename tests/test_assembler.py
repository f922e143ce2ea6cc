import io
import itertools
import shutil
import uuid

import anyio
import pytest

from partstage.errors import InvalidArgumentError, OperationCancelledError
from partstage.pipelines.cancellation import CancellationToken


def deposit_all(storage, workspace_id, fragments):
    for position, content in fragments:
        assert storage.fragments.deposit(workspace_id, position, io.BytesIO(content))


@pytest.mark.parametrize(
    "order",
    list(itertools.permutations([(1, b"AAA"), (2, b"BBB"), (3, b"CCC")])),
)
def test_order_follows_position_not_arrival(storage, order):
    workspace_id = storage.workspaces.create()
    deposit_all(storage, workspace_id, order)

    product = io.BytesIO()
    assert storage.assembler.assemble(workspace_id, product)
    assert product.getvalue() == b"AAABBBCCC"


def test_empty_workspace_gives_empty_product(storage):
    workspace_id = storage.workspaces.create()
    product = io.BytesIO()
    assert storage.assembler.assemble(workspace_id, product)
    assert product.getvalue() == b""


def test_single_fragment(storage):
    workspace_id = storage.workspaces.create()
    deposit_all(storage, workspace_id, [(1, b"X")])
    product = io.BytesIO()
    assert storage.assembler.assemble(workspace_id, product)
    assert product.getvalue() == b"X"


def test_swapping_positions_swaps_output(storage):
    first = storage.workspaces.create()
    deposit_all(storage, first, [(1, b"\x01"), (2, b"\x02")])
    second = storage.workspaces.create()
    deposit_all(storage, second, [(1, b"\x02"), (2, b"\x01")])

    a, b = io.BytesIO(), io.BytesIO()
    storage.assembler.assemble(first, a)
    storage.assembler.assemble(second, b)
    assert a.getvalue() == b"\x01\x02"
    assert b.getvalue() == b"\x02\x01"


def test_numeric_order_near_maximum(storage):
    workspace_id = storage.workspaces.create()
    deposit_all(storage, workspace_id, [(20000, b"c"), (2, b"a"), (10000, b"b")])
    product = io.BytesIO()
    storage.assembler.assemble(workspace_id, product)
    assert product.getvalue() == b"abc"


def test_gaps_and_foreign_files(storage):
    workspace_id = storage.workspaces.create()
    deposit_all(storage, workspace_id, [(3, b"3"), (1, b"1")])
    (storage.workspaces.path_for(workspace_id) / "notes.txt").write_bytes(b"ignored")

    product = io.BytesIO()
    storage.assembler.assemble(workspace_id, product)
    assert product.getvalue() == b"13"


def test_retire_flag(storage):
    retired = storage.workspaces.create()
    kept = storage.workspaces.create()

    storage.assembler.assemble(retired, io.BytesIO())
    storage.assembler.assemble(kept, io.BytesIO(), retire=False)

    assert not storage.workspaces.exists(retired)
    assert storage.workspaces.exists(kept)


def test_missing_workspace(storage):
    assert storage.assembler.assemble(uuid.uuid4(), io.BytesIO()) is False


def test_none_destination(storage):
    with pytest.raises(InvalidArgumentError):
        storage.assembler.assemble(storage.workspaces.create(), None)


def test_cancellation_keeps_workspace(storage):
    workspace_id = storage.workspaces.create()
    deposit_all(storage, workspace_id, [(1, b"data")])
    token = CancellationToken()
    token.cancel()

    with pytest.raises(OperationCancelledError):
        storage.assembler.assemble(workspace_id, io.BytesIO(), cancel=token)
    assert storage.workspaces.exists(workspace_id)


def test_assemble_file_truncates_existing_product(storage, tmp_path):
    workspace_id = storage.workspaces.create()
    deposit_all(storage, workspace_id, [(2, b"world"), (1, b"hello ")])
    product_path = tmp_path / "product.bin"
    product_path.write_bytes(b"a much longer stale product")

    assert storage.assembler.assemble_file(workspace_id, product_path)
    assert product_path.read_bytes() == b"hello world"
    assert not storage.workspaces.exists(workspace_id)


def test_assemble_file_missing_workspace(storage, tmp_path):
    product_path = tmp_path / "product.bin"
    assert storage.assembler.assemble_file(uuid.uuid4(), product_path) is False
    assert not product_path.exists()


@pytest.mark.anyio
async def test_async_assembly(storage, tmp_path):
    workspace_id = await storage.workspaces.create_async()
    for position, content in [(3, b"C"), (1, b"A"), (2, b"B")]:
        await storage.fragments.deposit_async(workspace_id, position, io.BytesIO(content))

    product = io.BytesIO()
    assert await storage.assembler.assemble_async(workspace_id, product, retire=False)
    assert product.getvalue() == b"ABC"

    product_path = tmp_path / "product.bin"
    assert await storage.assembler.assemble_file_async(workspace_id, product_path)
    assert product_path.read_bytes() == b"ABC"
    assert not await storage.workspaces.exists_async(workspace_id)

    assert await storage.assembler.assemble_async(workspace_id, io.BytesIO()) is False
    with pytest.raises(InvalidArgumentError):
        await storage.assembler.assemble_async(workspace_id, None)


class VanishingDestination(io.BytesIO):
    """Удаляет каталог области после первой записи."""

    def __init__(self, workspace_path):
        super().__init__()
        self.workspace_path = workspace_path

    def write(self, b):
        written = super().write(b)
        if self.workspace_path.exists():
            shutil.rmtree(self.workspace_path)
        return written


def test_workspace_vanishing_mid_assembly(storage):
    workspace_id = storage.workspaces.create()
    deposit_all(storage, workspace_id, [(1, b"first"), (2, b"second")])
    destination = VanishingDestination(storage.workspaces.path_for(workspace_id))

    assert storage.assembler.assemble(workspace_id, destination) is False
    # Уже записанное не откатывается
    assert destination.getvalue() == b"first"


def test_retire_tolerates_racing_deleter(storage, monkeypatch):
    workspace_id = storage.workspaces.create()
    deposit_all(storage, workspace_id, [(1, b"a")])
    original_delete = storage.workspaces.delete
    results = []

    def racing_delete(target):
        shutil.rmtree(storage.workspaces.path_for(target))
        results.append(original_delete(target))
        return results[-1]

    monkeypatch.setattr(storage.workspaces, "delete", racing_delete)

    product = io.BytesIO()
    assert storage.assembler.assemble(workspace_id, product) is True
    assert product.getvalue() == b"a"
    assert results == [False]


@pytest.mark.anyio
async def test_concurrent_reverse_order_deposits(storage):
    workspace_id = await storage.workspaces.create_async()
    fragments = [(position, f"<{position}>".encode()) for position in range(1, 101)]

    async with anyio.create_task_group() as tg:
        for position, content in reversed(fragments):
            tg.start_soon(storage.fragments.deposit_async, workspace_id, position, io.BytesIO(content))

    assert storage.fragments.positions(workspace_id) == list(range(1, 101))
    product = io.BytesIO()
    assert await storage.assembler.assemble_async(workspace_id, product)
    assert product.getvalue() == b"".join(content for _, content in fragments)


@pytest.mark.anyio
async def test_two_concurrent_deposits_to_different_positions(storage):
    workspace_id = await storage.workspaces.create_async()
    first = b"1" * 200_000
    second = b"2" * 150_000

    async with anyio.create_task_group() as tg:
        tg.start_soon(storage.fragments.deposit_async, workspace_id, 2, io.BytesIO(second))
        tg.start_soon(storage.fragments.deposit_async, workspace_id, 1, io.BytesIO(first))

    product = io.BytesIO()
    assert await storage.assembler.assemble_async(workspace_id, product)
    assert product.getvalue() == first + second


@pytest.mark.anyio
async def test_async_workspace_vanishing_mid_assembly(storage):
    workspace_id = await storage.workspaces.create_async()
    deposit_all(storage, workspace_id, [(1, b"first"), (2, b"second")])
    destination = VanishingDestination(storage.workspaces.path_for(workspace_id))

    assert await storage.assembler.assemble_async(workspace_id, destination) is False
    assert destination.getvalue() == b"first"


@pytest.mark.anyio
async def test_async_retire_tolerates_racing_deleter(storage, monkeypatch):
    workspace_id = await storage.workspaces.create_async()
    deposit_all(storage, workspace_id, [(1, b"a"), (2, b"b")])
    original_delete = storage.workspaces.delete

    def racing_delete(target):
        shutil.rmtree(storage.workspaces.path_for(target))
        return original_delete(target)

    monkeypatch.setattr(storage.workspaces, "delete", racing_delete)

    product = io.BytesIO()
    assert await storage.assembler.assemble_async(workspace_id, product) is True
    assert product.getvalue() == b"ab"
    assert not storage.workspaces.exists(workspace_id)


@pytest.mark.anyio
async def test_async_assembly_honours_cancellation(storage):
    workspace_id = await storage.workspaces.create_async()
    deposit_all(storage, workspace_id, [(1, b"data")])
    token = CancellationToken()
    token.cancel()

    with pytest.raises(OperationCancelledError):
        await storage.assembler.assemble_async(workspace_id, io.BytesIO(), cancel=token)
    assert await storage.workspaces.exists_async(workspace_id)

"""Рабочие области и хранилище фрагментов на диске.

Раскладка: ``<root>/<workspace.hex>/<позиция с нулями>.<расширение>``.
Ширина номера равна числу цифр максимальной позиции, поэтому
лексикографический порядок имён совпадает с числовым.
"""

from __future__ import annotations

import logging
import re
import shutil
import uuid
from pathlib import Path
from typing import Any, List, Optional, Tuple, Union

import anyio
import anyio.to_thread

from .assembler import Assembler
from .config import Settings
from .errors import ArgumentOutOfRangeError, InvalidArgumentError
from .pipelines.cancellation import CancellationToken
from .pipelines.copying import copy_data, copy_data_async, ensure_readable

logger = logging.getLogger(__name__)

WorkspaceId = Union[uuid.UUID, str]


class WorkspaceManager:
    """Создание, проверка и удаление изолированных рабочих областей."""

    def __init__(self, root: Path):
        if root is None:
            raise InvalidArgumentError("Не передан корневой каталог хранилища.")
        self.root = Path(root).resolve()

    @staticmethod
    def coerce_id(workspace_id: WorkspaceId) -> uuid.UUID:
        if isinstance(workspace_id, uuid.UUID):
            return workspace_id
        if isinstance(workspace_id, str):
            try:
                return uuid.UUID(workspace_id)
            except ValueError as exc:
                raise InvalidArgumentError(f"Некорректный идентификатор рабочей области: {workspace_id!r}") from exc
        raise InvalidArgumentError("Идентификатор рабочей области должен быть UUID.")

    def path_for(self, workspace_id: WorkspaceId) -> Path:
        return self.root / self.coerce_id(workspace_id).hex

    # -------- Блокирующий путь --------
    def create(self) -> uuid.UUID:
        workspace_id = uuid.uuid4()
        self.path_for(workspace_id).mkdir(parents=True)
        logger.info("Создана рабочая область %s", workspace_id.hex)
        return workspace_id

    def exists(self, workspace_id: WorkspaceId) -> bool:
        return self.path_for(workspace_id).is_dir()

    def delete(self, workspace_id: WorkspaceId) -> bool:
        """Удалить область со всеми фрагментами; ``False``, если её нет."""

        path = self.path_for(workspace_id)
        if not path.is_dir():
            return False
        try:
            shutil.rmtree(path)
        except FileNotFoundError:
            logger.warning("Рабочая область %s удалена параллельно", path.name)
            return False
        logger.info("Удалена рабочая область %s", path.name)
        return True

    # -------- Неблокирующий путь --------
    async def create_async(self) -> uuid.UUID:
        return await anyio.to_thread.run_sync(self.create)

    async def exists_async(self, workspace_id: WorkspaceId) -> bool:
        return await anyio.Path(self.path_for(workspace_id)).is_dir()

    async def delete_async(self, workspace_id: WorkspaceId) -> bool:
        return await anyio.to_thread.run_sync(self.delete, workspace_id)


class FragmentStore:
    """Фрагменты, адресуемые позицией; запись в занятую позицию заменяет содержимое."""

    def __init__(self, workspaces: WorkspaceManager, settings: Settings):
        self.workspaces = workspaces
        self.settings = settings
        self._name_pattern = re.compile(
            rf"^(\d{{{settings.position_width}}})\.{re.escape(settings.fragment_extension)}$"
        )

    # -------- Имена фрагментов --------
    def check_position(self, position: int) -> None:
        if isinstance(position, bool) or not isinstance(position, int):
            raise InvalidArgumentError("Позиция фрагмента должна быть целым числом.")
        if not self.settings.min_position <= position <= self.settings.max_position:
            raise ArgumentOutOfRangeError(
                f"Позиция {position} вне диапазона "
                f"{self.settings.min_position}..{self.settings.max_position}."
            )

    def fragment_name(self, position: int) -> str:
        self.check_position(position)
        return f"{position:0{self.settings.position_width}d}.{self.settings.fragment_extension}"

    def parse_fragment_name(self, name: str) -> Optional[int]:
        """Позиция по имени файла или ``None`` для посторонних файлов."""

        match = self._name_pattern.match(name)
        if not match:
            return None
        position = int(match.group(1))
        if not self.settings.min_position <= position <= self.settings.max_position:
            return None
        return position

    def list_fragments(self, workspace_path: Path) -> List[Tuple[int, Path]]:
        """Фрагменты области по возрастанию позиции.

        Бросает ``FileNotFoundError``, если каталога области нет.
        """

        fragments: List[Tuple[int, Path]] = []
        for entry in workspace_path.iterdir():
            position = self.parse_fragment_name(entry.name)
            if position is not None and entry.is_file():
                fragments.append((position, entry))
        fragments.sort(key=lambda item: item[0])
        return fragments

    # -------- Помощники для проверки полноты на стороне вызывающего --------
    def positions(self, workspace_id: WorkspaceId) -> Optional[List[int]]:
        try:
            fragments = self.list_fragments(self.workspaces.path_for(workspace_id))
        except FileNotFoundError:
            return None
        return [position for position, _ in fragments]

    def missing_positions(self, workspace_id: WorkspaceId, expected_count: int) -> Optional[List[int]]:
        if expected_count < 0:
            raise ArgumentOutOfRangeError("Ожидаемое число фрагментов не может быть отрицательным.")
        present = self.positions(workspace_id)
        if present is None:
            return None
        first = self.settings.min_position
        last = min(first + expected_count - 1, self.settings.max_position)
        stored = set(present)
        return [position for position in range(first, last + 1) if position not in stored]

    # -------- Запись фрагмента --------
    @staticmethod
    def _vanished(fragment_path: Any) -> bool:
        logger.warning("Рабочая область %s исчезла во время записи фрагмента", fragment_path.parent.name)
        return False

    def _prepare_deposit(self, workspace_id: WorkspaceId, position: int, source: Any) -> Path:
        self.check_position(position)
        if source is None:
            raise InvalidArgumentError("Не передан поток с содержимым фрагмента.")
        ensure_readable(source)
        return self.workspaces.path_for(workspace_id) / self.fragment_name(position)

    def deposit(
        self,
        workspace_id: WorkspaceId,
        position: int,
        source: Any,
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> bool:
        """Слить ``source`` целиком в позицию ``position``; ``False``, если области нет."""

        fragment_path = self._prepare_deposit(workspace_id, position, source)
        if not fragment_path.parent.is_dir():
            return False
        try:
            with fragment_path.open("wb") as fragment:
                copied = copy_data(
                    source,
                    fragment,
                    cancel=cancel,
                    default_buffer_size=self.settings.copy_buffer_size,
                )
        except FileNotFoundError:
            return self._vanished(fragment_path)
        # Фрагмент, дописанный в уже удалённый каталог, никому не виден.
        if not fragment_path.parent.is_dir():
            return self._vanished(fragment_path)
        logger.debug("Фрагмент %s: %d байт", fragment_path.name, copied)
        return True

    async def deposit_async(
        self,
        workspace_id: WorkspaceId,
        position: int,
        source: Any,
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> bool:
        fragment_path = anyio.Path(self._prepare_deposit(workspace_id, position, source))
        if not await fragment_path.parent.is_dir():
            return False
        try:
            async with await fragment_path.open("wb") as fragment:
                copied = await copy_data_async(
                    source,
                    fragment,
                    cancel=cancel,
                    default_buffer_size=self.settings.copy_buffer_size,
                )
        except FileNotFoundError:
            return self._vanished(fragment_path)
        if not await fragment_path.parent.is_dir():
            return self._vanished(fragment_path)
        logger.debug("Фрагмент %s: %d байт", fragment_path.name, copied)
        return True


class Storage:
    """Рабочие области, фрагменты и сборщик поверх одного корня."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.workspaces = WorkspaceManager(settings.data_dir)
        self.fragments = FragmentStore(self.workspaces, settings)
        self.assembler = Assembler(self.workspaces, self.fragments, settings)

"""Сборка итогового файла из фрагментов рабочей области."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, List, Optional, Tuple

import anyio
import anyio.to_thread

from .config import Settings
from .errors import InvalidArgumentError
from .pipelines.cancellation import CancellationToken
from .pipelines.copying import copy_data, copy_data_async, ensure_writable

if TYPE_CHECKING:
    from .storage import FragmentStore, WorkspaceId, WorkspaceManager

logger = logging.getLogger(__name__)


class Assembler:
    """Склеивает фрагменты строго по возрастанию позиции.

    Пропущенные позиции просто отсутствуют в результате: проверка полноты
    остаётся за вызывающим (см. ``FragmentStore.missing_positions``).
    В памяти одновременно держится не больше одного буфера копирования.
    """

    def __init__(self, workspaces: "WorkspaceManager", fragments: "FragmentStore", settings: Settings):
        self.workspaces = workspaces
        self.fragments = fragments
        self.settings = settings

    @staticmethod
    def _check_destination(destination: Any) -> None:
        if destination is None:
            raise InvalidArgumentError("Не передан поток для итогового файла.")
        ensure_writable(destination)

    # -------- Блокирующий путь --------
    def assemble(
        self,
        workspace_id: "WorkspaceId",
        destination: Any,
        retire: bool = True,
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> bool:
        """Записать фрагменты области в ``destination``; ``False``, если области нет."""

        self._check_destination(destination)
        workspace_path = self.workspaces.path_for(workspace_id)
        if not workspace_path.is_dir():
            return False

        total = 0
        try:
            fragments = self.fragments.list_fragments(workspace_path)
            for position, fragment_path in fragments:
                with fragment_path.open("rb") as fragment:
                    copied = copy_data(
                        fragment,
                        destination,
                        cancel=cancel,
                        default_buffer_size=self.settings.copy_buffer_size,
                    )
                logger.debug("Позиция %d: %d байт", position, copied)
                total += copied
        except FileNotFoundError:
            logger.warning("Рабочая область %s исчезла во время сборки", workspace_path.name)
            return False

        self._log_done(workspace_path, fragments, total)
        if retire:
            self.workspaces.delete(workspace_id)
        return True

    def assemble_file(
        self,
        workspace_id: "WorkspaceId",
        product_path: Path,
        retire: bool = True,
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> bool:
        """Собрать фрагменты в файл ``product_path`` (создаётся или перезаписывается)."""

        if product_path is None:
            raise InvalidArgumentError("Не передан путь итогового файла.")
        if not self.workspaces.exists(workspace_id):
            return False
        with open(product_path, "wb") as product:
            return self.assemble(workspace_id, product, retire, cancel=cancel)

    # -------- Неблокирующий путь --------
    async def assemble_async(
        self,
        workspace_id: "WorkspaceId",
        destination: Any,
        retire: bool = True,
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> bool:
        self._check_destination(destination)
        workspace_path = self.workspaces.path_for(workspace_id)
        if not await anyio.Path(workspace_path).is_dir():
            return False

        total = 0
        try:
            fragments = await anyio.to_thread.run_sync(self.fragments.list_fragments, workspace_path)
            for position, fragment_path in fragments:
                async with await anyio.open_file(fragment_path, "rb") as fragment:
                    copied = await copy_data_async(
                        fragment,
                        destination,
                        cancel=cancel,
                        default_buffer_size=self.settings.copy_buffer_size,
                    )
                logger.debug("Позиция %d: %d байт", position, copied)
                total += copied
        except FileNotFoundError:
            logger.warning("Рабочая область %s исчезла во время сборки", workspace_path.name)
            return False

        self._log_done(workspace_path, fragments, total)
        if retire:
            await self.workspaces.delete_async(workspace_id)
        return True

    async def assemble_file_async(
        self,
        workspace_id: "WorkspaceId",
        product_path: Path,
        retire: bool = True,
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> bool:
        if product_path is None:
            raise InvalidArgumentError("Не передан путь итогового файла.")
        if not await self.workspaces.exists_async(workspace_id):
            return False
        async with await anyio.open_file(product_path, "wb") as product:
            return await self.assemble_async(workspace_id, product, retire, cancel=cancel)

    @staticmethod
    def _log_done(workspace_path: Path, fragments: List[Tuple[int, Path]], total: int) -> None:
        logger.info(
            "Собрана рабочая область %s: фрагментов %d, байт %d",
            workspace_path.name,
            len(fragments),
            total,
        )

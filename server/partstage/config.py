"""Конфигурация хранилища через pydantic settings."""

from __future__ import annotations

from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Рабочие параметры сборщика."""

    model_config = SettingsConfigDict(env_prefix="PARTSTAGE_")

    data_dir: Path = Path(__file__).resolve().parent.parent / "data"
    copy_buffer_size: int = 81920
    min_position: int = 1
    max_position: int = 20000
    fragment_extension: str = "part"

    # Журналирование
    logger_name: str = "partstage"
    log_level: str = "INFO"
    log_to_file: bool = False
    log_dir: Path = Path("logs")
    log_file_name: str = "partstage.log"
    log_max_bytes: int = 50 * 1024 * 1024
    log_backup_count: int = 5

    @field_validator("copy_buffer_size")
    @classmethod
    def positive_buffer(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Размер буфера должен быть положительным")
        return v

    @field_validator("min_position")
    @classmethod
    def non_negative_min(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Минимальная позиция не может быть отрицательной")
        return v

    @field_validator("fragment_extension")
    @classmethod
    def plain_extension(cls, v: str) -> str:
        if not v or v.startswith(".") or "/" in v or "\\" in v:
            raise ValueError("Расширение фрагмента задаётся без точки и разделителей пути")
        return v

    @model_validator(mode="after")
    def ordered_bounds(self) -> "Settings":
        if self.max_position < self.min_position:
            raise ValueError("max_position должна быть не меньше min_position")
        return self

    @property
    def position_width(self) -> int:
        """Ширина имени фрагмента: число цифр максимальной позиции."""

        return len(str(self.max_position))


settings = Settings()

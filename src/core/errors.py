from __future__ import annotations

from pathlib import Path


class DBCError(Exception):
    """Базовое исключение модели, парсера и писателя DBC."""

    def __init__(
        self,
        message: str,
        path: Path | str | None = None,
        operation: str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.path = str(path) if path is not None else None
        self.operation = operation
        self.original_error = original_error


class DBCIOError(DBCError):
    """Файл DBC не удалось прочитать, декодировать или записать."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import structlog

from config import Settings
from core.models import Database, ImportResult, Message, Signal
from core.parser import DBCParser, ParseWarning
from core.validator import ValidationResult, validate_messages
from core.writer import DBCWriter

logger = structlog.get_logger(__name__)


class DBCService:
    """Открытый документ DBC: загрузка, правка, проверка и сохранение."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.parser = DBCParser(
            encoding=settings.parser.encoding,
            fallback_encodings=settings.parser.fallback_encodings,
        )
        self.writer = DBCWriter(default_node=settings.writer.default_node)

        self.database = Database()
        self.path: Path | None = None
        self.last_validation = ValidationResult()
        self.stats: dict[str, int] = {"loaded": 0, "saved": 0, "edits": 0, "validations": 0}

    @property
    def warnings(self) -> list[ParseWarning]:
        return self.parser.warnings

    def open(self, path: Path | str) -> Database:
        # При ошибке чтения текущий документ не меняется
        database = self.parser.parse_file(path)
        self.database = database
        self.path = Path(path)
        self.stats["loaded"] += 1
        logger.info("dbc_loaded", file=str(path), messages=len(database.messages), warnings=len(self.warnings))
        self.validate()
        return database

    def load_import(self, result: ImportResult) -> Database:
        self.database = self.parser.load_from_import(result)
        self.path = None
        self.stats["loaded"] += 1
        self.validate()
        return self.database

    def render(self) -> str:
        return self.writer.write(self.database)

    def save(self, path: Path | str | None = None) -> Path:
        target = Path(path) if path is not None else self.path
        if target is None:
            raise ValueError("No destination path for DBC export")
        self.writer.write_file(self.database, target, encoding=self.settings.writer.encoding)
        self.path = target
        self.stats["saved"] += 1
        return target

    def validate(self) -> ValidationResult:
        self.last_validation = validate_messages(self.database.messages)
        self.stats["validations"] += 1
        if not self.last_validation.ok:
            logger.info("validation_failed", errors=len(self.last_validation.diagnostics))
        return self.last_validation

    def add_message(self, message: Message) -> ValidationResult:
        self.database.add_message(message)
        self.database.add_node(message.transmitter)
        logger.info("message_added", message_id=message.id, name=message.name)
        return self._edited()

    def remove_message(self, message_id: int) -> ValidationResult:
        removed = self.database.remove_message(message_id)
        if removed is None:
            logger.warning("message_not_found", message_id=message_id)
        else:
            logger.info("message_removed", message_id=message_id, name=removed.name)
        return self._edited()

    def add_signal(self, message_id: int, signal: Signal, index: int = -1) -> ValidationResult:
        message = self._require_message(message_id)
        message.insert_signal(index, signal)
        return self._edited()

    def remove_signal(self, message_id: int, name: str) -> ValidationResult:
        message = self._require_message(message_id)
        if message.remove_signal(name) is None:
            logger.warning("signal_not_found", message_id=message_id, signal=name)
        return self._edited()

    def update_message(self, message_id: int, **fields: Any) -> ValidationResult:
        """Правка полей сообщения: при любой ошибке документ не меняется."""
        message = self._require_message(message_id)
        new_id = fields.get("id", message_id)
        if new_id != message_id and self.database.get_message(new_id) is not None:
            raise ValueError(f"Message id {new_id} already exists")

        updated = message.model_copy()
        for name, value in fields.items():
            setattr(updated, name, value)

        messages = self.database.messages
        position = next(i for i, existing in enumerate(messages) if existing is message)
        messages[position] = updated
        self.database.reindex()
        return self._edited()

    def update_signal(self, message_id: int, name: str, **fields: Any) -> ValidationResult:
        message = self._require_message(message_id)
        signal = message.get_signal(name)
        if signal is None:
            raise KeyError(f"Signal {name!r} not found in message {message_id}")
        updated = signal.model_copy()
        for field, value in fields.items():
            setattr(updated, field, value)
        message.signals = [updated if existing is signal else existing for existing in message.signals]
        return self._edited()

    def snapshot(self) -> Database:
        return self.database.clone()

    def _require_message(self, message_id: int) -> Message:
        message = self.database.get_message(message_id)
        if message is None:
            raise KeyError(f"Message {message_id} not found")
        return message

    def _edited(self) -> ValidationResult:
        self.stats["edits"] += 1
        return self.validate()

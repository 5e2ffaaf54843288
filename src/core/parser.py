from __future__ import annotations

import math
import re
from collections import Counter
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Callable, Iterator, Mapping, Sequence

import structlog
from pydantic import BaseModel

from .attributes import (
    DEFAULT_NODE,
    GlobalAttribute,
    MessageAttribute,
    SignalAttribute,
    enum_value,
    message_type_from_frame_format,
)
from .errors import DBCIOError
from .models import ByteOrder, Database, ImportResult, Message, Signal, ValueTable

logger = structlog.get_logger(__name__)

_QUOTED = r'"((?:[^"\\]|\\.)*)"'

_VERSION_RE = re.compile(r"^VERSION\s+" + _QUOTED)
_NODES_RE = re.compile(r"^BU_\s*:(.*)$")
_MESSAGE_RE = re.compile(r"^BO_\s+(\d+)\s+([^:\s]+)\s*:\s*(\d+)(?:\s+(\S+))?")
_SIGNAL_RE = re.compile(
    r"^SG_\s+([^\s:]+)\s*:\s*(\d+)\|(\d+)@([01])([+-])\s*"
    r"\(([^,]+),([^)]+)\)\s*\[([^|]+)\|([^\]]+)\]\s*"
    + _QUOTED
    + r"\s*(.*)$"
)
_TX_RE = re.compile(r"^BO_TX_BU_\s+(\d+)\s*:\s*([^;]*);?")
_CM_MESSAGE_RE = re.compile(r"^CM_\s+BO_\s+(\d+)\s+" + _QUOTED + r"\s*;", re.DOTALL)
_CM_SIGNAL_RE = re.compile(r"^CM_\s+SG_\s+(\d+)\s+(\S+)\s+" + _QUOTED + r"\s*;", re.DOTALL)
_ENUM_DEF_RE = re.compile(r'^BA_DEF_\s+(BO_|SG_)\s+"([^"]+)"\s+ENUM\s+(.+);')
_BA_GLOBAL_RE = re.compile(r'^BA_\s+"([^"]+)"\s+' + _QUOTED + r"\s*;?")
_ATTR_VALUE = r"(?:" + _QUOTED + r"|([^;\"]+?))\s*;"
_BA_MESSAGE_RE = re.compile(r'^BA_\s+"([^"]+)"\s+BO_\s+(\d+)\s+' + _ATTR_VALUE)
_BA_SIGNAL_RE = re.compile(r'^BA_\s+"([^"]+)"\s+SG_\s+(\d+)\s+(\S+)\s+' + _ATTR_VALUE)
_VAL_RE = re.compile(r"^VAL_\s+(\d+)\s+(\S+)\s*(.*?)\s*;\s*$", re.DOTALL)
_VAL_TABLE_RE = re.compile(r"^VAL_TABLE_\s+(\S+)\s*(.*?)\s*;\s*$", re.DOTALL)
_VALUE_ITEM_RE = re.compile(r"(-?\d+)\s+" + _QUOTED)
_ENUM_ITEM_RE = re.compile(r'"([^"]*)"')
_KEYWORD_RE = re.compile(r"^([A-Za-z_]+)")
_RECEIVER_SPLIT_RE = re.compile(r"[\s,]+")
_ESCAPE_RE = re.compile(r"\\(.)", re.DOTALL)


class Directive(str, Enum):
    VERSION = "VERSION"
    NODES = "BU_"
    VALUE_TABLE = "VAL_TABLE_"
    MESSAGE = "BO_"
    SIGNAL = "SG_"
    MESSAGE_RECEIVERS = "BO_TX_BU_"
    COMMENT = "CM_"
    ATTRIBUTE_DEFINITION = "BA_DEF_"
    ATTRIBUTE_DEFAULT = "BA_DEF_DEF_"
    ATTRIBUTE = "BA_"
    VALUE_DESCRIPTIONS = "VAL_"


class ParseWarning(BaseModel):
    line_number: int
    directive: str
    line: str


def unescape(text: str) -> str:
    return _ESCAPE_RE.sub(r"\1", text)


def _open_quote(text: str) -> bool:
    escaped = False
    inside = False
    for ch in text:
        if escaped:
            escaped = False
        elif ch == "\\":
            escaped = True
        elif ch == '"':
            inside = not inside
    return inside


def iter_logical_lines(text: str) -> Iterator[tuple[int, str]]:
    """Логические строки DBC: многострочные CM_ склеиваются до закрытия кавычки.

    Незакрытый комментарий обрывается на первой строке, начинающейся
    с известной директивы, и дальше разбирается как отдельная строка.
    """
    buffer: list[str] = []
    start = 0
    for number, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if buffer:
            if _classify(line) is None:
                buffer.append(raw)
                joined = "\n".join(buffer)
                if not _open_quote(joined):
                    yield start, joined.strip()
                    buffer = []
                continue
            yield start, "\n".join(buffer).strip()
            buffer = []

        if line.startswith("CM_") and _open_quote(line):
            buffer = [line]
            start = number
            continue
        yield number, line

    if buffer:
        yield start, "\n".join(buffer).strip()


def _parse_float(text: str) -> float:
    try:
        value = float(text.strip())
    except ValueError:
        return 0.0
    return value if math.isfinite(value) else 0.0


def _parse_int(text: str) -> int | None:
    try:
        return int(text.strip())
    except ValueError:
        return None


def _split_receivers(text: str) -> list[str]:
    cleaned = text.replace(";", " ").strip()
    return [name for name in _RECEIVER_SPLIT_RE.split(cleaned) if name]


def _attribute_value(quoted: str | None, bare: str | None) -> str:
    if quoted is not None:
        return unescape(quoted)
    return (bare or "").strip()


def _classify(line: str) -> Directive | None:
    match = _KEYWORD_RE.match(line)
    if not match:
        return None
    try:
        return Directive(match.group(1))
    except ValueError:
        return None


class DBCParser:
    """Построчный разбор DBC в Database.

    Несовпавшие строки пропускаются с предупреждением, разбор не прерывается.
    """

    def __init__(
        self,
        encoding: str = "utf-8",
        fallback_encodings: Sequence[str] = ("gbk", "latin-1"),
    ) -> None:
        self.encoding = encoding
        self.fallback_encodings = tuple(fallback_encodings)
        self.database = Database()
        self.warnings: list[ParseWarning] = []
        self._current_message: Message | None = None
        self._directive_counts: Counter[str] = Counter()
        self._message_enums: Mapping[str, tuple[str, ...]] = MappingProxyType({})
        self._signal_enums: Mapping[str, tuple[str, ...]] = MappingProxyType({})
        self._handlers: dict[Directive, Callable[[str], bool]] = {
            Directive.VERSION: self._parse_version,
            Directive.NODES: self._parse_nodes,
            Directive.VALUE_TABLE: self._parse_value_table_definition,
            Directive.MESSAGE: self._parse_message,
            Directive.SIGNAL: self._parse_signal,
            Directive.MESSAGE_RECEIVERS: self._parse_message_receivers,
            Directive.COMMENT: self._parse_comment,
            Directive.ATTRIBUTE_DEFINITION: self._parse_attribute_definition,
            Directive.ATTRIBUTE_DEFAULT: self._ignore,
            Directive.ATTRIBUTE: self._parse_attribute,
            Directive.VALUE_DESCRIPTIONS: self._parse_value_descriptions,
        }

    def get_message(self, message_id: int) -> Message | None:
        return self.database.get_message(message_id)

    @property
    def messages(self) -> list[Message]:
        return self.database.messages

    def parse_file(self, path: Path | str) -> Database:
        path = Path(path)
        try:
            data = path.read_bytes()
        except OSError as e:
            logger.error("dbc_load_failed", file=str(path), error=str(e))
            raise DBCIOError(
                f"Failed to open {path}", path=path, operation="read", original_error=e
            ) from e

        text = self._decode(data, path)
        database = self.parse(text)
        logger.info("dbc_file_loaded", file=str(path), messages=len(database.messages))
        return database

    def _decode(self, data: bytes, path: Path) -> str:
        last_error: UnicodeDecodeError | None = None
        for encoding in (self.encoding, *self.fallback_encodings):
            try:
                return data.decode(encoding)
            except (UnicodeDecodeError, LookupError) as e:
                logger.debug("dbc_decode_retry", file=str(path), encoding=encoding)
                if isinstance(e, UnicodeDecodeError):
                    last_error = e
        logger.error("dbc_decode_failed", file=str(path))
        raise DBCIOError(
            f"Failed to decode {path}", path=path, operation="decode", original_error=last_error
        )

    def parse(self, text: str) -> Database:
        self._reset()
        lines = list(iter_logical_lines(text))
        self._message_enums, self._signal_enums = self._scan_attribute_enums(lines)

        for number, line in lines:
            self._parse_line(number, line)
        logger.debug("dbc_directive_counts", **self._directive_counts)

        database = self.database
        for node in database.collect_nodes():
            if node != DEFAULT_NODE:
                database.add_node(node)
        if not database.bus_type:
            database.bus_type = database.infer_bus_type()

        logger.info(
            "dbc_parsed",
            messages=len(database.messages),
            signals=database.signal_count(),
            warnings=len(self.warnings),
        )
        return database

    def load_from_import(self, result: ImportResult) -> Database:
        """Принять готовый результат внешнего импорта (владение переходит парсеру)."""
        self._reset()
        database = self.database
        database.version = result.version
        database.bus_type = result.bus_type
        database.document_title = result.document_title
        database.change_history = list(result.change_history)
        database.nodes = []
        database.add_nodes(result.nodes)
        database.global_value_tables = list(result.global_value_tables)

        messages = result.messages
        result.clear()
        for message in messages:
            if database.get_message(message.id) is not None:
                logger.warning("duplicate_message_id", message_id=message.id, name=message.name)
            database.add_message(message)

        logger.info("dbc_imported", messages=len(database.messages), nodes=len(database.nodes))
        return database

    def _reset(self) -> None:
        self.database = Database()
        self.warnings = []
        self._current_message = None
        self._directive_counts = Counter()
        self._message_enums = MappingProxyType({})
        self._signal_enums = MappingProxyType({})

    @staticmethod
    def _scan_attribute_enums(
        lines: list[tuple[int, str]],
    ) -> tuple[Mapping[str, tuple[str, ...]], Mapping[str, tuple[str, ...]]]:
        message_enums: dict[str, tuple[str, ...]] = {}
        signal_enums: dict[str, tuple[str, ...]] = {}
        for _, line in lines:
            match = _ENUM_DEF_RE.match(line)
            if not match:
                continue
            scope, attr_name, values_part = match.groups()
            values = tuple(_ENUM_ITEM_RE.findall(values_part))
            if scope == "BO_":
                message_enums[attr_name] = values
            else:
                signal_enums[attr_name] = values
        return MappingProxyType(message_enums), MappingProxyType(signal_enums)

    def _parse_line(self, number: int, line: str) -> None:
        if not line or line.startswith("//"):
            return

        directive = _classify(line)
        if directive is None:
            return
        # Записи блока NS_ и пустые заголовки вроде "BS_:"
        if line.rstrip(":").strip() == directive.value:
            return

        self._directive_counts[directive.value] += 1

        if not self._handlers[directive](line):
            self.warnings.append(ParseWarning(line_number=number, directive=directive.value, line=line))
            logger.warning("dbc_line_unmatched", line_number=number, directive=directive.value, line=line)

    def _ignore(self, line: str) -> bool:
        return True

    def _parse_version(self, line: str) -> bool:
        match = _VERSION_RE.match(line)
        if not match:
            return False
        self.database.version = unescape(match.group(1))
        return True

    def _parse_nodes(self, line: str) -> bool:
        match = _NODES_RE.match(line)
        if not match:
            return False
        for node in match.group(1).split():
            if node != DEFAULT_NODE:
                self.database.add_node(node)
        return True

    def _parse_value_table_definition(self, line: str) -> bool:
        match = _VAL_TABLE_RE.match(line)
        if not match:
            return False
        values = {int(raw): unescape(text) for raw, text in _VALUE_ITEM_RE.findall(match.group(2))}
        self.database.global_value_tables.append(ValueTable(name=match.group(1), values=values))
        return True

    def _parse_message(self, line: str) -> bool:
        match = _MESSAGE_RE.match(line)
        if not match:
            return False

        message_id = int(match.group(1))
        name = match.group(2).strip()
        length = int(match.group(3))
        transmitter = match.group(4) or ""

        existing = self.database.get_message(message_id)
        if existing is not None:
            logger.warning("duplicate_message_id", message_id=message_id, name=name)
            existing.name = name
            existing.length = length
            existing.transmitter = transmitter
            self._current_message = existing
            return True

        message = Message(id=message_id, name=name, length=length, transmitter=transmitter)
        self.database.add_message(message)
        self._current_message = message
        return True

    def _parse_signal(self, line: str) -> bool:
        match = _SIGNAL_RE.match(line)
        if not match or self._current_message is None:
            return False

        (name, start_bit, length, order, sign, factor, offset,
         minimum, maximum, unit, receivers) = match.groups()

        signal = Signal(
            name=name.strip(),
            start_bit=int(start_bit),
            length=int(length),
            byte_order=ByteOrder(int(order)),
            is_signed=sign == "-",
            factor=_parse_float(factor),
            offset=_parse_float(offset),
            minimum=_parse_float(minimum),
            maximum=_parse_float(maximum),
            unit=unescape(unit),
            receivers=_split_receivers(receivers),
        )
        self._current_message.add_signal(signal)
        return True

    def _parse_message_receivers(self, line: str) -> bool:
        match = _TX_RE.match(line)
        if not match:
            return False
        message = self.database.get_message(int(match.group(1)))
        if message is not None:
            message.receivers = _split_receivers(match.group(2))
        return True

    def _parse_comment(self, line: str) -> bool:
        if re.match(r"^CM_\s+BO_\s", line):
            match = _CM_MESSAGE_RE.match(line)
            if not match:
                return False
            message = self.database.get_message(int(match.group(1)))
            if message is not None:
                message.comment = unescape(match.group(2))
            return True

        if re.match(r"^CM_\s+SG_\s", line):
            match = _CM_SIGNAL_RE.match(line)
            if not match:
                return False
            message = self.database.get_message(int(match.group(1)))
            signal = message.get_signal(match.group(2)) if message is not None else None
            if signal is not None:
                signal.description = unescape(match.group(3))
            return True

        # Комментарии узлов и глобальные не моделируются
        return True

    def _parse_attribute_definition(self, line: str) -> bool:
        # ENUM-таблицы уже собраны предварительным проходом
        return True

    def _parse_attribute(self, line: str) -> bool:
        match = _BA_GLOBAL_RE.match(line)
        if match:
            attr_name, value = match.group(1), unescape(match.group(2))
            if attr_name == GlobalAttribute.DOCUMENT_TITLE.value:
                self.database.document_title = value
            elif attr_name == GlobalAttribute.BUS_TYPE.value and value:
                self.database.bus_type = value
            return True

        match = _BA_MESSAGE_RE.match(line)
        if match:
            self._apply_message_attribute(
                match.group(1), int(match.group(2)), _attribute_value(match.group(3), match.group(4))
            )
            return True

        match = _BA_SIGNAL_RE.match(line)
        if match:
            self._apply_signal_attribute(
                match.group(1), int(match.group(2)), match.group(3), _attribute_value(match.group(4), match.group(5))
            )
            return True

        # Атрибуты узлов и прочие области не моделируются
        return True

    def _resolve_enum(self, tables: Mapping[str, tuple[str, ...]], attr_name: str, value: str) -> str:
        index = _parse_int(value)
        if index is None:
            return value
        mapped = enum_value(tables, attr_name, index)
        return value if mapped is None else mapped

    def _apply_message_attribute(self, attr_name: str, message_id: int, value: str) -> None:
        message = self.database.get_message(message_id)
        attribute = MessageAttribute.lookup(attr_name)
        if message is None or attribute is None:
            logger.debug("attribute_ignored", attribute=attr_name, message_id=message_id)
            return

        if attribute is MessageAttribute.CYCLE_TIME:
            message.cycle_time = max(_parse_int(value) or 0, 0)
        elif attribute is MessageAttribute.CYCLE_TIME_FAST:
            message.cycle_time_fast = max(_parse_int(value) or 0, 0)
        elif attribute is MessageAttribute.NR_OF_REPETITIONS:
            message.nr_of_repetitions = max(_parse_int(value) or 0, 0)
        elif attribute is MessageAttribute.DELAY_TIME:
            message.delay_time = max(_parse_int(value) or 0, 0)
        elif attribute is MessageAttribute.SEND_TYPE:
            message.send_type = self._resolve_enum(self._message_enums, attr_name, value)
        elif attribute is MessageAttribute.FRAME_FORMAT:
            message.frame_format = self._resolve_enum(self._message_enums, attr_name, value)
            message.message_type = message_type_from_frame_format(message.frame_format)

    def _apply_signal_attribute(self, attr_name: str, message_id: int, signal_name: str, value: str) -> None:
        message = self.database.get_message(message_id)
        signal = message.get_signal(signal_name) if message is not None else None
        attribute = SignalAttribute.lookup(attr_name)
        if signal is None or attribute is None:
            logger.debug("attribute_ignored", attribute=attr_name, message_id=message_id, signal=signal_name)
            return

        if attribute is SignalAttribute.SEND_TYPE:
            signal.send_type = self._resolve_enum(self._signal_enums, attr_name, value)
        elif attribute is SignalAttribute.START_VALUE:
            signal.initial_value = _parse_float(value)
        elif attribute is SignalAttribute.SNA:
            signal.inactive_value_hex = value

    def _parse_value_descriptions(self, line: str) -> bool:
        match = _VAL_RE.match(line)
        if not match:
            return False

        message = self.database.get_message(int(match.group(1)))
        signal = message.get_signal(match.group(2)) if message is not None else None
        if signal is None:
            logger.debug("value_table_target_missing", message_id=match.group(1), signal=match.group(2))
            return True

        signal.value_table = {int(raw): unescape(text) for raw, text in _VALUE_ITEM_RE.findall(match.group(3))}
        return True

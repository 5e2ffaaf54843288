# src/core/models.py
from __future__ import annotations

import math
from enum import IntEnum
from typing import Iterable

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator

from utils.hexfmt import format_hex

UINT64_MASK = (1 << 64) - 1


def mask_for_length(length: int) -> int:
    if length <= 0:
        return 0
    if length >= 64:
        return UINT64_MASK
    return (1 << length) - 1


def round_half_away(value: float) -> int:
    """Округление к ближайшему целому, .5 от нуля (как llround)."""
    if not math.isfinite(value):
        raise ValueError(f"cannot round non-finite value {value!r}")
    magnitude = abs(value)
    rounded = math.floor(magnitude)
    if magnitude - rounded >= 0.5:
        rounded += 1
    return int(-rounded if value < 0 else rounded)


class ByteOrder(IntEnum):
    MOTOROLA = 0  # @0, big endian, start bit = MSB
    INTEL = 1     # @1, little endian, start bit = LSB


class Signal(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    name: str
    start_bit: int = 0
    length: int = 1
    byte_order: ByteOrder = ByteOrder.INTEL
    is_signed: bool = False
    factor: float = 1.0
    offset: float = 0.0
    minimum: float = 0.0
    maximum: float = 0.0
    unit: str = ""
    description: str = ""
    receivers: list[str] = Field(default_factory=list)
    value_table: dict[int, str] = Field(default_factory=dict)
    send_type: str = ""
    initial_value: float = 0.0
    invalid_value_hex: str = ""
    inactive_value_hex: str = ""
    # Заданы только при импорте из таблицы
    raw_min: float | None = None
    raw_max: float | None = None

    @field_validator("value_table")
    @classmethod
    def _sort_value_table(cls, table: dict[int, str]) -> dict[int, str]:
        return dict(sorted(table.items()))

    @property
    def has_raw_range(self) -> bool:
        return self.raw_min is not None and self.raw_max is not None

    @property
    def is_motorola(self) -> bool:
        return self.byte_order == ByteOrder.MOTOROLA

    def raw_to_physical(self, raw: int) -> float:
        return raw * self.factor + self.offset

    def physical_to_raw(self, physical: float) -> int:
        if self.factor == 0.0:
            raise ZeroDivisionError(f"signal {self.name!r} has zero factor")
        return round_half_away((physical - self.offset) / self.factor)

    def value_description(self, raw: int) -> str:
        return self.value_table.get(raw, str(raw))

    def receivers_as_string(self) -> str:
        return ", ".join(self.receivers)

    def initial_value_hex(self) -> str:
        if not math.isfinite(self.initial_value):
            return format_hex(0)
        raw = round_half_away(self.initial_value)
        return format_hex(raw & mask_for_length(self.length))

    def clone(self) -> Signal:
        return self.model_copy(deep=True)


class Message(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    id: int
    name: str
    length: int = 8
    transmitter: str = ""
    receivers: list[str] = Field(default_factory=list)
    cycle_time: int = Field(default=0, ge=0)
    cycle_time_fast: int = Field(default=0, ge=0)
    nr_of_repetitions: int = Field(default=0, ge=0)
    delay_time: int = Field(default=0, ge=0)
    send_type: str = ""
    frame_format: str = ""
    message_type: str = ""
    comment: str = ""
    signals: list[Signal] = Field(default_factory=list)

    def get_signal(self, name: str) -> Signal | None:
        for signal in self.signals:
            if signal.name == name:
                return signal
        return None

    def add_signal(self, signal: Signal) -> None:
        self.signals.append(signal)

    def insert_signal(self, index: int, signal: Signal) -> None:
        if index < 0 or index > len(self.signals):
            self.signals.append(signal)
        else:
            self.signals.insert(index, signal)

    def remove_signal(self, signal: Signal | str) -> Signal | None:
        target = self.get_signal(signal) if isinstance(signal, str) else signal
        for i, existing in enumerate(self.signals):
            if existing is target:
                return self.signals.pop(i)
        return None

    def move_signal(self, old_index: int, new_index: int) -> None:
        signal = self.signals.pop(old_index)
        self.insert_signal(new_index, signal)

    @property
    def formatted_id(self) -> str:
        return f"0x{self.id:X}"

    @property
    def formatted_length(self) -> str:
        return f"{self.length} bytes"

    @property
    def is_fd(self) -> bool:
        text = f"{self.frame_format} {self.message_type}".upper()
        return "_FD" in text or "CANFD" in text or "CAN FD" in text

    @property
    def is_extended(self) -> bool:
        text = f"{self.frame_format} {self.message_type}".upper()
        return "EXTENDED" in text

    def clone(self) -> Message:
        return self.model_copy(deep=True)


class ValueTable(BaseModel):
    name: str
    values: dict[int, str] = Field(default_factory=dict)

    @field_validator("values")
    @classmethod
    def _sort_values(cls, table: dict[int, str]) -> dict[int, str]:
        return dict(sorted(table.items()))


class ChangeHistoryEntry(BaseModel):
    serial_number: str = ""
    protocol_version: str = ""
    change_content: str = ""
    changer: str = ""
    change_date: str = ""
    reviewer: str = ""


class Database(BaseModel):
    """Набор сообщений и глобальные метаданные DBC.

    Индекс id -> позиция в списке не владеет сообщениями и
    перестраивается при каждом структурном изменении списка.
    """

    version: str = ""
    bus_type: str = ""
    nodes: list[str] = Field(default_factory=list)
    messages: list[Message] = Field(default_factory=list)
    global_value_tables: list[ValueTable] = Field(default_factory=list)
    document_title: str = ""
    change_history: list[ChangeHistoryEntry] = Field(default_factory=list)

    _index: dict[int, int] = PrivateAttr(default_factory=dict)

    def model_post_init(self, __context: object) -> None:
        self.reindex()

    def reindex(self) -> None:
        self._index = {message.id: pos for pos, message in enumerate(self.messages)}

    def get_message(self, message_id: int) -> Message | None:
        pos = self._index.get(message_id)
        if pos is not None and pos < len(self.messages) and self.messages[pos].id == message_id:
            return self.messages[pos]
        # Список мог быть изменен напрямую, промах проверяется по свежему индексу
        self.reindex()
        pos = self._index.get(message_id)
        return None if pos is None else self.messages[pos]

    def add_message(self, message: Message) -> Message:
        existing = self.get_message(message.id)
        if existing is not None:
            self.messages[self._index[message.id]] = message
        else:
            self.messages.append(message)
            self._index[message.id] = len(self.messages) - 1
        return message

    def remove_message(self, message: Message | int) -> Message | None:
        message_id = message if isinstance(message, int) else message.id
        found = self.get_message(message_id)
        if found is None:
            return None
        self.messages = [m for m in self.messages if m is not found]
        self.reindex()
        return found

    def add_node(self, name: str) -> None:
        if name and name not in self.nodes:
            self.nodes.append(name)

    def add_nodes(self, names: Iterable[str]) -> None:
        for name in names:
            self.add_node(name)

    def collect_nodes(self) -> list[str]:
        """Объединение узлов: сохраненные + все передатчики/получатели."""
        nodes: list[str] = []

        def _add(name: str) -> None:
            if name and name not in nodes:
                nodes.append(name)

        for name in self.nodes:
            _add(name)
        for message in self.messages:
            _add(message.transmitter)
            for receiver in message.receivers:
                _add(receiver)
            for signal in message.signals:
                for receiver in signal.receivers:
                    _add(receiver)
        return nodes

    def infer_bus_type(self) -> str:
        for message in self.messages:
            if message.is_fd or message.length > 8:
                return "CAN FD"
        return "CAN"

    def take_messages(self) -> list[Message]:
        messages = self.messages
        self.messages = []
        self.reindex()
        return messages

    def clear(self) -> None:
        self.version = ""
        self.bus_type = ""
        self.nodes = []
        self.messages = []
        self.global_value_tables = []
        self.document_title = ""
        self.change_history = []
        self.reindex()

    def signal_count(self) -> int:
        return sum(len(message.signals) for message in self.messages)

    def clone(self) -> Database:
        copy = self.model_copy(deep=True)
        copy.reindex()
        return copy


class ImportResult(BaseModel):
    """Результат внешнего импорта (таблица), по форме совпадает с Database."""

    version: str = ""
    bus_type: str = ""
    document_title: str = ""
    change_history: list[ChangeHistoryEntry] = Field(default_factory=list)
    nodes: list[str] = Field(default_factory=list)
    messages: list[Message] = Field(default_factory=list)
    global_value_tables: list[ValueTable] = Field(default_factory=list)

    def clear(self) -> None:
        self.version = ""
        self.bus_type = ""
        self.document_title = ""
        self.change_history = []
        self.nodes = []
        self.messages = []
        self.global_value_tables = []

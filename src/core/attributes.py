"""Перечисления, общие для парсера и писателя DBC.

Порядковый номер в таблице - это значение в строках BA_, поэтому
чтение и запись индексируют один и тот же кортеж.
"""
from __future__ import annotations

from enum import Enum
from typing import Mapping

MESSAGE_SEND_TYPES: tuple[str, ...] = (
    "Cycle",
    "OnChange",
    "OnWrite",
    "OnWriteWithRepetition",
    "OnChangeWithRepetition",
    "IfActive",
    "IfActiveWithRepetition",
    "NoMsgSendType",
)

SIGNAL_SEND_TYPES: tuple[str, ...] = (
    "Cycle",
    "OnWrite",
    "OnWriteWithRepetition",
    "OnChange",
    "OnChangeWithRepetition",
    "IfActive",
    "IfActiveWithRepetition",
    "NoSigSendType",
    "vector_leerstring",
)

FRAME_FORMATS: tuple[str, ...] = (
    "StandardCAN",
    "ExtendedCAN",
    *("reserved",) * 12,
    "StandardCAN_FD",
    "ExtendedCAN_FD",
)

SIGNAL_SEND_TYPE_ALIASES = {"cyclic": "Cycle"}

DEFAULT_NODE = "Vector__XXX"


class MessageAttribute(str, Enum):
    CYCLE_TIME = "GenMsgCycleTime"
    CYCLE_TIME_FAST = "GenMsgCycleTimeFast"
    SEND_TYPE = "GenMsgSendType"
    FRAME_FORMAT = "VFrameFormat"
    NR_OF_REPETITIONS = "GenMsgNrOfRepetition"
    DELAY_TIME = "GenMsgDelayTime"

    @classmethod
    def lookup(cls, name: str) -> MessageAttribute | None:
        if name == "GenMsgNrOfRepetitions":
            return cls.NR_OF_REPETITIONS
        try:
            return cls(name)
        except ValueError:
            return None


class SignalAttribute(str, Enum):
    SEND_TYPE = "GenSigSendType"
    START_VALUE = "GenSigStartValue"
    SNA = "GenSigSNA"

    @classmethod
    def lookup(cls, name: str) -> SignalAttribute | None:
        try:
            return cls(name)
        except ValueError:
            return None


class GlobalAttribute(str, Enum):
    DOCUMENT_TITLE = "DocumentTitle"
    BUS_TYPE = "BusType"


def _index_of(table: tuple[str, ...], value: str) -> int | None:
    wanted = value.strip().lower()
    for i, entry in enumerate(table):
        if entry.lower() == wanted:
            return i
    return None


def message_send_type_index(send_type: str) -> int:
    idx = _index_of(MESSAGE_SEND_TYPES, send_type)
    return idx if idx is not None else 0


def signal_send_type_index(send_type: str) -> int:
    canonical = SIGNAL_SEND_TYPE_ALIASES.get(send_type.strip().lower(), send_type)
    idx = _index_of(SIGNAL_SEND_TYPES, canonical)
    return idx if idx is not None else SIGNAL_SEND_TYPES.index("NoSigSendType")


def frame_format_index(frame_format: str) -> int:
    idx = _index_of(FRAME_FORMATS, frame_format)
    if idx is not None and FRAME_FORMATS[idx] != "reserved":
        return idx
    upper = frame_format.upper()
    if "STANDARDCAN_FD" in upper:
        return FRAME_FORMATS.index("StandardCAN_FD")
    if "EXTENDEDCAN_FD" in upper:
        return FRAME_FORMATS.index("ExtendedCAN_FD")
    if "EXTENDEDCAN" in upper:
        return FRAME_FORMATS.index("ExtendedCAN")
    return FRAME_FORMATS.index("StandardCAN")


def frame_format_from_message_type(message_type: str) -> str:
    upper = message_type.upper()
    extended = "EXTENDED" in upper
    if "CANFD" in upper or "CAN FD" in upper:
        return "ExtendedCAN_FD" if extended else "StandardCAN_FD"
    return "ExtendedCAN" if extended else "StandardCAN"


def message_type_from_frame_format(frame_format: str) -> str:
    """VFrameFormat -> человекочитаемый тип сообщения."""
    names = {
        "standardcan_fd": "CANFD Standard",
        "extendedcan_fd": "CANFD Extended",
        "standardcan": "CAN Standard",
        "extendedcan": "CAN Extended",
    }
    return names.get(frame_format.lower(), frame_format)


def enum_value(tables: Mapping[str, tuple[str, ...]], attr_name: str, index: int) -> str | None:
    values = tables.get(attr_name, ())
    if 0 <= index < len(values):
        return values[index]
    return None

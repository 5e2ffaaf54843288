from __future__ import annotations

import math
from pathlib import Path

import structlog

from .attributes import (
    DEFAULT_NODE,
    FRAME_FORMATS,
    MESSAGE_SEND_TYPES,
    SIGNAL_SEND_TYPES,
    frame_format_from_message_type,
    frame_format_index,
    message_send_type_index,
    signal_send_type_index,
)
from .errors import DBCIOError
from .models import Database, Message

logger = structlog.get_logger(__name__)

NAMESPACE_ENTRIES = (
    "NS_DESC_", "CM_", "BA_DEF_", "BA_", "VAL_", "CAT_DEF_", "CAT_", "FILTER",
    "BA_DEF_DEF_", "EV_DATA_", "ENVVAR_DATA_", "SGTYPE_", "SGTYPE_VAL_",
    "BA_DEF_SGTYPE_", "BA_SGTYPE_", "SIG_TYPE_REF_", "VAL_TABLE_", "SIG_GROUP_",
    "SIG_VALTYPE_", "SIGTYPE_VALTYPE_", "BO_TX_BU_", "BA_DEF_REL_", "BA_REL_",
    "BA_DEF_DEF_REL_", "BU_SG_REL_", "BU_EV_REL_", "BU_BO_REL_", "SG_MUL_VAL_",
)


def escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')


def format_double(value: float) -> str:
    """Локале-независимое представление double без потери точности.

    Большие/малые по модулю значения -> 1.234000000000000E+010.
    """
    if not math.isfinite(value):
        value = 0.0
    magnitude = abs(value)
    if magnitude >= 1e10 or 0 < magnitude < 1e-6:
        mantissa, exponent = f"{value:.15E}".split("E")
        exp = int(exponent)
        return f"{mantissa}E{'+' if exp >= 0 else '-'}{abs(exp):03d}"

    text = f"{value:.15g}"
    if float(text) != value:
        text = f"{value:.17g}"
    return text


def _enum_list(values: tuple[str, ...]) -> str:
    return ",".join(f'"{value}"' for value in values)


def canonical_frame_format(message: Message) -> str:
    if message.frame_format:
        return message.frame_format
    return frame_format_from_message_type(message.message_type)


class DBCWriter:
    """Сериализация Database в канонический текст DBC."""

    def __init__(self, default_node: str = DEFAULT_NODE) -> None:
        self.default_node = default_node

    def write(self, database: Database) -> str:
        lines: list[str] = []
        nodes = [node for node in database.collect_nodes() if node != DEFAULT_NODE]

        lines.append(f'VERSION "{escape(database.version)}"')
        lines.extend(["", ""])
        lines.append("NS_ :")
        lines.extend(f"\t{entry}" for entry in NAMESPACE_ENTRIES)
        lines.append("")
        lines.append("BS_:")
        lines.append("")
        lines.append("BU_: " + (" ".join(nodes) if nodes else self.default_node))
        lines.extend(self._value_table_lines(database))
        lines.append("")

        fallback = nodes[0] if nodes else self.default_node
        for message in database.messages:
            lines.extend(self._message_block(message, fallback))

        lines.append("")
        for message in database.messages:
            if message.receivers:
                lines.append(f"BO_TX_BU_ {message.id} : {','.join(message.receivers)};")
        lines.append("")

        lines.extend(self._comment_lines(database))
        lines.append("")
        lines.extend(self._attribute_definition_lines())
        lines.append("")
        lines.extend(self._attribute_value_lines(database))
        lines.extend(self._value_description_lines(database))
        lines.append("")
        return "\n".join(lines)

    def write_file(self, database: Database, path: Path | str, encoding: str = "utf-8") -> None:
        path = Path(path)
        # Текст формируется целиком до открытия файла
        text = self.write(database)
        try:
            with path.open("w", encoding=encoding, newline="\n") as f:
                f.write(text)
        except (OSError, UnicodeEncodeError) as e:
            logger.error("dbc_write_failed", file=str(path), error=str(e))
            raise DBCIOError(
                f"Unable to open {path} for writing", path=path, operation="write", original_error=e
            ) from e
        logger.info("dbc_written", file=str(path), messages=len(database.messages))

    def _value_table_lines(self, database: Database) -> list[str]:
        lines = []
        for table in database.global_value_tables:
            items = "".join(f' {raw} "{escape(text)}"' for raw, text in sorted(table.values.items()))
            lines.append(f"VAL_TABLE_ {table.name}{items} ;")
        return lines

    def _message_block(self, message: Message, fallback: str) -> list[str]:
        transmitter = message.transmitter or fallback
        lines = ["", f"BO_ {message.id} {message.name}: {message.length} {transmitter}"]

        default_receivers = ",".join(message.receivers) if message.receivers else transmitter
        for signal in message.signals:
            sign = "-" if signal.is_signed else "+"
            receivers = ",".join(signal.receivers) if signal.receivers else default_receivers
            lines.append(
                f" SG_ {signal.name} : {signal.start_bit}|{signal.length}@{int(signal.byte_order)}{sign}"
                f" ({format_double(signal.factor)},{format_double(signal.offset)})"
                f" [{format_double(signal.minimum)}|{format_double(signal.maximum)}]"
                f' "{escape(signal.unit)}" {receivers}'
            )
        return lines

    def _comment_lines(self, database: Database) -> list[str]:
        lines = []
        for message in database.messages:
            if message.comment:
                lines.append(f'CM_ BO_ {message.id} "{escape(message.comment)}";')
            for signal in message.signals:
                if signal.description:
                    lines.append(f'CM_ SG_ {message.id} {signal.name} "{escape(signal.description)}";')
        return lines

    def _attribute_definition_lines(self) -> list[str]:
        return [
            'BA_DEF_ BO_ "GenMsgCycleTime" INT 0 65535;',
            'BA_DEF_ BO_ "GenMsgCycleTimeFast" INT 0 65535;',
            'BA_DEF_ BO_ "GenMsgDelayTime" INT 0 65535;',
            'BA_DEF_ BO_ "GenMsgNrOfRepetition" INT 0 255;',
            f'BA_DEF_ BO_ "GenMsgSendType" ENUM {_enum_list(MESSAGE_SEND_TYPES)};',
            f'BA_DEF_ BO_ "VFrameFormat" ENUM {_enum_list(FRAME_FORMATS)};',
            'BA_DEF_ SG_ "GenSigInactiveValue" HEX 0 0;',
            'BA_DEF_ SG_ "GenSigInvalidValue" HEX 0 0;',
            'BA_DEF_ SG_ "GenSigSNA" STRING ;',
            f'BA_DEF_ SG_ "GenSigSendType" ENUM {_enum_list(SIGNAL_SEND_TYPES)};',
            'BA_DEF_ SG_ "GenSigStartValue" FLOAT 0 100000000000;',
            'BA_DEF_ "BusType" STRING ;',
            'BA_DEF_ "DocumentTitle" STRING ;',
            'BA_DEF_DEF_ "GenMsgCycleTime" 0;',
            'BA_DEF_DEF_ "GenMsgCycleTimeFast" 0;',
            'BA_DEF_DEF_ "GenMsgDelayTime" 0;',
            'BA_DEF_DEF_ "GenMsgNrOfRepetition" 0;',
            f'BA_DEF_DEF_ "GenMsgSendType" "{MESSAGE_SEND_TYPES[0]}";',
            f'BA_DEF_DEF_ "VFrameFormat" "{FRAME_FORMATS[0]}";',
            'BA_DEF_DEF_ "GenSigInactiveValue" 0;',
            'BA_DEF_DEF_ "GenSigInvalidValue" 0;',
            'BA_DEF_DEF_ "GenSigSNA" "";',
            'BA_DEF_DEF_ "GenSigSendType" "NoSigSendType";',
            'BA_DEF_DEF_ "GenSigStartValue" 0;',
            'BA_DEF_DEF_ "BusType" "";',
            'BA_DEF_DEF_ "DocumentTitle" "";',
        ]

    def _attribute_value_lines(self, database: Database) -> list[str]:
        lines = [f'BA_ "BusType" "{escape(database.bus_type or "CAN")}";']
        if database.document_title:
            lines.append(f'BA_ "DocumentTitle" "{escape(database.document_title)}";')

        for message in database.messages:
            mid = message.id
            if message.cycle_time > 0:
                lines.append(f'BA_ "GenMsgCycleTime" BO_ {mid} {message.cycle_time};')
            if message.cycle_time_fast > 0:
                lines.append(f'BA_ "GenMsgCycleTimeFast" BO_ {mid} {message.cycle_time_fast};')
            if message.nr_of_repetitions > 0:
                lines.append(f'BA_ "GenMsgNrOfRepetition" BO_ {mid} {message.nr_of_repetitions};')
            if message.delay_time > 0:
                lines.append(f'BA_ "GenMsgDelayTime" BO_ {mid} {message.delay_time};')
            if message.frame_format or message.message_type:
                index = frame_format_index(canonical_frame_format(message))
                lines.append(f'BA_ "VFrameFormat" BO_ {mid} {index};')
            if message.send_type:
                lines.append(f'BA_ "GenMsgSendType" BO_ {mid} {message_send_type_index(message.send_type)};')

        for message in database.messages:
            for signal in message.signals:
                prefix = f"SG_ {message.id} {signal.name}"
                if signal.send_type:
                    index = signal_send_type_index(signal.send_type)
                    lines.append(f'BA_ "GenSigSendType" {prefix} {index};')
                if signal.initial_value != 0:
                    lines.append(f'BA_ "GenSigStartValue" {prefix} {format_double(signal.initial_value)};')
                if signal.inactive_value_hex:
                    lines.append(f'BA_ "GenSigSNA" {prefix} "{escape(signal.inactive_value_hex)}";')
        return lines

    def _value_description_lines(self, database: Database) -> list[str]:
        lines = []
        for message in database.messages:
            for signal in message.signals:
                if not signal.value_table:
                    continue
                items = "".join(
                    f' {raw} "{escape(text)}"' for raw, text in sorted(signal.value_table.items())
                )
                lines.append(f"VAL_ {message.id} {signal.name}{items};")
        return lines

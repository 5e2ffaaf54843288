"""Проверка битовой раскладки и диапазонов сигналов.

Чистая функция над списком сообщений: модель не изменяется, исключения
не выбрасываются, каждая найденная проблема -> одна строка диагностики.
"""
from __future__ import annotations

import math
from typing import Iterable

from pydantic import BaseModel, Field

from utils.hexfmt import INT64_MAX, INT64_MIN, parse_hex_int64

from .models import ByteOrder, Message, Signal, mask_for_length, round_half_away

Cell = tuple[int, int]


class ValidationResult(BaseModel):
    ok: bool = True
    diagnostics: list[str] = Field(default_factory=list)

    def add(self, message_name: str, text: str, signal_name: str = "") -> None:
        if signal_name:
            self.diagnostics.append(f"[{message_name} / {signal_name}] {text}")
        else:
            self.diagnostics.append(f"[{message_name}] {text}")
        self.ok = False


def signed_bounds(length: int) -> tuple[int, int]:
    if length <= 0 or length > 64:
        return 0, 0
    if length == 64:
        return INT64_MIN, INT64_MAX
    return -(1 << (length - 1)), (1 << (length - 1)) - 1


def in_signed_range(raw: int, length: int) -> bool:
    low, high = signed_bounds(length)
    return 0 < length <= 64 and low <= raw <= high


def in_unsigned_range(raw: int, length: int) -> bool:
    return 0 < length <= 64 and 0 <= raw <= mask_for_length(length)


def walk_bits(start_bit: int, length: int, byte_order: ByteOrder) -> list[int]:
    """Линейные номера битов сигнала в порядке обхода.

    Intel: start_bit, start_bit+1, ...
    Motorola: от MSB вниз внутри байта, на границе байта (bit % 8 == 0) шаг +15.
    """
    if byte_order == ByteOrder.INTEL:
        return list(range(start_bit, start_bit + max(length, 0)))

    bits = []
    bit_index = start_bit
    for _ in range(max(length, 0)):
        bits.append(bit_index)
        if bit_index % 8 == 0:
            bit_index += 15
        else:
            bit_index -= 1
    return bits


def signal_cells(signal: Signal, message_length: int) -> list[Cell]:
    """(byte, bit_in_byte) для битов сигнала, попадающих в полезную нагрузку."""
    cells = []
    for bit_index in walk_bits(signal.start_bit, signal.length, signal.byte_order):
        if bit_index < 0:
            continue
        byte_index, bit_in_byte = divmod(bit_index, 8)
        if byte_index < message_length:
            cells.append((byte_index, bit_in_byte))
    return cells


def _to_raw(physical: float, offset: float, factor: float) -> int | None:
    value = (physical - offset) / factor
    if not math.isfinite(value):
        return None
    return round_half_away(value)


def _range_text(raw: int, length: int, signed: bool) -> str:
    if signed:
        low, high = signed_bounds(length)
        return f"{raw} 超出有符号 {length} 位范围 [{low}, {high}]"
    return f"{raw} 超出无符号 {length} 位范围 [0, {mask_for_length(length)}]"


def _in_range(raw: int, length: int, signed: bool) -> bool:
    if signed:
        return in_signed_range(raw, length)
    # Беззнаковая граница берется по маске, в том числе для длины > 64
    return 0 <= raw <= mask_for_length(length)


def _validate_signal_values(message: Message, signal: Signal, result: ValidationResult) -> None:
    msg_name = message.name
    sig_name = signal.name
    length = signal.length
    signed = signal.is_signed

    if signal.factor == 0.0:
        result.add(msg_name, "Resolution（精度）不能为0", sig_name)
        return

    if signal.minimum > signal.maximum:
        result.add(msg_name, "物理最小值不能大于物理最大值", sig_name)

    raw_min = _to_raw(signal.minimum, signal.offset, signal.factor)
    raw_max = _to_raw(signal.maximum, signal.offset, signal.factor)
    if raw_min is None or raw_max is None:
        result.add(msg_name, "物理范围无法换算为总线值", sig_name)
    else:
        if not _in_range(raw_min, length, signed):
            result.add(msg_name, "由物理最小值换算的总线值 " + _range_text(raw_min, length, signed), sig_name)
        if not _in_range(raw_max, length, signed):
            result.add(msg_name, "由物理最大值换算的总线值 " + _range_text(raw_max, length, signed), sig_name)

    if math.isfinite(signal.initial_value):
        init_raw = round_half_away(signal.initial_value)
        if not _in_range(init_raw, length, signed):
            result.add(msg_name, "初始值(Hex) " + _range_text(init_raw, length, signed), sig_name)
        elif raw_min is not None and raw_max is not None and raw_min <= raw_max:
            if init_raw < raw_min or init_raw > raw_max:
                result.add(
                    msg_name,
                    f"初始值(Hex) {init_raw} 不在物理范围换算的总线范围 [{raw_min}, {raw_max}] 内",
                    sig_name,
                )

    if signal.has_raw_range:
        bounds = [signal.raw_min, signal.raw_max]
        if all(math.isfinite(b) for b in bounds):
            hex_min, hex_max = (round_half_away(b) for b in bounds)
            if hex_min > hex_max:
                result.add(msg_name, "总线最小值(Hex)不能大于总线最大值(Hex)", sig_name)
            if not _in_range(hex_min, length, signed):
                result.add(msg_name, "总线最小值(Hex) " + _range_text(hex_min, length, signed), sig_name)
            if not _in_range(hex_max, length, signed):
                result.add(msg_name, "总线最大值(Hex) " + _range_text(hex_max, length, signed), sig_name)

    for label, text in (("无效值(Hex)", signal.invalid_value_hex), ("非使能值(Hex)", signal.inactive_value_hex)):
        value = parse_hex_int64(text)
        # Неразбираемые значения - свободный текст, не ошибка
        if value is not None and not _in_range(value, length, signed):
            result.add(msg_name, f"{label} " + _range_text(value, length, signed), sig_name)


def _validate_signal_layout(message: Message, signal: Signal, result: ValidationResult) -> list[Cell]:
    msg_name = message.name
    msg_len = message.length

    if signal.length <= 0:
        result.add(msg_name, "信号长度必须大于0", signal.name)
        return []
    if signal.start_bit < 0:
        result.add(msg_name, "起始位不能为负", signal.name)
        return []

    bound_reported = False
    if signal.byte_order == ByteOrder.INTEL:
        max_bit = msg_len * 8 - 1
        last_bit = signal.start_bit + signal.length - 1
        if last_bit > max_bit:
            result.add(
                msg_name,
                f"信号位范围 [{signal.start_bit}, {last_bit}] 超出报文长度（报文 {msg_len} 字节，有效位 0..{max_bit}）",
                signal.name,
            )
            bound_reported = True

    cells = signal_cells(signal, msg_len)
    if len(cells) < signal.length and not bound_reported:
        result.add(msg_name, f"信号位范围超出报文长度（报文 {msg_len} 字节）", signal.name)
    if len(set(cells)) != len(cells):
        result.add(msg_name, "信号内部位重叠（起始位/长度与字节序不一致）", signal.name)
    return cells


def validate_message(message: Message, result: ValidationResult | None = None) -> ValidationResult:
    result = result if result is not None else ValidationResult()

    footprints: list[tuple[Signal, set[Cell]]] = []
    for signal in message.signals:
        cells = _validate_signal_layout(message, signal, result)
        _validate_signal_values(message, signal, result)
        footprints.append((signal, set(cells)))

    for i, (first, first_cells) in enumerate(footprints):
        for second, second_cells in footprints[i + 1:]:
            if first_cells & second_cells:
                result.add(message.name, f'信号 "{first.name}" 与 "{second.name}" 位重叠')
    return result


def validate_messages(messages: Iterable[Message | None]) -> ValidationResult:
    result = ValidationResult()
    for message in messages:
        if message is None:
            continue
        validate_message(message, result)
    return result

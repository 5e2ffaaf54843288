from __future__ import annotations

INT64_MIN = -(1 << 63)
INT64_MAX = (1 << 63) - 1


def parse_hex_int64(text: str) -> int | None:
    """Разбор строки как знакового 64-битного целого.

    "0x"/"0X" -> шестнадцатеричное, иначе десятичное.
    Возвращает None, если строка не разбирается или не влезает в int64.
    """
    trimmed = text.strip()
    if not trimmed:
        return None

    try:
        if trimmed[:2].lower() == "0x":
            value = int(trimmed[2:], 16)
        else:
            value = int(trimmed, 10)
    except ValueError:
        return None

    if value < INT64_MIN or value > INT64_MAX:
        return None
    return value


def format_hex(value: int) -> str:
    return f"0x{value:X}"

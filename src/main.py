from __future__ import annotations

import argparse
import sys
from typing import Sequence

import orjson

from config import get_settings
from core.errors import DBCIOError
from service import DBCService
from utils.logging import setup_logging

EXIT_OK = 0
EXIT_INVALID = 1
EXIT_IO_ERROR = 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dbc-tool",
        description="Parse, validate and rewrite CAN DBC databases",
    )
    parser.add_argument("--log-level", default=None, help="override DBC_LOGGING__LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    validate = sub.add_parser("validate", help="check bit layout and value ranges")
    validate.add_argument("dbc_file")
    validate.add_argument("--json", action="store_true", help="print the result as JSON")

    convert = sub.add_parser("convert", help="parse and write back in canonical form")
    convert.add_argument("source")
    convert.add_argument("destination")

    info = sub.add_parser("info", help="list messages and signals")
    info.add_argument("dbc_file")
    info.add_argument("--json", action="store_true")
    return parser


def _cmd_validate(service: DBCService, args: argparse.Namespace) -> int:
    service.open(args.dbc_file)
    result = service.last_validation
    if args.json:
        sys.stdout.write(orjson.dumps(result.model_dump(), option=orjson.OPT_INDENT_2).decode() + "\n")
    elif result.ok:
        print("Validation: OK (no errors).")
    else:
        print(f"Validation: {len(result.diagnostics)} error(s)")
        for diagnostic in result.diagnostics:
            print(diagnostic)
    return EXIT_OK if result.ok else EXIT_INVALID


def _cmd_convert(service: DBCService, args: argparse.Namespace) -> int:
    service.open(args.source)
    service.save(args.destination)
    print(f"Wrote {len(service.database.messages)} messages to {args.destination}")
    return EXIT_OK


def _cmd_info(service: DBCService, args: argparse.Namespace) -> int:
    database = service.open(args.dbc_file)
    if args.json:
        payload = database.model_dump(mode="json")
        sys.stdout.write(orjson.dumps(payload, option=orjson.OPT_INDENT_2 | orjson.OPT_NON_STR_KEYS).decode() + "\n")
        return EXIT_OK

    print(f'VERSION "{database.version}"  bus: {database.bus_type}  nodes: {", ".join(database.nodes)}')
    for message in database.messages:
        print(f"{message.formatted_id} {message.name} ({message.formatted_length}) tx={message.transmitter or '-'}")
        for signal in message.signals:
            order = "Motorola" if signal.is_motorola else "Intel"
            print(
                f"    {signal.name}: {signal.start_bit}|{signal.length} {order} "
                f"{'signed' if signal.is_signed else 'unsigned'} x{signal.factor}+{signal.offset} "
                f"[{signal.minimum}..{signal.maximum}] {signal.unit}"
            )
    return EXIT_OK


COMMANDS = {
    "validate": _cmd_validate,
    "convert": _cmd_convert,
    "info": _cmd_info,
}


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    settings = get_settings()
    if args.log_level:
        settings.logging.level = args.log_level
    logger = setup_logging(settings.logging.level, settings.logging.format)

    service = DBCService(settings)
    try:
        return COMMANDS[args.command](service, args)
    except DBCIOError as e:
        logger.error("dbc_io_error", error=str(e), path=e.path, operation=e.operation)
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_IO_ERROR


if __name__ == "__main__":
    sys.exit(main())

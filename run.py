#!/usr/bin/env python3
import sys
from pathlib import Path

# Добавляем src/ в PYTHONPATH для запуска из рабочей копии
src_path = Path(__file__).parent / "src"
sys.path.insert(0, str(src_path))


def main() -> int:
    """Entry point без установки пакета"""
    from main import main as cli_main

    return cli_main()


if __name__ == "__main__":
    sys.exit(main())

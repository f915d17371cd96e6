"""CLI entry point for the loggerlink data logger toolkit."""
from __future__ import annotations

import sys

from loggerlink.cli import main

if __name__ == '__main__':
    raise SystemExit(main(sys.argv[1:]))

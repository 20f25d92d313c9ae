#!/usr/bin/env python3
"""Launcher wrapper to keep a top-level script while code lives in the package.
"""

import sys

# Load .env before the package reads HPROF_DECODER_* settings
from dotenv import load_dotenv

load_dotenv()


def main():
    from hprof_decoder.cli import main as _package_main
    return _package_main()


if __name__ == "__main__":
    sys.exit(main())

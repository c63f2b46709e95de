"""
Entry point when running the package as a module:
    python -m locolink

Argument parsing and the monitor loop live in cli.py.
"""

import sys

from locolink.cli import main

if __name__ == "__main__":
    sys.exit(main())

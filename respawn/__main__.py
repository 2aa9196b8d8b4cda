"""
Entry point for running respawn via `python -m respawn`.
"""

import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main())

"""Run respawn from a source checkout."""

import sys

from respawn.cli import main

if __name__ == "__main__":
    sys.exit(main())

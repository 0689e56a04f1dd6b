"""Entry point for `python -m gridplace` command."""

import sys

from gridplace.cli.__main__ import main

if __name__ == "__main__":
    sys.exit(main())

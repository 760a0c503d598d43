"""
Allow running TaxRAG as a module: ``python -m taxrag``.

This delegates to the CLI entry point so that both
``taxrag`` (console script) and ``python -m taxrag``
behave identically.
"""

import sys

from taxrag.cli import main

if __name__ == "__main__":
    sys.exit(main())

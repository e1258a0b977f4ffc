#!/usr/bin/env python3
"""Worker CLI entry point.

Usage::

    python scripts/run_worker.py                  # run until SIGINT/SIGTERM
    python scripts/run_worker.py --once           # run each job once and exit
    python scripts/run_worker.py --log-level DEBUG
"""

import sys
from pathlib import Path

# Ensure project root is on sys.path so ``defi_worker.*`` imports work when
# this script is invoked directly (e.g. ``python scripts/run_worker.py``).
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from defi_worker.worker import main

if __name__ == "__main__":
    sys.exit(main())

# SPDX-License-Identifier: MIT
# Copyright (c) 2025 deltaota contributors

"""Entry point for running the updater CLI as a module.

Usage:
    python -m app check
    python -m app download
"""

import sys

from app.cli import main

if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""
colorcount launcher

Runs the pipeline straight from a checkout, without installing the package.

Usage:
    python bin/colorcount.py start --input urls.txt --output result.csv
    python bin/colorcount.py start --config run.json
"""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from colorcount.cli import main  # noqa: E402


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        sys.exit(130)

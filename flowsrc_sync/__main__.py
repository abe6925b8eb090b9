"""
Command line entry point.

Usage:
    python -m flowsrc_sync watch --config flowsrc.json
"""

from .cli import main

if __name__ == "__main__":
    main()

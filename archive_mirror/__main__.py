"""
Run the CLI directly.

Usage:
    python -m archive_mirror run
"""

from .main import main

if __name__ == "__main__":
    main()

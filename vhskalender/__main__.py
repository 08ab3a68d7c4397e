"""
Package entry point.

Allows running the application via:

    python -m vhskalender

This simply forwards execution to vhskalender.cli.main().
"""

from vhskalender.cli import main

if __name__ == "__main__":
    main()

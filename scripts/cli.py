#!/usr/bin/env python3
"""Entry point for the CalcGrid terminal client.

Usage:
    python scripts/cli.py calc "3 + 5"                  # connect to localhost:8080
    python scripts/cli.py --url http://host:8080 list   # a different coordinator
"""

from calcgrid.cli.main import main

if __name__ == "__main__":
    main()

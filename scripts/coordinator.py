#!/usr/bin/env python3
"""Start the CalcGrid coordinator.

Usage:
    python scripts/coordinator.py [--host 0.0.0.0] [--port 8080] [--mode distributed|local|sync]

Configuration:
    --config or CALCGRID_CONFIG points at a YAML file; CALCGRID_* environment
    variables override it and command-line flags override both.
"""

from calcgrid.api.server import main

if __name__ == "__main__":
    main()

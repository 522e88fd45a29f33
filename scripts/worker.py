#!/usr/bin/env python3
"""Start a CalcGrid worker.

Usage:
    python scripts/worker.py [--url http://localhost:8080] [--concurrency 4] [--poll-interval 1]
"""

from calcgrid.cluster.worker_client import main

if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""run_maintenance.py

Cron/scheduler wrapper around ``circulation.maintenance``.

Usage
-----
  python entrypoint/run_maintenance.py expire-holds
  python entrypoint/run_maintenance.py all --now 2024-01-13T00:00:00
  LENDING_DB_PATH=/var/lib/lending/lending.db python entrypoint/run_maintenance.py assess-overdue
"""

from __future__ import annotations

import os
import sys

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from circulation.maintenance import main  # noqa: E402


if __name__ == "__main__":
    sys.exit(main())

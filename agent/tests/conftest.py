from __future__ import annotations

import sys
from pathlib import Path


# Allow `import xled_client`, `import config.settings`, etc when running `pytest` from repo root.
AGENT_DIR = Path(__file__).resolve().parents[1]
if str(AGENT_DIR) not in sys.path:
    sys.path.insert(0, str(AGENT_DIR))


# Shared test helpers (`import realtime_wire`).
TESTS_DIR = Path(__file__).resolve().parent
if str(TESTS_DIR) not in sys.path:
    sys.path.insert(0, str(TESTS_DIR))

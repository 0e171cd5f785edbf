from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path

# Keep settings, logs and snapshots created at import time out of the user's home.
os.environ.setdefault("SHEETSYNC_HOME", tempfile.mkdtemp(prefix="sheetsync-tests-"))

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

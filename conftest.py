"""Root conftest: keep per-run log files out of the working tree."""

from __future__ import annotations

import os
import tempfile

os.environ.setdefault("MINERELAY_LOG_DIR", os.path.join(tempfile.gettempdir(), "minerelay-test-logs"))

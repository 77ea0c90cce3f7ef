"""Root conftest.py: make the local ephemera package take precedence over any installed version."""

from __future__ import annotations

import sys
from pathlib import Path

# Put src/ and the project root first so `import ephemera` resolves to the
# local tree and `tests.backend` is importable.
_root = Path(__file__).parent
for _path in (str(_root), str(_root / "src")):
    if _path not in sys.path:
        sys.path.insert(0, _path)

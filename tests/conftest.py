import os as _os
import sys
from dataclasses import replace

import pytest

# Ensure project root is importable (so `import cli` / `import main` work without installing)
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from drd import db  # noqa: E402


@pytest.fixture(autouse=True)
def event_log(tmp_path, monkeypatch):
    """Point the event log at an isolated sqlite file for every test."""
    path = tmp_path / "events.db"
    monkeypatch.setattr(db, "settings", replace(db.settings, db_path=str(path)))
    db.init_db()
    return path

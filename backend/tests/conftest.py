import os
import sys

import pytest


# Allow running pytest from either the repo root or from within `backend/`.
# Tests import `backend.*`, which requires the repo root on sys.path.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from backend.app.config import settings  # noqa: E402


@pytest.fixture(autouse=True)
def _auth_key(monkeypatch):
    # Field encryption and lookup hashes need a key; never the real one.
    monkeypatch.setattr(settings, "auth_key", "test-auth-key")

import os
import sys
import pytest

# Ensure the project root (containing engine.py, app.py, ...) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import app as app_module


@pytest.fixture()
def flask_app():
    app_module.app.config.update(TESTING=True)
    store = app_module.SessionStore(max_size=50, ttl_seconds=3600)
    saved = app_module.SESSIONS
    app_module.SESSIONS = store
    yield app_module.app
    app_module.SESSIONS = saved


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()

import sys
from pathlib import Path

import pytest

# Ensure project root is on sys.path to allow `import optimization`, `import utils`, etc.
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from connectors.state_store import StateStore  # noqa: E402
from tests.mocks import FIXED_NOW, MockNotifier  # noqa: E402


@pytest.fixture
def fixed_now():
    return FIXED_NOW


@pytest.fixture
def store() -> StateStore:
    """In-memory state store."""
    return StateStore()


@pytest.fixture
def notifier() -> MockNotifier:
    return MockNotifier()

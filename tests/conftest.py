import os
import sys

import pytest

# Add repository root to Python path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from enotepad.utils.logger import reset_logging  # noqa: E402


@pytest.fixture
def clean_enotepad_logger():
    """Drop handlers added by configure_logging() once the test is done."""
    yield
    reset_logging()

from __future__ import annotations

import pytest

from helpers import StubGenerator


@pytest.fixture
def stub() -> StubGenerator:
    return StubGenerator()

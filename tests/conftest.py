from __future__ import annotations

import pytest

from stubs import StubTransport


@pytest.fixture
def stub_transport() -> StubTransport:
    return StubTransport(delay=0.005)

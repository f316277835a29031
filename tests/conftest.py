"""Shared fixtures."""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest

from controlr.session import Session


@pytest.fixture
async def session() -> AsyncIterator[Session]:
    s = Session(app_id="app-id", app_secret="app-secret")
    yield s
    await s.close()

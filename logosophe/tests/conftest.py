from __future__ import annotations

import os
import tempfile

# Point the engine and object store at throwaway locations before any app import.
_TEST_ROOT = tempfile.mkdtemp(prefix="logosophe-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_TEST_ROOT}/test.db")
os.environ.setdefault("MEDIA_STORAGE_DIR", os.path.join(_TEST_ROOT, "media"))
os.environ.setdefault("AUTH_DEV_BYPASS", "false")

import pytest  # noqa: E402

from logosophe.domain.models import Base  # noqa: E402
from logosophe.persistence.db import engine  # noqa: E402


@pytest.fixture(autouse=True)
async def reset_schema_between_tests() -> None:
    # Every test starts from an empty schema; nothing leaks between cases.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    # Dispose the async engine to prevent cross-loop connection reuse between tests.
    await engine.dispose()

"""Shared fixtures: a throwaway SQLite database per test and a staffed rig."""

import os

# Must be set before the application settings are first read
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./npt_workflow_test.db")
os.environ.setdefault("ENVIRONMENT", "test")

from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient

from npt_workflow.core import build_engine, build_session_factory, get_session, init_db
from npt_workflow.core.security import create_access_token
from npt_workflow.services.role_directory import RoleDirectory


RIG_ID = 7

# Role holders on RIG_ID
TOOL_PUSHER = "tp-ali"
DS = "ds-omar"
PME = "pme-sara"
OSE = "ose-khalid"

STAFFED_AT = datetime(2025, 1, 1, tzinfo=timezone.utc)
T0 = datetime(2025, 5, 1, 8, 0, tzinfo=timezone.utc)


def days(n: float) -> timedelta:
    return timedelta(days=n)


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'npt.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session
        await session.rollback()


async def staff_rig(session, rig_id: int = RIG_ID) -> int:
    """Fill every workflow role on a rig."""
    directory = RoleDirectory(session)
    for role, principal in (
        ("tool_pusher", TOOL_PUSHER),
        ("ds", DS),
        ("pme", PME),
        ("ose", OSE),
    ):
        await directory.assign_role(rig_id, role, principal, assigned_by="admin", now=STAFFED_AT)
    return rig_id


@pytest.fixture
async def staffed_rig(session):
    """Rig 7 with every workflow role filled."""
    return await staff_rig(session)


@pytest.fixture
async def client(session_factory):
    from npt_workflow.main import app

    async def override_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = override_session
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


def auth(principal_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(principal_id)}"}

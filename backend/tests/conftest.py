# Shared pytest configuration and fixtures for all test types
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from common.db.base import Base
from packages.sessions.models.database.session import SessionEntity
from packages.tasks.models.database.task import TaskEntity
from packages.workspaces.models.database.workspace import WorkspaceEntity
from packages.workspaces.models.domain.workspace import WorkspaceStatus

# Test database URL
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create test database engine and initialize schema."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def test_connection(test_engine):
    """Create test connection with outer transaction for rollback isolation."""
    async with test_engine.connect() as connection:
        trans = await connection.begin()
        yield connection
        await trans.rollback()


@pytest_asyncio.fixture(scope="function")
async def test_session_factory(test_connection):
    """Create session factory bound to test connection.

    Using join_transaction_mode="create_savepoint" so nested transaction()
    calls create savepoints instead of real nested transactions.
    """
    return async_sessionmaker(
        bind=test_connection,
        class_=AsyncSession,
        expire_on_commit=False,
        join_transaction_mode="create_savepoint",
    )


@pytest_asyncio.fixture(scope="function")
async def test_db(test_session_factory):
    """Create a test database session."""
    async with test_session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function", autouse=True)
async def patch_lazy_sessions(test_session_factory, monkeypatch):
    """
    Patch the session factory to use the test database.

    This allows real transaction() and get_session() to run with proper
    commit/rollback/ContextVar semantics while using the test database.
    """
    monkeypatch.setattr("common.db.scoped.AsyncSessionLocal", test_session_factory)


@pytest_asyncio.fixture
async def sample_session(test_db: AsyncSession):
    """Create a sample session."""
    session = SessionEntity(name="Feature Work", template_id="template-1")
    test_db.add(session)
    await test_db.commit()
    await test_db.refresh(session)
    return session


@pytest_asyncio.fixture
async def sample_workspace(test_db: AsyncSession, sample_session):
    """Create a RUNNING workspace for the sample session."""
    workspace = WorkspaceEntity(
        name="feature-work",
        session_id=sample_session.id,
        template_id="template-1",
        status=WorkspaceStatus.RUNNING.value,
        provisioner_workspace_id="coder-ws-1",
    )
    test_db.add(workspace)
    await test_db.commit()
    await test_db.refresh(workspace)
    return workspace


@pytest_asyncio.fixture
async def sample_task(test_db: AsyncSession, sample_session):
    """Create a PENDING task for the sample session."""
    task = TaskEntity(
        title="Fix the flaky test",
        script="pytest -x",
        session_id=sample_session.id,
    )
    test_db.add(task)
    await test_db.commit()
    await test_db.refresh(task)
    return task

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool

from chainboard import db
from chainboard.boards import BoardService
from chainboard.main import app, get_uow
from chainboard.models import RequestContext, UserId
from chainboard.uow import UnitOfWork

OWNER = RequestContext(UserId(1))


@pytest.fixture
def engine():
    engine = db.make_engine("sqlite://", poolclass=StaticPool)
    db.init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def uow(engine):
    with UnitOfWork(engine, max_retries=0, retry_delay_ms=0) as uow:
        yield uow


@pytest.fixture
def deleted_attachments():
    return []


@pytest.fixture
def service(uow, deleted_attachments):
    return BoardService(uow, on_attachments_deleted=deleted_attachments.extend, clock=lambda: 1000)


@pytest.fixture
def board(service):
    return service.create_board(OWNER, "Roadmap")


@pytest.fixture
def client(engine):
    def override_uow():
        uow = UnitOfWork(engine, max_retries=0, retry_delay_ms=0)
        try:
            yield uow
        finally:
            uow.close()

    app.dependency_overrides[get_uow] = override_uow
    yield TestClient(app)
    app.dependency_overrides.clear()

import os

# must be set before anything imports jobwalk.core.config
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENV"] = "test"
os.environ["JOBWALK_API_KEY"] = "test-key"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["EMAIL_API_KEY"] = ""
os.environ["EMAIL_FROM"] = ""
os.environ["EMAIL_TO"] = ""

import pytest  # noqa: E402

from jobwalk.db.base import Base  # noqa: E402
from jobwalk.db.session import SessionLocal, engine  # noqa: E402


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    s = SessionLocal()
    try:
        yield s
    finally:
        s.close()

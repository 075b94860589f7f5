import pytest
import sqlwrap


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "test.db")


@pytest.fixture
def db():
    conn = sqlwrap.Database(":memory:")
    yield conn
    conn.close()


@pytest.fixture(autouse=True)
def default_error_handler():
    yield
    sqlwrap.set_error_handler(None)

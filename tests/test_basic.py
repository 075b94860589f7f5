import pytest
import sqlwrap


def test_open_and_close(db_path):
    db = sqlwrap.Database(db_path)
    assert db.filename == db_path
    assert not db.closed
    db.close()
    assert db.closed
    # Closing twice is harmless
    db.close()


def test_open_failure_raises(tmp_path):
    missing = tmp_path / "no_such_dir" / "test.db"
    with pytest.raises(sqlwrap.DatabaseOpenError) as excinfo:
        sqlwrap.Database(missing)
    assert "unable to open" in str(excinfo.value)


def test_open_error_is_a_database_error(tmp_path):
    with pytest.raises(sqlwrap.DatabaseError):
        sqlwrap.Database(tmp_path / "no_such_dir" / "test.db")


def test_context_manager_closes(db_path):
    with sqlwrap.Database(db_path) as db:
        assert db.exec("CREATE TABLE t (x INTEGER)")
    assert db.closed


def test_closed_database_raises(db):
    db.close()
    with pytest.raises(sqlwrap.ProgrammingError):
        db.exec("SELECT 1")
    with pytest.raises(sqlwrap.ProgrammingError):
        db.prepare("SELECT 1")
    with pytest.raises(sqlwrap.ProgrammingError):
        db.last_insert_id()


def test_exec_multiple_statements(db):
    assert db.exec(
        "CREATE TABLE t (x INTEGER); INSERT INTO t VALUES (1); INSERT INTO t VALUES (2)"
    )
    rows = db.prepare("SELECT x FROM t ORDER BY x").fetch_all()
    assert [r.to_python() for r in rows] == [{"x": 1}, {"x": 2}]


def test_exec_failure_returns_false(db):
    messages = []
    sqlwrap.set_error_handler(messages.append)
    assert db.exec("CREATE TABLE") is False
    assert len(messages) == 1
    assert messages[0].startswith("SQL exec() failed: ")


def test_insert_and_select_scenario(db):
    assert db.exec("CREATE TABLE t(id INTEGER PRIMARY KEY, name TEXT)")

    insert = db.prepare("INSERT INTO t(name) VALUES (?)")
    assert insert
    assert insert.execute("Ada") is True
    assert db.last_insert_id() == 1

    select = db.prepare("SELECT id, name FROM t")
    row = sqlwrap.Row()
    assert select.fetch(row)
    assert set(row) == {"id", "name"}
    assert row["id"].integer() == 1
    assert row["name"].text() == "Ada"
    assert row.to_python() == {"id": 1, "name": "Ada"}


def test_last_insert_id_tracks_latest_insert(db):
    db.exec("CREATE TABLE t(id INTEGER PRIMARY KEY, name TEXT)")
    insert = db.prepare("INSERT INTO t(name) VALUES (?)")
    for i, name in enumerate(["a", "b", "c"]):
        assert insert.execute(name)
        assert db.last_insert_id() == i + 1

    db.exec("INSERT INTO t(id, name) VALUES (100, 'z')")
    assert db.last_insert_id() == 100


def test_persistence_across_connections(db_path):
    with sqlwrap.Database(db_path) as db:
        db.exec("CREATE TABLE foo (id INTEGER, name TEXT)")
        db.exec("INSERT INTO foo VALUES (1, 'alice'); INSERT INTO foo VALUES (2, 'bob')")

    with sqlwrap.Database(db_path) as db:
        rows = db.prepare("SELECT * FROM foo ORDER BY id").fetch_all()
        assert [r.to_python() for r in rows] == [
            {"id": 1, "name": "alice"},
            {"id": 2, "name": "bob"},
        ]


def test_close_finalizes_statements(db):
    stmt = db.prepare("SELECT 1")
    assert stmt
    db.close()
    assert not stmt
    assert stmt.state == sqlwrap.StatementState.UNBOUND
    assert stmt.fetch(sqlwrap.Row()) is False


def test_query_completed(db):
    db.exec("CREATE TABLE t (x INTEGER)")
    db.exec("INSERT INTO t VALUES (1); INSERT INTO t VALUES (2); INSERT INTO t VALUES (3)")

    seen = []
    status = db.query("SELECT x FROM t ORDER BY x", lambda row: seen.append(row["x"].integer()) or True)
    assert status == sqlwrap.QueryStatus.COMPLETED
    assert status
    assert seen == [1, 2, 3]


def test_query_completed_with_no_rows(db):
    db.exec("CREATE TABLE t (x INTEGER)")
    calls = []
    status = db.query("SELECT x FROM t", lambda row: calls.append(row) or True)
    assert status is sqlwrap.QueryStatus.COMPLETED
    assert calls == []


def test_query_stops_when_callback_returns_false(db):
    db.exec("CREATE TABLE t (x INTEGER)")
    for i in range(5):
        db.exec(f"INSERT INTO t VALUES ({i})")

    seen = []

    def callback(row):
        seen.append(row["x"].integer())
        return len(seen) < 2

    status = db.query("SELECT x FROM t ORDER BY x", callback)
    assert status is sqlwrap.QueryStatus.STOPPED
    assert not status
    assert seen == [0, 1]


def test_query_failed_prepare(db):
    sqlwrap.set_error_handler(lambda msg: None)
    status = db.query("SELEC 1", lambda row: True)
    assert status is sqlwrap.QueryStatus.FAILED
    assert not status


def test_query_failed_step(db):
    messages = []
    sqlwrap.set_error_handler(messages.append)
    # abs() of the smallest 64-bit integer overflows at run time, not compile time.
    status = db.query("SELECT abs(-9223372036854775807 - 1)", lambda row: True)
    assert status is sqlwrap.QueryStatus.FAILED
    assert any(m.startswith("Statement fetch failed: ") for m in messages)


def test_query_distinguishes_stop_from_failure(db):
    db.exec("CREATE TABLE t (x INTEGER); INSERT INTO t VALUES (1)")
    sqlwrap.set_error_handler(lambda msg: None)
    stopped = db.query("SELECT x FROM t", lambda row: False)
    failed = db.query("SELECT nope FROM t", lambda row: False)
    assert stopped is sqlwrap.QueryStatus.STOPPED
    assert failed is sqlwrap.QueryStatus.FAILED
    assert stopped != failed


def test_unencodable_sql_is_a_prepare_failure(db):
    messages = []
    sqlwrap.set_error_handler(messages.append)
    stmt = db.prepare("SELECT '\ud800'")
    assert not stmt
    assert stmt.state is sqlwrap.StatementState.UNBOUND
    assert messages[0].startswith("Database prepare failed: ")

    assert db.exec("SELECT '\ud800'") is False
    assert messages[1].startswith("SQL exec() failed: ")

    assert db.query("SELECT '\ud800'", lambda row: True) is sqlwrap.QueryStatus.FAILED
    assert len(messages) == 3

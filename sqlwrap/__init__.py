"""Object wrapper over the SQLite C interface.

Three engine resources are owned here: the connection (``Database``), the
compiled statement (``Statement``) and per-column value snapshots (``Value``).
Ownership flows downwards: a Database outlives the Statements it prepares and
a Statement outlives the fetch that produced a Value. Values and Rows handed
back to callers are independent copies.

Operational failures (prepare, bind, step, exec) never raise. They return a
falsy result and send the engine's message to the diagnostic channel, which
logs on the ``sqlwrap`` logger unless a handler is installed with
``set_error_handler`` or passed as ``Database(on_error=...)``.

Nothing here is thread-safe. A Database and its Statements must be used by one
owner at a time; callers sharing a connection across threads must serialize
every call themselves.
"""

from .native import (
    load_library, sqlite_version, errmsg, logger,
    SQLITE_OK, SQLITE_ROW, SQLITE_DONE, SQLITE_RANGE, SQLITE_MISUSE,
    SQLITE_INTEGER, SQLITE_FLOAT, SQLITE_TEXT, SQLITE_BLOB, SQLITE_NULL,
    SQLITE_TRANSIENT, POINTER_TYPE,
)
import ctypes
import dataclasses
import enum
import os
import weakref
from typing import Callable, NamedTuple, Optional

INT32_MIN, INT32_MAX = -(2 ** 31), 2 ** 31 - 1
INT64_MIN, INT64_MAX = -(2 ** 63), 2 ** 63 - 1

# Exceptions
class Error(Exception):
    pass

class DatabaseError(Error):
    pass

class DatabaseOpenError(DatabaseError):
    """The engine refused to open the database; carries its message."""

class ProgrammingError(DatabaseError):
    pass

# Diagnostic channel

_error_handler = None

def set_error_handler(handler: Optional[Callable[[str], None]]):
    """Route operational diagnostics to ``handler``.

    ``None`` restores the default, which logs each line at ERROR level on the
    ``sqlwrap`` logger. Pass ``lambda msg: None`` to silence them entirely.
    """
    global _error_handler
    _error_handler = handler

def _report(on_error, message):
    handler = on_error if on_error is not None else _error_handler
    if handler is None:
        logger.error("%s", message)
    else:
        handler(message)


class ValueType(enum.IntEnum):
    INTEGER = SQLITE_INTEGER
    FLOAT = SQLITE_FLOAT
    TEXT = SQLITE_TEXT
    BLOB = SQLITE_BLOB
    NULL = SQLITE_NULL


class Blob(NamedTuple):
    """Raw bytes plus their length.

    When returned by ``Value.blob()`` the data is a read-only view over the
    value's own buffer and should not be kept beyond the value. As a parameter
    the engine copies it at bind time.
    """
    data: memoryview
    size: int

    @classmethod
    def of(cls, buffer):
        view = memoryview(bytes(buffer))
        return cls(view, len(view))

    def __bytes__(self):
        return bytes(self.data[:self.size])


class Value:
    """Self-contained snapshot of one engine value.

    The engine value is duplicated with ``sqlite3_value_dup`` and every
    representation is read out of the duplicate, so the typed accessors apply
    the engine's own coercion rules ("12abc" reads as 12, reals truncate toward
    zero, numbers read as their decimal text). Nothing refers back to the
    statement afterwards.
    """

    __slots__ = ("_type", "_int", "_int64", "_real", "_raw", "_pointer")

    def __init__(self, handle=None):
        if not handle:
            self._type = ValueType.NULL
            self._int = 0
            self._int64 = 0
            self._real = 0.0
            self._raw = b""
            self._pointer = None
            return

        lib = load_library()
        # Pointer values do not survive duplication, read it from the source.
        self._pointer = lib.sqlite3_value_pointer(handle, POINTER_TYPE)

        dup = lib.sqlite3_value_dup(handle)
        if not dup:
            raise MemoryError("sqlite3_value_dup() failed: engine out of memory")
        try:
            # Type must be read before any accessor converts the value.
            self._type = ValueType(lib.sqlite3_value_type(dup))
            self._int = lib.sqlite3_value_int(dup)
            self._int64 = lib.sqlite3_value_int64(dup)
            self._real = lib.sqlite3_value_double(dup)
            if self._type == ValueType.BLOB:
                ptr = lib.sqlite3_value_blob(dup)
            else:
                ptr = lib.sqlite3_value_text(dup)
            length = lib.sqlite3_value_bytes(dup)
            self._raw = ctypes.string_at(ptr, length) if ptr and length > 0 else b""
        finally:
            lib.sqlite3_value_free(dup)

    def __copy__(self):
        other = Value.__new__(Value)
        for name in Value.__slots__:
            setattr(other, name, getattr(self, name))
        return other

    def __deepcopy__(self, memo):
        return self.__copy__()

    @property
    def type(self):
        return self._type

    @property
    def is_null(self):
        return self._type == ValueType.NULL

    def integer(self):
        return self._int

    def big_integer(self):
        return self._int64

    def real(self):
        return self._real

    def pointer(self):
        """Address bound with ``Statement.bind_pointer``, or None."""
        return self._pointer

    def text(self):
        return self._raw.decode("utf-8", errors="replace")

    def blob(self):
        return Blob(memoryview(self._raw), len(self._raw))

    def size(self):
        return len(self._raw)

    def to_python(self):
        if self._type == ValueType.INTEGER:
            return self._int64
        if self._type == ValueType.FLOAT:
            return self._real
        if self._type == ValueType.TEXT:
            return self.text()
        if self._type == ValueType.BLOB:
            return self._raw
        return None

    def __eq__(self, other):
        if not isinstance(other, Value):
            return NotImplemented
        return self._type == other._type and self.to_python() == other.to_python()

    def __hash__(self):
        return hash((self._type, self.to_python()))

    def __repr__(self):
        return f"Value({self._type.name}, {self.to_python()!r})"


class Row(dict):
    """One fetched record: column name -> Value."""

    def to_python(self):
        return {name: value.to_python() for name, value in self.items()}


# Parameter variant accepted by Statement.bind() and Statement.execute().
# Plain None/int/float/str/bytes are accepted too and mapped the obvious way.

@dataclasses.dataclass(frozen=True)
class Integer:
    value: int

@dataclasses.dataclass(frozen=True)
class BigInteger:
    value: int

@dataclasses.dataclass(frozen=True)
class Real:
    value: float

@dataclasses.dataclass(frozen=True)
class Text:
    value: str

@dataclasses.dataclass(frozen=True)
class Null:
    pass


class _ParameterMismatch(Exception):
    pass


class StatementState(enum.Enum):
    UNBOUND = "unbound"
    READY = "ready"
    ROW_AVAILABLE = "row_available"
    EXHAUSTED = "exhausted"


class Statement:
    """A compiled query, created only by ``Database.prepare``.

    Holds the raw connection handle for error messages but does not keep the
    Database alive: a Statement must not be used after its Database is
    closed (closing finalizes it, leaving it unbound).

    A Statement whose compilation failed is unbound: it is falsy and every
    method returns False, 0, "" or an empty result without touching the engine.
    """

    def __init__(self, stmt, db_handle, on_error=None):
        self._lib = load_library()
        self._stmt = stmt
        self._db = db_handle
        self._on_error = on_error
        self._state = StatementState.READY if stmt else StatementState.UNBOUND
        self._last_code = None

    def close(self):
        if self._stmt:
            self._lib.sqlite3_finalize(self._stmt)
        self._stmt = None
        self._state = StatementState.UNBOUND

    def __del__(self):
        if getattr(self, "_stmt", None):
            self.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __bool__(self):
        return bool(self._stmt)

    @property
    def state(self):
        return self._state

    @property
    def last_code(self):
        """Engine result code of the most recent step, None before the first."""
        return self._last_code

    def reset(self):
        if self._stmt:
            self._lib.sqlite3_reset(self._stmt)
            self._state = StatementState.READY

    def clear_bindings(self):
        if not self._stmt:
            return False
        return self._lib.sqlite3_clear_bindings(self._stmt) == SQLITE_OK

    def param_count(self):
        if not self._stmt:
            return 0
        return self._lib.sqlite3_bind_parameter_count(self._stmt)

    def bind(self, index, value):
        """Bind ``value`` to the 1-based parameter ``index``.

        The engine copies text and blob data before returning, so the caller's
        buffer need not outlive the call.
        """
        if not self._stmt:
            return False
        try:
            rc = self._bind(index, value)
        except _ParameterMismatch as e:
            _report(self._on_error, f"Statement bind failed at index {index}: {e}")
            return False
        if rc != SQLITE_OK:
            _report(self._on_error, f"Statement bind failed at index {index}: {errmsg(self._db)}")
            return False
        return True

    def _bind(self, idx, param):
        lib = self._lib
        stmt = self._stmt

        if not isinstance(idx, int) or isinstance(idx, bool):
            raise _ParameterMismatch(f"parameter index must be an int, not {type(idx).__name__}")

        if param is None or isinstance(param, Null):
            return lib.sqlite3_bind_null(stmt, idx)
        if isinstance(param, Blob):
            try:
                data = memoryview(param.data).cast("B")
            except TypeError:
                raise _ParameterMismatch(f"Blob data of type {type(param.data).__name__} is not a buffer")
            if not isinstance(param.size, int) or not 0 <= param.size <= data.nbytes:
                raise _ParameterMismatch(f"Blob size {param.size!r} does not match {data.nbytes} bytes of data")
            b = data[:param.size].tobytes()
            return lib.sqlite3_bind_blob(stmt, idx, b, len(b), SQLITE_TRANSIENT)
        if isinstance(param, (bytes, bytearray, memoryview)):
            b = bytes(param)
            return lib.sqlite3_bind_blob(stmt, idx, b, len(b), SQLITE_TRANSIENT)
        if isinstance(param, (Real, float)):
            v = param.value if isinstance(param, Real) else param
            if not isinstance(v, (int, float)) or isinstance(v, bool):
                raise _ParameterMismatch(f"Real expects a number, not {type(v).__name__}")
            return lib.sqlite3_bind_double(stmt, idx, float(v))
        if isinstance(param, (Integer, BigInteger)):
            v = param.value
            if not isinstance(v, int) or isinstance(v, bool):
                raise _ParameterMismatch(f"{type(param).__name__} expects an int, not {type(v).__name__}")
            if isinstance(param, Integer):
                if not INT32_MIN <= v <= INT32_MAX:
                    raise _ParameterMismatch(f"{v} does not fit a 32-bit integer")
                return lib.sqlite3_bind_int(stmt, idx, v)
            if not INT64_MIN <= v <= INT64_MAX:
                raise _ParameterMismatch(f"{v} does not fit a 64-bit integer")
            return lib.sqlite3_bind_int64(stmt, idx, v)
        if isinstance(param, int):
            if INT32_MIN <= param <= INT32_MAX:
                return lib.sqlite3_bind_int(stmt, idx, param)
            if INT64_MIN <= param <= INT64_MAX:
                return lib.sqlite3_bind_int64(stmt, idx, param)
            raise _ParameterMismatch(f"{param} does not fit a 64-bit integer")
        if isinstance(param, (Text, str)):
            s = param.value if isinstance(param, Text) else param
            if not isinstance(s, str):
                raise _ParameterMismatch(f"Text expects a str, not {type(s).__name__}")
            try:
                b = s.encode("utf-8")
            except UnicodeEncodeError as e:
                raise _ParameterMismatch(f"text is not valid UTF-8: {e.reason}")
            return lib.sqlite3_bind_text(stmt, idx, b, len(b), SQLITE_TRANSIENT)

        raise _ParameterMismatch(f"unsupported parameter type {type(param).__name__}")

    def bind_pointer(self, index, address):
        """Bind an opaque pointer, readable back through ``Value.pointer()``."""
        if not self._stmt:
            return False
        if not isinstance(index, int) or not isinstance(address, int) or isinstance(address, bool):
            _report(self._on_error, f"Statement bind failed at index {index}: pointer must be an int address")
            return False
        rc = self._lib.sqlite3_bind_pointer(self._stmt, index, address, POINTER_TYPE, None)
        if rc != SQLITE_OK:
            _report(self._on_error, f"Statement bind failed at index {index}: {errmsg(self._db)}")
            return False
        return True

    def _step(self):
        rc = self._lib.sqlite3_step(self._stmt)
        self._last_code = rc
        if rc == SQLITE_ROW:
            self._state = StatementState.ROW_AVAILABLE
        else:
            self._state = StatementState.EXHAUSTED
        return rc

    def execute(self, *params):
        """Bind ``params`` at positions 1..N and step once.

        True only when the engine reports the statement done. A produced row
        counts as failure, so this is for INSERT/UPDATE/DELETE/DDL. A statement
        that was already stepped is reset first; its other bindings are kept.
        """
        if not self._stmt:
            return False

        if self._state != StatementState.READY:
            self.reset()

        for i, param in enumerate(params):
            if not self.bind(i + 1, param):
                return False

        if self._step() != SQLITE_DONE:
            _report(self._on_error, f"Statement execution failed: {errmsg(self._db)}")
            return False
        return True

    def fetch(self, row):
        """Step once and refill ``row`` with the produced record.

        Returns False once the statement is exhausted, and keeps returning
        False until ``reset()`` is called.
        """
        if not self._stmt:
            return False

        row.clear()

        if self._state == StatementState.EXHAUSTED:
            return False

        rc = self._step()
        if rc != SQLITE_ROW:
            if rc != SQLITE_DONE:
                _report(self._on_error, f"Statement fetch failed: {errmsg(self._db)}")
            return False

        for i in range(self.col_count()):
            row[self.col_name(i)] = self.col_value(i)
        return True

    def fetch_all(self):
        if not self._stmt:
            return []

        rows = []
        while True:
            row = Row()
            if not self.fetch(row):
                break
            rows.append(row)
        return rows

    def col_count(self):
        if not self._stmt:
            return 0
        return self._lib.sqlite3_column_count(self._stmt)

    def _has_column(self, i):
        return bool(self._stmt) and 0 <= i < self.col_count()

    def col_name(self, i):
        if not self._has_column(i):
            return ""
        name = self._lib.sqlite3_column_name(self._stmt, i)
        return name.decode("utf-8") if name else ""

    def col_value(self, i):
        if not self._has_column(i) or self._state != StatementState.ROW_AVAILABLE:
            return Value()
        return Value(self._lib.sqlite3_column_value(self._stmt, i))

    def col_size(self, i):
        if not self._has_column(i) or self._state != StatementState.ROW_AVAILABLE:
            return 0
        return self._lib.sqlite3_column_bytes(self._stmt, i)

    def query_string(self):
        if not self._stmt:
            return ""
        sql = self._lib.sqlite3_sql(self._stmt)
        return sql.decode("utf-8") if sql else ""

    def __repr__(self):
        return f"<Statement {self._state.value} {self.query_string()!r}>"


class QueryStatus(enum.Enum):
    """Outcome of ``Database.query``. Only COMPLETED is truthy."""
    COMPLETED = "completed"
    STOPPED = "stopped"
    FAILED = "failed"

    def __bool__(self):
        return self is QueryStatus.COMPLETED


class Database:
    """An open SQLite connection.

    The connection is opened in the constructor; failure raises
    ``DatabaseOpenError`` with the engine's message. ``filename`` may be a
    path, ``":memory:"`` or anything else ``sqlite3_open`` accepts.

    Not thread-safe. The engine's busy timeout is left at its default, so a
    locked database makes calls fail rather than wait.
    """

    def __init__(self, filename, on_error=None):
        self._db = None
        self._lib = load_library()
        self._filename = os.fspath(filename)
        self._on_error = on_error
        self._statements = weakref.WeakSet()

        handle = ctypes.c_void_p()
        rc = self._lib.sqlite3_open(self._filename.encode("utf-8"), ctypes.byref(handle))
        if rc != SQLITE_OK:
            msg = errmsg(handle)
            # sqlite3_open hands back a handle even on failure; release it.
            if handle.value:
                self._lib.sqlite3_close_v2(handle)
            raise DatabaseOpenError(msg)

        self._db = handle
        logger.debug("Opened database %s", self._filename)

    @property
    def filename(self):
        return self._filename

    @property
    def closed(self):
        return self._db is None

    def _check_open(self):
        if self._db is None:
            raise ProgrammingError("Database closed")

    def close(self):
        """Finalize outstanding statements, then close the connection once."""
        if self._db is None:
            return
        for stmt in list(self._statements):
            stmt.close()
        self._statements.clear()
        self._lib.sqlite3_close_v2(self._db)
        self._db = None
        logger.debug("Closed database %s", self._filename)

    def __del__(self):
        if getattr(self, "_db", None) is not None:
            self.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def exec(self, sql):
        """Run one or more ``;``-separated statements, discarding any rows.

        Failures return False. Raises ``ProgrammingError`` only when the
        database is closed.
        """
        self._check_open()
        try:
            encoded = sql.encode("utf-8")
        except UnicodeEncodeError as e:
            _report(self._on_error, f"SQL exec() failed: SQL is not valid UTF-8: {e.reason}")
            return False
        rc = self._lib.sqlite3_exec(self._db, encoded, None, None, None)
        if rc != SQLITE_OK:
            _report(self._on_error, f"SQL exec() failed: {errmsg(self._db)}")
        return rc == SQLITE_OK

    def prepare(self, sql):
        """Compile ``sql``; check the result's truthiness.

        Compile failures give an unbound Statement rather than an exception.
        Raises ``ProgrammingError`` only when the database is closed.
        """
        self._check_open()
        try:
            encoded = sql.encode("utf-8")
        except UnicodeEncodeError as e:
            _report(self._on_error, f"Database prepare failed: SQL is not valid UTF-8: {e.reason}")
            return Statement(None, self._db, self._on_error)
        stmt_ptr = ctypes.c_void_p()
        rc = self._lib.sqlite3_prepare_v2(
            self._db, encoded, len(encoded), ctypes.byref(stmt_ptr), None
        )
        if rc != SQLITE_OK:
            _report(self._on_error, f"Database prepare failed: {errmsg(self._db)}")

        # Empty or comment-only SQL compiles to a NULL statement too.
        stmt = Statement(stmt_ptr.value if rc == SQLITE_OK else None, self._db, self._on_error)
        if stmt:
            self._statements.add(stmt)
        return stmt

    def query(self, sql, callback):
        """Call ``callback(row)`` for each result row of ``sql``.

        The callback stops the iteration by returning a falsy value; the row
        object is reused between calls. Returns a ``QueryStatus`` telling a
        natural end, a callback stop and an engine failure apart. Raises
        ``ProgrammingError`` only when the database is closed; exceptions
        from the callback propagate.
        """
        stmt = self.prepare(sql)
        if not stmt:
            return QueryStatus.FAILED

        with stmt:
            row = Row()
            while stmt.fetch(row):
                if not callback(row):
                    return QueryStatus.STOPPED
            if stmt.last_code != SQLITE_DONE:
                return QueryStatus.FAILED
        return QueryStatus.COMPLETED

    def last_insert_id(self):
        """Rowid of the latest successful INSERT on this connection.

        Connection-wide, so racy when several writers share the connection.
        """
        self._check_open()
        return self._lib.sqlite3_last_insert_rowid(self._db)

import ctypes
import ctypes.util
import logging
import os
from ctypes import c_int, c_int64, c_double, c_char_p, c_void_p, POINTER

logger = logging.getLogger("sqlwrap")

# Result codes (sqlite3.h).
SQLITE_OK = 0
SQLITE_ERROR = 1
SQLITE_BUSY = 5
SQLITE_NOMEM = 7
SQLITE_MISUSE = 21
SQLITE_RANGE = 25
SQLITE_ROW = 100
SQLITE_DONE = 101

# Fundamental datatypes, as returned by sqlite3_value_type().
SQLITE_INTEGER = 1
SQLITE_FLOAT = 2
SQLITE_TEXT = 3
SQLITE_BLOB = 4
SQLITE_NULL = 5

# Destructor sentinel asking the engine to copy bound data before returning.
SQLITE_TRANSIENT = c_void_p(-1)

# Type tag shared by sqlite3_bind_pointer() and sqlite3_value_pointer().
# The engine compares it by content but keeps the pointer, so it must stay alive.
POINTER_TYPE = c_char_p(b"sqlwrap-pointer")

LIBRARY_ENV_VAR = "SQLWRAP_SQLITE_LIB"

_lib = None


def _candidate_paths():
    env_path = os.environ.get(LIBRARY_ENV_VAR)
    if env_path:
        # An explicit path is authoritative, no fallback.
        return [env_path]

    candidates = []
    found = ctypes.util.find_library("sqlite3")
    if found:
        candidates.append(found)
    candidates.extend([
        "libsqlite3.so.0",
        "libsqlite3.so",
        "libsqlite3.dylib",
        "sqlite3.dll",
    ])
    return candidates


def load_library():
    global _lib
    if _lib is not None:
        return _lib

    errors = []
    lib = None
    for path in _candidate_paths():
        try:
            lib = ctypes.CDLL(path)
        except OSError as e:
            errors.append(f"{path}: {e}")
            continue
        logger.debug("Loaded SQLite library from %s", path)
        break

    if lib is None:
        raise RuntimeError(
            "Could not load the SQLite native library. "
            f"Set {LIBRARY_ENV_VAR} env var. Tried: " + "; ".join(errors)
        )

    # Define signatures

    lib.sqlite3_libversion.argtypes = []
    lib.sqlite3_libversion.restype = c_char_p

    # Connection
    lib.sqlite3_open.argtypes = [c_char_p, POINTER(c_void_p)]
    lib.sqlite3_open.restype = c_int

    lib.sqlite3_close_v2.argtypes = [c_void_p]
    lib.sqlite3_close_v2.restype = c_int

    lib.sqlite3_errmsg.argtypes = [c_void_p]
    lib.sqlite3_errmsg.restype = c_char_p

    # Callback, callback argument and error-message out-pointer are always NULL here.
    lib.sqlite3_exec.argtypes = [c_void_p, c_char_p, c_void_p, c_void_p, c_void_p]
    lib.sqlite3_exec.restype = c_int

    lib.sqlite3_last_insert_rowid.argtypes = [c_void_p]
    lib.sqlite3_last_insert_rowid.restype = c_int64

    # Statement lifecycle
    lib.sqlite3_prepare_v2.argtypes = [c_void_p, c_char_p, c_int, POINTER(c_void_p), c_void_p]
    lib.sqlite3_prepare_v2.restype = c_int

    lib.sqlite3_finalize.argtypes = [c_void_p]
    lib.sqlite3_finalize.restype = c_int

    lib.sqlite3_reset.argtypes = [c_void_p]
    lib.sqlite3_reset.restype = c_int

    lib.sqlite3_clear_bindings.argtypes = [c_void_p]
    lib.sqlite3_clear_bindings.restype = c_int

    lib.sqlite3_step.argtypes = [c_void_p]
    lib.sqlite3_step.restype = c_int

    lib.sqlite3_sql.argtypes = [c_void_p]
    lib.sqlite3_sql.restype = c_char_p

    # Bindings
    lib.sqlite3_bind_parameter_count.argtypes = [c_void_p]
    lib.sqlite3_bind_parameter_count.restype = c_int

    lib.sqlite3_bind_blob.argtypes = [c_void_p, c_int, c_char_p, c_int, c_void_p]
    lib.sqlite3_bind_blob.restype = c_int

    lib.sqlite3_bind_double.argtypes = [c_void_p, c_int, c_double]
    lib.sqlite3_bind_double.restype = c_int

    lib.sqlite3_bind_int.argtypes = [c_void_p, c_int, c_int]
    lib.sqlite3_bind_int.restype = c_int

    lib.sqlite3_bind_int64.argtypes = [c_void_p, c_int, c_int64]
    lib.sqlite3_bind_int64.restype = c_int

    lib.sqlite3_bind_null.argtypes = [c_void_p, c_int]
    lib.sqlite3_bind_null.restype = c_int

    lib.sqlite3_bind_text.argtypes = [c_void_p, c_int, c_char_p, c_int, c_void_p]
    lib.sqlite3_bind_text.restype = c_int

    lib.sqlite3_bind_pointer.argtypes = [c_void_p, c_int, c_void_p, c_char_p, c_void_p]
    lib.sqlite3_bind_pointer.restype = c_int

    # Columns
    lib.sqlite3_column_count.argtypes = [c_void_p]
    lib.sqlite3_column_count.restype = c_int

    lib.sqlite3_column_name.argtypes = [c_void_p, c_int]
    lib.sqlite3_column_name.restype = c_char_p

    lib.sqlite3_column_bytes.argtypes = [c_void_p, c_int]
    lib.sqlite3_column_bytes.restype = c_int

    lib.sqlite3_column_value.argtypes = [c_void_p, c_int]
    lib.sqlite3_column_value.restype = c_void_p

    # Values. Text and blob come back as raw addresses so embedded NULs survive.
    lib.sqlite3_value_dup.argtypes = [c_void_p]
    lib.sqlite3_value_dup.restype = c_void_p

    lib.sqlite3_value_free.argtypes = [c_void_p]
    lib.sqlite3_value_free.restype = None

    lib.sqlite3_value_type.argtypes = [c_void_p]
    lib.sqlite3_value_type.restype = c_int

    lib.sqlite3_value_int.argtypes = [c_void_p]
    lib.sqlite3_value_int.restype = c_int

    lib.sqlite3_value_int64.argtypes = [c_void_p]
    lib.sqlite3_value_int64.restype = c_int64

    lib.sqlite3_value_double.argtypes = [c_void_p]
    lib.sqlite3_value_double.restype = c_double

    lib.sqlite3_value_text.argtypes = [c_void_p]
    lib.sqlite3_value_text.restype = c_void_p

    lib.sqlite3_value_blob.argtypes = [c_void_p]
    lib.sqlite3_value_blob.restype = c_void_p

    lib.sqlite3_value_bytes.argtypes = [c_void_p]
    lib.sqlite3_value_bytes.restype = c_int

    lib.sqlite3_value_pointer.argtypes = [c_void_p, c_char_p]
    lib.sqlite3_value_pointer.restype = c_void_p

    _lib = lib
    return _lib


def sqlite_version():
    """Version string of the loaded engine, e.g. ``"3.45.1"``."""
    return load_library().sqlite3_libversion().decode("ascii")


def errmsg(db_handle):
    msg = load_library().sqlite3_errmsg(db_handle)
    # Engine messages should be UTF-8; replace anything that is not.
    return msg.decode("utf-8", errors="replace") if msg else "unknown error"

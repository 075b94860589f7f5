"""Example: basic sqlwrap usage.

Uses the system SQLite library; point at another build with:
    SQLWRAP_SQLITE_LIB=/path/to/libsqlite3.so python example.py
"""

import logging
import os
import tempfile

import sqlwrap


def main():
    logging.basicConfig(level=logging.INFO)

    # Create a temporary database file for this example.
    db_path = os.path.join(tempfile.gettempdir(), "sqlwrap_example.db")

    with sqlwrap.Database(db_path) as db:
        db.exec("DROP TABLE IF EXISTS users")
        db.exec("""
            CREATE TABLE users (
                id     INTEGER PRIMARY KEY,
                name   TEXT NOT NULL,
                email  TEXT UNIQUE,
                avatar BLOB
            )
        """)

        # One prepared INSERT, executed once per user.
        insert = db.prepare("INSERT INTO users (name, email, avatar) VALUES (?, ?, ?)")
        users = [
            ("Alice", "alice@example.com", b"\x89PNG"),
            ("Bob", "bob@example.com", None),
            ("Carol", "carol@example.com", sqlwrap.Blob.of(b"\x00\x01")),
        ]
        for name, email, avatar in users:
            insert.execute(name, email, avatar)
            print(f"Inserted {name} as id {db.last_insert_id()}")

        # A duplicate email fails: execute() returns False and logs the engine message.
        if not insert.execute("Mallory", "bob@example.com", None):
            print("Duplicate email rejected")

        # Query all users.
        select = db.prepare("SELECT id, name, email, avatar FROM users ORDER BY id")
        print("\nAll users:")
        for row in select.fetch_all():
            print(f"  id={row['id'].integer()}  name={row['name'].text()}  "
                  f"email={row['email'].text()}  avatar={row['avatar'].size()} bytes")

        # Parameterised lookup, reusing the statement after reset().
        lookup = db.prepare("SELECT name FROM users WHERE email = ?")
        for email in ("bob@example.com", "carol@example.com"):
            lookup.reset()
            lookup.bind(1, email)
            row = sqlwrap.Row()
            if lookup.fetch(row):
                print(f"\nLookup by email {email}: {row['name'].text()}")

        # Callback iteration with an early stop.
        names = []
        status = db.query("SELECT name FROM users ORDER BY id",
                          lambda row: names.append(row["name"].text()) or len(names) < 2)
        print(f"\nquery() status: {status.value}, names: {names}")

    try:
        os.unlink(db_path)
    except FileNotFoundError:
        pass

    print("\nDone.")


if __name__ == "__main__":
    main()

"""Database operations for Readcast.

sqlite3 storage for libraries, their folders, catalog entries (books) and
background tasks. Every function takes an open connection from get_db();
the caller closes it. Write functions commit their own unit of work.
"""
import secrets
import sqlite3
import logging
from datetime import datetime
from typing import Iterable, List, Optional

from readcast.errors import StorageError, TaskConflictError, LibraryNotFoundError
from readcast.models.book import CatalogEntry
from readcast.models.task import Task, TaskType, TaskStatus

logger = logging.getLogger(__name__)

_db_path = None

# Stay well under SQLITE_MAX_VARIABLE_NUMBER for IN (...) lists
_CHUNK_SIZE = 500


def set_db_path(path):
    """Set the database path. Called during app initialization."""
    global _db_path
    _db_path = path


def generate_id() -> str:
    """Opaque random identifier for libraries, folders, books and tasks."""
    return secrets.token_hex(12)


def _now() -> str:
    return datetime.now().isoformat()


def init_db(db_path=None):
    """Initialize SQLite database."""
    path = db_path or _db_path
    if not path:
        raise ValueError("Database path not set. Call set_db_path() first.")

    conn = sqlite3.connect(path, timeout=30)
    c = conn.cursor()

    c.execute('''CREATE TABLE IF NOT EXISTS libraries (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        icon TEXT DEFAULT 'book',
        last_scan TIMESTAMP,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )''')

    c.execute('''CREATE TABLE IF NOT EXISTS library_folders (
        id TEXT PRIMARY KEY,
        library_id TEXT NOT NULL,
        path TEXT NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        UNIQUE (library_id, path),
        FOREIGN KEY (library_id) REFERENCES libraries(id)
    )''')

    # Books table - one row per EPUB file or audio folder
    c.execute('''CREATE TABLE IF NOT EXISTS books (
        id TEXT PRIMARY KEY,
        library_id TEXT NOT NULL,
        kind TEXT NOT NULL CHECK (kind IN ('text', 'text_with_audio', 'audio_only')),
        path TEXT NOT NULL,
        mtime INTEGER NOT NULL,
        size INTEGER NOT NULL,
        folder_path TEXT,
        opf TEXT,
        smil TEXT,
        audios TEXT NOT NULL DEFAULT '[]',
        playlist TEXT NOT NULL DEFAULT '[]',
        duration REAL DEFAULT 0,
        title TEXT NOT NULL,
        author TEXT,
        narrator TEXT,
        isbn TEXT,
        language TEXT,
        cover_path TEXT,
        tags TEXT NOT NULL DEFAULT '[]',
        genre TEXT NOT NULL DEFAULT '[]',
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        UNIQUE (library_id, path)
    )''')

    c.execute('''CREATE TABLE IF NOT EXISTS tasks (
        id TEXT PRIMARY KEY,
        type TEXT NOT NULL CHECK (type IN ('library_scan', 'book_match')),
        target_id TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending'
            CHECK (status IN ('pending', 'running', 'completed', 'failed')),
        result TEXT,
        started_at TIMESTAMP,
        completed_at TIMESTAMP,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )''')

    # At most one pending/running task per (type, target)
    c.execute('''CREATE UNIQUE INDEX IF NOT EXISTS idx_tasks_one_active
                 ON tasks (type, target_id) WHERE status IN ('pending', 'running')''')
    c.execute('CREATE INDEX IF NOT EXISTS idx_books_library ON books (library_id)')

    conn.commit()
    conn.close()


def get_db(db_path=None):
    """Get database connection with timeout to avoid lock issues."""
    path = db_path or _db_path
    if not path:
        raise ValueError("Database path not set. Call set_db_path() first.")

    conn = sqlite3.connect(path, timeout=30)  # Wait up to 30 seconds for lock
    conn.row_factory = sqlite3.Row
    conn.execute('PRAGMA journal_mode=WAL')  # Better concurrent access
    conn.execute('PRAGMA busy_timeout=30000')  # 30s SQLite-level busy wait
    return conn


# ============== LIBRARIES ==============

def _library_dict(conn, row):
    library = dict(row)
    c = conn.execute('SELECT path FROM library_folders WHERE library_id = ? ORDER BY created_at, path',
                     (row['id'],))
    library['folders'] = [r['path'] for r in c.fetchall()]
    return library


def create_library(conn, name, folders=None, icon='book'):
    """Create a library with its folders in one transaction. Returns the library dict."""
    library_id = generate_id()
    now = _now()
    with conn:
        conn.execute('INSERT INTO libraries (id, name, icon, created_at, updated_at) VALUES (?, ?, ?, ?, ?)',
                     (library_id, name, icon, now, now))
        for folder in folders or []:
            conn.execute('INSERT OR IGNORE INTO library_folders (id, library_id, path, created_at) VALUES (?, ?, ?, ?)',
                         (generate_id(), library_id, folder, now))
    logger.info(f"Created library '{name}' ({library_id}) with {len(folders or [])} folders")
    return get_library(conn, library_id)


def get_library(conn, library_id):
    """Get a library dict (with 'folders' list) or None."""
    row = conn.execute('SELECT * FROM libraries WHERE id = ?', (library_id,)).fetchone()
    if not row:
        return None
    return _library_dict(conn, row)


def list_libraries(conn):
    rows = conn.execute('SELECT * FROM libraries ORDER BY created_at').fetchall()
    return [_library_dict(conn, row) for row in rows]


def update_library(conn, library_id, name=None, icon=None, folders=None, last_scan=None):
    """Update library fields. ``folders``, when given, replaces the folder list."""
    if not conn.execute('SELECT 1 FROM libraries WHERE id = ?', (library_id,)).fetchone():
        raise LibraryNotFoundError(f"library id [{library_id}] not exist")

    updates = {'updated_at': _now()}
    if name is not None:
        updates['name'] = name
    if icon is not None:
        updates['icon'] = icon
    if last_scan is not None:
        updates['last_scan'] = last_scan

    with conn:
        assignments = ', '.join(f'{col} = ?' for col in updates)
        conn.execute(f'UPDATE libraries SET {assignments} WHERE id = ?', (*updates.values(), library_id))
        if folders is not None:
            conn.execute('DELETE FROM library_folders WHERE library_id = ?', (library_id,))
            for folder in folders:
                conn.execute('INSERT OR IGNORE INTO library_folders (id, library_id, path, created_at) VALUES (?, ?, ?, ?)',
                             (generate_id(), library_id, folder, _now()))
    return get_library(conn, library_id)


def add_library_folder(conn, library_id, folder_path):
    """Register a folder under a library. Adding an existing folder is a no-op."""
    if not conn.execute('SELECT 1 FROM libraries WHERE id = ?', (library_id,)).fetchone():
        raise LibraryNotFoundError(f"library id [{library_id}] not exist")
    with conn:
        conn.execute('INSERT OR IGNORE INTO library_folders (id, library_id, path, created_at) VALUES (?, ?, ?, ?)',
                     (generate_id(), library_id, folder_path, _now()))
    return get_library(conn, library_id)


def remove_library_folder(conn, library_id, folder_path):
    with conn:
        conn.execute('DELETE FROM library_folders WHERE library_id = ? AND path = ?', (library_id, folder_path))
    return get_library(conn, library_id)


def delete_library(conn, library_id):
    """Delete a library, its folders and its books. Returns the deleted library or None."""
    library = get_library(conn, library_id)
    if not library:
        return None
    with conn:
        conn.execute('DELETE FROM books WHERE library_id = ?', (library_id,))
        conn.execute('DELETE FROM library_folders WHERE library_id = ?', (library_id,))
        conn.execute('DELETE FROM libraries WHERE id = ?', (library_id,))
    logger.info(f"Deleted library {library_id}")
    return library


# ============== BOOKS ==============

_BOOK_COLUMNS = [
    'id', 'library_id', 'kind', 'path', 'mtime', 'size', 'folder_path', 'opf', 'smil',
    'audios', 'playlist', 'duration', 'title', 'author', 'narrator', 'isbn', 'language',
    'cover_path', 'tags', 'genre', 'created_at', 'updated_at',
]


def get_books_by_library(conn, library_id) -> List[CatalogEntry]:
    rows = conn.execute('SELECT * FROM books WHERE library_id = ? ORDER BY title', (library_id,)).fetchall()
    return [CatalogEntry.from_row(row) for row in rows]


def get_book(conn, book_id) -> Optional[CatalogEntry]:
    row = conn.execute('SELECT * FROM books WHERE id = ?', (book_id,)).fetchone()
    return CatalogEntry.from_row(row) if row else None


def _insert_books(cursor, entries: Iterable[CatalogEntry]):
    placeholders = ', '.join('?' * len(_BOOK_COLUMNS))
    sql = f'INSERT INTO books ({", ".join(_BOOK_COLUMNS)}) VALUES ({placeholders})'
    now = _now()
    count = 0
    for entry in entries:
        if entry.id is None:
            entry.id = generate_id()
        entry.created_at = entry.created_at or now
        entry.updated_at = now
        row = entry.to_row()
        row['created_at'] = entry.created_at
        row['updated_at'] = entry.updated_at
        cursor.execute(sql, [row[col] for col in _BOOK_COLUMNS])
        count += 1
    return count


def _delete_books(cursor, book_ids):
    book_ids = list(book_ids)
    for i in range(0, len(book_ids), _CHUNK_SIZE):
        chunk = book_ids[i:i + _CHUNK_SIZE]
        placeholders = ','.join('?' * len(chunk))
        cursor.execute(f'DELETE FROM books WHERE id IN ({placeholders})', chunk)
    return len(book_ids)


def create_books(conn, entries: List[CatalogEntry]) -> int:
    """Bulk insert catalog entries (ids are assigned when missing)."""
    return apply_scan_changes(conn, [], entries)[1]


def delete_books_by_ids(conn, book_ids) -> int:
    """Bulk delete catalog entries by id."""
    return apply_scan_changes(conn, book_ids, [])[0]


def apply_scan_changes(conn, delete_ids, entries: List[CatalogEntry]):
    """Delete then insert catalog entries as one atomic unit.

    Deleting first lets a changed file keep its path without tripping the
    (library_id, path) uniqueness constraint. Any failure rolls the whole
    unit back, so readers never see a half-applied scan.

    Returns:
        (deleted_count, inserted_count)

    Raises:
        StorageError: the transaction failed and was rolled back
    """
    c = conn.cursor()
    try:
        c.execute('BEGIN IMMEDIATE')
        deleted = _delete_books(c, delete_ids)
        inserted = _insert_books(c, entries)
        conn.commit()
    except sqlite3.Error as e:
        conn.rollback()
        logger.error(f"Catalog update rolled back: {e}")
        raise StorageError(str(e)) from e
    except Exception:
        conn.rollback()
        raise
    return deleted, inserted


# ============== TASKS ==============

def create_task(conn, task_type: TaskType, target_id) -> Task:
    """Create a pending task unless one is already active for (type, target).

    The active-task check and the insert share one IMMEDIATE transaction, so
    two concurrent callers cannot both pass the check.

    Raises:
        TaskConflictError: a pending or running task exists for the target
    """
    task_id = generate_id()
    now = _now()
    c = conn.cursor()
    try:
        c.execute('BEGIN IMMEDIATE')
        c.execute('''SELECT status FROM tasks
                     WHERE type = ? AND target_id = ? AND status IN ('pending', 'running')
                     ORDER BY created_at DESC LIMIT 1''', (task_type.value, target_id))
        active = c.fetchone()
        if active:
            raise TaskConflictError(task_type.value, target_id, active['status'])
        c.execute('''INSERT INTO tasks (id, type, target_id, status, created_at, updated_at)
                     VALUES (?, ?, ?, ?, ?, ?)''',
                  (task_id, task_type.value, target_id, TaskStatus.PENDING.value, now, now))
        conn.commit()
    except TaskConflictError:
        conn.rollback()
        raise
    except sqlite3.IntegrityError as e:
        # The partial unique index caught a race the SELECT could not see
        conn.rollback()
        raise TaskConflictError(task_type.value, target_id, 'active') from e
    except sqlite3.Error as e:
        conn.rollback()
        raise StorageError(str(e)) from e

    logger.debug(f"Created task {task_id} ({task_type.value} -> {target_id})")
    return get_task(conn, task_id)


def get_task(conn, task_id) -> Optional[Task]:
    row = conn.execute('SELECT * FROM tasks WHERE id = ?', (task_id,)).fetchone()
    return Task.from_row(row) if row else None


def update_task(conn, task_id, **fields) -> Optional[Task]:
    """Update task columns (status, result, started_at, completed_at)."""
    allowed = {'status', 'result', 'started_at', 'completed_at'}
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Unknown task fields: {sorted(unknown)}")

    values = {k: (v.value if isinstance(v, TaskStatus) else v) for k, v in fields.items()}
    values['updated_at'] = _now()
    assignments = ', '.join(f'{col} = ?' for col in values)
    with conn:
        conn.execute(f'UPDATE tasks SET {assignments} WHERE id = ?', (*values.values(), task_id))
    return get_task(conn, task_id)


__all__ = [
    'set_db_path', 'init_db', 'get_db', 'generate_id',
    'create_library', 'get_library', 'list_libraries', 'update_library',
    'add_library_folder', 'remove_library_folder', 'delete_library',
    'get_books_by_library', 'get_book', 'create_books', 'delete_books_by_ids',
    'apply_scan_changes',
    'create_task', 'get_task', 'update_task',
]

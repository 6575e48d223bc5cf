"""Task lifecycle and handlers.

Each task kind maps to one handler function in HANDLERS. A handler owns the
task once it has been created: it moves it to running, does the work, and
records the outcome as completed or failed.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, Optional

from readcast.database import get_task, update_task
from readcast.epub.extractor import ExtractionLocks
from readcast.errors import InvalidTaskTransitionError, TaskNotFoundError
from readcast.models.task import Task, TaskStatus, TaskType
from readcast.scanner import scan_library

logger = logging.getLogger(__name__)


def transition(conn, task: Task, status: TaskStatus, result: Optional[str] = None) -> Task:
    """Move a task to ``status`` and stamp the matching fields.

    running stamps started_at; completed stamps completed_at and the result;
    failed records the result (the error) only.

    Raises:
        InvalidTaskTransitionError: the lifecycle does not allow the move
    """
    if not task.can_transition(status):
        raise InvalidTaskTransitionError(task.id, task.status.value, status.value)

    now = datetime.now().isoformat()
    fields = {'status': status}
    if status == TaskStatus.RUNNING:
        fields['started_at'] = now
    elif status == TaskStatus.COMPLETED:
        fields['completed_at'] = now
        fields['result'] = result if result is not None else task.result
    elif status == TaskStatus.FAILED:
        fields['result'] = result if result is not None else task.result

    logger.debug(f"Task {task.id}: {task.status.value} -> {status.value}")
    updated = update_task(conn, task.id, **fields)
    if updated is None:
        raise TaskNotFoundError(f"Task {task.id} disappeared during update")
    return updated


def run_library_scan(task: Task, get_db: Callable, config: dict, locks: ExtractionLocks) -> str:
    """Scan the target library; returns the result summary."""
    logger.debug(f"Running library scan task for libraryId: {task.target_id}")
    return scan_library(task.target_id, get_db, config=config, locks=locks).summary()


def run_book_match(task: Task, get_db: Callable, config: dict, locks: ExtractionLocks) -> str:
    """Match a book against online metadata. No provider is wired in yet."""
    logger.debug(f"Running book match task for bookId: {task.target_id}")
    return "no metadata provider configured"


HANDLERS: Dict[TaskType, Callable[..., str]] = {
    TaskType.LIBRARY_SCAN: run_library_scan,
    TaskType.BOOK_MATCH: run_book_match,
}


def run_task(task_id, get_db: Callable, config: dict = None, locks: ExtractionLocks = None) -> Task:
    """Drive one pending task to a terminal state.

    Handler errors never escape: they are logged and written to the task as
    a failed result.
    """
    config = config or {}
    locks = locks or ExtractionLocks()

    conn = get_db()
    try:
        task = get_task(conn, task_id)
        if task is None:
            raise TaskNotFoundError(f"Task {task_id} not found")
        task = transition(conn, task, TaskStatus.RUNNING)
    finally:
        conn.close()

    handler = HANDLERS.get(task.type)
    try:
        if handler is None:
            raise ValueError(f"No handler found for task type: {task.type.value}")
        result = handler(task, get_db, config, locks)
        status = TaskStatus.COMPLETED
    except Exception as e:
        logger.error(f"Task {task.id} ({task.type.value} -> {task.target_id}) failed: {e}", exc_info=True)
        result = str(e)
        status = TaskStatus.FAILED

    conn = get_db()
    try:
        task = transition(conn, task, status, result)
    finally:
        conn.close()

    logger.info(f"Task {task.id} {task.status.value}: {task.result}")
    return task


__all__ = ['transition', 'run_library_scan', 'run_book_match', 'HANDLERS', 'run_task']

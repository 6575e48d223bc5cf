"""Background task execution for Readcast.

start_scan() / start_match() create the task record synchronously (so a
conflicting active task is rejected before anything runs), then hand it to
a daemon thread and return at once. Callers poll get_task() until the task
reaches a terminal state.
"""

import logging
import threading
from typing import Callable, Dict, Optional

from readcast.database import create_task, get_task as db_get_task, update_task
from readcast.epub.extractor import ExtractionLocks
from readcast.errors import TaskNotFoundError
from readcast.models.task import Task, TaskStatus, TaskType
from readcast.tasks import run_task

logger = logging.getLogger(__name__)


class TaskRunner:
    """Creates tasks and supervises the threads that run them.

    One runner shares one ExtractionLocks registry across all of its tasks,
    so concurrent tasks never unpack the same archive twice at once.
    """

    def __init__(self, get_db: Callable, config: dict = None, locks: ExtractionLocks = None):
        self.get_db = get_db
        self.config = config or {}
        self.locks = locks or ExtractionLocks()
        self._threads: Dict[str, threading.Thread] = {}
        self._lock = threading.Lock()

    def start_scan(self, library_id) -> Task:
        """Create a library_scan task and start it in the background.

        Raises:
            TaskConflictError: a scan of this library is already pending or running
        """
        return self._start(TaskType.LIBRARY_SCAN, library_id)

    def start_match(self, book_id) -> Task:
        return self._start(TaskType.BOOK_MATCH, book_id)

    def get_task(self, task_id) -> Task:
        conn = self.get_db()
        try:
            task = db_get_task(conn, task_id)
        finally:
            conn.close()
        if task is None:
            logger.debug(f"Task not found: {task_id}")
            raise TaskNotFoundError(f"Task {task_id} not found")
        return task

    def join(self, task_id, timeout: Optional[float] = None) -> bool:
        """Wait for a task's thread. Returns False if it is still running after ``timeout``."""
        with self._lock:
            thread = self._threads.get(task_id)
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def is_running(self, task_id) -> bool:
        with self._lock:
            thread = self._threads.get(task_id)
        return thread is not None and thread.is_alive()

    def _start(self, task_type: TaskType, target_id) -> Task:
        conn = self.get_db()
        try:
            task = create_task(conn, task_type, target_id)
        finally:
            conn.close()

        thread = threading.Thread(
            target=self._supervise,
            args=(task.id,),
            name=f"readcast-{task_type.value}-{task.id[:8]}",
            daemon=True
        )
        with self._lock:
            self._threads[task.id] = thread
        try:
            thread.start()
        except RuntimeError as e:
            with self._lock:
                self._threads.pop(task.id, None)
            logger.error(f"Could not start thread for task {task.id}: {e}")
            self._mark_failed(task.id, f"Could not start task: {e}")
            return self.get_task(task.id)

        logger.info(f"Started {task_type.value} task {task.id} for {target_id}")
        return task

    def _supervise(self, task_id):
        """Thread body: run the task and make sure a failure is recorded."""
        try:
            run_task(task_id, self.get_db, config=self.config, locks=self.locks)
        except Exception as e:
            # run_task records handler failures itself; this catches failures
            # to even load or start the task.
            logger.error(f"Task {task_id} could not run: {e}", exc_info=True)
            self._mark_failed(task_id, str(e))
        finally:
            with self._lock:
                self._threads.pop(task_id, None)

    def _mark_failed(self, task_id, message):
        try:
            conn = self.get_db()
            try:
                task = db_get_task(conn, task_id)
                if task is not None and task.status.is_active:
                    update_task(conn, task_id, status=TaskStatus.FAILED, result=message)
            finally:
                conn.close()
        except Exception as e:
            logger.error(f"Could not record failure of task {task_id}: {e}")


# Module-level runner, configured once by the entry point
_runner: Optional[TaskRunner] = None


def init_runner(get_db: Callable, config: dict = None, locks: ExtractionLocks = None) -> TaskRunner:
    """Install the process-wide runner."""
    global _runner
    _runner = TaskRunner(get_db, config=config, locks=locks)
    return _runner


def get_runner() -> TaskRunner:
    if _runner is None:
        raise RuntimeError("Task runner not initialized. Call init_runner() first.")
    return _runner


def start_scan(library_id) -> Task:
    return get_runner().start_scan(library_id)


def start_match(book_id) -> Task:
    return get_runner().start_match(book_id)


def get_task(task_id) -> Task:
    return get_runner().get_task(task_id)


__all__ = [
    'TaskRunner',
    'init_runner',
    'get_runner',
    'start_scan',
    'start_match',
    'get_task',
]

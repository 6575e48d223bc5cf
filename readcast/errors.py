"""Exception types for Readcast.

Source errors are scoped to a single package or folder and never abort a
scan. Storage and task errors surface to the caller.
"""


class ReadcastError(Exception):
    """Base exception for all Readcast errors."""

    pass


class PackageError(ReadcastError):
    """A package could not be read as a structured EPUB (container, OPF, SMIL)."""

    pass


class ExtractionError(PackageError):
    """The archive could not be unpacked into its sidecar directory."""

    pass


class StorageError(ReadcastError):
    """A catalog write failed; no partial change was committed."""

    pass


class LibraryNotFoundError(ReadcastError):
    """No library exists with the requested id."""

    pass


class TaskNotFoundError(ReadcastError):
    """No task exists with the requested id."""

    pass


class TaskConflictError(ReadcastError):
    """An active task already exists for the same type and target."""

    def __init__(self, task_type, target_id, status):
        self.task_type = task_type
        self.target_id = target_id
        self.status = status
        super().__init__(f'Task with type "{task_type}" and target "{target_id}" is already {status}')


class InvalidTaskTransitionError(ReadcastError):
    """A task status change that the lifecycle does not allow."""

    def __init__(self, task_id, current, requested):
        self.task_id = task_id
        self.current = current
        self.requested = requested
        super().__init__(f"Task {task_id}: cannot move from {current} to {requested}")

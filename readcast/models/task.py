"""Background task model: a library scan or a book match."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Dict, Any


class TaskType(Enum):
    LIBRARY_SCAN = "library_scan"
    BOOK_MATCH = "book_match"


class TaskStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_active(self) -> bool:
        return self in (TaskStatus.PENDING, TaskStatus.RUNNING)

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


# Allowed status moves. PENDING -> FAILED covers a task whose handler
# could not even start (e.g. the runner thread failed to launch).
TRANSITIONS = {
    TaskStatus.PENDING: {TaskStatus.RUNNING, TaskStatus.FAILED},
    TaskStatus.RUNNING: {TaskStatus.COMPLETED, TaskStatus.FAILED},
    TaskStatus.COMPLETED: set(),
    TaskStatus.FAILED: set(),
}


@dataclass
class Task:
    """A persisted task record."""
    id: str
    type: TaskType
    target_id: str
    status: TaskStatus = TaskStatus.PENDING
    result: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def can_transition(self, new_status: TaskStatus) -> bool:
        return new_status in TRANSITIONS[self.status]

    @classmethod
    def from_row(cls, row) -> 'Task':
        data = dict(row)
        return cls(
            id=data['id'],
            type=TaskType(data['type']),
            target_id=data['target_id'],
            status=TaskStatus(data['status']),
            result=data.get('result'),
            started_at=data.get('started_at'),
            completed_at=data.get('completed_at'),
            created_at=data.get('created_at'),
            updated_at=data.get('updated_at'),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'type': self.type.value,
            'target_id': self.target_id,
            'status': self.status.value,
            'result': self.result,
            'started_at': self.started_at,
            'completed_at': self.completed_at,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }

"""
Crawl task representation shared by the scheduler and the page processor.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class TaskState(Enum):
    """Lifecycle of a crawl task."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskState.SUCCEEDED, TaskState.FAILED)


@dataclass
class CrawlTask:
    """One unit of fetch + extract + validate + recurse work."""
    url: str
    depth: int
    agent_id: int
    parent_url: Optional[str] = None
    state: TaskState = TaskState.PENDING
    error: Optional[str] = None
    created_time: float = field(default_factory=time.time)
    links_found: int = 0
    children_submitted: int = 0

    def mark_running(self):
        self.state = TaskState.RUNNING

    def mark_succeeded(self):
        self.state = TaskState.SUCCEEDED

    def mark_failed(self, error: str):
        self.state = TaskState.FAILED
        self.error = error

    def child(self, url: str) -> 'CrawlTask':
        """Create the task for a link discovered on this task's page."""
        return CrawlTask(
            url=url,
            depth=self.depth + 1,
            agent_id=self.agent_id,
            parent_url=self.url
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for logging and storage indexes."""
        return {
            'url': self.url,
            'depth': self.depth,
            'agent_id': self.agent_id,
            'parent_url': self.parent_url,
            'state': self.state.value,
            'error': self.error,
            'created_time': self.created_time,
            'links_found': self.links_found,
            'children_submitted': self.children_submitted
        }

"""
Async task coordination.

A RemoteTask wraps a long-running vCenter operation (clone, reconfigure,
power change, destroy, datastore search). The TaskCoordinator blocks on
it until a terminal state and converts failures into TaskFailure with the
operation name attached.

Waiting has no ceiling of its own. Callers that need an upper bound use
poll_until() to observe the effect in the inventory instead.
"""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, TypeVar

from vsphere_provisioner.errors import ObservationTimeout, TaskAlreadyAwaited, TaskFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TaskState(Enum):
    """Mirrors vim.TaskInfo.State"""
    QUEUED = "queued"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class TaskOutcome:
    state: TaskState
    error_message: Optional[str] = None
    result: Any = None

    @property
    def terminal(self) -> bool:
        return self.state in (TaskState.SUCCESS, TaskState.ERROR)


class RemoteTask:
    """
    Handle to a submitted remote operation.

    Args:
        name: Human readable task name for logs
        poll_fn: Callable returning the current TaskOutcome
        handle: Underlying endpoint task object (vim.Task for vCenter)
    """

    def __init__(self, name: str, poll_fn: Callable[[], TaskOutcome], handle: Any = None):
        self.name = name
        self.handle = handle
        self._poll_fn = poll_fn
        self._outcome: Optional[TaskOutcome] = None
        self._wait_lock = threading.Lock()

    def poll(self) -> TaskOutcome:
        if self._outcome is not None:
            return self._outcome
        outcome = self._poll_fn()
        if outcome.terminal:
            self._outcome = outcome
        return outcome

    def wait(self, interval: float = 2.0, sleep: Callable[[float], None] = time.sleep) -> TaskOutcome:
        """Block until the task is terminal. Only one waiter at a time."""
        if not self._wait_lock.acquire(blocking=False):
            raise TaskAlreadyAwaited(f"Task {self.name} is already being awaited")
        try:
            while True:
                outcome = self.poll()
                if outcome.terminal:
                    return outcome
                sleep(interval)
        finally:
            self._wait_lock.release()

    def __repr__(self) -> str:
        return f"RemoteTask({self.name})"


class TaskCoordinator:
    """Awaits remote tasks and runs bounded observe-in-inventory polls."""

    def __init__(self, task_poll_seconds: float = 2.0, poll_interval_seconds: float = 10.0,
                 poll_timeout_seconds: float = 1200.0,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.monotonic):
        self.task_poll_seconds = task_poll_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self.poll_timeout_seconds = poll_timeout_seconds
        self._sleep = sleep
        self._clock = clock

    def await_task(self, task: RemoteTask, operation: str) -> Any:
        """
        Block until task completes.

        Returns:
            The task result payload

        Raises:
            TaskFailure: with the endpoint's error message verbatim
        """
        logger.info(f"Waiting for {operation} ({task.name})")
        outcome = task.wait(self.task_poll_seconds, self._sleep)
        if outcome.state == TaskState.ERROR:
            message = outcome.error_message or "Unknown task error"
            logger.warning(f"{operation} failed: {message}")
            raise TaskFailure(operation, message)
        logger.info(f"{operation} completed")
        return outcome.result

    def poll_until(self, probe: Callable[[], Optional[T]], description: str,
                   interval: Optional[float] = None, timeout: Optional[float] = None) -> T:
        """
        Call probe every interval seconds until it returns a value.

        Raises:
            ObservationTimeout: if nothing was observed before the ceiling
        """
        interval = self.poll_interval_seconds if interval is None else interval
        timeout = self.poll_timeout_seconds if timeout is None else timeout
        deadline = self._clock() + timeout

        while True:
            self._sleep(interval)
            value = probe()
            if value is not None:
                return value
            if self._clock() >= deadline:
                break
            logger.debug(f"Still waiting for {description}")

        raise ObservationTimeout(description, f"Unable to identify {description} after {int(timeout)}s")

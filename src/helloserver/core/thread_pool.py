"""
=============================================================================
THREAD POOL
=============================================================================

Readable connections are handed to a small set of worker threads
pulling from a bounded queue. A worker holds a connection only while
bytes are there to be read; idle connections wait in the socket
server's selector, not on a thread.

    accept loop ──submit()──►  [conn] [conn] [conn]  ──get()──►  Worker 1
                                     TASK QUEUE                  Worker 2
                                                                 ...

    - min_workers threads are started up front.
    - When every worker is busy and work is queued, one more worker is
      added, up to max_workers. Workers live until shutdown().
    - When the queue is full, submit() returns False and the caller
      answers 503.
    - shutdown() puts one None ("poison pill") per worker on the queue.

=============================================================================
"""

import threading
import queue
import time
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Any


logger = logging.getLogger(__name__)


class WorkerState(Enum):
    IDLE = "idle"
    BUSY = "busy"
    STOPPED = "stopped"


@dataclass
class Task:
    """
    A deferred function call.

    Attributes:
        func: The function to execute.
        args: Positional arguments for the function.
    """
    func: Callable[..., Any]
    args: tuple = ()


class Worker(threading.Thread):
    """Worker thread that runs tasks from the shared queue until a poison pill arrives."""

    def __init__(self, task_queue: queue.Queue, worker_id: int):
        super().__init__(name=f"hello-worker-{worker_id}", daemon=True)

        self.task_queue = task_queue
        self.worker_id = worker_id

        self.state = WorkerState.IDLE

        self.tasks_completed = 0
        self.tasks_failed = 0

    def run(self):
        logger.debug(f"Worker {self.worker_id} started")

        while True:
            task = self.task_queue.get()
            try:
                if task is None:
                    break
                self._execute_task(task)
            finally:
                self.task_queue.task_done()

        self.state = WorkerState.STOPPED
        logger.debug(f"Worker {self.worker_id} stopped")

    def _execute_task(self, task: Task):
        """Run one task. Exceptions are logged; the worker keeps going."""
        self.state = WorkerState.BUSY
        start_time = time.time()

        try:
            task.func(*task.args)

            self.tasks_completed += 1
            logger.debug(f"Worker {self.worker_id} completed task in {time.time() - start_time:.3f}s")

        except Exception as e:
            self.tasks_failed += 1
            logger.exception(f"Worker {self.worker_id} task failed: {e}")

        finally:
            self.state = WorkerState.IDLE


class ThreadPool:
    """
    Bounded pool of worker threads.

    Usage:
        pool = ThreadPool(min_workers=4, max_workers=16)
        pool.start()
        pool.submit(handle_connection, args=(conn,))
        pool.shutdown(wait=True)
    """

    def __init__(
        self,
        min_workers: int = 4,
        max_workers: int = 16,
        queue_size: int = 128,
    ):
        self.min_workers = min_workers
        self.max_workers = max_workers

        self._queue: queue.Queue = queue.Queue(maxsize=queue_size)
        self._workers: list[Worker] = []
        self._lock = threading.Lock()
        self._next_worker_id = 0
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def worker_count(self) -> int:
        with self._lock:
            return len(self._workers)

    @property
    def stats(self) -> dict:
        with self._lock:
            busy = sum(1 for w in self._workers if w.state == WorkerState.BUSY)
            return {
                "workers": {
                    "total": len(self._workers),
                    "busy": busy,
                    "idle": len(self._workers) - busy,
                },
                "queue_size": self._queue.qsize(),
                "tasks_completed": sum(w.tasks_completed for w in self._workers),
                "tasks_failed": sum(w.tasks_failed for w in self._workers),
            }

    def start(self):
        """Start min_workers threads."""
        if self._running:
            return

        self._running = True
        with self._lock:
            for _ in range(self.min_workers):
                self._add_worker()

        logger.debug(f"Thread pool started with {self.min_workers} workers")

    def _add_worker(self):
        """Spawn one worker. Caller holds self._lock."""
        worker = Worker(self._queue, self._next_worker_id)
        self._next_worker_id += 1
        self._workers.append(worker)
        worker.start()

    def _maybe_scale_up(self):
        with self._lock:
            if len(self._workers) >= self.max_workers:
                return
            if any(w.state == WorkerState.IDLE for w in self._workers):
                return
            self._add_worker()
            logger.debug(f"Scaled thread pool up to {len(self._workers)} workers")

    def submit(self, func: Callable[..., Any], args: tuple = ()) -> bool:
        """
        Queue a task.

        Returns:
            True if queued, False if the pool is stopped or the queue is full.
        """
        if not self._running:
            return False

        try:
            self._queue.put_nowait(Task(func=func, args=args))
        except queue.Full:
            return False

        self._maybe_scale_up()
        return True

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None):
        """
        Stop all workers.

        Queued tasks ahead of the poison pills still run. With wait=True
        this blocks until every worker exits or `timeout` seconds pass.
        """
        if not self._running:
            return

        self._running = False

        with self._lock:
            workers = list(self._workers)

        for _ in workers:
            self._queue.put(None)

        if wait:
            deadline = None if timeout is None else time.time() + timeout
            for worker in workers:
                remaining = None if deadline is None else max(0.0, deadline - time.time())
                worker.join(remaining)
                if worker.is_alive():
                    logger.warning(f"Worker {worker.worker_id} did not stop in time")

        with self._lock:
            self._workers.clear()

        logger.debug("Thread pool stopped")

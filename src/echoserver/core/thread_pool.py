"""
=============================================================================
WORKER POOL
=============================================================================

Every accepted connection, HTTP or HTTPS, becomes one task in a shared
queue. A worker owns the connection for its whole life: TLS handshake,
every keep-alive request, and the final close.

=============================================================================
WHY A POOL AND NOT A THREAD PER CONNECTION?
=============================================================================

    for connection in accept_connections():
        Thread(target=handle, args=(connection,)).start()

Each thread has its own stack, and nothing limits how many get created.
A pool reuses threads and puts a ceiling on concurrency:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                          WorkerPool                                  │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   TASK QUEUE   [conn 7] [conn 8] [conn 9] ...     (queue.Queue)     │
    │                        │                                             │
    │                        │ get()                                       │
    │                        ▼                                             │
    │   WORKERS      ┌──────────┐ ┌──────────┐ ┌──────────┐               │
    │                │ Worker 0 │ │ Worker 1 │ │ Worker 2 │  ...          │
    │                │ (busy)   │ │ (idle)   │ │ (busy)   │               │
    │                └──────────┘ └──────────┘ └──────────┘               │
    │                                                                      │
    │   min_workers started up front. Each submit() reserves a worker;   │
    │   with none free a new one is started, up to max_workers.          │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Keep-alive connections hold their worker while idle, so the pool must be
able to grow: with 8 workers and 8 idle keep-alive clients, the ninth
client would otherwise wait for somebody's keep-alive timeout.

=============================================================================
SHUTDOWN: THE POISON PILL
=============================================================================

    pool.shutdown()
        └─ wait for queued tasks (bounded by timeout)
        └─ for each worker: queue.put(None)
        └─ a worker that gets None exits its loop

=============================================================================
"""

import threading
import queue
import time
import logging
from typing import Callable, Optional, Any, List
from dataclasses import dataclass, field


logger = logging.getLogger(__name__)


@dataclass
class Task:
    """
    A deferred function call: "call func(*args) later".

    Attributes:
        func: The function to execute.
        args: Positional arguments for the function.
        submitted_at: Time the task was queued, for wait-time logging.
    """
    func: Callable[..., Any]
    args: tuple = ()
    submitted_at: float = field(default_factory=time.time)


class Worker(threading.Thread):
    """
    Worker thread that processes tasks from the queue.

    ┌─────────────────────────────────────────────────────────────────────┐
    │   1. task = queue.get()        (wakes every idle_timeout seconds)   │
    │   2. None? → exit                                                   │
    │   3. task.func(*task.args)     exceptions are logged, never fatal   │
    │   4. queue.task_done()                                              │
    └─────────────────────────────────────────────────────────────────────┘
    """

    def __init__(
        self,
        task_queue: queue.Queue,
        worker_id: int,
        idle_timeout: float = 60.0,
        on_task_done: Optional[Callable[[], None]] = None,
    ):
        # daemon=True: a stuck worker never keeps the process alive
        super().__init__(name=f"Worker-{worker_id}", daemon=True)

        self.task_queue = task_queue
        self.worker_id = worker_id
        self.idle_timeout = idle_timeout
        self.on_task_done = on_task_done

        self._shutdown = threading.Event()

    def run(self):
        logger.debug(f"Worker {self.worker_id} started")

        while not self._shutdown.is_set():
            try:
                task = self.task_queue.get(timeout=self.idle_timeout)
            except queue.Empty:
                continue

            if task is None:
                self.task_queue.task_done()
                break

            try:
                self._execute_task(task)
            finally:
                self.task_queue.task_done()

        logger.debug(f"Worker {self.worker_id} stopped")

    def _execute_task(self, task: Task):
        start_time = time.time()

        waited = start_time - task.submitted_at
        if waited > 1.0:
            logger.debug(f"Worker {self.worker_id} picked up a task queued {waited:.2f}s ago")

        try:
            task.func(*task.args)
        except Exception as e:
            # One broken connection must not take the worker down with it
            elapsed = time.time() - start_time
            logger.exception(f"Worker {self.worker_id} task failed after {elapsed:.3f}s: {e}")
        finally:
            if self.on_task_done is not None:
                self.on_task_done()

    def shutdown(self):
        self._shutdown.set()


class WorkerPool:
    """
    Growable pool of worker threads.

    Usage:
        pool = WorkerPool(min_workers=8, max_workers=64)
        pool.start()
        pool.submit(process_connection, args=(conn,))
        ...
        pool.shutdown(timeout=5)
    """

    def __init__(
        self,
        min_workers: int = 8,
        max_workers: int = 64,
        queue_size: int = 1024,
        idle_timeout: float = 1.0,
    ):
        """
        Args:
            min_workers: Workers created at startup.
            max_workers: Upper bound when scaling up under load.
            queue_size: Connections that may wait for a worker. When full,
                submit() blocks, which in turn stalls accept() and lets
                the kernel backlog absorb the burst.
            idle_timeout: How often an idle worker checks for shutdown.
        """
        self.min_workers = min_workers
        self.max_workers = max_workers
        self.idle_timeout = idle_timeout

        self._task_queue: "queue.Queue[Optional[Task]]" = queue.Queue(maxsize=queue_size)

        self._workers: List[Worker] = []
        self._lock = threading.Lock()
        self._started = False
        self._shutdown = False
        self._next_worker_id = 0

        # workers minus tasks submitted and not yet finished
        self._available = 0

    def start(self):
        """Start the minimum number of workers."""
        if self._started:
            return

        logger.info(f"Starting worker pool with {self.min_workers} workers (max {self.max_workers})")

        with self._lock:
            for _ in range(self.min_workers):
                self._add_worker()
            self._available = self.min_workers

        self._started = True
        self._shutdown = False

    def _add_worker(self) -> Worker:
        """Create and start one worker. Caller holds self._lock."""
        worker = Worker(
            task_queue=self._task_queue,
            worker_id=self._next_worker_id,
            idle_timeout=self.idle_timeout,
            on_task_done=self._task_done,
        )
        self._next_worker_id += 1
        self._workers.append(worker)
        worker.start()
        return worker

    def submit(self, func: Callable[..., Any], args: tuple = ()) -> None:
        """
        Queue a task, blocking while the queue is full.

        Raises:
            RuntimeError: If the pool is not running.
        """
        if not self._started or self._shutdown:
            raise RuntimeError("Worker pool is not accepting tasks")

        self._reserve_worker()
        self._task_queue.put(Task(func=func, args=args))

    def _reserve_worker(self):
        """
        Claim a worker for one new task, starting one if none is free.

        Reservations are counted at submit time, so a burst of connections
        grows the pool before any worker has picked up its first task.
        """
        with self._lock:
            if self._available <= 0 and len(self._workers) < self.max_workers:
                logger.debug(f"Scaling up: {len(self._workers)} -> {len(self._workers) + 1} workers")
                self._add_worker()
            else:
                self._available -= 1

    def _task_done(self):
        with self._lock:
            self._available += 1

    def shutdown(self, timeout: Optional[float] = None):
        """
        Stop the pool after queued tasks have been picked up.

        Args:
            timeout: Maximum seconds to wait for the queue to empty.
        """
        if not self._started:
            return

        logger.info("Shutting down worker pool...")
        self._shutdown = True

        deadline = None if timeout is None else time.time() + timeout
        while not self._task_queue.empty():
            if deadline is not None and time.time() > deadline:
                logger.warning("Worker pool shutdown timeout, abandoning queued tasks")
                break
            time.sleep(0.1)

        with self._lock:
            workers = list(self._workers)
            self._workers.clear()

        for worker in workers:
            worker.shutdown()
            try:
                self._task_queue.put(None, block=False)
            except queue.Full:
                pass

        for worker in workers:
            worker.join(timeout=2.0)

        self._started = False
        logger.info("Worker pool shutdown complete")

    # =========================================================================
    # MONITORING
    # =========================================================================

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._workers)

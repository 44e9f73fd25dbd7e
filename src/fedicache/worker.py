"""
Fire-and-forget background jobs.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from concurrent import futures
from enum import IntEnum
import heapq
from itertools import count
import threading
from typing import Any

from fedicache.reporting import error, trace


class Priority(IntEnum):
    """
    Lower values run first.
    """
    CRITICAL = 1
    HIGH = 2
    MEDIUM = 3
    LOW = 4
    NEGLIGIBLE = 5


class UnknownJobError(RuntimeError):
    """
    Raised when a job is enqueued under a name nobody registered.
    """
    def __init__(self, job_name: str):
        super().__init__(f'No job registered with name "{ job_name }"')
        self.job_name = job_name


class TaskQueue(ABC):
    """
    Accepts jobs by name, and runs them at some later time. Enqueuing never blocks on,
    nor reports the outcome of, the job.
    """
    def __init__(self) -> None:
        self._jobs : dict[str, Callable[..., Any]] = {}


    def register(self, job_name: str, job: Callable[..., Any]) -> None:
        """
        Make a job available under this name. Registering the same name again replaces the job.
        """
        self._jobs[job_name] = job


    def enqueue(self, priority: Priority, job_name: str, *args: Any, dont_fork: bool = False) -> None:
        """
        Submit a job.
        priority: when to run relative to other jobs
        job_name: the name under which the job was registered
        args: passed to the job
        dont_fork: do not use a new worker for this job, run it when convenient
        """
        job = self._jobs.get(job_name)
        if job is None:
            raise UnknownJobError(job_name)
        trace(f'Enqueuing job { job_name }{ args } with priority { priority.name }')
        self._submit(priority, job_name, job, args, dont_fork)


    @abstractmethod
    def _submit(self, priority: Priority, job_name: str, job: Callable[..., Any], args: tuple[Any, ...], dont_fork: bool) -> None:
        ...


    @abstractmethod
    def shutdown(self, wait: bool = True) -> None:
        """
        Stop accepting jobs. If wait, return only once all submitted jobs have run;
        otherwise jobs that have not started yet may never run.
        """
        ...


    @staticmethod
    def _run_job(job_name: str, job: Callable[..., Any], args: tuple[Any, ...]) -> None:
        """
        Run a job. Failures end here: they are logged, and nobody else hears about them.
        """
        try:
            job(*args)
        except Exception as e: # pylint: disable=broad-exception-caught
            error(f'Background job { job_name }{ args } failed:', e)


class DeferredTaskQueue(TaskQueue):
    """
    Holds on to jobs until run_pending() is invoked, and then runs them in the invoking
    thread, highest priority first and in order of submission within a priority.
    """
    def __init__(self) -> None:
        super().__init__()
        self._pending : list[tuple[int, int, str, Callable[..., Any], tuple[Any, ...]]] = []
        self._sequence = count()
        self._lock = threading.Lock()


    # Python 3.12 @override
    def _submit(self, priority: Priority, job_name: str, job: Callable[..., Any], args: tuple[Any, ...], dont_fork: bool) -> None:
        with self._lock:
            heapq.heappush(self._pending, (int(priority), next(self._sequence), job_name, job, args))


    def pending(self) -> list[tuple[str, tuple[Any, ...]]]:
        """
        The jobs that have not run yet, in the order they will run.
        """
        with self._lock:
            return [ (entry[2], entry[4]) for entry in sorted(self._pending) ]


    def run_pending(self) -> int:
        """
        Run all pending jobs, including those enqueued by pending jobs while running.
        return: the number of jobs run
        """
        ret = 0
        while True:
            with self._lock:
                if not self._pending:
                    return ret
                _, _, job_name, job, args = heapq.heappop(self._pending)
            self._run_job(job_name, job, args)
            ret += 1


    # Python 3.12 @override
    def shutdown(self, wait: bool = True) -> None:
        if wait:
            self.run_pending()
        else:
            with self._lock:
                self._pending.clear()


class ThreadPoolTaskQueue(TaskQueue):
    """
    Runs jobs on a pool of worker threads. Jobs submitted with dont_fork share a single
    additional thread, so they never occupy more than one worker between them.
    Priorities are only observed in the sense that the executors are FIFO.
    """
    def __init__(self, max_workers: int = 2) -> None:
        super().__init__()
        self._pool = futures.ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='fedicache-worker')
        self._inline = futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix='fedicache-inline')


    # Python 3.12 @override
    def _submit(self, priority: Priority, job_name: str, job: Callable[..., Any], args: tuple[Any, ...], dont_fork: bool) -> None:
        executor = self._inline if dont_fork else self._pool
        executor.submit(self._run_job, job_name, job, args)


    # Python 3.12 @override
    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait, cancel_futures=not wait)
        self._inline.shutdown(wait=wait, cancel_futures=not wait)

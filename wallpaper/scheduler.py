from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from common.logging_setup import get_logger
from common.utils import elapsed_ms, iso_now_ms


log = get_logger("wallpaper.scheduler")


@dataclass
class Job:
    name: str
    interval_s: float
    func: Callable[[], object]
    run_at_start: bool = False
    runs: int = 0
    failures: int = 0
    last_run: Optional[str] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def run(self) -> None:
        """Run once; exceptions are logged, never propagated to the timer."""
        with self._lock:
            t0 = time.perf_counter()
            self.last_run = iso_now_ms()
            log.info("Job triggered", extra={"extra": {"job": self.name}})
            try:
                self.func()
            except Exception:
                self.failures += 1
                log.exception("Job failed: %s", self.name)
            finally:
                self.runs += 1
            log.info("Job finished", extra={"extra": {"job": self.name, "ms": elapsed_ms(t0)}})


class Scheduler:
    """
    Fixed-interval background jobs, one daemon thread each.

        sched = Scheduler()
        sched.add_job("refresh-source", 12 * 3600, store.acquire, run_at_start=True)
        sched.start()
        ...
        sched.stop()

    A job never overlaps with itself. start()/stop() may be called again
    after stop().
    """

    def __init__(self) -> None:
        self._jobs: Dict[str, Job] = {}
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    @property
    def jobs(self) -> Dict[str, Job]:
        return dict(self._jobs)

    def add_job(self, name: str, interval_s: float, func: Callable[[], object], *, run_at_start: bool = False) -> Job:
        if interval_s <= 0:
            raise ValueError("interval_s must be > 0")
        if name in self._jobs:
            raise ValueError(f"job already registered: {name}")
        if self.running:
            raise RuntimeError("cannot add jobs while the scheduler is running")
        job = Job(name=name, interval_s=float(interval_s), func=func, run_at_start=run_at_start)
        self._jobs[name] = job
        return job

    def run_now(self, name: str) -> None:
        self._jobs[name].run()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._threads = []
        for job in self._jobs.values():
            t = threading.Thread(target=self._loop, args=(job,), name=f"job-{job.name}", daemon=True)
            t.start()
            self._threads.append(t)
        log.info("Scheduler started", extra={"extra": {
            "jobs": {j.name: j.interval_s for j in self._jobs.values()},
        }})

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        for t in self._threads:
            t.join(timeout=timeout)
        self._threads = []
        log.info("Scheduler stopped")

    def _loop(self, job: Job) -> None:
        if job.run_at_start:
            job.run()
        while not self._stop.wait(job.interval_s):
            job.run()

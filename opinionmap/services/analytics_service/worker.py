"""Isolated opinion-map worker.

Embedding and clustering are CPU-bound and never run on a request
thread. Computations run in long-lived child processes that talk to
the caller over a pipe:

    startup:  {"type": "ready"}  (once, after the warm-up fit)
    request:  {"type": "compute", "payload": {"inputs", "params", "k", "max_iterations"}}
    response: {"type": "result", "payload": {"points": [...]}}
              {"type": "error", "payload": {"code", "message"}}
    stop:     {"type": "shutdown"}

Importing umap and compiling its numba kernels takes tens of seconds,
so a child pays that once with a small warm-up fit and then serves
requests until it is stopped. Idle children wait in a standby pool.

At most one computation is in flight per client. A new submission
terminates the child running the previous one instead of queuing
behind it, and an abandoned client can cancel its job outright. A
terminated child is replaced by a fresh standby.
"""
import logging
import multiprocessing
import os
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np

from opinionmap.shared.errors import (
    CoreError,
    EmbeddingCancelledError,
    EmbeddingError,
    ValidationError,
)
from opinionmap.shared.utils import hash_pii
from .clustering import DEFAULT_K, DEFAULT_MAX_ITERATIONS, assign_clusters
from .embedding import (
    EmbeddingConfig,
    EmbeddingEngine,
    EmbeddingInput,
    EmbeddingPoint,
    ReducerFactory,
)

logger = logging.getLogger(__name__)

JOIN_TIMEOUT_SECONDS = 1.0

# A cold child (umap import plus numba compile) measured about 36s
DEFAULT_TIMEOUT_SECONDS = 120.0

WARMUP_POINTS = 8
WARMUP_DIMENSION = 4


@dataclass(frozen=True)
class WorkerConfig:
    """Configuration for the embedding worker.

    timeout_seconds bounds a whole job, including the warm-up of a
    child that had to be started cold for it.
    """
    start_method: str = "spawn"
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    pool_size: int = 1
    warm_up: bool = True

    def __post_init__(self):
        if self.timeout_seconds <= 0:
            raise ValueError(f"timeout_seconds must be positive, got {self.timeout_seconds}")
        if self.pool_size < 0:
            raise ValueError(f"pool_size must be >= 0, got {self.pool_size}")

    @classmethod
    def from_env(cls) -> "WorkerConfig":
        """Create config from environment variables.

        Environment variables:
            OPINIONMAP_WORKER_START_METHOD: multiprocessing start method (default spawn)
            OPINIONMAP_WORKER_TIMEOUT: Seconds before a job is abandoned (default 120)
            OPINIONMAP_WORKER_POOL_SIZE: Warm idle children kept ready (default 1)
            OPINIONMAP_WORKER_WARM_UP: "false" skips the warm-up fit (default true)
        """
        return cls(
            start_method=os.getenv("OPINIONMAP_WORKER_START_METHOD", "spawn"),
            timeout_seconds=float(
                os.getenv("OPINIONMAP_WORKER_TIMEOUT", str(DEFAULT_TIMEOUT_SECONDS))
            ),
            pool_size=int(os.getenv("OPINIONMAP_WORKER_POOL_SIZE", "1")),
            warm_up=os.getenv("OPINIONMAP_WORKER_WARM_UP", "true").lower()
            not in ("false", "0", "no"),
        )


@dataclass(frozen=True)
class MapRequest:
    """Everything one opinion-map computation needs."""
    inputs: Tuple[EmbeddingInput, ...]
    config: EmbeddingConfig
    k: int = DEFAULT_K
    max_iterations: int = DEFAULT_MAX_ITERATIONS

    def to_message(self) -> Dict[str, Any]:
        return {
            "type": "compute",
            "payload": {
                "inputs": [
                    {"label": item.label, "vector": list(item.vector)}
                    for item in self.inputs
                ],
                "params": self.config.to_dict(),
                "k": self.k,
                "max_iterations": self.max_iterations,
            },
        }

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> "MapRequest":
        """Parse a compute message.

        Raises:
            ValidationError: If the message is not a well-formed compute request
        """
        if not isinstance(message, dict) or message.get("type") != "compute":
            raise ValidationError("Expected a compute message")
        payload = message.get("payload") or {}
        try:
            inputs = tuple(
                EmbeddingInput(label=str(item["label"]), vector=tuple(item["vector"]))
                for item in payload.get("inputs", [])
            )
            config = EmbeddingConfig(**(payload.get("params") or {}))
            k = int(payload.get("k", DEFAULT_K))
            max_iterations = int(payload.get("max_iterations", DEFAULT_MAX_ITERATIONS))
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(f"Malformed compute message: {exc}") from exc
        return cls(inputs=inputs, config=config, k=k, max_iterations=max_iterations)


def compute_map(
    request: MapRequest,
    reducer_factory: Optional[ReducerFactory] = None,
) -> List[EmbeddingPoint]:
    """Embed then cluster. Runs inside the worker process."""
    engine = EmbeddingEngine(config=request.config, reducer_factory=reducer_factory)
    points = engine.embed(request.inputs)
    return assign_clusters(points, k=request.k, max_iterations=request.max_iterations)


def warm_up_request() -> MapRequest:
    """Small seeded request that exercises the same kernels as a real job."""
    rng = np.random.default_rng(0)
    vectors = rng.normal(size=(WARMUP_POINTS, WARMUP_DIMENSION))
    return MapRequest(
        inputs=tuple(
            EmbeddingInput(label=f"W{i:02d}", vector=tuple(float(v) for v in row))
            for i, row in enumerate(vectors)
        ),
        config=EmbeddingConfig(random_state=0),
        k=2,
    )


def handle_message(message: Dict[str, Any]) -> Dict[str, Any]:
    """Answer one request message with a result or a typed error message."""
    try:
        request = MapRequest.from_message(message)
        points = compute_map(request)
    except EmbeddingError as exc:
        return {"type": "error", "payload": exc.to_dict()}
    except CoreError as exc:
        return {"type": "error", "payload": EmbeddingError(exc.message).to_dict()}
    except Exception as exc:
        return {
            "type": "error",
            "payload": EmbeddingError(str(exc) or "Worker error").to_dict(),
        }
    return {"type": "result", "payload": {"points": [p.to_dict() for p in points]}}


def worker_main(conn, warm_up: bool = True) -> None:
    """Child process entry point: warm up once, then serve until stopped."""
    try:
        if warm_up:
            reply = handle_message(warm_up_request().to_message())
            if reply["type"] == "error":
                # Real jobs will report the same failure
                logger.warning(
                    "EMBEDDING_WORKER_WARMUP_FAILED",
                    extra={"error": reply["payload"].get("message")}
                )
        conn.send({"type": "ready"})
        while True:
            try:
                message = conn.recv()
            except EOFError:
                break
            if isinstance(message, dict) and message.get("type") == "shutdown":
                break
            conn.send(handle_message(message))
    finally:
        conn.close()


class WorkerProcess:
    """One long-lived child and the parent end of its pipe."""

    def __init__(self, ctx, target: Callable, warm_up: bool):
        self._conn, child_conn = ctx.Pipe()
        self._process = ctx.Process(
            target=target, args=(child_conn, warm_up), daemon=True
        )
        self._process.start()
        child_conn.close()
        self.ready = False
        self.jobs_served = 0

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid

    def is_alive(self) -> bool:
        return self._process.is_alive()

    def send(self, message: Dict[str, Any]) -> None:
        self._conn.send(message)

    def receive(self, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """Next reply, skipping the startup notice. None on timeout.

        Raises:
            EOFError, OSError: If the child went away
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            if not self._conn.poll(remaining):
                return None
            message = self._conn.recv()
            if isinstance(message, dict) and message.get("type") == "ready":
                self.ready = True
                continue
            return message

    def terminate(self) -> None:
        if self._process.is_alive():
            self._process.terminate()

    def stop(self) -> None:
        """Ask the child to exit, then make sure it has."""
        if self._process.is_alive():
            try:
                self._conn.send({"type": "shutdown"})
            except (OSError, ValueError):
                pass  # pipe already gone; terminate below
        self._process.join(JOIN_TIMEOUT_SECONDS)
        if self._process.is_alive():
            self._process.terminate()
            self._process.join(JOIN_TIMEOUT_SECONDS)
        self._conn.close()


class EmbeddingJob:
    """Handle on one in-flight computation."""

    def __init__(
        self,
        job_id: str,
        client_key: str,
        process: WorkerProcess,
        on_done: Optional[Callable[["EmbeddingJob"], None]] = None,
    ):
        self.job_id = job_id
        self.client_key = client_key
        self.process = process
        self._on_done = on_done
        self._cancelled = threading.Event()
        self.answered = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def reusable(self) -> bool:
        """The child answered and is back to waiting for requests."""
        return self.answered and not self.cancelled and self.process.is_alive()

    def cancel(self) -> None:
        """Terminate the child; a waiting result() sees the pipe close."""
        self._cancelled.set()
        self.process.terminate()

    def result(self, timeout: Optional[float] = None) -> List[EmbeddingPoint]:
        """Wait for the computation.

        Raises:
            EmbeddingCancelledError: If the job was superseded or cancelled
            EmbeddingError: On worker failure, a typed error reply or timeout
        """
        try:
            if self.cancelled:
                raise EmbeddingCancelledError("Embedding job was cancelled")
            try:
                reply = self.process.receive(timeout)
            except (EOFError, OSError) as exc:
                if self.cancelled:
                    raise EmbeddingCancelledError("Embedding job was cancelled") from exc
                raise EmbeddingError("Embedding worker exited unexpectedly") from exc
            if reply is None:
                self.cancel()
                raise EmbeddingError(f"Embedding timed out after {timeout}s")
            self.answered = True
        finally:
            if self._on_done is not None:
                self._on_done(self)

        if self.cancelled:
            raise EmbeddingCancelledError("Embedding job was cancelled")
        if reply.get("type") == "error":
            error = reply.get("payload") or {}
            raise EmbeddingError(error.get("message", "Worker error"))
        return [EmbeddingPoint(**point) for point in reply["payload"]["points"]]


class EmbeddingWorker:
    """Runs opinion-map computations in warm child processes, one per client."""

    def __init__(
        self,
        config: Optional[WorkerConfig] = None,
        target: Optional[Callable] = None,
    ):
        """Initialize worker. No child starts until start() or submit().

        Args:
            config: Worker configuration
            target: Child entry point taking the child end of the pipe and
                the warm-up flag (injected for testing)
        """
        self.config = config or WorkerConfig()
        self._ctx = multiprocessing.get_context(self.config.start_method)
        self._target = target or worker_main
        self._jobs: Dict[str, EmbeddingJob] = {}
        self._idle: List[WorkerProcess] = []
        self._lock = threading.Lock()
        self._closed = False

        logger.info(
            "EMBEDDING_WORKER_INITIALIZED",
            extra={
                "start_method": self.config.start_method,
                "timeout_seconds": self.config.timeout_seconds,
                "pool_size": self.config.pool_size,
            }
        )

    def start(self) -> None:
        """Start the standby children so the first job finds one warm."""
        with self._lock:
            self._closed = False
            self._fill_standby()

    def submit(self, client_key: str, request: MapRequest) -> EmbeddingJob:
        """Start a computation, superseding the client's pending one."""
        with self._lock:
            self._closed = False
            previous = self._jobs.pop(client_key, None)
            if previous is not None:
                previous.cancel()
                logger.info(
                    "EMBEDDING_JOB_SUPERSEDED",
                    extra={"job_id": previous.job_id, "client_key_hash": hash_pii(client_key)}
                )

            process = self._take_idle()
            if process is None:
                process = self._spawn()
            process.send(request.to_message())

            job = EmbeddingJob(
                job_id=uuid.uuid4().hex[:12],
                client_key=client_key,
                process=process,
                on_done=self._finish,
            )
            self._jobs[client_key] = job

        logger.info(
            "EMBEDDING_JOB_SUBMITTED",
            extra={
                "job_id": job.job_id,
                "n_points": len(request.inputs),
                "k": request.k,
                "warm": process.ready,
            }
        )
        return job

    def run(
        self,
        client_key: str,
        request: MapRequest,
        timeout: Optional[float] = None,
    ) -> List[EmbeddingPoint]:
        """Submit and wait; the calling thread only blocks, never computes."""
        job = self.submit(client_key, request)
        return job.result(timeout if timeout is not None else self.config.timeout_seconds)

    def cancel(self, client_key: str) -> bool:
        """Cancel the client's pending job. Returns False if none was pending."""
        with self._lock:
            job = self._jobs.pop(client_key, None)
        if job is None:
            return False
        job.cancel()
        logger.info("EMBEDDING_JOB_CANCELLED", extra={"job_id": job.job_id})
        return True

    def shutdown(self) -> None:
        """Cancel every pending job and stop the standby children."""
        with self._lock:
            self._closed = True
            jobs = list(self._jobs.values())
            self._jobs.clear()
            idle = self._idle
            self._idle = []
        for job in jobs:
            job.cancel()
        for process in idle:
            process.stop()
        logger.info(
            "EMBEDDING_WORKER_SHUTDOWN",
            extra={"cancelled_jobs": len(jobs), "stopped_idle": len(idle)}
        )

    def pending(self, client_key: str) -> Optional[EmbeddingJob]:
        with self._lock:
            return self._jobs.get(client_key)

    def idle_count(self) -> int:
        with self._lock:
            return len(self._idle)

    def _finish(self, job: EmbeddingJob) -> None:
        """Release the client slot; recycle the child or replace it."""
        retired: Optional[WorkerProcess] = None
        with self._lock:
            if self._jobs.get(job.client_key) is job:
                del self._jobs[job.client_key]
            if job.reusable and not self._closed and len(self._idle) < self.config.pool_size:
                job.process.jobs_served += 1
                self._idle.append(job.process)
            else:
                retired = job.process
            if not self._closed:
                self._fill_standby()
        if retired is not None:
            retired.stop()

    def _take_idle(self) -> Optional[WorkerProcess]:
        while self._idle:
            process = self._idle.pop(0)
            if process.is_alive():
                return process
            process.stop()
        return None

    def _fill_standby(self) -> None:
        # Caller holds the lock
        while len(self._idle) < self.config.pool_size:
            self._idle.append(self._spawn())

    def _spawn(self) -> WorkerProcess:
        process = WorkerProcess(self._ctx, self._target, self.config.warm_up)
        logger.info("EMBEDDING_WORKER_STARTED", extra={"pid": process.pid})
        return process

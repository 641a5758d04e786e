"""Per-job worker: runs a task, records metrics, retries with backoff."""

import asyncio
import inspect
from contextlib import suppress
from typing import Any, NoReturn

from pydantic import ValidationError

from .config import WorkerOptions, WorkerSettings, load_settings, validate_options
from .error_cat import ErrorReporter
from .error_cat import error_cat as default_error_cat
from .errors import (
    ErrorKind,
    WorkerStopError,
    WorkerTimeoutError,
    classify_error,
    clear_correlation_id,
    generate_correlation_id,
    set_correlation_id,
)
from .monitor import Monitor, Timer
from .monitor import monitor as default_monitor


async def _maybe_await(value: Any) -> Any:
    """Resolve ``value`` if a sync-or-async callable handed back an awaitable."""
    if inspect.isawaitable(value):
        return await value
    return value


class Worker:
    """Runs one job from a queue.

    A worker is created per consumed message and reused for that message's
    retries. Each call to ``run()``:

    - starts a timer and binds a fresh correlation ID
    - validates the job and runs the task, under ``ms_timeout`` if set
    - on success records ``ponos.finish`` and stops
    - on failure enriches the error with queue/job data, reports it, and
      either schedules another ``run()`` with exponential backoff or stops
      for good (explicit stop, or retry limit reached)
    - always stops the timer and calls ``done`` exactly once
    """

    def __init__(self, options: WorkerOptions, settings: WorkerSettings) -> None:
        """
        Initialize worker.

        Prefer ``Worker.create``, which validates raw options first.

        Args:
            options: Validated worker options
            settings: Environment overrides, already loaded
        """
        self.queue = options.queue
        self.task = options.task
        self.job = options.job
        self.job_schema = options.job_schema
        self.done = options.done
        self.final_retry_fn = options.final_retry_fn
        self.log = options.log.child({"module": "ponos:worker", "queue": options.queue})

        self.ms_timeout = options.ms_timeout if options.ms_timeout is not None else settings.timeout
        self.error_cat: ErrorReporter = (
            options.error_cat if options.error_cat is not None else default_error_cat
        )
        self.monitor: Monitor = options.monitor if options.monitor is not None else default_monitor
        self.monitor_disabled = settings.monitor_disabled
        self.max_num_retries = (
            options.max_num_retries
            if options.max_num_retries is not None
            else settings.max_num_retries
        )
        self.max_retry_delay = (
            options.max_retry_delay
            if options.max_retry_delay is not None
            else settings.max_retry_delay
        )

        self.attempt = 0
        self.retry_delay = min(settings.min_retry_delay, self.max_retry_delay)

        self._retry_handle: asyncio.TimerHandle | None = None
        self._retry_tasks: set[asyncio.Task[None]] = set()

    @classmethod
    def create(cls, settings: WorkerSettings | None = None, **options: Any) -> "Worker":
        """
        Validate options and build a worker.

        Args:
            settings: Environment overrides; the process-wide
                ``load_settings()`` result when omitted
            **options: Fields of ``WorkerOptions``

        Raises:
            WorkerConfigError: If an option is missing or invalid
        """
        validated = validate_options(options)
        return cls(validated, settings if settings is not None else load_settings())

    def _event_tags(self) -> dict[str, str]:
        """Metric tags derived from the queue name.

        ``a.b.c`` yields token0 ``c``, token1 ``b.c`` and token2 ``a.b.c``;
        a queue without dots only gets token0.
        """
        tokens = self.queue.split(".")
        tags = {"queue": self.queue, "token0": tokens[-1]}
        if len(tokens) > 1:
            tags["token1"] = ".".join(tokens[-2:])
            tags["token2"] = self.queue
        return tags

    def _inc_monitor(self, event_name: str, extra_tags: dict[str, str] | None = None) -> None:
        """Increment ``event_name`` tagged with the queue tags plus ``extra_tags``."""
        if self.monitor_disabled:
            return
        tags = {**self._event_tags(), **(extra_tags or {})}
        self.monitor.increment(event_name, tags)

    def _create_timer(self, event_name: str = "ponos.timer") -> Timer | None:
        """Start a run timer, or return None when monitoring is disabled."""
        if self.monitor_disabled:
            return None
        return self.monitor.timer(event_name, True, self._event_tags())

    async def _validate_job(self) -> None:
        """Check the job against ``job_schema``.

        Raises:
            WorkerStopError: If the job does not match the schema
        """
        if self.job_schema is None:
            return
        try:
            self.job_schema.validate_python(self.job)
        except ValidationError as e:
            raise WorkerStopError(
                "Invalid job",
                data={"validation_error": str(e)},
            ) from e

    async def _call_task(self) -> Any:
        """Run the task; plain functions go to a thread so they don't block the loop."""
        if inspect.iscoroutinefunction(self.task):
            return await self.task(self.job)
        return await _maybe_await(await asyncio.to_thread(self.task, self.job))

    async def _wrap_task(self) -> Any:
        """
        Run the task with the job, racing it against ``ms_timeout``.

        A thread-backed task keeps running after a timeout; only the wait
        is abandoned. Errors the task raises itself, ``TimeoutError``
        included, come back unchanged.

        Raises:
            WorkerTimeoutError: If the task outlives ``ms_timeout``
        """
        self.log.debug("Running task", {"ms_timeout": self.ms_timeout})
        if self.ms_timeout <= 0:
            return await self._call_task()

        task = asyncio.create_task(self._call_task())
        try:
            finished, _ = await asyncio.wait({task}, timeout=self.ms_timeout / 1000)
        except asyncio.CancelledError:
            task.cancel()
            raise
        if not finished:
            task.cancel()
            raise WorkerTimeoutError(self.ms_timeout)
        return task.result()

    def _add_data_to_error(self, err: BaseException) -> NoReturn:
        """Unwrap ``err.cause``, attach queue and job to ``err.data``, re-raise."""
        cause = getattr(err, "cause", None)
        if isinstance(cause, Exception):
            err = cause
        data = getattr(err, "data", None)
        if not isinstance(data, dict):
            # non-dict data is replaced, not preserved
            data = {}
            err.data = data  # type: ignore[attr-defined]
        data.setdefault("queue", self.queue)
        data.setdefault("job", self.job)
        raise err

    def _handle_worker_stop_error(self, err: BaseException) -> NoReturn:
        """Record a fatal failure and re-raise it."""
        self._inc_monitor("ponos.finish-error", {"result": "fatal-error"})
        self.log.error("Worker stop error", {"error": str(err), "attempt": self.attempt})
        raise err

    def _handle_timeout_error(self, err: BaseException) -> NoReturn:
        """Record a timed out attempt and re-raise it."""
        self._inc_monitor("ponos.finish-error", {"result": "timeout-error"})
        self.log.warn("Task timed out", {"ms_timeout": self.ms_timeout, "attempt": self.attempt})
        raise err

    def _handle_task_success(self) -> None:
        """Record a successful attempt."""
        self._inc_monitor("ponos.finish", {"result": "success"})
        self.log.info("Task complete", {"attempt": self.attempt})

    async def _enforce_retry_limit(self, err: Exception) -> NoReturn:
        """
        Re-raise ``err`` while attempts remain; otherwise stop the job.

        At the limit, ``final_retry_fn`` runs once. Whatever it does, the job
        stops.

        Raises:
            Exception: ``err`` itself, if another attempt is allowed
            WorkerStopError: If the retry limit is reached
        """
        if self.attempt < self.max_num_retries:
            raise err

        if self.final_retry_fn is not None:
            try:
                await _maybe_await(self.final_retry_fn())
            except Exception as retry_fn_err:
                self._inc_monitor("ponos.finish-retry-fn-error", {"result": "retry-fn-error"})
                self.log.warn("Final retry function failed", {"error": str(retry_fn_err)})

        self._inc_monitor("ponos.finish-error", {"result": "retry-error"})
        self.log.error(
            "Retry limit reached",
            {"attempt": self.attempt, "max_num_retries": self.max_num_retries},
        )
        raise WorkerStopError(
            "final retry handler finished",
            data={"queue": self.queue, "job": self.job, "attempt": self.attempt},
        ) from err

    async def _retry_with_delay(self) -> None:
        """Schedule another run after ``retry_delay`` ms, then back off."""
        self._inc_monitor("ponos.finish", {"result": "task-error"})
        self.log.warn("Task failed, retrying", {"delay": self.retry_delay, "attempt": self.attempt})

        loop = asyncio.get_running_loop()
        self._retry_handle = loop.call_later(self.retry_delay / 1000, self._start_retry)
        self.retry_delay = min(self.retry_delay * 2, self.max_retry_delay)

    def _start_retry(self) -> None:
        """Timer callback: start the scheduled run."""
        self._retry_handle = None
        task = asyncio.create_task(self.run())
        self._retry_tasks.add(task)
        task.add_done_callback(self._retry_finished)

    def _retry_finished(self, task: asyncio.Task[None]) -> None:
        self._retry_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.log.error("Scheduled run failed", {"error": str(exc), "type": type(exc).__name__})

    def cancel_retry(self) -> None:
        """Cancel a scheduled retry, and any retried run still in progress."""
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None
        for task in list(self._retry_tasks):
            task.cancel()

    async def _report_error(self, err: BaseException) -> None:
        """Hand ``err`` to the error reporter; a failing reporter is only logged."""
        try:
            await _maybe_await(self.error_cat.report(err))
        except Exception as report_err:
            self.log.error("Error reporting failed", {"error": str(report_err)})

    async def _handle_task_failure(self, err: Exception) -> None:
        """Enrich, classify and route a failed attempt."""
        try:
            self._add_data_to_error(err)
        except Exception as enriched:
            err = enriched

        kind = classify_error(err)
        if kind is ErrorKind.STOP:
            with suppress(type(err)):
                self._handle_worker_stop_error(err)
            await self._report_error(err)
            return

        if kind is ErrorKind.TIMEOUT:
            with suppress(type(err)):
                self._handle_timeout_error(err)
        await self._report_error(err)

        try:
            await self._enforce_retry_limit(err)
        except WorkerStopError as stop_err:
            with suppress(WorkerStopError):
                self._handle_worker_stop_error(stop_err)
        except Exception:
            await self._retry_with_delay()

    def _start_timer(self) -> Timer | None:
        """Start the run timer; a failing metrics client only costs the timing."""
        try:
            return self._create_timer()
        except Exception as e:
            self.log.error("Timer start failed", {"error": str(e)})
            return None

    def _stop_timer(self, timer: Timer | None) -> None:
        if timer is None:
            return
        try:
            timer.stop()
        except Exception as e:
            self.log.error("Timer stop failed", {"error": str(e)})

    async def run(self) -> None:
        """Run one attempt of the job. Task and metrics failures never escape."""
        self.attempt += 1
        set_correlation_id(generate_correlation_id())
        timer = self._start_timer()
        self.log.debug("Worker run started", {"attempt": self.attempt})

        try:
            await self._validate_job()
            await self._wrap_task()
        except Exception as err:
            await self._handle_task_failure(err)
        else:
            self._handle_task_success()
        finally:
            try:
                self._stop_timer(timer)
            finally:
                try:
                    await _maybe_await(self.done())
                finally:
                    clear_correlation_id()

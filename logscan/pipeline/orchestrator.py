"""Two-stage scan pipeline driver.

Stage 1 runs one DirectoryScanner task per location and collects the
resulting DirInfo records in a DirInfoQueue. Stage 2 runs one FileProcessor
task per discovered file and hands selected files to the ResultWriter from
the worker thread, so compression of archive entries happens in parallel.

Both stages use the submit-on-demand pattern: at most
threads * prefetch_factor futures are in flight, and new tasks are submitted
as workers complete. Waits are bounded to one second so the driver thread
notices Ctrl+C and stop requests promptly; on a stop, queued futures are
cancelled and running ones get shutdown_grace_s to finish.
"""

import concurrent.futures
import logging
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Optional, Tuple

from logscan.config.models import AppConfig
from logscan.config.registry import LocationRegistry, PatternRegistry
from logscan.domain.events import StopRequested
from logscan.domain.models import DirInfo, FileInfo, JobParameters, ScanContext
from logscan.infrastructure.filesystem import FileSystemSelector
from logscan.pipeline.dirs_queue import DirInfoQueue
from logscan.pipeline.locations import LocationSource
from logscan.pipeline.processor import FileProcessor
from logscan.pipeline.results import ResultAggregator, ResultSnapshot
from logscan.pipeline.scanner import DirectoryScanner
from logscan.pipeline.writers import ResultWriter, build_result_writer

WriterFactory = Callable[[JobParameters, Callable[[], bool]], ResultWriter]
Task = Tuple[Callable[..., Any], tuple]


class Pipeline:
    """Runs scan jobs against the configured locations and patterns.

    Collaborators are injected; the pipeline never looks anything up
    globally. One Pipeline runs one job at a time; the aggregator rejects a
    second concurrent run.

    Args:
        config: AppConfig; general.threads, prefetch_factor, shutdown_grace_s
            and checkpoint_path are used.
        locations: LocationRegistry resolving location ids and groups.
        patterns: PatternRegistry resolving the job's pattern code.
        results: ResultAggregator receiving counters, events and job state.
        selector: FileSystemSelector with a backend per location type.
        writer_factory: builds the ResultWriter for a job (default
            build_result_writer).
    """

    def __init__(
        self,
        config: AppConfig,
        locations: LocationRegistry,
        patterns: PatternRegistry,
        results: ResultAggregator,
        selector: FileSystemSelector,
        writer_factory: Optional[WriterFactory] = None,
    ):
        self.config = config
        self.locations = locations
        self.patterns = patterns
        self.results = results
        self.selector = selector
        self.writer_factory = writer_factory or build_result_writer
        self.scanner = DirectoryScanner(selector, results)
        self.processor = FileProcessor(selector, results, locations)
        self.logger = logging.getLogger(__name__)

        self._fatal_lock = threading.Lock()
        self._fatal: Optional[BaseException] = None

    @property
    def threads(self) -> int:
        return self.config.general.threads

    def cancel(self) -> bool:
        """Requests a graceful stop of the running job."""
        stopped = self.results.request_stop()
        if stopped:
            self.results.event_bus.publish(StopRequested())
        return stopped

    def run(self, params: JobParameters, resume_from: Optional[Path] = None) -> ResultSnapshot:
        """Runs one job to completion, cancellation or failure.

        A cancelled job is not an error: the snapshot reports STOPPED with
        stop_requested set. Fatal errors are recorded on the aggregator and
        re-raised after the job state reached STOPPED.
        """
        self.results.before_run()
        with self._fatal_lock:
            self._fatal = None
        error: Optional[BaseException] = None
        try:
            self._run(params, resume_from)
        except KeyboardInterrupt:
            self.logger.info("Ctrl+C detected - job stopped")
            self.cancel()
        except Exception as exc:
            error = exc
        finally:
            self.results.after_run(error)
        if error is not None:
            raise error
        return self.results.snapshot()

    def _run(self, params: JobParameters, resume_from: Optional[Path]):
        source = LocationSource(self.locations, self.patterns, params)
        try:
            context = source.context
            writer = self.writer_factory(params, self.results.is_stopping)

            if resume_from is not None:
                dirs_queue = DirInfoQueue.load(resume_from)
                pending = dirs_queue.pending()
                self.results.add_files_to_process(sum(len(d.files) for d in pending))
                self.logger.info(f"Resumed {len(pending)} locations from {resume_from}")
            else:
                dirs_queue = self._scan_locations(source, context)

            if self.config.general.checkpoint_path and len(dirs_queue):
                dirs_queue.save(Path(self.config.general.checkpoint_path))

            writer.open()
            try:
                self._process_files(dirs_queue, context, writer)
            finally:
                writer.close()
        finally:
            source.close()

    # --- Stage 1 ---

    def _scan_locations(self, source: LocationSource, context: ScanContext) -> DirInfoQueue:
        dirs_queue = DirInfoQueue()

        def tasks() -> Iterator[Task]:
            while True:
                location = source.read()
                if location is None:
                    return
                yield self.scanner.process, (location, context)

        def on_result(dir_info: Optional[DirInfo]):
            if dir_info is not None:
                dirs_queue.put(dir_info)

        self.logger.info("Discovery started")
        self._drive("scan", tasks(), on_result)
        self.logger.info(
            f"Discovery finished: locations={len(dirs_queue)}, "
            f"files_to_process={self.results.files_to_process}"
        )
        return dirs_queue

    # --- Stage 2 ---

    def _process_files(self, dirs_queue: DirInfoQueue, context: ScanContext, writer: ResultWriter):
        def tasks() -> Iterator[Task]:
            for dir_info in dirs_queue.drain():
                for file in dir_info.files:
                    yield self._process_file, (file, dir_info, context, writer)

        self.logger.info("Processing started")
        self._drive("process", tasks(), None)
        self.logger.info(
            f"Processing finished: processed={self.results.processed_files}, "
            f"selected={self.results.selected_files}"
        )

    def _process_file(self, file: FileInfo, dir_info: DirInfo, context: ScanContext, writer: ResultWriter):
        file_data = self.processor.process(file, dir_info, context)
        if file_data is not None and writer:
            writer.write([file_data])

    # --- Pool driver ---

    def _should_stop(self) -> bool:
        with self._fatal_lock:
            return self.results.is_stopping() or self._fatal is not None

    def _record_fatal(self, exc: BaseException):
        with self._fatal_lock:
            if self._fatal is None:
                self._fatal = exc
        self.logger.error(f"Fatal error: {exc}")
        self.results.request_stop()

    def _drive(self, name: str, tasks: Iterator[Task], on_result: Optional[Callable[[Any], None]]):
        max_inflight = self.threads * self.config.general.prefetch_factor
        in_flight: Dict[concurrent.futures.Future, Task] = {}
        executor = concurrent.futures.ThreadPoolExecutor(max_workers=self.threads, thread_name_prefix=name)

        def submit_batch():
            """Submit tasks up to max_inflight limit"""
            while len(in_flight) < max_inflight and not self._should_stop():
                task = next(tasks, None)
                if task is None:
                    return
                fn, args = task
                in_flight[executor.submit(fn, *args)] = task

        def collect(done):
            for future in done:
                del in_flight[future]
                if future.cancelled():
                    continue
                exc = future.exception()
                if exc is not None:
                    self._record_fatal(exc)
                elif on_result is not None:
                    on_result(future.result())

        drained = True
        try:
            submit_batch()
            while in_flight:
                done, _ = concurrent.futures.wait(
                    set(in_flight),
                    timeout=1.0,
                    return_when=concurrent.futures.FIRST_COMPLETED,
                )
                collect(done)
                if self._should_stop():
                    drained = self._drain(name, in_flight, collect)
                    break
                submit_batch()
        except KeyboardInterrupt:
            self.logger.info("Ctrl+C detected - stopping new tasks")
            self.cancel()
            drained = self._drain(name, in_flight, collect)
        finally:
            if drained:
                executor.shutdown(wait=True)
            else:
                executor.shutdown(wait=False, cancel_futures=True)

        with self._fatal_lock:
            fatal = self._fatal
        if fatal is not None:
            raise fatal

    def _drain(self, name: str, in_flight: Dict, collect: Callable) -> bool:
        """Cancels queued futures and waits for running ones up to the grace period."""
        for future in list(in_flight):
            if not future.done():
                future.cancel()
        grace = self.config.general.shutdown_grace_s
        self.logger.info(f"{name}: waiting for {len(in_flight)} active tasks (max {grace:.0f}s)")
        deadline = time.monotonic() + grace
        while in_flight:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                self.logger.warning(f"{name}: {len(in_flight)} tasks still running after {grace:.0f}s, abandoned")
                return False
            done, _ = concurrent.futures.wait(
                set(in_flight),
                timeout=min(0.2, remaining),
                return_when=concurrent.futures.FIRST_COMPLETED,
            )
            collect(done)
        return True

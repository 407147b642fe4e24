"""Process graphs and their parallel execution.

A `Stage` is a single external program with its arguments and, where
needed, its standard input or output bound to a file. A `Pipeline` is
a chain of stages, where the standard output of each stage is streamed
into the standard input of the next one. A `Task` is a pipeline that
can be submitted to an `Executor`, which runs many independent tasks
using a bounded pool of worker processes.

No shell is involved: every command is run from its argument list.
"""
import logging
import os
import shlex
import subprocess
from contextlib import ExitStack, contextmanager
from functools import partial
from multiprocessing import Pool
from typing import (IO, Any, Callable, Generator, Iterator, List, Optional,
                    Sequence, Union)

from . import utils
from .analysis import Analysis
from .exceptions import PipelineError
from .ranges import GenomicWindow

LOG_FORMAT = "%(asctime)-15s %(message)s"


class Stage:
    """A single external program inside a `Pipeline`."""

    def __init__(
        self,
        args: Sequence[Any],
        stdin: Optional[str] = None,
        stdout: Optional[str] = None,
    ) -> None:
        """Create a stage.

        Args:
            args: the program followed by its arguments. Each argument
                  is converted to a string.
            stdin: a file to be used as standard input.
            stdout: a file that is truncated and used as standard
                    output.
        """
        if not args:
            raise ValueError("a stage needs at least the program to run")

        self.args = [str(arg) for arg in args]
        self.stdin = stdin
        self.stdout = stdout

    @property
    def program(self) -> str:
        """Get the name of the program, without the directory."""
        return os.path.basename(self.args[0])

    def __str__(self) -> str:
        out = " ".join(shlex.quote(arg) for arg in self.args)
        if self.stdin is not None:
            out += " < %s" % shlex.quote(self.stdin)
        if self.stdout is not None:
            out += " > %s" % shlex.quote(self.stdout)
        return out

    def __repr__(self) -> str:
        return "Stage(%s)" % self


class Pipeline(List[Stage]):
    """A chain of stages connected through anonymous pipes.

    Only the first stage can read from a file and only the last stage
    can write to a file.
    """

    def __init__(self, stages: Sequence[Stage]) -> None:
        super().__init__(stages)
        if not self:
            raise ValueError("a pipeline needs at least one stage")

        for index, stage in enumerate(self):
            if index != 0 and stage.stdin is not None:
                raise ValueError(
                    "only the first stage can read from a file (%s)" % stage
                )
            if index != len(self) - 1 and stage.stdout is not None:
                raise ValueError(
                    "only the last stage can write to a file (%s)" % stage
                )

    def __str__(self) -> str:
        return " | ".join(str(stage) for stage in self)


class Task:
    """An independent pipeline that can be run by an `Executor`."""

    def __init__(
        self,
        name: str,
        pipeline: Union[Pipeline, Sequence[Stage]],
        output: Optional[str] = None,
        stderr: Optional[str] = None,
        finalizer: Optional[Callable[[str], None]] = None,
        window: Optional[GenomicWindow] = None,
    ) -> None:
        """Create a task.

        Args:
            name: a human readable name, used for logging.
            pipeline: the process graph to run.
            output: the file the task is expected to produce. When
                    specified, the task fails if the file is missing or
                    empty after the pipeline is completed.
            stderr: a file collecting the standard error of all the
                    stages. If not specified, the standard error is
                    inherited.
            finalizer: a picklable function called with `output` in
                       the worker process after the pipeline succeeds.
            window: the genomic window the task is bound to, if any.
        """
        self.name = name
        self.pipeline = (
            pipeline if isinstance(pipeline, Pipeline) else Pipeline(pipeline)
        )
        self.output = output
        self.stderr = stderr
        self.finalizer = finalizer
        self.window = window

    def __repr__(self) -> str:
        return "Task(%s: %s)" % (self.name, self.pipeline)


class TaskResult:
    """The outcome of a `Task`: success with its output or a failure."""

    def __init__(
        self,
        name: str,
        success: bool,
        output: Optional[str] = None,
        reason: Optional[str] = None,
        window: Optional[GenomicWindow] = None,
    ) -> None:
        self.name = name
        self.success = success
        self.output = output
        self.reason = reason
        self.window = window

    @classmethod
    def succeeded(cls, task: Task) -> "TaskResult":
        return cls(task.name, True, output=task.output, window=task.window)

    @classmethod
    def failed(cls, task: Task, reason: str) -> "TaskResult":
        return cls(task.name, False, reason=reason, window=task.window)

    def __repr__(self) -> str:
        if self.success:
            return "TaskResult(%s: ok)" % self.name
        return "TaskResult(%s: %s)" % (self.name, self.reason)


def run_pipeline(pipeline: Pipeline, stderr: Optional[str] = None) -> List[int]:
    """Run a pipeline and wait for all its stages.

    The standard input of the first stage, when not bound to a file, is
    `/dev/null`. The same applies to the standard output of the last
    stage.

    Returns:
        List[int]: the exit status of each stage.

    """
    processes: List[subprocess.Popen] = []
    with ExitStack() as stack:
        stderr_fd: Optional[IO[bytes]] = None
        if stderr is not None:
            stderr_fd = stack.enter_context(open(stderr, "ab"))

        first, last = pipeline[0], pipeline[-1]
        previous_stdout: Any = subprocess.DEVNULL
        if first.stdin is not None:
            previous_stdout = stack.enter_context(open(first.stdin, "rb"))

        last_stdout: Any = subprocess.DEVNULL
        if last.stdout is not None:
            last_stdout = stack.enter_context(open(last.stdout, "wb"))

        try:
            for index, stage in enumerate(pipeline):
                is_last = index == len(pipeline) - 1
                process = subprocess.Popen(
                    stage.args,
                    stdin=previous_stdout,
                    stdout=last_stdout if is_last else subprocess.PIPE,
                    stderr=stderr_fd,
                )
                if index != 0:
                    # The upstream process must receive SIGPIPE if this
                    # one exits early.
                    previous_stdout.close()
                previous_stdout = process.stdout
                processes.append(process)
        except BaseException:
            for process in processes:
                process.kill()
                process.wait()
            raise

        return [process.wait() for process in processes]


def _initialize_worker(level: int) -> None:
    logging.basicConfig(format=LOG_FORMAT)
    logging.getLogger("seqrelay").setLevel(level)


def run_task(task: Task, logger_name: str, verbose: bool) -> TaskResult:
    """Run a task, converting any failure of the task into a result.

    This function is executed inside the worker processes. A failure of
    the task never raises: only errors that prevent the creation of
    processes at all (i.e. resource exhaustion) are propagated.
    """
    logger = logging.getLogger(logger_name)
    logger.log(
        logging.INFO if verbose else logging.DEBUG, "Running command: %s", task.pipeline
    )

    try:
        statuses = run_pipeline(task.pipeline, task.stderr)
    except (FileNotFoundError, PermissionError) as error:
        return TaskResult.failed(task, "cannot start %s: %s" % (task.name, error))

    for stage, status in zip(task.pipeline, statuses):
        if status != 0:
            return TaskResult.failed(
                task, "%s exited with status %d" % (stage.program, status)
            )

    if task.output is not None:
        if not utils.is_nonempty_file(task.output):
            return TaskResult.failed(task, "%s is missing or empty" % task.output)

        if task.finalizer is not None:
            try:
                task.finalizer(task.output)
            except Exception as error:
                return TaskResult.failed(
                    task, "post-processing of %s failed: %s" % (task.output, error)
                )

    return TaskResult.succeeded(task)


class Executor:
    """Run external processes on behalf of an `Analysis`.

    `run` executes a batch of independent tasks with bounded
    concurrency, `run_pipeline` runs a single mandatory pipeline and
    `capture` returns the standard output of a single command.
    """

    def __init__(self, analysis: Analysis) -> None:
        self.analysis = analysis

    def _log_command(self, command: Any) -> None:
        self.analysis.logger.log(
            logging.INFO if self.analysis.verbose else logging.DEBUG,
            "Running command: %s",
            command,
        )

    def run(self, tasks: Sequence[Task], jobs: int) -> List[TaskResult]:
        """Run all the tasks, with at most `jobs` of them concurrently.

        The call blocks until every task is terminated. The results are
        returned in the same order of `tasks`. A failed task does not
        stop the others and it is not considered an error of the batch.

        Tasks that exchange data through named pipes must be run with
        `jobs` greater than or equal to the number of tasks, otherwise
        a writer could wait forever for a reader that is never started.
        """
        if not tasks:
            return []

        jobs = max(1, min(jobs, len(tasks)))
        logger = self.analysis.logger
        logger.info("Running %d tasks using %d parallel jobs", len(tasks), jobs)

        worker = partial(
            run_task, logger_name=logger.name, verbose=self.analysis.verbose
        )
        try:
            with Pool(
                jobs, initializer=_initialize_worker, initargs=(logger.level,)
            ) as pool:
                results = pool.map(worker, tasks, chunksize=1)
        except OSError as error:
            raise PipelineError("cannot run the batch of tasks: %s" % error) from error

        for task, result in zip(tasks, results):
            if not result.success:
                logger.warning("Task %s failed: %s", result.name, result.reason)
                if task.stderr is not None:
                    for line in utils.tail_lines(task.stderr):
                        logger.warning("  %s", line)

        logger.info(
            "%d of %d tasks completed successfully",
            sum(1 for result in results if result.success),
            len(results),
        )
        return results

    def run_pipeline(
        self, pipeline: Union[Pipeline, Sequence[Stage]], error_string: str
    ) -> None:
        """Run a single pipeline that must succeed.

        Raises:
            PipelineError: if any stage cannot be started or exits with
                           a non-zero status. `error_string` is used as
                           the message.

        """
        if not isinstance(pipeline, Pipeline):
            pipeline = Pipeline(pipeline)

        self._log_command(pipeline)
        try:
            statuses = run_pipeline(pipeline)
        except OSError as error:
            self.analysis.logger.error("cannot run %s: %s", pipeline, error)
            raise PipelineError(error_string) from error

        failed = False
        for stage, status in zip(pipeline, statuses):
            if status != 0:
                self.analysis.logger.error(
                    "%s exited with status %d", stage.program, status
                )
                failed = True

        if failed:
            raise PipelineError(error_string)

    @contextmanager
    def stream(
        self, args: Sequence[Any], error_string: str
    ) -> Generator[Iterator[str], None, None]:
        """Run a command and give access to the lines of its output.

        The output can be partially consumed: when the context is left
        before the end of the output, the process is terminated and its
        exit status is ignored. If the whole output has been read, a
        non-zero exit status raises a `PipelineError`.
        """
        args = [str(arg) for arg in args]
        self._log_command(" ".join(shlex.quote(arg) for arg in args))
        try:
            process = subprocess.Popen(
                args,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                universal_newlines=True,
            )
        except OSError as error:
            raise PipelineError("%s: %s" % (error_string, error)) from error

        assert process.stdout is not None
        stdout = process.stdout
        exhausted = False

        def lines() -> Iterator[str]:
            nonlocal exhausted
            yield from stdout
            exhausted = True

        try:
            yield lines()
        finally:
            completed = exhausted or process.poll() is not None
            if not completed:
                process.terminate()
            stdout.close()
            status = process.wait()

        if completed and status != 0:
            raise PipelineError(
                "%s: %s exited with status %d"
                % (error_string, os.path.basename(args[0]), status)
            )

    def capture(self, args: Sequence[Any], error_string: str) -> str:
        """Run a single command and return its standard output."""
        args = [str(arg) for arg in args]
        self._log_command(" ".join(shlex.quote(arg) for arg in args))
        try:
            completed = subprocess.run(
                args,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                universal_newlines=True,
            )
        except OSError as error:
            raise PipelineError("%s: %s" % (error_string, error)) from error

        for line in completed.stderr.split("\n"):
            if line != "":
                self.analysis.logger.warning(line)

        if completed.returncode != 0:
            raise PipelineError(
                "%s: %s exited with status %d"
                % (error_string, os.path.basename(args[0]), completed.returncode)
            )

        return completed.stdout

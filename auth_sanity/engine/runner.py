"""Run coordinator: executes sequences against a live target.

``RunCoordinator.run()`` executes one sequence's steps strictly in order
against the shared ``InstanceState``.  Every run-time problem is converted
into a verdict at step granularity, so a sequence always yields a report
covering each step that was reached:

- a ``precondition`` step that does not pass turns every later step of
  its sequence into a skip
- ``MissingStateError`` / ``StateContractError`` become ``error`` verdicts
  and halt the owning sequence (they point at an ordering or engine bug)
- transport errors (``requests.RequestException``) and undecodable
  responses become ``fail`` verdicts
- any other exception becomes an ``error`` verdict

Only ``ConfigurationError``, ``MetadataValidationError`` and
``OrderingError`` propagate; they mean no trustworthy verdicts can be made.

``RunCoordinator.run_plan()`` executes a whole plan, optionally running
sequences with no dependency edge between them on a thread pool.  State
merges are serialized by the bag's own lock, never by holding a lock
across network I/O.
"""

import logging
import threading
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import requests

from ..config import RunConfig
from ..errors import (
    ConfigurationError,
    MetadataValidationError,
    MissingStateError,
    OrderingError,
    StateContractError,
)
from ..http_client import HTTPClient
from ..tls_tester import TLSTester
from .report import RunReport, SequenceRunReport
from .sequence import Sequence, Step
from .state import InstanceState
from .verdict import ERROR, FAIL, PASS, WARN, StepResult, Verdict

logger = logging.getLogger(__name__)

_FATAL = (ConfigurationError, MetadataValidationError, OrderingError)


class Target:
    """The server under test, as seen by step bodies.

    Bundles the HTTP client, the run configuration and a factory for
    pinned-version TLS testers.

    Args:
        client:             HTTP client used for protocol requests.
        config:             Run configuration.
        tls_tester_factory: Callable building a ``TLSTester``; tests pass one
                            with a simulated connector.
    """

    def __init__(
        self,
        client: HTTPClient,
        config: Optional[RunConfig] = None,
        tls_tester_factory: Callable[..., TLSTester] = TLSTester,
    ):
        self.client = client
        self.config = config or RunConfig()
        self._tls_tester_factory = tls_tester_factory

    @classmethod
    def from_config(cls, config: RunConfig) -> "Target":
        client = HTTPClient(
            token=config.token,
            tls_no_verify=config.tls_no_verify,
            timeout=config.timeout,
            proxy=config.proxy,
            ca_bundle=config.ca_bundle,
        )
        return cls(client, config)

    def tls_tester(self, uri: str) -> TLSTester:
        return self._tls_tester_factory(
            uri=uri,
            timeout=self.config.tls_timeout,
            ca_bundle=self.config.ca_bundle,
        )


class StepContext:
    """Everything a step body may touch.

    Reads go through ``require()``/``get()`` and are checked against the
    sequence's declared ``requires``/``defines``.  Writes are declared with
    ``define()`` and merged by the coordinator only if the step passes.
    ``scratch`` carries data between steps of the same sequence run.
    """

    def __init__(
        self,
        sequence: Sequence,
        step: Step,
        state: InstanceState,
        target: Target,
        scratch: Dict[str, Any],
    ):
        self.sequence = sequence
        self.step = step
        self.target = target
        self.scratch = scratch
        self._state = state
        self.defined: Dict[str, Any] = {}
        self.warnings: List[Verdict] = []

    @property
    def client(self) -> HTTPClient:
        return self.target.client

    @property
    def config(self) -> RunConfig:
        return self.target.config

    def tls_tester(self, uri: str) -> TLSTester:
        return self.target.tls_tester(uri)

    def _check_readable(self, key: str) -> None:
        if key not in self.sequence.requires and key not in self.sequence.defines:
            raise StateContractError(
                f"Sequence '{self.sequence.name}' read undeclared state key '{key}'"
            )

    def require(self, key: str) -> Any:
        """Return a required state value.

        Raises:
            MissingStateError: if the key is absent or ``None``.
            StateContractError: if the sequence does not declare the key.
        """
        self._check_readable(key)
        value = self._state.get(key)
        if value is None:
            raise MissingStateError(key, self.sequence.name)
        return value

    def get(self, key: str, default: Any = None) -> Any:
        self._check_readable(key)
        value = self._state.get(key)
        return default if value is None else value

    def define(self, key: str, value: Any) -> None:
        """Declare a state update, merged after the step passes.

        Raises:
            StateContractError: if ``key`` is outside the sequence's ``defines``.
        """
        if key not in self.sequence.defines:
            raise StateContractError(
                f"Sequence '{self.sequence.name}' tried to define undeclared key '{key}'"
            )
        self.defined[key] = value

    def warning(self, verdict: Verdict) -> Verdict:
        """Attach ``verdict`` as a non-blocking warning if it is a failure.

        Passing and skipped verdicts are dropped.  The primary verdict of the
        step is never affected.
        """
        if verdict.status in (FAIL, WARN, ERROR):
            self.warnings.append(Verdict.warning(verdict.message))
        return verdict


class RunCoordinator:
    """Executes sequences and plans against one instance state bag.

    Args:
        cancel_event: Shared cancellation signal.  Once set no new step or
                      sequence starts; in-flight network calls are left to
                      complete or time out.
    """

    def __init__(self, cancel_event: Optional[threading.Event] = None):
        self.cancel_event = cancel_event or threading.Event()

    def cancel(self) -> None:
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    # -- Single sequence -----------------------------------------------------

    def run(self, sequence: Sequence, state: InstanceState, target: Target) -> SequenceRunReport:
        """Execute ``sequence``'s steps in declared order."""
        logger.info("Running sequence %s (%s)", sequence.name, sequence.title)
        results: List[StepResult] = []
        scratch: Dict[str, Any] = {}
        skip_reason: Optional[str] = None
        halted = False
        cancelled = False

        for step in sequence.steps:
            if self.cancelled:
                cancelled = True
                logger.info("Sequence %s cancelled before %s", sequence.name, sequence.test_id(step))
                break

            test_id = sequence.test_id(step)
            optional = step.optional or sequence.optional

            if skip_reason is not None:
                results.append(StepResult(test_id, step.name, Verdict.skip(skip_reason), optional=optional))
                continue

            ctx = StepContext(sequence, step, state, target, scratch)
            verdict, halt = self._execute(sequence, step, ctx)

            if verdict.status in (PASS, WARN) and ctx.defined:
                try:
                    state.merge(ctx.defined)
                except StateContractError as exc:
                    logger.warning("%s: state merge rejected: %s", test_id, exc)
                    verdict, halt = Verdict.error(str(exc)), True

            result = StepResult(test_id, step.name, verdict, tuple(ctx.warnings), optional=optional)
            results.append(result)
            logger.debug("%s %s: %s %s", test_id, step.name, verdict.status, verdict.message)

            if halt:
                halted = True
                logger.warning("Sequence %s halted at %s: %s", sequence.name, test_id, verdict.message)
                break
            if step.precondition and verdict.status not in (PASS, WARN):
                skip_reason = f"Skipped because {test_id} ({step.name}) did not pass"

        report = SequenceRunReport(
            sequence=sequence,
            results=results,
            state=state.snapshot(sequence.requires | sequence.defines),
            cancelled=cancelled,
            halted=halted,
        )
        logger.info(
            "Finished sequence %s: %d step(s), %d failure(s)",
            sequence.name, len(results), report.failure_count,
        )
        return report

    def _execute(self, sequence: Sequence, step: Step, ctx: StepContext) -> Tuple[Verdict, bool]:
        """Run one step body.  Returns ``(verdict, halt_sequence)``."""
        test_id = sequence.test_id(step)
        try:
            verdict = step.body(ctx)
        except _FATAL:
            raise
        except (MissingStateError, StateContractError) as exc:
            logger.warning("%s: %s", test_id, exc)
            return Verdict.error(str(exc)), True
        except requests.RequestException as exc:
            logger.warning("%s: transport error: %s", test_id, exc)
            return Verdict.fail(f"Transport error: {exc}"), False
        except ValueError as exc:
            logger.warning("%s: invalid response: %s", test_id, exc)
            return Verdict.fail(f"Invalid response: {exc}"), False
        except Exception as exc:
            logger.warning("%s: unexpected error", test_id, exc_info=True)
            return Verdict.error(f"{type(exc).__name__}: {exc}"), False

        if verdict is None:
            return Verdict.passed(), False
        if not isinstance(verdict, Verdict):
            return Verdict.error(f"Step body returned {type(verdict).__name__}, not a Verdict"), False
        return verdict, False

    # -- Whole plan ----------------------------------------------------------

    def run_plan(
        self,
        plan: List[Sequence],
        state: InstanceState,
        target: Target,
        max_workers: int = 1,
    ) -> RunReport:
        """Execute every sequence in ``plan``.

        With ``max_workers > 1`` a sequence starts as soon as all earlier
        sequences it shares state with have finished.  Reports are returned
        in plan order; sequences never started (because of cancellation)
        are absent.
        """
        reports: Dict[str, SequenceRunReport] = {}

        if max_workers <= 1:
            for sequence in plan:
                if self.cancelled:
                    logger.info("Run cancelled; not starting %s", sequence.name)
                    break
                reports[sequence.name] = self.run(sequence, state, target)
        else:
            self._run_parallel(plan, state, target, max_workers, reports)

        return RunReport(
            [reports[s.name] for s in plan if s.name in reports],
            cancelled=self.cancelled,
        )

    def _run_parallel(
        self,
        plan: List[Sequence],
        state: InstanceState,
        target: Target,
        max_workers: int,
        reports: Dict[str, SequenceRunReport],
    ) -> None:
        waits_for = plan_edges(plan)
        pending = list(plan)
        finished: Set[str] = set()
        running: Dict[Any, Sequence] = {}

        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="sequence") as pool:
            while pending or running:
                if self.cancelled:
                    if pending:
                        logger.info("Run cancelled; not starting %s", ", ".join(s.name for s in pending))
                    pending = []
                for sequence in list(pending):
                    if waits_for[sequence.name] <= finished:
                        pending.remove(sequence)
                        running[pool.submit(self.run, sequence, state, target)] = sequence
                if not running:
                    break
                done, _ = wait(list(running), return_when=FIRST_COMPLETED)
                for future in done:
                    sequence = running.pop(future)
                    reports[sequence.name] = future.result()
                    finished.add(sequence.name)


def plan_edges(plan: List[Sequence]) -> Dict[str, Set[str]]:
    """For each sequence, the earlier sequences it must not overlap with.

    Two sequences conflict when one writes a key the other reads or writes.
    """
    edges: Dict[str, Set[str]] = {s.name: set() for s in plan}
    for index, later in enumerate(plan):
        for earlier in plan[:index]:
            if (earlier.defines & (later.requires | later.defines)) or (earlier.requires & later.defines):
                edges[later.name].add(earlier.name)
    return edges

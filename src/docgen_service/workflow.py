"""
Interface to the external generation workflow.

A workflow is any async callable `(request, on_progress) -> result`. It reports node
lifecycle through typed progress events; the dispatcher decides what to do with them
(status events on a stream, nothing for sync/async runs).
"""

from __future__ import annotations

import importlib
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, TypeVar, Union

import anyio

logger = logging.getLogger(__name__)

T = TypeVar("T")


class WorkflowNotConfigured(RuntimeError):
    pass


@dataclass
class WorkflowRequest:
    input_as_text: str
    conversation_id: Optional[str] = None
    attachments: List[Dict[str, Any]] = field(default_factory=list)
    history: List[Dict[str, Any]] = field(default_factory=list)
    options: Dict[str, Any] = field(default_factory=dict)

    def conversation(self) -> List[Dict[str, Any]]:
        """Prior history followed by the current user message."""
        current = {"role": "user", "content": [{"type": "input_text", "text": self.input_as_text}]}
        return [*self.history, current]


@dataclass(frozen=True)
class NodeStarted:
    node: str
    step: int = 0


@dataclass(frozen=True)
class NodeRunning:
    node: str
    step: int = 0
    elapsed_ms: int = 0


@dataclass(frozen=True)
class NodeCompleted:
    node: str
    step: int = 0
    duration_ms: int = 0


@dataclass(frozen=True)
class NodeFailed:
    node: str
    step: int = 0
    duration_ms: int = 0
    error: str = ""


ProgressEvent = Union[NodeStarted, NodeRunning, NodeCompleted, NodeFailed]
ProgressSink = Callable[[ProgressEvent], Awaitable[None]]


class Workflow(Protocol):
    async def __call__(self, request: WorkflowRequest, on_progress: Optional[ProgressSink] = None) -> Any:
        ...


def describe_progress(event: ProgressEvent) -> Dict[str, Any]:
    """Status-event payload for a progress event: phase, node fields and a readable message."""
    if isinstance(event, NodeStarted):
        return {"phase": "node_started", "node": event.node, "step": event.step, "message": f"Started {event.node}"}
    if isinstance(event, NodeRunning):
        seconds = event.elapsed_ms / 1000.0
        return {
            "phase": "node_running",
            "node": event.node,
            "step": event.step,
            "elapsed_ms": event.elapsed_ms,
            "message": f"{event.node} running ({seconds:.1f}s)",
        }
    if isinstance(event, NodeCompleted):
        seconds = event.duration_ms / 1000.0
        return {
            "phase": "node_completed",
            "node": event.node,
            "step": event.step,
            "duration_ms": event.duration_ms,
            "message": f"{event.node} completed in {seconds:.1f}s",
        }
    if isinstance(event, NodeFailed):
        seconds = event.duration_ms / 1000.0
        return {
            "phase": "node_failed",
            "node": event.node,
            "step": event.step,
            "duration_ms": event.duration_ms,
            "message": f"{event.node} failed after {seconds:.1f}s",
        }
    raise TypeError(f"Unknown progress event {type(event).__name__}")


async def run_node(
    node: str,
    step: int,
    fn: Callable[[], Awaitable[T]],
    on_progress: Optional[ProgressSink],
    *,
    tick_interval: float = 5.0,
) -> T:
    """
    Run one workflow node, reporting started / running ticks / completed or failed.

    The node's own exception is re-raised after the failure event.
    """
    started = time.perf_counter()

    def _elapsed_ms() -> int:
        return int((time.perf_counter() - started) * 1000)

    async def _notify(event: ProgressEvent) -> None:
        if on_progress is None:
            return
        try:
            await on_progress(event)
        except Exception as e:
            logger.warning("Progress sink failed for %s: %s", node, e)

    async def _ticker() -> None:
        while True:
            await anyio.sleep(tick_interval)
            await _notify(NodeRunning(node=node, step=step, elapsed_ms=_elapsed_ms()))

    await _notify(NodeStarted(node=node, step=step))
    outcome: Dict[str, Any] = {}
    async with anyio.create_task_group() as tg:
        tg.start_soon(_ticker)
        try:
            outcome["value"] = await fn()
        except Exception as e:
            outcome["error"] = e
        finally:
            tg.cancel_scope.cancel()

    if "error" in outcome:
        err = outcome["error"]
        await _notify(NodeFailed(node=node, step=step, duration_ms=_elapsed_ms(), error=str(err)))
        raise err
    await _notify(NodeCompleted(node=node, step=step, duration_ms=_elapsed_ms()))
    return outcome["value"]


def load_workflow(path: Optional[str]) -> Workflow:
    """
    Resolve the workflow from `module:attr`.

    A class (or zero-arg factory returning a workflow) is instantiated; a coroutine function is
    used as-is. No path selects the built-in DSPy drafting workflow.
    """
    if not path:
        from docgen_service.drafting import DraftingWorkflow

        return DraftingWorkflow()

    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise WorkflowNotConfigured(f"DOCGEN_WORKFLOW must look like 'package.module:attr', got {path!r}")
    try:
        target = getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as e:
        raise WorkflowNotConfigured(f"Cannot load workflow {path!r}: {e}") from e

    if inspect.isclass(target):
        return target()
    if inspect.iscoroutinefunction(target):
        return target
    if inspect.isfunction(target):
        candidate = target()
        if callable(candidate):
            return candidate
    elif callable(target):
        return target
    raise WorkflowNotConfigured(f"{path!r} is not a workflow")


__all__ = [
    "NodeCompleted",
    "NodeFailed",
    "NodeRunning",
    "NodeStarted",
    "ProgressEvent",
    "ProgressSink",
    "Workflow",
    "WorkflowNotConfigured",
    "WorkflowRequest",
    "describe_progress",
    "load_workflow",
    "run_node",
]

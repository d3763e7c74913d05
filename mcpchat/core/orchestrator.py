"""
mcpchat Conversation Orchestrator - The think / call tools / repeat loop.

One orchestrator owns one chat session. Each user message starts a turn:

1. Ask the model for the next message, sending the whole history and the
   translated tool list.
2. Append the reply to history and show it to the user (reasoning markup
   removed).
3. If the reply requests tools, run them through the capability registry,
   append every result as a ``tool`` message in request order, and go back
   to step 1.

A turn ends when the model answers without tool calls, when the model call
fails, or after ``max_iterations`` model calls.
"""

import logging
import re
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum
from typing import Callable, List, Optional, Sequence

from mcpchat.core.history import ConversationHistory, DisplayMessage
from mcpchat.mcp.registry import CapabilityRegistry
from mcpchat.mcp.schema import ToolCallResult
from mcpchat.providers.base import ChatMessage, Provider, ProviderError, ToolCall, ToolDefinition

logger = logging.getLogger(__name__)

MAX_CONVERSATION_TURNS = 10
MAX_PARALLEL_TOOL_CALLS = 8

STATUS_THINKING = "Thinking..."
STATUS_EXECUTING_TOOL = "Executing tool: {}..."
ERROR_NO_RESPONSE = "No response received from the AI model. Please try again."
ERROR_PROCESSING = "An error occurred while processing your message. Please try again."
TOO_COMPLEX_NOTICE = "The conversation has become too complex. Please try rephrasing your request."
NULL_ARGUMENTS_ERROR = "No arguments provided"

THINK_TAG_PATTERN = re.compile(r"<think>(.*?)</think>", re.IGNORECASE | re.DOTALL)


def strip_thinking(content: Optional[str]) -> str:
    """Remove ``<think>...</think>`` blocks and surrounding whitespace."""
    if not content:
        return ""
    return THINK_TAG_PATTERN.sub("", content).strip()


def extract_thinking(content: Optional[str]) -> str:
    """Return the text inside all ``<think>`` blocks, one block per line."""
    if not content:
        return ""
    return "\n".join(m.strip() for m in THINK_TAG_PATTERN.findall(content))


class OrchestratorState(str, Enum):
    IDLE = "idle"
    AWAITING_MODEL = "awaiting_model"
    TOOL_CALLS_PENDING = "tool_calls_pending"
    EXECUTING_TOOLS = "executing_tools"


class ConversationOrchestrator:
    """
    Drives one chat session against a model and a capability registry.

    A session handles one user message at a time: a second submission while
    a turn is running is ignored, not queued. Separate orchestrators may run
    concurrently against the same registry.

    Example:
        >>> orchestrator = ConversationOrchestrator(
        ...     provider=OllamaProvider("llama3.2"),
        ...     registry=registry,
        ...     system_prompt=build_system_prompt(tools, resources, prompts),
        ...     tools=translate_tools(tools),
        ...     on_message=lambda m: print(m.content),
        ... )
        >>> orchestrator.submit_user_message("What files are in the project?")
        True
    """

    def __init__(
        self,
        provider: Provider,
        registry: CapabilityRegistry,
        system_prompt: Optional[str] = None,
        tools: Sequence[ToolDefinition] = (),
        on_message: Optional[Callable[[DisplayMessage], None]] = None,
        on_thinking_status: Optional[Callable[[str], None]] = None,
        on_thinking_finished: Optional[Callable[[], None]] = None,
        max_iterations: int = MAX_CONVERSATION_TURNS,
        parallel_tool_calls: bool = False,
    ):
        if provider is None:
            raise ValueError("Provider is required")
        if registry is None:
            raise ValueError("Capability registry is required")

        self.provider = provider
        self.registry = registry
        self.tools: List[ToolDefinition] = list(tools or [])
        self.max_iterations = max_iterations
        self.parallel_tool_calls = parallel_tool_calls
        self.on_message = on_message
        self.on_thinking_status = on_thinking_status
        self.on_thinking_finished = on_thinking_finished

        self._history = ConversationHistory(system_prompt)
        self._turn_lock = threading.Lock()
        self._state = OrchestratorState.IDLE
        self._worker: Optional[ThreadPoolExecutor] = None

        logger.info("Created orchestrator for model: %s", provider.model)

    # ── Public API ────────────────────────────────────────────────────────

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def is_processing(self) -> bool:
        return self._turn_lock.locked()

    @property
    def history(self) -> List[ChatMessage]:
        return self._history.messages()

    @property
    def history_size(self) -> int:
        return len(self._history)

    def submit_user_message(self, text: str) -> bool:
        """
        Run one full turn on the calling thread.

        Returns:
            False without touching history if a turn is already running.
        """
        if text is None:
            raise TypeError("User input cannot be None")
        if not self._turn_lock.acquire(blocking=False):
            logger.warning("Already processing a message, ignoring new request")
            return False
        self._run_locked(text)
        return True

    def submit_in_background(self, text: str) -> "Future[bool]":
        """Like :meth:`submit_user_message` but runs the turn on a worker thread."""
        if text is None:
            raise TypeError("User input cannot be None")
        if not self._turn_lock.acquire(blocking=False):
            logger.warning("Already processing a message, ignoring new request")
            rejected: Future = Future()
            rejected.set_result(False)
            return rejected

        try:
            return self._executor().submit(self._run_locked_background, text)
        except RuntimeError:
            self._turn_lock.release()
            raise

    def clear_history(self) -> None:
        """Drop every message except the original system prompt."""
        self._history.clear()
        logger.info("Cleared conversation history")

    def close(self) -> None:
        """Stop the background worker, if one was started."""
        if self._worker is not None:
            self._worker.shutdown(wait=True)
            self._worker = None

    # ── Turn handling ─────────────────────────────────────────────────────

    def _executor(self) -> ThreadPoolExecutor:
        if self._worker is None:
            self._worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="mcpchat-turn")
        return self._worker

    def _run_locked_background(self, text: str) -> bool:
        self._run_locked(text)
        return True

    def _run_locked(self, text: str) -> None:
        try:
            self._history.add_user_message(text)
            logger.debug("Processing user message: %s", text[:100] + ("..." if len(text) > 100 else ""))
            self._turn_loop()
        except Exception:
            logger.exception("Error processing user message")
            self._display_error(ERROR_PROCESSING)
        finally:
            self._state = OrchestratorState.IDLE
            self._turn_lock.release()
            self._notify_finished()

    def _turn_loop(self) -> None:
        model_calls = 0
        while True:
            if model_calls >= self.max_iterations:
                logger.warning("Reached maximum conversation turns (%d)", self.max_iterations)
                self._display(TOO_COMPLEX_NOTICE)
                return
            model_calls += 1

            self._state = OrchestratorState.AWAITING_MODEL
            self._update_status(STATUS_THINKING)

            message = self._call_model()
            if message is None:
                self._display_error(ERROR_NO_RESPONSE)
                return

            self._history.add(message)
            display = strip_thinking(message.content)
            if display:
                self._display(display)
            else:
                logger.debug("Assistant message had no displayable content")

            if not message.has_tool_calls:
                return

            self._state = OrchestratorState.TOOL_CALLS_PENDING
            self._run_tool_calls(message.tool_calls)

    def _call_model(self) -> Optional[ChatMessage]:
        try:
            response = self.provider.chat(self._history.messages(), self.tools)
        except ProviderError as exc:
            logger.error("Error calling model '%s': %s", self.provider.model, exc)
            return None
        except Exception:
            logger.exception("Unexpected error calling model '%s'", self.provider.model)
            return None

        if response is None or response.message is None:
            return None
        return response.message

    # ── Tool calls ────────────────────────────────────────────────────────

    def _run_tool_calls(self, tool_calls: List[ToolCall]) -> None:
        logger.info("Processing %d tool calls", len(tool_calls))
        self._state = OrchestratorState.EXECUTING_TOOLS

        if self.parallel_tool_calls and len(tool_calls) > 1:
            workers = min(len(tool_calls), MAX_PARALLEL_TOOL_CALLS)
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="mcpchat-tool") as pool:
                # map() yields in submission order, whatever order calls finish in
                results = list(pool.map(self._execute_tool_call, tool_calls))
        else:
            results = [self._execute_tool_call(call) for call in tool_calls]

        for result in results:
            self._history.add_tool_result(result.output)

    def _execute_tool_call(self, tool_call: ToolCall) -> ToolCallResult:
        function = tool_call.function
        if function is None:
            logger.error("Tool call has no function")
            return ToolCallResult.failure("unknown", "Tool call has no function")

        name = function.name
        self._update_status(STATUS_EXECUTING_TOOL.format(name))

        if function.arguments is None:
            logger.error("Tool '%s' called with null arguments", name)
            return ToolCallResult.failure(name, NULL_ARGUMENTS_ERROR)

        try:
            result = self.registry.call_tool(name, function.arguments)
        except Exception as exc:
            logger.exception("Error executing tool '%s'", name)
            return ToolCallResult.failure(name, str(exc))

        if not result.success:
            logger.error("Tool execution failed: %s", result.output)
        return result

    # ── Callbacks ─────────────────────────────────────────────────────────

    def _display(self, content: str) -> None:
        if self.on_message is None:
            logger.debug("No message callback set - message not displayed")
            return
        self.on_message(DisplayMessage(content=content, is_from_user=False))

    def _display_error(self, message: str) -> None:
        logger.error("Displaying error message: %s", message)
        self._display(f"Error: {message}")

    def _update_status(self, status: str) -> None:
        if self.on_thinking_status is not None:
            self.on_thinking_status(status)

    def _notify_finished(self) -> None:
        if self.on_thinking_finished is not None:
            try:
                self.on_thinking_finished()
            except Exception:
                logger.exception("Thinking-finished callback failed")

"""
Agent orchestrator: the per-session tool-calling loop.

One turn runs as an async generator of ``StreamEvent`` objects:

    run_turn(session_id, text, images)
      -> text_delta* (per step)
      -> tool_start / tool_result (per tool call, in model-emitted order)
      -> step_complete (per step)
      -> turn_done | error

State machine per turn:
    idle/terminal -> running -> (waiting_tool -> running)* -> completed | failed | cancelled
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncGenerator

from image_agent.adapters.base import ChatOptions, ModelGateway, ModelResponse, fold_stream_event
from image_agent.errors import (
    CANCELLED,
    INSUFFICIENT_CREDITS,
    INTERNAL_ERROR,
    AgentCancelledError,
    AgentError,
    InsufficientCreditsError,
    SessionBusyError,
    StepLimitExceededError,
)
from image_agent.events import (
    SESSION_END,
    SESSION_START,
    STEP_END,
    STEP_START,
    TOOL_STATUS,
    EventBus,
    SessionEndEvent,
    SessionStartEvent,
    StepEndEvent,
    StepStartEvent,
    StreamEvent,
    ToolStatusEvent,
)
from image_agent.logging import get_logger
from image_agent.models import (
    AgentSession,
    AgentStep,
    ChatMessage,
    SessionError,
    SessionStatus,
    ToolCall,
    ToolExecution,
    ToolExecutionContext,
    ToolExecutionResult,
    ToolExecutionStatus,
)
from image_agent.services import BillingService
from image_agent.state.manager import StateManager
from image_agent.tools.executor import ToolExecutor
from image_agent.tools.registry import ToolRegistry

logger = get_logger("orchestrator")


class Orchestrator:
    """
    Drives model calls and tool executions for agent sessions.

    Many sessions can run concurrently; each session has at most one loop in
    flight, which is the only writer of that session's state.

    Example:
        orchestrator = Orchestrator(state, gateway, executor, registry, billing)
        async for event in orchestrator.run_turn(session_id, "Remove the background", [data_url]):
            print(event.type)
    """

    def __init__(
        self,
        state: StateManager,
        gateway: ModelGateway,
        executor: ToolExecutor,
        registry: ToolRegistry,
        billing: BillingService,
        events: EventBus | None = None,
    ) -> None:
        self.state = state
        self.gateway = gateway
        self.executor = executor
        self.registry = registry
        self.billing = billing
        self.events = events or EventBus()
        self._running: set[str] = set()
        self._cancel_events: dict[str, asyncio.Event] = {}

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def is_running(self, session_id: str) -> bool:
        return session_id in self._running

    def ensure_idle(self, session_id: str) -> None:
        """Raise SessionBusyError if a turn is in flight for the session."""
        if session_id in self._running:
            raise SessionBusyError(f"Session {session_id} is already running", session_id=session_id)

    def cancel(self, session_id: str) -> bool:
        """Signal cancellation. Returns False if no turn is running."""
        event = self._cancel_events.get(session_id)
        if event is None:
            return False
        event.set()
        logger.info("Cancellation requested for session %s", session_id)
        return True

    def _check_cancel(self, cancel_event: asyncio.Event) -> None:
        """Raise AgentCancelledError if the cancellation signal is set."""
        if cancel_event.is_set():
            raise AgentCancelledError("Session cancelled")

    # ------------------------------------------------------------------
    # Turn
    # ------------------------------------------------------------------

    async def run_turn(
        self,
        session_id: str,
        text: str,
        images: list[str] | None = None,
        stream: bool = True,
    ) -> AsyncGenerator[StreamEvent, None]:
        """
        Run one turn for a session.

        Raises SessionNotFoundError or SessionBusyError before any event is
        yielded. Every other failure ends the turn with an ``error`` event and
        a terminal session status; partial progress stays in the session.
        """
        session = self.state.load_session(session_id)
        self.ensure_idle(session_id)
        self._running.add(session_id)
        cancel_event = asyncio.Event()
        self._cancel_events[session_id] = cancel_event
        turn = self._run(session, text, images or [], cancel_event, stream)
        try:
            async for event in turn:
                yield event
        finally:
            try:
                # The loop records its own terminal state when closed early
                await turn.aclose()
            finally:
                self._running.discard(session_id)
                self._cancel_events.pop(session_id, None)

    async def _run(
        self,
        session: AgentSession,
        text: str,
        images: list[str],
        cancel_event: asyncio.Event,
        stream: bool,
    ) -> AsyncGenerator[StreamEvent, None]:
        sid = session.session_id
        config = session.config

        upload_keys = self.state.add_uploads(sid, images)
        self.state.add_message(sid, ChatMessage(role="user", content=text, image_refs=upload_keys))
        self.state.update_session(sid, status=SessionStatus.RUNNING, error=None)
        self.state.save_session(sid)

        logger.info("Session %s: turn started (%d prior steps)", sid, len(session.steps))
        await self.events.emit(
            SESSION_START,
            SessionStartEvent(session_id=sid, user_id=session.user_id, model=config.model, step_index=len(session.steps)),
        )

        tools = self.registry.get_definitions(config.available_tools)
        options = ChatOptions(
            model=config.model,
            system_prompt=config.system_prompt,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
        )
        previous_results = session.tool_results()
        # Step whose assistant message is in history but which is not yet recorded
        step: AgentStep | None = None

        try:
            if len(session.steps) >= config.max_steps:
                raise StepLimitExceededError(
                    f"Session has used all {config.max_steps} steps", max_steps=config.max_steps
                )

            while len(session.steps) < config.max_steps:
                step_index = len(session.steps)
                self._check_cancel(cancel_event)
                await self.events.emit(
                    STEP_START,
                    StepStartEvent(session_id=sid, step_index=step_index, message_count=len(session.messages)),
                )
                logger.debug("Session %s: step %d calling model", sid, step_index)

                response = ModelResponse()
                async for event in self._call_model(session, tools, options, response, stream):
                    event.step = step_index
                    yield event

                assistant = ChatMessage(role="assistant", content=response.content, tool_calls=response.tool_calls)
                self.state.add_message(sid, assistant)
                step = AgentStep(step_index=step_index, assistant_message=assistant, token_usage=response.usage)

                if not response.tool_calls:
                    self.state.add_step(sid, step)
                    completed, step = step, None
                    yield self._step_event(completed)
                    await self._emit_step_end(sid, completed)
                    await self._finish(session, SessionStatus.COMPLETED)
                    yield StreamEvent(
                        type="turn_done",
                        content=response.content,
                        step=step_index,
                        payload={"totalCreditsUsed": session.total_credits_used, "steps": len(session.steps)},
                    )
                    return

                self.state.update_session(sid, status=SessionStatus.WAITING_TOOL)
                fatal: AgentError | None = None
                for call in response.tool_calls:
                    execution = ToolExecution(tool_name=call.name, call_id=call.id, arguments=dict(call.arguments))
                    step.tool_executions.append(execution)

                    if fatal is None and cancel_event.is_set():
                        fatal = AgentCancelledError("Session cancelled")
                    if fatal is not None:
                        reason = "Cancelled" if isinstance(fatal, AgentCancelledError) else f"Skipped: {fatal.message}"
                        result = ToolExecutionResult.failure(reason, CANCELLED)
                        execution.finish(result)
                        self._record_tool_message(sid, call, result)
                        await self._emit_tool_status(sid, step_index, execution)
                        continue

                    yield StreamEvent(
                        type="tool_start",
                        tool_call_id=call.id,
                        tool_name=call.name,
                        args=dict(call.arguments),
                        step=step_index,
                    )
                    await self._emit_tool_status(sid, step_index, execution)

                    result = await self._execute(session, call, execution, step_index, previous_results, images, cancel_event)
                    previous_results[call.id] = result
                    self._record_tool_message(sid, call, result)

                    yield StreamEvent(
                        type="tool_result",
                        tool_call_id=call.id,
                        tool_name=call.name,
                        result=result.to_payload(),
                        step=step_index,
                    )
                    await self._emit_tool_status(sid, step_index, execution)

                    if result.error_code == INSUFFICIENT_CREDITS:
                        fatal = InsufficientCreditsError(result.error or "Insufficient credits", tool=call.name)
                    elif cancel_event.is_set():
                        fatal = AgentCancelledError("Session cancelled")

                self.state.add_step(sid, step)
                self.state.save_session(sid)
                completed, step = step, None
                yield self._step_event(completed)
                await self._emit_step_end(sid, completed)

                if fatal is not None:
                    raise fatal
                self.state.update_session(sid, status=SessionStatus.RUNNING)

            raise StepLimitExceededError(
                f"Reached maxSteps ({config.max_steps}) without a final answer", max_steps=config.max_steps
            )

        except AgentCancelledError as e:
            self._close_open_step(session, step, e.message)
            await self._finish(session, SessionStatus.CANCELLED, e)
            yield self._error_event(e.code, e.message, session)
        except AgentError as e:
            self._close_open_step(session, step, f"Skipped: {e.message}")
            await self._finish(session, SessionStatus.FAILED, e)
            yield self._error_event(e.code, e.message, session)
        except (asyncio.CancelledError, GeneratorExit):
            # Consumer went away mid-turn; record the outcome without yielding
            self._close_open_step(session, step, "Turn aborted by caller")
            self._set_terminal(session, SessionStatus.CANCELLED, SessionError(CANCELLED, "Turn aborted by caller"))
            logger.info("Session %s: turn aborted by caller", sid)
            raise
        except Exception as e:
            logger.exception("Session %s: unexpected error", sid)
            error = AgentError(str(e) or type(e).__name__)
            self._close_open_step(session, step, f"Skipped: {error.message}")
            await self._finish(session, SessionStatus.FAILED, error)
            yield self._error_event(INTERNAL_ERROR, error.message, session)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _close_open_step(self, session: AgentSession, step: AgentStep | None, reason: str) -> None:
        """
        Record a step that was interrupted mid-way.

        Every tool call of the step that has no result yet gets a cancelled
        result and a tool message, so the history stays a valid
        call/response sequence for the next turn. Calls that already finished
        keep their results, and their credits count towards the session total.
        """
        if step is None:
            return
        sid = session.session_id
        executions = {e.call_id: e for e in step.tool_executions}
        for call in step.assistant_message.tool_calls:
            execution = executions.get(call.id)
            if execution is None:
                execution = ToolExecution(tool_name=call.name, call_id=call.id, arguments=dict(call.arguments))
                step.tool_executions.append(execution)
            elif execution.result is not None:
                continue
            result = ToolExecutionResult.failure(reason, CANCELLED)
            execution.finish(result)
            self._record_tool_message(sid, call, result)
        self.state.add_step(sid, step)

    async def _call_model(
        self,
        session: AgentSession,
        tools: list[dict],
        options: ChatOptions,
        response: ModelResponse,
        stream: bool,
    ) -> AsyncGenerator[StreamEvent, None]:
        """Call the gateway, filling ``response`` and yielding text deltas."""
        if not stream:
            result = await self.gateway.chat_completion(session.messages, tools, options, session.images)
            response.content = result.content
            response.tool_calls = result.tool_calls
            response.finish_reason = result.finish_reason
            response.usage = result.usage
            return

        async for event in self.gateway.chat_completion_stream(session.messages, tools, options, session.images):
            fold_stream_event(response, event)
            if event.type == "text_delta":
                yield event

    async def _execute(
        self,
        session: AgentSession,
        call: ToolCall,
        execution: ToolExecution,
        step_index: int,
        previous_results: dict[str, ToolExecutionResult],
        uploaded: list[str],
        cancel_event: asyncio.Event,
    ) -> ToolExecutionResult:
        execution.status = ToolExecutionStatus.RUNNING
        execution.started_at = time.time()
        await self._emit_tool_status(session.session_id, step_index, execution)

        available = await self.billing.get_available_credits(session.user_id)
        context = ToolExecutionContext(
            user_id=session.user_id,
            session_id=session.session_id,
            available_credits=available,
            previous_results=dict(previous_results),
            cancel_event=cancel_event,
            uploaded_images=list(uploaded),
            artifacts=session.images,
            step_index=step_index,
        )
        result = await self.executor.execute_tool(call.name, call.arguments, context, call_id=call.id)
        execution.finish(result)
        logger.debug(
            "Session %s: %s (%s) -> %s", session.session_id, call.name, call.id, execution.status.value
        )
        return result

    def _record_tool_message(self, session_id: str, call: ToolCall, result: ToolExecutionResult) -> None:
        self.state.add_message(
            session_id,
            ChatMessage(role="tool", content=result.to_message_content(), tool_call_id=call.id, name=call.name),
        )

    def _step_event(self, step: AgentStep) -> StreamEvent:
        return StreamEvent(
            type="step_complete",
            step=step.step_index,
            payload={
                "toolCalls": len(step.tool_executions),
                "creditsUsed": step.credits_used,
                "usage": {
                    "inputTokens": step.token_usage.input_tokens,
                    "outputTokens": step.token_usage.output_tokens,
                },
            },
        )

    def _error_event(self, code: str, message: str, session: AgentSession) -> StreamEvent:
        return StreamEvent(
            type="error",
            error=message,
            error_code=code,
            step=max(len(session.steps) - 1, 0),
            payload={"status": session.status.value},
        )

    async def _emit_tool_status(self, session_id: str, step_index: int, execution: ToolExecution) -> None:
        await self.events.emit(
            TOOL_STATUS,
            ToolStatusEvent(
                session_id=session_id,
                step_index=step_index,
                call_id=execution.call_id,
                tool_name=execution.tool_name,
                status=execution.status.value,
                credits_used=execution.credits_used,
                error=execution.result.error if execution.result else None,
            ),
        )

    async def _emit_step_end(self, session_id: str, step: AgentStep) -> None:
        await self.events.emit(
            STEP_END,
            StepEndEvent(
                session_id=session_id,
                step_index=step.step_index,
                tool_call_count=len(step.tool_executions),
                credits_used=step.credits_used,
            ),
        )

    def _set_terminal(self, session: AgentSession, status: SessionStatus, error: SessionError | None) -> None:
        self.state.update_session(session.session_id, status=status, error=error)
        self.state.save_session(session.session_id)

    async def _finish(self, session: AgentSession, status: SessionStatus, error: AgentError | None = None) -> None:
        session_error = SessionError(code=error.code, message=error.message) if error else None
        self._set_terminal(session, status, session_error)
        if error:
            logger.warning("Session %s: %s (%s: %s)", session.session_id, status.value, error.code, error.message)
        else:
            logger.info(
                "Session %s: %s after %d steps, %d credits",
                session.session_id, status.value, len(session.steps), session.total_credits_used,
            )
        await self.events.emit(
            SESSION_END,
            SessionEndEvent(
                session_id=session.session_id,
                status=status.value,
                steps=len(session.steps),
                total_credits_used=session.total_credits_used,
                error_code=session_error.code if session_error else None,
                error=session_error.message if session_error else None,
            ),
        )

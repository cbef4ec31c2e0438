"""
SessionController: the one object callers talk to.

Owns a conversation and drives each user turn through:

    validate → gate → stream → commit (or fail → maybe schedule retry)

States:

    IDLE ──send──▶ VALIDATING ──▶ SENDING ──first chunk──▶ STREAMING ──▶ COMPLETED
                       │             │                        │
                       └─────────────┴──────── error ─────────┴──▶ FAILED
                                                                    │
                                     auto_retry and budget left ────┴──▶ RETRY_SCHEDULED
                                                                           │
                                              backoff elapsed ─────────────┘──▶ VALIDATING

Rejections that happen while another call holds the gate (busy, invalid
input) are reported through `error` and on_error but leave the in-flight
call's state alone. An invalid send while an automatic retry is pending is
reported through the return value and on_error only; the failed turn, its
error and its timer stay as they were.

Listeners are plain callables; a listener that raises is logged and skipped.
"""

from __future__ import annotations

import enum
import logging
from typing import Callable
from uuid import uuid4

from parley.backends import create_backend
from parley.backends.base import BaseBackend, GenerationRequest
from parley.config import SessionConfig
from parley.conversation import PROVIDER_ROLES, ConversationStore, Message, Role
from parley.errors import ErrorClassifier, SessionError
from parley.flight_recorder import FlightRecord, FlightRecorderStore
from parley.gate import RequestGate
from parley.retry import RetryController
from parley.streaming import CancellationToken, StreamChunk, StreamingClient
from parley.validator import InputValidator, sanitize_external

logger = logging.getLogger(__name__)


class SessionState(str, enum.Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    SENDING = "sending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRY_SCHEDULED = "retry_scheduled"


class SessionController:

    def __init__(
        self,
        backend: BaseBackend,
        config: SessionConfig | None = None,
        validator: InputValidator | None = None,
        classifier: ErrorClassifier | None = None,
        retry_controller: RetryController | None = None,
        recorder: FlightRecorderStore | None = None,
        session_id: str = "",
        on_chunk: Callable[[str, bool], None] | None = None,
        on_error: Callable[[SessionError], None] | None = None,
        on_state_change: Callable[[SessionState, SessionState], None] | None = None,
    ):
        self.config = config or SessionConfig()
        self.backend = backend
        self.validator = validator or InputValidator()
        self.classifier = classifier or ErrorClassifier()
        self.retry_controller = retry_controller or RetryController(
            base_delay=self.config.retry_base_delay,
            max_delay=self.config.retry_max_delay,
        )
        self.client = StreamingClient(backend, timeout=self.config.request_timeout, classifier=self.classifier)
        self.gate = RequestGate()
        self.recorder = recorder
        self.session_id = session_id or uuid4().hex

        self.on_chunk = on_chunk
        self.on_error = on_error
        self.on_state_change = on_state_change

        seed = []
        if self.config.seed_prompt:
            seed.append(Message.text(Role.SYSTEM, self.config.seed_prompt))
        self.store = ConversationStore(seed)

        self.state = SessionState.IDLE
        self.error: SessionError | None = None
        self.partial_text = ""
        self.response = ""
        self.attempt_count = 0
        self.last_attempted_message = ""

        self._generation = self.config.generation
        self._token: CancellationToken | None = None
        self._chunks = 0
        self._record: FlightRecord | None = None
        self._clearing = False

        logger.debug(
            "Session %s created (backend=%s, multi_turn=%s, seeded=%s)",
            self.session_id[:8], backend.name, self.config.multi_turn, bool(seed),
        )

    @classmethod
    def from_config(
        cls,
        cfg: dict,
        backend: BaseBackend | None = None,
        recorder: FlightRecorderStore | None = None,
        **listeners,
    ) -> SessionController:
        """Build a session from a full config dict. Backend and recorder are created unless given."""
        return cls(
            backend=backend or create_backend(cfg.get("provider", {}) or {}),
            config=SessionConfig.from_dict(cfg),
            validator=InputValidator.from_config(cfg.get("validator", {}) or {}),
            recorder=recorder or FlightRecorderStore.from_config(cfg.get("flight_recorder", {}) or {}),
            **listeners,
        )

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def conversation(self) -> tuple[Message, ...]:
        return self.store.snapshot()

    @property
    def is_ready(self) -> bool:
        return self.backend.is_ready()

    @property
    def model_name(self) -> str:
        return self.backend.model

    @property
    def is_busy(self) -> bool:
        return self.gate.held

    @property
    def can_retry(self) -> bool:
        return bool(
            self.error is not None
            and self.error.retryable
            and self.last_attempted_message
            and self.attempt_count < self.config.max_retries
            and not self.gate.held
        )

    # ------------------------------------------------------------------
    # Caller operations
    # ------------------------------------------------------------------

    async def send(self, text: str, overrides: dict | None = None) -> str | None:
        """
        Send a new user turn. Returns the model reply, or None on failure
        (details in `error`).

        overrides are per-call generation parameters (temperature, tools, ...)
        applied on top of the session's; retries of this turn reuse them.
        """
        generation = self.config.generation.merged(overrides)
        return await self._dispatch(text, new_turn=True, generation=generation)

    async def retry(self) -> str | None:
        """Resend the last attempted message now. No-op unless can_retry."""
        if not self.can_retry:
            logger.debug("retry() ignored: nothing retryable")
            return None
        # A cancelled pending auto-retry already paid for this attempt
        if not self.retry_controller.cancel():
            self.attempt_count += 1
        logger.info("Manual retry (attempt %d/%d)", self.attempt_count, self.config.max_retries)
        return await self._dispatch(self.last_attempted_message, new_turn=False)

    async def cancel(self) -> bool:
        """
        Abandon the in-flight call (ends in FAILED/NETWORK_ERROR) or drop a
        pending automatic retry. Returns False when there was nothing to stop.
        """
        dropped = self.retry_controller.cancel()
        if self.gate.held and self._token is not None:
            self._token.cancel("cancelled by caller")
            await self.gate.wait_released()
            return True
        if dropped:
            self._set_state(SessionState.FAILED)
        return dropped

    async def clear(self):
        """Back to IDLE with only the seed messages. Hard-cancels any in-flight call."""
        self.retry_controller.cancel()
        if self.gate.held and self._token is not None:
            self._clearing = True
            try:
                self._token.cancel("session cleared")
                await self.gate.wait_released()
            finally:
                self._clearing = False

        self.store.reset()
        self.error = None
        self.partial_text = ""
        self.response = ""
        self._generation = self.config.generation
        self.attempt_count = 0
        self.last_attempted_message = ""
        self._set_state(SessionState.IDLE)
        logger.info("Session %s cleared", self.session_id[:8])

    def add_message(self, content: str, role: Role = Role.MODEL) -> Message | None:
        """
        Inject externally produced text (OCR, document analysis) as a user
        or model turn. Multi-turn only. The text is sanitized first; empty
        results are dropped.
        """
        role = Role(role)
        if role not in PROVIDER_ROLES:
            logger.warning("add_message rejected: role %s cannot be injected", role.value)
            return None
        if not self.config.multi_turn:
            logger.warning("add_message rejected: session is single-turn")
            return None
        if self.gate.held:
            logger.warning("add_message rejected: a request is in flight")
            return None

        clean = sanitize_external(content)
        if not clean:
            logger.warning("add_message ignored: content empty after sanitizing")
            return None

        message = Message.text(role, clean)
        self.store.append(message)
        self.store.truncate(self.config.max_history_length)
        logger.debug("Injected %s message (len=%d)", message.role.value, len(clean))
        return message

    async def settle(self):
        """Wait until no call is in flight and no retry is pending."""
        while True:
            await self.retry_controller.wait()
            await self.gate.wait_released()
            if not self.retry_controller.pending and not self.gate.held:
                return

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _dispatch(self, text: str, *, new_turn: bool, generation=None) -> str | None:
        record = self._open_record()
        in_flight = self.gate.held
        retry_pending = self.retry_controller.pending

        if not in_flight and not retry_pending:
            self._set_state(SessionState.VALIDATING)
        try:
            clean = self.validator.validate(text)
        except SessionError as e:
            self._reject(e, record)
            return None
        record.log("Validated", length=len(clean))
        if retry_pending and not in_flight:
            self._set_state(SessionState.VALIDATING)

        try:
            with self.gate.hold():
                record.log("Gate Acquired")
                if new_turn:
                    self.retry_controller.cancel()
                    self.attempt_count = 0
                    self.last_attempted_message = clean
                    self._generation = generation or self.config.generation
                return await self._run(clean, record)
        except SessionError as busy:
            # _run never raises SessionError; this can only be hold()
            self._reject(busy, record)
            return None

    async def _run(self, text: str, record: FlightRecord) -> str | None:
        token = CancellationToken()
        self._token = token
        self.error = None
        self._chunks = 0
        self.partial_text = ""
        self._set_state(SessionState.SENDING)

        user_message = Message.text(Role.USER, text)
        request = self._build_request(user_message)
        logger.info(
            "Sending turn (len=%d, history=%d, attempt=%d)",
            len(text), len(request.messages) - 1, self.attempt_count,
        )

        try:
            reply = await self.client.collect(request, on_chunk=self._handle_chunk, token=token)
        except Exception as e:
            error = self.classifier.classify(e)
            if token.cancelled and self._clearing:
                record.close("cleared")
                return None
            self._fail(error, token, record)
            return None
        finally:
            self._token = None

        self._commit(user_message, reply, record)
        return reply

    def _build_request(self, user_message: Message) -> GenerationRequest:
        """Working copy: history (multi-turn only) plus the new, uncommitted user turn."""
        history = self.store.snapshot() if self.config.multi_turn else ()
        return GenerationRequest(
            messages=history + (user_message,),
            generation=self._generation,
        )

    def _handle_chunk(self, chunk: StreamChunk):
        if not chunk.is_final:
            if self.state is SessionState.SENDING:
                self._set_state(SessionState.STREAMING)
                if self._record is not None:
                    self._record.log("First Chunk")
            self._chunks += 1
            self.partial_text += chunk.text
        self._emit(self.on_chunk, chunk.text, chunk.is_final)

    def _commit(self, user_message: Message, reply: str, record: FlightRecord):
        self.store.append(user_message)
        self.store.append(Message.text(Role.MODEL, reply))
        self.store.truncate(self.config.max_history_length)

        self.response = reply
        self.partial_text = ""
        self.error = None
        self.attempt_count = 0
        self.last_attempted_message = ""
        record.log("Committed", chunks=self._chunks, reply_length=len(reply), history=len(self.store))
        record.close("completed")
        self._set_state(SessionState.COMPLETED)
        logger.info("Turn completed (reply len=%d)", len(reply))

    def _fail(self, error: SessionError, token: CancellationToken, record: FlightRecord):
        self.error = error
        self.partial_text = ""
        record.log("Failed", kind=error.kind.value, chunks=self._chunks)
        record.close(error.kind.value)
        self._set_state(SessionState.FAILED)
        logger.warning("Turn failed: %s (%s)", error.kind.value, error.message)
        self._emit(self.on_error, error)

        if token.cancelled or not self.config.auto_retry or not error.retryable:
            return
        if not self.retry_controller.should_retry(self.attempt_count, self.config.max_retries):
            logger.info("Retry budget exhausted (%d/%d)", self.attempt_count, self.config.max_retries)
            return

        delay = self.retry_controller.schedule(self.attempt_count, self._auto_retry)
        self.attempt_count += 1
        self._set_state(SessionState.RETRY_SCHEDULED)
        logger.info("Auto-retry %d/%d in %.1fs", self.attempt_count, self.config.max_retries, delay)

    async def _auto_retry(self):
        if self.state is not SessionState.RETRY_SCHEDULED or not self.last_attempted_message:
            return
        await self._dispatch(self.last_attempted_message, new_turn=False)

    def _reject(self, error: SessionError, record: FlightRecord):
        """Report a failure that never reached the provider."""
        record.close(error.kind.value)
        # A failed turn waiting on its retry keeps its own error and state
        if not self.retry_controller.pending:
            self.error = error
            if not self.gate.held:
                self._set_state(SessionState.FAILED)
        logger.info("Rejected: %s (%s)", error.kind.value, error.message)
        self._emit(self.on_error, error)

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _open_record(self) -> FlightRecord:
        record = FlightRecord(session_id=self.session_id, model=self.backend.model, attempt=self.attempt_count)
        record.log("Received")
        if not self.gate.held:
            self._record = record
        if self.recorder is not None:
            self.recorder.store(record)
        return record

    def _set_state(self, new: SessionState):
        old, self.state = self.state, new
        if old is not new:
            logger.debug("Session %s: %s -> %s", self.session_id[:8], old.value, new.value)
            self._emit(self.on_state_change, old, new)

    @staticmethod
    def _emit(callback, *args):
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.error("Session listener %r failed: %s", callback, e)

"""
Session state machine

The single authority over the app state. Every mutation runs on one actor
thread that drains a command queue: surface commands, hotkeys, capture
sub-state reports, pipeline results and timer expiries all arrive as
queued commands, so no two mutations ever interleave.

Slow work (flushing the capture device, speech-to-text, completion) runs
on an executor and posts its result back as an internal command tagged
with the session id. Results for a session that is no longer current are
dropped.

Every transition is pushed to attached surfaces with the full snapshot.
"""

import logging
import queue
import threading
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Optional

from aura_voice.agents import AgentConfig, AgentRegistry
from aura_voice.broadcaster import (
    AUDIO_LEVEL,
    ERROR,
    HISTORY_UPDATED,
    RECORDING_STATE_CHANGED,
    SELECTED_AGENT_CHANGED,
    SETTINGS_UPDATED,
    STATE_CHANGED,
    TRANSCRIPT_PENDING,
    SendFn,
    SurfaceBroadcaster,
    make_event,
)
from aura_voice.capture import CaptureEngine, CaptureState
from aura_voice.config import SessionConfig
from aura_voice.errors import (
    AgentValidationError,
    AuraError,
    CaptureError,
    CaptureFailure,
    PersistenceError,
    SessionBusyError,
    TranscriptionError,
    ValidationError,
)
from aura_voice.history import HistoryEntry, HistoryStore
from aura_voice.models import AppStateSnapshot, AudioArtifact, PendingTranscript, Session, SessionState
from aura_voice.pipeline import Err, ProcessingPipeline
from aura_voice.settings import SettingsStore

logger = logging.getLogger(__name__)

TimerFactory = Callable[[float, Callable[[], None]], Any]

MAX_TRANSITION_HISTORY = 50

_STOP = object()


def default_timer_factory(delay: float, callback: Callable[[], None]) -> threading.Timer:
    """Daemon threading.Timer, started"""
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    timer.start()
    return timer


class SessionStateMachine:
    """
    Serialized owner of session state

    Public commands are submitted with :meth:`submit` and resolve a Future
    with the command result (or the AuraError that rejected it).
    """

    def __init__(
        self,
        registry: AgentRegistry,
        history: HistoryStore,
        capture: CaptureEngine,
        pipeline: ProcessingPipeline,
        settings_store: SettingsStore,
        broadcaster: SurfaceBroadcaster,
        session_config: Optional[SessionConfig] = None,
        selected_agent_id: Optional[str] = None,
        executor: Optional[ThreadPoolExecutor] = None,
        timer_factory: Optional[TimerFactory] = None,
    ):
        """
        Initialize the state machine

        Args:
            registry: Live agent registry
            history: Bounded history store
            capture: Audio capture engine; its callbacks are taken over here
            pipeline: Speech-to-text and completion steps
            settings_store: User settings
            broadcaster: Surface fan-out
            session_config: Auto-revert delays
            selected_agent_id: Initial agent selection
            executor: Runs capture flush and pipeline steps
            timer_factory: ``(delay, callback) -> started timer`` with a
                ``cancel()`` method
        """
        self.registry = registry
        self.history = history
        self.capture = capture
        self.pipeline = pipeline
        self.settings_store = settings_store
        self.broadcaster = broadcaster
        self.config = session_config or SessionConfig()
        self._executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="aura-pipeline")
        self._timer_factory = timer_factory or default_timer_factory

        self.capture.on_state = self._on_capture_state
        self.capture.on_level = self._on_audio_level

        # Authoritative state (actor thread only)
        self._state = SessionState.IDLE
        self._is_recording = False
        self._selected_agent_id = selected_agent_id
        self._session: Optional[Session] = None
        self._session_counter = 0
        self._pending: Optional[PendingTranscript] = None
        self._error: Optional[str] = None
        self._generation = 0
        self._error_generation = 0
        self._transitions: Deque[Dict[str, Any]] = deque(maxlen=MAX_TRANSITION_HISTORY)
        self._outbox: List[Dict[str, Any]] = []
        self._timers: List[Any] = []

        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._work = 0
        self._settled = threading.Condition()
        self._thread: Optional[threading.Thread] = None
        self._running = False

        self._commands: Dict[str, Callable[[Dict[str, Any]], Any]] = {
            "start-recording": self._start_recording,
            "stop-recording": self._stop_recording,
            "toggle-recording": self._toggle_recording,
            "select-agent": self._select_agent,
            "process-with-ai": self._process_with_ai,
            "skip-ai": self._skip_ai,
            "delete-history": self._delete_history,
            "clear-history": self._clear_history,
            "update-settings": self._update_settings,
            "check-history-reduction": self._check_history_reduction,
            "dismiss-error": self._dismiss_error,
            "reset": self._reset,
            "get-state": self._get_state,
            "get-history": self._get_history,
            "get-settings": self._get_settings,
            "get-agents": self._get_agents,
        }
        self._internal: Dict[str, Callable[[Dict[str, Any]], Any]] = {
            "_attach": self._attach,
            "_detach": self._detach,
            "_capture-state": self._capture_state_changed,
            "_capture-failed": self._capture_failed,
            "_transcribed": self._transcribed,
            "_completed": self._completed,
            "_timer": self._timer_fired,
        }

    # Lifecycle

    def start(self) -> None:
        """Start the actor thread"""
        if self._running:
            return
        self._running = True
        self._thread = threading.Thread(target=self._run, name="aura-session", daemon=True)
        self._thread.start()
        logger.info("Session state machine started")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the actor thread, cancel timers and release the device"""
        if not self._running:
            return
        self._running = False
        self._queue.put(_STOP)
        if self._thread is not None:
            self._thread.join(timeout=timeout)
        for timer in self._timers:
            timer.cancel()
        self._timers.clear()
        self._executor.shutdown(wait=False)
        self.capture.release()
        logger.info("Session state machine stopped")

    @property
    def commands(self) -> List[str]:
        return list(self._commands)

    # Read-only views (safe to call from any thread)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def pending_transcript(self) -> Optional[PendingTranscript]:
        return self._pending

    @property
    def error_message(self) -> Optional[str]:
        return self._error

    def snapshot(self) -> AppStateSnapshot:
        return AppStateSnapshot(
            current_state=self._state,
            is_recording=self._is_recording,
            selected_agent_id=self._selected_agent_id,
        )

    def transition_history(self) -> List[Dict[str, Any]]:
        """Recent transitions, oldest first"""
        return list(self._transitions)

    # Entry points

    def submit(self, command: str, args: Optional[Dict[str, Any]] = None) -> Future:
        """
        Queue a public command

        Args:
            command: Command name, e.g. "start-recording"
            args: Command arguments

        Returns:
            Future resolved with the command result
        """
        future: Future = Future()
        if command not in self._commands:
            future.set_exception(ValidationError(f"Unknown command: {command}"))
            return future
        self._enqueue(command, args or {}, future)
        return future

    def attach(self, observer_id: str, send: SendFn) -> Future:
        """Attach a surface; the current snapshot is pushed before any delta"""
        future: Future = Future()
        self._enqueue("_attach", {"observer_id": observer_id, "send": send}, future)
        return future

    def detach(self, observer_id: str) -> Future:
        future: Future = Future()
        self._enqueue("_detach", {"observer_id": observer_id}, future)
        return future

    def wait_until_settled(self, timeout: Optional[float] = None) -> bool:
        """
        Block until no command is queued and no async step is in flight

        Returns:
            False if the timeout expired first
        """
        with self._settled:
            return self._settled.wait_for(lambda: self._work == 0, timeout)

    # Actor loop

    def _enqueue(self, name: str, args: Dict[str, Any], future: Optional[Future]) -> None:
        with self._settled:
            self._work += 1
        self._queue.put((name, args, future))

    def _work_done(self) -> None:
        with self._settled:
            self._work -= 1
            if self._work == 0:
                self._settled.notify_all()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                break
            name, args, future = item
            try:
                self._dispatch(name, args, future)
            finally:
                self._work_done()

    def _dispatch(self, name: str, args: Dict[str, Any], future: Optional[Future]) -> None:
        handler = self._commands.get(name) or self._internal[name]
        result: Any = None
        error: Optional[BaseException] = None
        try:
            result = handler(args)
        except AuraError as e:
            logger.info(f"Command '{name}' rejected: {e.code}: {e.message}")
            error = e
        except Exception as e:
            logger.exception(f"Command '{name}' failed")
            error = e
        finally:
            self._flush_outbox()

        if future is None:
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(result)

    def _emit(self, event: str, with_snapshot: bool = True, **payload: Any) -> None:
        snapshot = self.snapshot() if with_snapshot else None
        self._outbox.append(make_event(event, snapshot, **payload))

    def _flush_outbox(self) -> None:
        messages, self._outbox = self._outbox, []
        for message in messages:
            self.broadcaster.publish(message)

    def _run_async(self, fn: Callable[..., None], *args: Any) -> None:
        with self._settled:
            self._work += 1

        def task() -> None:
            try:
                fn(*args)
            except Exception:
                logger.exception(f"Background step {fn.__name__} failed")
            finally:
                self._work_done()

        self._executor.submit(task)

    # State mutation helpers

    def _transition(self, new_state: SessionState, reason: str) -> None:
        old_state = self._state
        if old_state is new_state:
            return
        self._state = new_state
        self._generation += 1
        self._transitions.append({
            "from": old_state.value,
            "to": new_state.value,
            "reason": reason,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })
        logger.info(f"State: {old_state.value} -> {new_state.value} ({reason})")
        self._emit(STATE_CHANGED, previous_state=old_state.value, reason=reason)

    def _set_recording(self, recording: bool) -> None:
        if self._is_recording == recording:
            return
        self._is_recording = recording
        self._emit(RECORDING_STATE_CHANGED)

    def _set_selected_agent(self, agent_id: Optional[str]) -> None:
        if self._selected_agent_id == agent_id:
            return
        self._selected_agent_id = agent_id
        logger.info(f"Selected agent: {agent_id}")
        self._emit(SELECTED_AGENT_CHANGED)

    def _set_error(self, message: str, code: str, auto_clear: bool = True) -> None:
        self._error = message
        self._error_generation += 1
        self._emit(ERROR, with_snapshot=False, code=code, message=message)
        if auto_clear:
            self._schedule(
                self.config.error_message_seconds,
                {"kind": "clear-error", "error_generation": self._error_generation},
            )

    def _clear_error(self) -> None:
        if self._error is None:
            return
        self._error = None
        self._error_generation += 1
        self._emit(ERROR, with_snapshot=False, code=None, message=None)

    def _schedule(self, delay: float, payload: Dict[str, Any]) -> None:
        """Arm a timer that posts ``payload`` back through the queue"""
        self._timers = [t for t in self._timers if getattr(t, "is_alive", lambda: True)()]
        timer = self._timer_factory(delay, lambda: self._enqueue("_timer", payload, None))
        self._timers.append(timer)

    def _arm_revert(self, delay: float) -> None:
        """Return to Idle after ``delay`` unless another transition happens first"""
        self._schedule(delay, {
            "kind": "revert",
            "expected_state": self._state,
            "generation": self._generation,
        })

    def _fail_session(self, error: AuraError, revert_delay: float) -> None:
        """End the live session in Error; reverts to Idle after the delay"""
        self.capture.release()
        self._session = None
        self._set_recording(False)
        self._transition(SessionState.ERROR, error.code)
        self._set_error(error.message, error.code, auto_clear=False)
        self._arm_revert(revert_delay)

    def _is_current(self, session_id: int) -> bool:
        return self._session is not None and self._session.id == session_id

    def _append_history(self, entry: HistoryEntry) -> None:
        try:
            self.history.append(entry)
        except PersistenceError as e:
            logger.error(f"History not persisted: {e}")
            self._set_error(e.message, e.code)
        self._emit(HISTORY_UPDATED, with_snapshot=False, entry=entry.to_dict(), count=len(self.history))

    def _new_session(self, agent: AgentConfig) -> Session:
        self._session_counter += 1
        self._session = Session(
            id=self._session_counter,
            agent_id=agent.id,
            agent_name=agent.name,
            started_at=datetime.now(timezone.utc),
            auto_process_ai=agent.auto_process_ai,
        )
        return self._session

    def _ensure_can_start(self, command: str) -> None:
        if self._session is not None or self._state not in (SessionState.IDLE, SessionState.COMPLETED):
            raise SessionBusyError(f"Cannot {command} while {self._state.value}")

    def _state_result(self) -> Dict[str, Any]:
        return self.snapshot().to_dict()

    # Recording

    def _start_recording(self, args: Dict[str, Any]) -> Dict[str, Any]:
        self._ensure_can_start("start recording")
        agent = self.registry.validate_selection(self._selected_agent_id)

        if self._pending is not None:
            logger.info("Discarding pending transcript for new recording")
            self._drop_pending()

        try:
            self.capture.start()
        except CaptureError as e:
            self._fail_session(e, self.config.capture_error_revert_seconds)
            raise

        session = self._new_session(agent)
        self._transition(SessionState.RECORDING, "start-recording")
        self._set_recording(True)
        logger.info(f"Recording session {session.id} for agent '{agent.id}'")
        return self._state_result()

    def _stop_recording(self, args: Dict[str, Any]) -> Dict[str, Any]:
        if self._state is not SessionState.RECORDING or self._session is None:
            logger.debug(f"Ignoring stop-recording while {self._state.value}")
            return {**self._state_result(), "ignored": True}

        self._set_recording(False)
        self._transition(SessionState.PROCESSING_STT, "stop-recording")
        settings = self.settings_store.settings
        self._run_async(
            self._flush_and_transcribe,
            self._session.id,
            settings.language,
            settings.save_audio_files,
        )
        return self._state_result()

    def _toggle_recording(self, args: Dict[str, Any]) -> Dict[str, Any]:
        agent_id = args.get("agent_id")
        if self._state is SessionState.RECORDING:
            return self._stop_recording(args)
        if self._session is not None or self._state not in (SessionState.IDLE, SessionState.COMPLETED):
            # The live session keeps the agent it started with
            logger.debug(f"Ignoring toggle while {self._state.value}")
            return {**self._state_result(), "ignored": True}
        if agent_id and agent_id != self._selected_agent_id:
            self._select_agent({"agent_id": agent_id})
        return self._start_recording(args)

    def _flush_and_transcribe(self, session_id: int, language: str, save_audio: bool) -> None:
        """Executor step: release the device, optionally save audio, run STT"""
        try:
            artifact = self.capture.stop()
        except CaptureError as e:
            self._enqueue("_capture-failed", {"session_id": session_id, "error": e}, None)
            return

        audio_path = self._save_artifact(artifact) if save_audio else None
        result = self.pipeline.transcribe(artifact, language)
        self._enqueue("_transcribed", {
            "session_id": session_id,
            "result": result,
            "audio_path": audio_path,
            "duration": artifact.duration,
        }, None)

    def _save_artifact(self, artifact: AudioArtifact) -> Optional[str]:
        try:
            return self.history.artifacts.save(artifact)
        except PersistenceError as e:
            logger.warning(f"Recording not saved: {e}")
            return None

    # Capture reports

    def _on_capture_state(self, state: CaptureState, error: Optional[CaptureError]) -> None:
        self._enqueue("_capture-state", {"state": state, "error": error}, None)

    def _on_audio_level(self, level: float) -> None:
        # Bypasses the queue; levels never drive state
        self.broadcaster.publish(make_event(AUDIO_LEVEL, level=round(level, 3)))

    def _capture_state_changed(self, args: Dict[str, Any]) -> None:
        state = args["state"]
        if self._state is not SessionState.RECORDING:
            return
        if state is CaptureState.PROCESSING:
            self._set_recording(False)
            self._transition(SessionState.PROCESSING_STT, "capture-processing")
        elif state is CaptureState.ERROR:
            error = args.get("error") or CaptureError(CaptureFailure.DEVICE_ERROR, "Audio capture failed")
            self._fail_session(error, self.config.capture_error_revert_seconds)

    def _capture_failed(self, args: Dict[str, Any]) -> None:
        if not self._is_current(args["session_id"]):
            return
        self._fail_session(args["error"], self.config.capture_error_revert_seconds)

    # Pipeline results

    def _transcribed(self, args: Dict[str, Any]) -> None:
        audio_path = args["audio_path"]
        if not self._is_current(args["session_id"]):
            logger.info(f"Dropping transcription for stale session {args['session_id']}")
            self.history.artifacts.delete(audio_path)
            return

        result = args["result"]
        if isinstance(result, Err):
            self.history.artifacts.delete(audio_path)
            self._fail_session(
                TranscriptionError(result.kind, result.detail),
                self.config.transcription_error_revert_seconds,
            )
            return

        session = self._session
        session.audio_path = audio_path
        session.duration = args["duration"]
        stt = result.value
        logger.info(f"Transcribed session {session.id}: {len(stt.text)} chars ({stt.language})")

        try:
            agent = self.registry.validate_selection(self._selected_agent_id)
        except AgentValidationError as e:
            # Keep the text; the user can reselect and process it
            self._hold_transcript(PendingTranscript(
                text=stt.text,
                agent_id=session.agent_id,
                agent_name=session.agent_name,
                auto_process_ai=session.auto_process_ai,
                language=stt.language,
                audio_path=audio_path,
                duration=session.duration,
            ), "agent-invalid")
            self._set_error(e.message, e.code)
            return

        if not agent.auto_process_ai:
            self._hold_transcript(PendingTranscript(
                text=stt.text,
                agent_id=agent.id,
                agent_name=agent.name,
                auto_process_ai=False,
                language=stt.language,
                audio_path=audio_path,
                duration=session.duration,
            ), "transcript-pending")
            return

        self._transition(SessionState.PROCESSING_LLM, "auto-process-ai")
        self._run_async(self._run_completion, session.id, agent, stt.text)

    def _hold_transcript(self, pending: PendingTranscript, reason: str) -> None:
        self._session = None
        self._pending = pending
        self._transition(SessionState.IDLE, reason)
        self._emit(TRANSCRIPT_PENDING, with_snapshot=False, transcript=pending.to_dict())

    def _drop_pending(self) -> None:
        """Forget the undecided transcript; surfaces get ``transcript: null``"""
        if self._pending is None:
            return
        self._pending = None
        self._emit(TRANSCRIPT_PENDING, with_snapshot=False, transcript=None)

    def _run_completion(self, session_id: int, agent: AgentConfig, transcript: str) -> None:
        """Executor step: run the agent over the transcript"""
        result = self.pipeline.complete(agent, transcript)
        self._enqueue("_completed", {
            "session_id": session_id,
            "agent": agent,
            "transcript": transcript,
            "result": result,
        }, None)

    def _completed(self, args: Dict[str, Any]) -> None:
        if not self._is_current(args["session_id"]):
            logger.info(f"Dropping completion for stale session {args['session_id']}")
            return

        session = self._session
        self._session = None
        agent: AgentConfig = args["agent"]
        result = args["result"]
        response = "" if isinstance(result, Err) else result.value.text

        entry = HistoryEntry.create(
            agent_id=agent.id,
            agent_name=agent.name,
            agent_auto_process_ai=agent.auto_process_ai,
            transcription=args["transcript"],
            response=response,
            audio_file_path=session.audio_path,
            duration=session.duration,
        )
        self._append_history(entry)

        if isinstance(result, Err):
            self._transition(SessionState.IDLE, "completion-failed")
            self._set_error(f"AI processing failed: {result.detail}", result.kind.name)
            return

        self._transition(SessionState.COMPLETED, "completion")
        self._arm_revert(self.config.completed_revert_seconds)

    # Timers

    def _timer_fired(self, args: Dict[str, Any]) -> None:
        if args["kind"] == "clear-error":
            if args["error_generation"] == self._error_generation:
                self._clear_error()
            return

        if self._state is not args["expected_state"] or self._generation != args["generation"]:
            logger.debug(f"Stale revert timer for {args['expected_state'].value} ignored")
            return
        if self._state is SessionState.ERROR:
            self._clear_error()
        self._transition(SessionState.IDLE, "auto-revert")

    # Pending transcript

    def _process_with_ai(self, args: Dict[str, Any]) -> Dict[str, Any]:
        self._ensure_can_start("process with AI")
        transcript = (args.get("transcript") or "").strip()
        pending = self._pending
        if not transcript and pending is not None:
            transcript = pending.text
        if not transcript:
            raise ValidationError("No transcript to process")

        agent = self.registry.validate_selection(self._selected_agent_id)
        self._drop_pending()
        session = self._new_session(agent)
        if pending is not None:
            session.audio_path = pending.audio_path
            session.duration = pending.duration

        self._transition(SessionState.PROCESSING_LLM, "process-with-ai")
        self._run_async(self._run_completion, session.id, agent, transcript)
        return self._state_result()

    def _skip_ai(self, args: Dict[str, Any]) -> Dict[str, Any]:
        pending = self._pending
        if pending is None:
            return {"skipped": False}

        self._drop_pending()
        entry = HistoryEntry.create(
            agent_id=pending.agent_id,
            agent_name=pending.agent_name,
            agent_auto_process_ai=pending.auto_process_ai,
            transcription=pending.text,
            audio_file_path=pending.audio_path,
            duration=pending.duration,
        )
        self._append_history(entry)
        return {"skipped": True, "entry_id": entry.id}

    # Agents

    def _select_agent(self, args: Dict[str, Any]) -> Dict[str, Any]:
        agent = self.registry.validate_selection(args.get("agent_id"))
        self._set_selected_agent(agent.id)
        return self._state_result()

    def _get_agents(self, args: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "agents": [agent.to_dict() for agent in self.registry.all()],
            "selected_agent_id": self._selected_agent_id,
        }

    # History

    def _delete_history(self, args: Dict[str, Any]) -> Dict[str, Any]:
        entry_id = args.get("entry_id")
        if not entry_id:
            raise ValidationError("entry_id is required")
        try:
            deleted = self.history.delete(entry_id)
        except PersistenceError as e:
            logger.error(f"History deletion not persisted: {e}")
            self._set_error(e.message, e.code)
            deleted = True
        if deleted:
            self._emit(HISTORY_UPDATED, with_snapshot=False, deleted=entry_id, count=len(self.history))
        return {"deleted": deleted}

    def _clear_history(self, args: Dict[str, Any]) -> Dict[str, Any]:
        try:
            removed = self.history.clear()
        except PersistenceError as e:
            logger.error(f"History clear not persisted: {e}")
            self._set_error(e.message, e.code)
            removed = 0
        self._emit(HISTORY_UPDATED, with_snapshot=False, cleared=True, count=len(self.history))
        return {"removed": removed}

    def _get_history(self, args: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "entries": [entry.to_dict() for entry in self.history.list()],
            "max_entries": self.history.max_entries,
        }

    def _check_history_reduction(self, args: Dict[str, Any]) -> Dict[str, Any]:
        new_max = args.get("max_entries")
        if isinstance(new_max, bool) or not isinstance(new_max, int):
            raise ValidationError("max_entries must be an integer")
        delete_count = self.history.check_reduction(new_max)
        return {"delete_count": delete_count, "requires_confirmation": delete_count > 0}

    # Settings

    def _update_settings(self, args: Dict[str, Any]) -> Dict[str, Any]:
        partial = args.get("settings") or {}
        if not isinstance(partial, dict):
            raise ValidationError("settings must be a mapping")
        current = self.settings_store.settings
        updated = current.merged(partial)

        purged = 0
        if updated.max_history_entries != self.history.max_entries:
            try:
                purged = self.history.set_max_entries(
                    updated.max_history_entries,
                    confirmed=bool(args.get("confirm")),
                    expected_delete_count=args.get("expected_delete_count"),
                )
            except PersistenceError as e:
                logger.error(f"History limit change not persisted: {e}")
                self._set_error(e.message, e.code)

        if "agents" in partial:
            self.registry.replace(updated.agents)
        if updated.resolve_api_key() != current.resolve_api_key():
            self.pipeline.configure(updated.resolve_api_key())
            logger.info("API credentials updated")

        try:
            self.settings_store.save(updated)
        except PersistenceError as e:
            logger.error(f"Settings not persisted: {e}")
            self._set_error(e.message, e.code)

        self._emit(SETTINGS_UPDATED, with_snapshot=False, settings=updated.to_dict(redact=True))
        if purged:
            self._emit(HISTORY_UPDATED, with_snapshot=False, purged=purged, count=len(self.history))
        return {"applied": sorted(partial), "purged": purged}

    def _get_settings(self, args: Dict[str, Any]) -> Dict[str, Any]:
        return self.settings_store.settings.to_dict(redact=True)

    # Errors and recovery

    def _dismiss_error(self, args: Dict[str, Any]) -> Dict[str, Any]:
        self._clear_error()
        if self._state is SessionState.ERROR:
            self._transition(SessionState.IDLE, "dismiss-error")
        return self._state_result()

    def _reset(self, args: Dict[str, Any]) -> Dict[str, Any]:
        self.capture.release()
        self._session = None
        self._drop_pending()
        self._set_recording(False)
        self._clear_error()
        self._transition(SessionState.IDLE, "reset")
        return self._state_result()

    def _get_state(self, args: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "snapshot": self.snapshot().to_dict(),
            "pending_transcript": self._pending.to_dict() if self._pending else None,
            "error": self._error,
            "transitions": self.transition_history(),
        }

    # Surfaces

    def _attach(self, args: Dict[str, Any]) -> bool:
        extra = {
            "pending_transcript": self._pending.to_dict() if self._pending else None,
            "error": self._error,
        }
        return self.broadcaster.attach(args["observer_id"], args["send"], self.snapshot(), extra)

    def _detach(self, args: Dict[str, Any]) -> bool:
        return self.broadcaster.detach(args["observer_id"])

"""Step-by-step orchestration of SKKN generation.

Phase 1: SETUP      - Restore offer, reference documents, template import
Phase 2: OUTLINE    - Generate the outline, review / revise loop
Phase 3: WRITING    - Walk the step table, reviewing each solution
Phase 4: FINALIZE   - Appendix and DOCX export
"""

from __future__ import annotations

import logging
import re
import threading
import time
from pathlib import Path
from typing import Any, Callable

import autogen

from .agents.structure_extractor import make_structure_extractor
from .budget import allocation_for
from .errors import GenerationCancelled, GenerationError, InvalidTransitionError, WorkflowBusyError
from .key_pool import ApiKeyPool
from .llm_client import AutogenChatClient, CancellationToken, ChatClient
from .logging_config import PipelineCallbacks, RichCallbacks
from .models import (
    ApprovalPolicy,
    ChatTurn,
    DocumentBlock,
    ErrorAction,
    ErrorKind,
    ExtractedStructure,
    GenerationState,
    GenerationStep,
    ProjectConfig,
    ReviewAction,
    SessionData,
    SKKNTemplate,
    SolutionContent,
    SolutionsState,
    UserInfo,
    WorkflowResult,
)
from .prompt_builders import (
    StepContext,
    build_appendix_prompt,
    build_outline_prompt,
    build_outline_revision_prompt,
    build_solution_revision_prompt,
)
from .retry import RetryCoordinator, describe_error, manual_retry_key
from .session import AutoSaver, FileKeyValueStore, KeyValueStore, SessionController, VolatileStore
from .solution_locator import locate_solution
from .steps import SOLUTION_STEPS, completed_step, next_transition, review_number, step_label
from .template_reducer import parse_custom_template, reduce_sections
from .tools.doc_reader import read_document, read_reference_documents
from .tools.pandoc_converter import appendix_filename, document_filename, export_docx, solution_filename

logger = logging.getLogger(__name__)

PendingOp = Callable[[CancellationToken | None], bool]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _extract_text(response: Any) -> str:
    """Extract text string from an AG2 chat response."""
    if hasattr(response, "summary") and response.summary:
        text = str(response.summary)
    elif hasattr(response, "chat_history") and response.chat_history:
        last = response.chat_history[-1]
        text = last.get("content", "") if isinstance(last, dict) else str(last)
    else:
        text = str(response)

    text = re.sub(r"```(?:json|markdown|md)?\n?", "", text)
    text = re.sub(r"```\s*$", "", text)
    return text.strip()


def _extract_json(response: Any, model_cls: type) -> Any:
    """Extract and validate a Pydantic model from an AG2 response."""
    text = _extract_text(response)
    if "{" in text:
        json_str = text[text.find("{"):text.rfind("}") + 1]
        try:
            return model_cls.model_validate_json(json_str)
        except ValueError:
            pass
    try:
        return model_cls.model_validate_json(text)
    except ValueError as e:
        logger.warning("Failed to parse %s from response: %s", model_cls.__name__, e)
        return None


def _make_orchestrator() -> autogen.UserProxyAgent:
    """Create a standard orchestrator agent."""
    return autogen.UserProxyAgent(
        name="Orchestrator",
        human_input_mode="NEVER",
        code_execution_config=False,
    )


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

class Pipeline:
    """Drives one SKKN session through the step table.

    Generation runs synchronously on the caller's thread. The debounced
    auto-save runs on a timer thread, so state mutations go through
    ``self._lock``.
    """

    def __init__(
        self,
        config: ProjectConfig,
        user_info: UserInfo | None = None,
        *,
        config_dir: Path | None = None,
        callbacks: PipelineCallbacks | None = None,
        client: ChatClient | None = None,
        key_pool: ApiKeyPool | None = None,
        store: KeyValueStore | None = None,
        volatile: KeyValueStore | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.config_dir = config_dir or Path(".")
        self.callbacks = callbacks or RichCallbacks()
        self.output_dir = self.config_dir / config.output_dir

        store = store if store is not None else FileKeyValueStore(self.config_dir / config.session_dir)
        volatile = volatile if volatile is not None else VolatileStore(config.max_volatile_chars)
        self.session = SessionController(store, volatile)
        self.key_pool = key_pool if key_pool is not None else ApiKeyPool(config.llm.api_keys, store=store)
        self.client: ChatClient = client if client is not None else AutogenChatClient(config)
        self.model = self.session.recall_model() or config.llm.model

        self._sleep = sleep
        self.retry = RetryCoordinator(
            self.key_pool, on_new_key=self._adopt_key, delay=config.retry_delay, sleep=sleep,
        )
        self.autosaver = AutoSaver(self.save_session, delay=config.autosave_delay)

        # State
        self.user_info = user_info or UserInfo()
        self.state = GenerationState()
        self.solutions = SolutionsState()
        self.appendix_document = ""
        self.outline_feedback = ""
        self.last_error: GenerationError | None = None

        self._lock = threading.RLock()
        self._client_ready = False
        self._pending: PendingOp | None = None
        self._active_token: CancellationToken | None = None
        self._template_cache: tuple[str | None, SKKNTemplate | None] = (None, None)

        if self.user_info.reference_documents:
            self.session.remember_reference_documents(self.user_info.reference_documents)

    # -----------------------------------------------------------------------
    # Derived state
    # -----------------------------------------------------------------------

    @property
    def document(self) -> str:
        with self._lock:
            return self.state.full_document

    @property
    def template(self) -> SKKNTemplate | None:
        raw = self.user_info.custom_template
        if self._template_cache[0] != raw:
            self._template_cache = (raw, parse_custom_template(raw))
        return self._template_cache[1]

    @property
    def sections(self):
        template = self.template
        return reduce_sections(template.sections) if template is not None else []

    def context(self) -> StepContext:
        with self._lock:
            outline = next((b.content for b in self.state.blocks if b.step == GenerationStep.OUTLINE), "")
            return StepContext(
                user_info=self.user_info,
                document=self.state.full_document,
                outline=outline,
                allocation=allocation_for(self.user_info),
                sections=self.sections,
                template=self.template,
                max_reference_chars=self.config.max_reference_chars,
            )

    def step_label(self, step: int | None = None) -> str:
        return step_label(self.state.step if step is None else step, self.sections)

    @property
    def is_completed(self) -> bool:
        return self.state.step >= completed_step(self.context())

    def approved_solutions(self) -> list[int]:
        return [n for n in SOLUTION_STEPS if (s := self.solutions.get(n)) is not None and s.is_approved]

    # -----------------------------------------------------------------------
    # Client and keys
    # -----------------------------------------------------------------------

    def _init_client(self, key: str | None = None, *, keep_history: bool = False) -> None:
        key = key or self.key_pool.get_active_key()
        if not key:
            raise GenerationError(ErrorKind.OTHER, "Chưa cấu hình API key (GEMINI_API_KEYS)")
        history = self.client.get_history() if keep_history else []
        self.client.initialize(key, self.model)
        if history:
            self.client.set_history(history)
        self._client_ready = True

    def _adopt_key(self, key: str) -> None:
        self._init_client(key, keep_history=True)

    def set_api_key(self, key: str) -> None:
        """Make a user-supplied key active and reinitialize the chat, keeping history."""
        self.key_pool.use_key(key)
        self._init_client(key, keep_history=True)
        with self._lock:
            self.state.error = None

    def set_model(self, model: str) -> None:
        self.model = model
        self.session.remember_model(model)
        if self._client_ready:
            self._init_client(keep_history=True)

    def cancel(self) -> None:
        """Cancel the in-flight generation, if any."""
        if self._active_token is not None:
            self._active_token.cancel()

    # -----------------------------------------------------------------------
    # Streaming core
    # -----------------------------------------------------------------------

    def _check_idle(self) -> None:
        if self.state.is_streaming:
            raise WorkflowBusyError("A generation is already streaming")

    def _token(self, cancel_token: CancellationToken | None) -> CancellationToken:
        token = cancel_token or CancellationToken()
        self._active_token = token
        return token

    def _block_attempt(
        self, prompt: str, step: int, label: str, token: CancellationToken,
    ) -> Callable[[], str]:
        """Attempt that streams *prompt* into a new document block for *step*."""
        def attempt() -> str:
            if not self._client_ready:
                self._init_client(keep_history=True)
            with self._lock:
                block = DocumentBlock(step=step, label=label)
                self.state.blocks.append(block)

            def on_chunk(chunk: str) -> None:
                with self._lock:
                    block.content += chunk
                self.callbacks.on_chunk(chunk)

            try:
                return self.client.send_stream(prompt, on_chunk, token)
            except BaseException:
                with self._lock:
                    self.state.blocks = [b for b in self.state.blocks if b is not block]
                raise
        return attempt

    def _text_attempt(self, prompt: str, token: CancellationToken) -> Callable[[], str]:
        """Attempt whose reply is returned but never enters the document."""
        def attempt() -> str:
            if not self._client_ready:
                self._init_client(keep_history=True)
            return self.client.send_stream(prompt, self.callbacks.on_chunk, token)
        return attempt

    def _execute(
        self,
        attempt: Callable[[], str],
        commit: Callable[[str], None],
        retry_op: PendingOp,
    ) -> bool:
        """Run *attempt* under the retry policy and commit its result on success.

        Failures become ``state.error`` and leave step and document untouched;
        cancellation propagates after the same cleanup.
        """
        with self._lock:
            self._check_idle()
            self.state.is_streaming = True
            self.state.error = None
        self.autosaver.cancel()

        try:
            result = self.retry.run(attempt)
        except GenerationError as exc:
            with self._lock:
                self.state.is_streaming = False
                self.state.error = exc.message
            self.last_error = exc
            self._pending = retry_op
            logger.warning("Generation failed (%s): %s", exc.kind.value, exc.message)
            self._schedule_autosave()
            return False
        except BaseException as exc:
            with self._lock:
                self.state.is_streaming = False
            if isinstance(exc, GenerationCancelled):
                logger.info("Generation cancelled at step %d", self.state.step)
            raise

        with self._lock:
            commit(result)
            self.state.is_streaming = False
        self.last_error = None
        self._pending = None
        self._schedule_autosave()
        return True

    # -----------------------------------------------------------------------
    # Generation operations
    # -----------------------------------------------------------------------

    def start_generation(self, cancel_token: CancellationToken | None = None) -> bool:
        """Reset the session and stream a fresh outline."""
        with self._lock:
            self._check_idle()
            if not self.user_info.topic.strip():
                raise InvalidTransitionError("Topic is required before generating")
            self.state = GenerationState()
            self.solutions = SolutionsState()
            self.appendix_document = ""
            self.outline_feedback = ""
            ctx = self.context()

        token = self._token(cancel_token)
        label = self.step_label(GenerationStep.OUTLINE)
        stream_outline = self._block_attempt(build_outline_prompt(ctx), GenerationStep.OUTLINE, label, token)

        def attempt() -> str:
            self._init_client()
            return stream_outline()

        def commit(text: str) -> None:
            self.state.step = int(GenerationStep.OUTLINE)
            self.callbacks.on_step_end(GenerationStep.OUTLINE, label, len(text))

        self.callbacks.on_step_start(GenerationStep.OUTLINE, label)
        return self._execute(attempt, commit, self.start_generation)

    def submit_manual_outline(self, text: str) -> None:
        """Skip outline generation and land on OUTLINE with *text*."""
        if not text.strip():
            raise InvalidTransitionError("Manual outline is empty")
        with self._lock:
            self._check_idle()
        self._init_client()
        with self._lock:
            self.state = GenerationState(
                step=int(GenerationStep.OUTLINE),
                blocks=[DocumentBlock(step=GenerationStep.OUTLINE, label=self.step_label(1), content=text)],
            )
            self.solutions = SolutionsState()
            self.appendix_document = ""
        self._schedule_autosave()

    def edit_document(self, text: str) -> None:
        """Replace the outline with a user-edited version."""
        with self._lock:
            self._check_idle()
            if self.state.step != GenerationStep.OUTLINE:
                raise InvalidTransitionError("The document can only be edited at the outline step")
            self.state.blocks = [DocumentBlock(step=GenerationStep.OUTLINE, label=self.step_label(), content=text)]
        self._schedule_autosave()

    def regenerate_outline(
        self, feedback: str | None = None, cancel_token: CancellationToken | None = None,
    ) -> bool:
        """Rewrite the outline according to *feedback* (defaults to ``outline_feedback``)."""
        feedback = self.outline_feedback if feedback is None else feedback
        if not feedback.strip():
            raise InvalidTransitionError("Outline feedback is empty")
        with self._lock:
            self._check_idle()
            if self.state.step != GenerationStep.OUTLINE:
                raise InvalidTransitionError("The outline can only be regenerated at the outline step")
            previous = list(self.state.blocks)
            self.state.blocks = []

        token = self._token(cancel_token)
        label = self.step_label()
        committed = False

        def commit(text: str) -> None:
            nonlocal committed
            committed = True
            self.outline_feedback = ""
            self.callbacks.on_step_end(GenerationStep.OUTLINE, label, len(text))

        self.callbacks.on_step_start(GenerationStep.OUTLINE, label)
        try:
            return self._execute(
                self._block_attempt(build_outline_revision_prompt(feedback), GenerationStep.OUTLINE, label, token),
                commit,
                lambda t: self.regenerate_outline(feedback, t),
            )
        finally:
            if not committed:
                with self._lock:
                    self.state.blocks = previous

    def generate_next(self, cancel_token: CancellationToken | None = None) -> bool:
        """Advance one step along the transition table."""
        with self._lock:
            self._check_idle()
            ctx = self.context()
            current = self.state.step
            number = review_number(current, ctx)
            if number is not None:
                self._ensure_reviewed(number)
            transition = next_transition(current, ctx)
            if transition is None:
                raise InvalidTransitionError(f"No step follows '{self.step_label(current)}'")
            if not transition.generates:
                self.state.step = transition.next_step

        if not transition.generates:
            self._enter_step(transition.next_step)
            self._schedule_autosave()
            return True

        token = self._token(cancel_token)
        next_step = transition.next_step
        label = self.step_label(next_step)

        if transition.append:
            attempt = self._block_attempt(transition.prompt, next_step, label, token)
        else:
            attempt = self._text_attempt(transition.prompt, token)

        def commit(text: str) -> None:
            if not transition.append:
                self.state.messages.append(ChatTurn(role="model", text=text))
            self.state.step = next_step
            self.callbacks.on_step_end(next_step, label, len(text))

        self.callbacks.on_step_start(next_step, label)
        return self._execute(attempt, commit, self.generate_next)

    def _enter_step(self, step: int) -> None:
        """Prepare review state when a solution review step is reached."""
        number = review_number(step, self.context())
        if number is None:
            return
        content = locate_solution(self.document, number)
        with self._lock:
            existing = self.solutions.get(number)
            history = existing.revision_history if existing is not None else []
            self.solutions.set(number, SolutionContent(content=content, revision_history=history))
        logger.info("Solution %d ready for review (%d chars)", number, len(content))

    def _ensure_reviewed(self, number: int) -> None:
        solution = self.solutions.get(number)
        if solution is not None and solution.is_approved:
            return
        if self.config.approval_policy == ApprovalPolicy.AUTO:
            self.approve_solution(number)
            return
        raise InvalidTransitionError(f"Solution {number} has not been approved")

    def go_back(self, step: int) -> None:
        """Return to an already completed *step*, discarding later blocks."""
        with self._lock:
            self._check_idle()
            if not GenerationStep.INPUT_FORM < step < self.state.step:
                raise InvalidTransitionError(
                    f"Can only go back to a completed step (current {self.state.step}, requested {step})"
                )
            self.state.step = int(step)
            self.state.blocks = [b for b in self.state.blocks if b.step <= step]
            self.state.error = None
            if not self.sections:
                for number, sol_step in SOLUTION_STEPS.items():
                    if sol_step > step:
                        self.solutions.set(number, None)
        logger.info("Went back to step %d (%s)", step, self.step_label(step))
        self._schedule_autosave()

    # -----------------------------------------------------------------------
    # Solution review
    # -----------------------------------------------------------------------

    def approve_solution(self, number: int | None = None) -> None:
        with self._lock:
            number = number or review_number(self.state.step, self.context())
            if number is None:
                raise InvalidTransitionError("Not at a solution review step")
            solution = self.solutions.get(number)
            if solution is None:
                solution = SolutionContent(content=locate_solution(self.state.full_document, number))
                self.solutions.set(number, solution)
            solution.is_approved = True
        logger.info("Solution %d approved", number)
        self._schedule_autosave()

    def revise_solution(
        self,
        number: int,
        feedback: str,
        reference_documents: str | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> bool:
        """Stream a rewrite of solution *number*; the old text goes to its history."""
        if not feedback.strip():
            raise InvalidTransitionError("Revision feedback is empty")
        with self._lock:
            self._check_idle()
            solution = self.solutions.get(number)
            if solution is None:
                raise InvalidTransitionError(f"Solution {number} has not been written yet")
            old_content = solution.content

        refs = self.user_info.reference_documents if reference_documents is None else reference_documents
        prompt = build_solution_revision_prompt(number, feedback, old_content, refs)
        token = self._token(cancel_token)
        label = f"Viết lại giải pháp {number}"

        def commit(text: str) -> None:
            solution.revision_history.append(old_content)
            solution.content = text
            self.callbacks.on_step_end(self.state.step, label, len(text))

        self.callbacks.on_step_start(self.state.step, label)
        return self._execute(
            self._text_attempt(prompt, token),
            commit,
            lambda t: self.revise_solution(number, feedback, reference_documents, t),
        )

    # -----------------------------------------------------------------------
    # Appendix
    # -----------------------------------------------------------------------

    def generate_appendix(self, cancel_token: CancellationToken | None = None) -> bool:
        """Stream the appendix into ``appendix_document`` on a fresh chat."""
        if not self.document.strip():
            raise InvalidTransitionError("Nothing has been written yet")
        token = self._token(cancel_token)
        ctx = self.context()
        fetch = self._text_attempt(build_appendix_prompt(ctx), token)
        label = self.step_label(GenerationStep.APPENDIX)

        def attempt() -> str:
            self._init_client()
            return fetch()

        def commit(text: str) -> None:
            self.appendix_document = text
            self.callbacks.on_step_end(GenerationStep.APPENDIX, label, len(text))

        self.callbacks.on_step_start(GenerationStep.APPENDIX, label)
        return self._execute(attempt, commit, self.generate_appendix)

    # -----------------------------------------------------------------------
    # Error recovery
    # -----------------------------------------------------------------------

    def manual_retry(self, cancel_token: CancellationToken | None = None) -> bool:
        """Retry the failed operation on the next key, resetting the pool if none is left."""
        with self._lock:
            self._check_idle()
            pending = self._pending
        if pending is None:
            raise InvalidTransitionError("There is no failed operation to retry")
        key = manual_retry_key(self.key_pool)
        if key is None:
            raise InvalidTransitionError("No API key configured")
        with self._lock:
            self.state.error = None
        self._init_client(key, keep_history=True)
        self._sleep(self.config.manual_retry_delay)
        return pending(cancel_token)

    def retry_pending(self, cancel_token: CancellationToken | None = None) -> bool:
        """Re-run the failed operation with the current key."""
        pending = self._pending
        if pending is None:
            raise InvalidTransitionError("There is no failed operation to retry")
        with self._lock:
            self.state.error = None
        return pending(cancel_token)

    # -----------------------------------------------------------------------
    # Session persistence
    # -----------------------------------------------------------------------

    def _schedule_autosave(self) -> None:
        if self.state.step > GenerationStep.INPUT_FORM and not self.state.is_streaming:
            self.autosaver.schedule()

    def save_session(self) -> bool:
        with self._lock:
            if self.state.is_streaming:
                return False
            snapshot = self.session.build_snapshot(
                self.user_info,
                self.state,
                self.solutions,
                appendix_document=self.appendix_document,
                outline_feedback=self.outline_feedback,
                chat_history=self.client.get_history(),
            )
        return self.session.save(snapshot)

    def pending_session(self) -> SessionData | None:
        return self.session.load_pending()

    def restore_session(self, data: SessionData) -> None:
        """Replay a snapshot, keeping reference text held in the volatile store."""
        with self._lock:
            self._check_idle()
            refs = self.user_info.reference_documents or self.session.recall_reference_documents()
            self.user_info = data.user_info.model_copy(update={"reference_documents": refs})
            blocks = [b.model_copy() for b in data.state.blocks]
            if not blocks and data.state.full_document:
                blocks = [DocumentBlock(step=GenerationStep.OUTLINE, content=data.state.full_document)]
            self.state = GenerationState(
                step=data.state.step,
                messages=list(data.state.messages),
                blocks=blocks,
                is_streaming=False,
                error=None,
            )
            self.solutions = data.solutions_state.model_copy(deep=True)
            self.appendix_document = data.appendix_document
            self.outline_feedback = data.outline_feedback

        history = list(data.chat_history)
        if history:
            self.client.set_history(history)
        key = self.key_pool.get_active_key()
        if key:
            self.client.initialize(key, self.model)
            self._client_ready = True
            if history:
                self.client.set_history(history)
        logger.info("Session restored at step %d (%s)", self.state.step, self.step_label())

    def clear_session(self) -> None:
        self.autosaver.cancel()
        self.session.clear()

    # -----------------------------------------------------------------------
    # Inputs
    # -----------------------------------------------------------------------

    def _resolve(self, path: str | Path) -> Path:
        p = Path(path)
        return p if p.is_absolute() else self.config_dir / p

    def load_reference_documents(self, paths: list[str | Path]) -> str:
        text = read_reference_documents([self._resolve(p) for p in paths])
        self.user_info.reference_documents = text
        self.session.remember_reference_documents(text)
        logger.info("Loaded %d chars of reference documents", len(text))
        return text

    def _extract_structure(self, raw: str) -> ExtractedStructure | None:
        key = self.key_pool.get_active_key()
        if not key:
            self.callbacks.on_warning("No API key configured, using the raw template text")
            return None
        orchestrator = _make_orchestrator()
        extractor = make_structure_extractor(self.config, key)
        try:
            response = orchestrator.initiate_chat(
                extractor,
                message=f"Trích xuất cấu trúc mẫu SKKN sau:\n\n{raw}",
                max_turns=1,
            )
        except Exception as exc:
            logger.warning("Structure extraction failed: %s", exc)
            self.callbacks.on_warning("Could not analyse the template, using its raw text instead")
            return None
        return _extract_json(response, ExtractedStructure)

    def import_template(self, path: str | Path) -> SKKNTemplate | None:
        """Read an official template and store its extracted structure in user info."""
        p = self._resolve(path)
        raw = read_document(p)
        if not raw.strip():
            raise ValueError(f"No text could be extracted from {p.name}")

        self.user_info.skkn_template = raw
        structure = self._extract_structure(raw)
        if structure is None or not structure.sections:
            self.user_info.custom_template = None
            self.callbacks.on_warning(f"No sections found in {p.name}; the raw template text will be used")
            return None

        template = SKKNTemplate(
            name=p.name,
            sections=structure.sections,
            raw_content=raw,
            content_guidelines=structure.content_guidelines,
            page_limit_from_template=structure.page_limit_from_template,
            header_fields=structure.header_fields,
        )
        self.user_info.custom_template = template.model_dump_json()
        if template.page_limit_from_template and not self.user_info.page_limit:
            self.user_info.page_limit = template.page_limit_from_template
        logger.info("Template %s: %d sections, %d addressable",
                    p.name, len(template.sections), len(self.sections))
        return template

    def prepare_inputs(self) -> None:
        if self.config.reference_docs and not self.user_info.reference_documents:
            self.load_reference_documents(self.config.reference_docs)
        if self.config.template_file and not self.user_info.custom_template:
            self.import_template(self.config.template_file)

    # -----------------------------------------------------------------------
    # Export
    # -----------------------------------------------------------------------

    def _metadata(self) -> dict[str, str]:
        u = self.user_info
        fields = {"title": u.topic, "school": u.school, "location": u.location, "subject": u.subject}
        return {k: v for k, v in fields.items() if v}

    def export_document(self) -> Path:
        if not self.document.strip():
            raise InvalidTransitionError("Nothing to export yet")
        template = self.template
        return export_docx(
            self.document,
            self.output_dir / document_filename(self.user_info.topic),
            header_fields=template.header_fields if template is not None else None,
            metadata=self._metadata(),
        )

    def export_solution(self, number: int) -> Path:
        solution = self.solutions.get(number)
        if solution is None or not solution.content.strip():
            raise InvalidTransitionError(f"Solution {number} has no content")
        return export_docx(
            solution.content,
            self.output_dir / solution_filename(number, self.user_info.topic),
            metadata=self._metadata(),
        )

    def export_appendix(self) -> Path:
        if not self.appendix_document.strip():
            raise InvalidTransitionError("The appendix has not been generated")
        return export_docx(
            self.appendix_document,
            self.output_dir / appendix_filename(self.user_info.topic),
            metadata=self._metadata(),
        )

    def export_all(self, warnings: list[str] | None = None) -> list[str]:
        """Export document, solutions and appendix; failures are reported, not raised."""
        jobs: list[tuple[str, Callable[[], Path]]] = [("document", self.export_document)]
        for number in SOLUTION_STEPS:
            solution = self.solutions.get(number)
            if solution is not None and solution.content.strip():
                jobs.append((f"solution {number}", lambda n=number: self.export_solution(n)))
        if self.appendix_document.strip():
            jobs.append(("appendix", self.export_appendix))

        exported: list[str] = []
        for name, job in jobs:
            try:
                exported.append(str(job()))
            except (RuntimeError, OSError, InvalidTransitionError) as exc:
                message = f"Export of {name} failed: {exc}"
                logger.error(message)
                self.callbacks.on_error(message)
                if warnings is not None:
                    warnings.append(message)
        return exported

    # -----------------------------------------------------------------------
    # Interactive loop
    # -----------------------------------------------------------------------

    def _run_step(self, op: PendingOp) -> bool:
        """Run *op*, letting the user remediate failures until it succeeds or is abandoned."""
        ok = op(None)
        while not ok:
            kind = self.last_error.kind if self.last_error else ErrorKind.OTHER
            info = describe_error(kind, self.state.error or "")
            decision = self.callbacks.on_generation_error(info, can_retry=self.state.step > GenerationStep.INPUT_FORM)
            if decision.action == ErrorAction.RETRY:
                ok = self.manual_retry()
            elif decision.action == ErrorAction.CHANGE_KEY and decision.api_key:
                self.set_api_key(decision.api_key)
                ok = self.retry_pending()
            else:
                return False
        return True

    def _review_outline(self) -> bool:
        max_rounds = self.config.max_outline_revisions
        for round_num in range(1, max_rounds + 1):
            review = self.callbacks.on_outline_review(self.document, round_num, max_rounds)
            if review.action == ReviewAction.APPROVE:
                return True
            if review.action == ReviewAction.ABORT:
                return False
            self.outline_feedback = review.feedback
            if not self._run_step(lambda t: self.regenerate_outline(review.feedback, t)):
                return False
        self.callbacks.on_warning(f"Outline revision limit ({max_rounds}) reached, continuing")
        return True

    def _review_solution(self, number: int) -> bool:
        if self.config.approval_policy == ApprovalPolicy.AUTO:
            self.approve_solution(number)
            self._sleep(self.config.review_continue_delay)
            return True
        while True:
            solution = self.solutions.get(number)
            review = self.callbacks.on_solution_review(number, solution.content if solution else "")
            if review.action == ReviewAction.APPROVE:
                self.approve_solution(number)
                self._sleep(self.config.review_continue_delay)
                return True
            if review.action == ReviewAction.ABORT:
                return False
            if not self._run_step(lambda t: self.revise_solution(number, review.feedback, cancel_token=t)):
                return False

    def _result(self, errors: list[str], warnings: list[str], exported: list[str]) -> WorkflowResult:
        return WorkflowResult(
            success=self.is_completed and not errors,
            final_step=self.state.step,
            document_chars=len(self.document),
            approved_solutions=self.approved_solutions(),
            exported_files=exported,
            errors=errors,
            warnings=warnings,
        )

    def run(self, *, offer_restore: bool = True) -> WorkflowResult:
        """Run the whole workflow.

        Flow::

            SETUP → OUTLINE → [OUTLINE REVIEW] → WRITING (+ SOLUTION REVIEW)
            → APPENDIX → EXPORT
        """
        errors: list[str] = []
        warnings: list[str] = []
        exported: list[str] = []

        try:
            # Phase 1: Setup
            self.callbacks.on_phase_start("SETUP", "Preparing session")
            restored = False
            if offer_restore:
                pending = self.pending_session()
                if pending is not None and self.callbacks.on_restore_offer(pending):
                    self.restore_session(pending)
                    restored = True
            if not restored and self.state.step == GenerationStep.INPUT_FORM:
                self.prepare_inputs()
            self.callbacks.on_phase_end("SETUP", True)

            # Phase 2: Outline
            if self.state.step == GenerationStep.INPUT_FORM:
                self.callbacks.on_phase_start("OUTLINE", "Generating the outline")
                ok = self._run_step(self.start_generation)
                self.callbacks.on_phase_end("OUTLINE", ok)
                if not ok:
                    errors.append(self.state.error or "Outline generation failed")
                    return self._result(errors, warnings, exported)
            if self.state.step == GenerationStep.OUTLINE and not self._review_outline():
                errors.append("Workflow aborted by user during outline review")
                return self._result(errors, warnings, exported)

            # Phase 3: Writing
            self.callbacks.on_phase_start("WRITING", "Writing the report step by step")
            while not self.is_completed:
                number = review_number(self.state.step, self.context())
                if number is not None and not self._review_solution(number):
                    errors.append(f"Workflow aborted by user during review of solution {number}")
                    return self._result(errors, warnings, exported)
                if not self._run_step(self.generate_next):
                    errors.append(self.state.error or f"Generation failed at step {self.state.step}")
                    self.callbacks.on_phase_end("WRITING", False)
                    return self._result(errors, warnings, exported)
            self.callbacks.on_phase_end("WRITING", True)

            # Phase 4: Finalize
            self.callbacks.on_phase_start("FINALIZE", "Appendix and export")
            if self.config.generate_appendix and not self.appendix_document:
                if not self._run_step(self.generate_appendix):
                    warnings.append(f"Appendix not generated: {self.state.error}")
                    with self._lock:
                        self.state.error = None
            if self.config.export_docx:
                exported = self.export_all(warnings)
            self.callbacks.on_phase_end("FINALIZE", True)

        except GenerationCancelled:
            warnings.append("Generation cancelled; the current step was not changed")
        except Exception as e:
            logger.exception("Workflow failed")
            errors.append(str(e))
        finally:
            self.autosaver.flush()

        return self._result(errors, warnings, exported)

"""Pydantic models for the SKKN generation workflow."""

from __future__ import annotations

from enum import Enum, IntEnum

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class GenerationStep(IntEnum):
    """Position in the standard document pipeline.

    Custom-template sessions reuse ``INPUT_FORM`` and ``OUTLINE`` and number
    the remaining steps dynamically (see ``steps.custom_appendix_step``).
    """
    INPUT_FORM = 0
    OUTLINE = 1
    PART_I_II = 2
    PART_III = 3
    PART_IV_SOL1 = 4
    PART_IV_SOL1_REVIEW = 5
    PART_IV_SOL2 = 6
    PART_IV_SOL2_REVIEW = 7
    PART_IV_SOL3 = 8
    PART_IV_SOL3_REVIEW = 9
    PART_IV_SOL4 = 10
    PART_IV_SOL4_REVIEW = 11
    PART_IV_SOL5 = 12
    PART_IV_SOL5_REVIEW = 13
    PART_V_VI = 14
    APPENDIX = 15
    COMPLETED = 16


class ErrorKind(str, Enum):
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    RATE_LIMIT = "RATE_LIMIT"
    OTHER = "OTHER"


class ApprovalPolicy(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"


class ReviewAction(str, Enum):
    APPROVE = "approve"
    REVISE = "revise"
    ABORT = "abort"


class ErrorAction(str, Enum):
    RETRY = "retry"
    CHANGE_KEY = "change_key"
    ABANDON = "abandon"


class ReviewResult(BaseModel):
    """Result of a human review: approve, revise (with feedback), or abort."""
    action: ReviewAction = ReviewAction.APPROVE
    feedback: str = ""


class ErrorDecision(BaseModel):
    """User's remediation choice for a surfaced generation error."""
    action: ErrorAction = ErrorAction.ABANDON
    api_key: str = ""


# ---------------------------------------------------------------------------
# User input and templates
# ---------------------------------------------------------------------------

class SKKNSection(BaseModel):
    """One heading of a hierarchical report outline."""
    id: str = Field(..., description="Section number as written in the template, e.g. '2.1'")
    level: int = Field(default=1, ge=1, description="Nesting depth (1 = top-level part)")
    title: str = Field(..., description="Heading text")
    suggested_content: str | None = Field(default=None, description="Guidance from the template")


class SKKNTemplate(BaseModel):
    """Report structure extracted from an uploaded official template."""
    name: str = Field(default="", description="Template name / issuing office")
    sections: list[SKKNSection] = Field(default_factory=list)
    raw_content: str = Field(default="", description="Full extracted template text")
    content_guidelines: str | None = Field(default=None)
    page_limit_from_template: int | None = Field(default=None)
    header_fields: dict[str, str] | None = Field(default=None, description="Cover page fields")


class ExtractedStructure(BaseModel):
    """Structured output from the StructureExtractor agent."""
    sections: list[SKKNSection] = Field(default_factory=list)
    content_guidelines: str | None = Field(default=None)
    page_limit_from_template: int | None = Field(default=None)
    header_fields: dict[str, str] | None = Field(default=None)


class UserInfo(BaseModel):
    """Everything the user supplies before generation starts."""
    topic: str = Field(default="", description="Report title")
    subject: str = Field(default="", description="Subject / field, matched against the subject catalogue")
    level: str = Field(default="", description="School level, e.g. 'THPT' or 'Đại học'")
    grade: str = Field(default="", description="Grade or learner group")
    school: str = Field(default="")
    location: str = Field(default="")
    facilities: str = Field(default="", description="Available equipment and infrastructure")
    textbook: str = Field(default="")
    research_subjects: str = Field(default="")
    timeframe: str = Field(default="")
    apply_ai: str = Field(default="", description="Technology / AI to apply")
    focus: str = Field(default="")
    reference_documents: str = Field(default="", description="Extracted text of uploaded references")
    skkn_template: str = Field(default="", description="Raw text of an official template")
    custom_template: str | None = Field(default=None, description="Serialized SKKNTemplate JSON")
    special_requirements: str = Field(default="")
    page_limit: int | None = Field(default=None, ge=1)
    include_practical_examples: bool = Field(default=False)
    include_statistics: bool = Field(default=False)
    requirements_confirmed: bool = Field(default=False)
    num_solutions: int = Field(default=3, ge=1, le=5)


# ---------------------------------------------------------------------------
# Budget
# ---------------------------------------------------------------------------

class PartBudget(BaseModel):
    pages: int
    words: int
    chars: int


class PageAllocation(BaseModel):
    """Advisory page/word/char budget per document part."""
    total_pages: int
    num_solutions: int
    words_per_page: int
    chars_per_page: int
    part_i_ii: PartBudget
    part_iii: PartBudget
    part_iv: PartBudget
    per_solution: PartBudget
    part_v_vi: PartBudget

    @property
    def total_words(self) -> int:
        return self.total_pages * self.words_per_page

    @property
    def total_chars(self) -> int:
        return self.total_pages * self.chars_per_page


# ---------------------------------------------------------------------------
# Generation state
# ---------------------------------------------------------------------------

class ChatTurn(BaseModel):
    role: str = Field(..., description="'user' or 'model'")
    text: str = Field(default="")


class DocumentBlock(BaseModel):
    """Content written by one generation step."""
    step: int
    label: str = Field(default="")
    content: str = Field(default="")


class GenerationState(BaseModel):
    """Live workflow state. The document is the ordered list of blocks."""
    step: int = Field(default=int(GenerationStep.INPUT_FORM))
    messages: list[ChatTurn] = Field(default_factory=list, description="Transient status replies")
    blocks: list[DocumentBlock] = Field(default_factory=list)
    is_streaming: bool = Field(default=False)
    error: str | None = Field(default=None)

    @property
    def full_document(self) -> str:
        return "".join(b.content for b in self.blocks)


class SolutionContent(BaseModel):
    content: str = Field(default="")
    is_approved: bool = Field(default=False)
    revision_history: list[str] = Field(default_factory=list)


class SolutionsState(BaseModel):
    """Review state per solution, created lazily when a review step is reached."""
    solution1: SolutionContent | None = None
    solution2: SolutionContent | None = None
    solution3: SolutionContent | None = None
    solution4: SolutionContent | None = None
    solution5: SolutionContent | None = None

    def get(self, number: int) -> SolutionContent | None:
        return getattr(self, f"solution{number}")

    def set(self, number: int, content: SolutionContent | None) -> None:
        setattr(self, f"solution{number}", content)


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

class SnapshotState(BaseModel):
    step: int
    messages: list[ChatTurn] = Field(default_factory=list)
    full_document: str = Field(default="")
    blocks: list[DocumentBlock] = Field(default_factory=list)


class SessionData(BaseModel):
    """Persisted snapshot of a generation session."""
    user_info: UserInfo
    has_reference_documents: bool = Field(default=False)
    state: SnapshotState
    solutions_state: SolutionsState = Field(default_factory=SolutionsState)
    appendix_document: str = Field(default="")
    outline_feedback: str = Field(default="")
    chat_history: list[ChatTurn] = Field(default_factory=list)
    saved_at: str = Field(..., description="ISO-8601 timestamp")


class KeyRotationResult(BaseModel):
    success: bool
    new_key: str | None = None
    message: str = ""


# ---------------------------------------------------------------------------
# Workflow result
# ---------------------------------------------------------------------------

class WorkflowResult(BaseModel):
    """Top-level result of a workflow run."""
    success: bool = Field(...)
    final_step: int = Field(default=int(GenerationStep.INPUT_FORM))
    document_chars: int = Field(default=0)
    approved_solutions: list[int] = Field(default_factory=list)
    exported_files: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Project Configuration (loaded from YAML / Hydra)
# ---------------------------------------------------------------------------

class LLMConfig(BaseModel):
    """LLM endpoint settings."""
    model: str = Field(default="gemini-2.5-flash")
    api_type: str = Field(default="openai", description="AG2 api_type of the endpoint")
    base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta/openai/",
        description="OpenAI-compatible endpoint",
    )
    api_keys: list[str] = Field(default_factory=list, description="Key pool, first key active")


class ProjectConfig(BaseModel):
    """Full project configuration loaded from config.yaml."""
    project_name: str = Field(default="skkn")
    output_dir: str = Field(default="output/", description="Export directory")
    session_dir: str = Field(default=".skkn_session/", description="Durable session storage")

    # Inputs
    user_info_file: str | None = Field(default=None, description="YAML file with UserInfo fields")
    reference_docs: list[str] = Field(default_factory=list, description="PDF/DOCX/TXT reference files")
    template_file: str | None = Field(default=None, description="Official SKKN template to import")

    llm: LLMConfig = Field(default_factory=LLMConfig)
    timeout: int = Field(default=180, description="LLM call timeout in seconds")
    seed: int = Field(default=42, description="LLM seed for reproducibility")

    # Workflow settings
    approval_policy: ApprovalPolicy = Field(default=ApprovalPolicy.AUTO)
    max_outline_revisions: int = Field(default=3)
    max_reference_chars: int = Field(default=80000)
    max_volatile_chars: int = Field(default=5_000_000, description="Cap on the reference-text store")
    autosave_delay: float = Field(default=2.0, description="Debounce before auto-save, seconds")
    retry_delay: float = Field(default=0.5, description="Pause before the automatic retry")
    manual_retry_delay: float = Field(default=0.3)
    review_continue_delay: float = Field(default=0.1)
    generate_appendix: bool = Field(default=True)
    export_docx: bool = Field(default=True)

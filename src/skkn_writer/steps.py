"""Step state machine as a data-driven transition table.

``STANDARD_TRANSITIONS`` maps the current step to a ``StepRule``: a pure
prompt builder (``None`` for a non-generating step), a next-step resolver and
whether the streamed reply is appended to the document. Custom-template
sessions get an equivalent table built from their addressable sections.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from .models import GenerationStep as S
from .models import SKKNSection
from .prompt_builders import (
    StepContext,
    build_completion_prompt,
    build_custom_completion_prompt,
    build_part_i_ii_prompt,
    build_part_iii_prompt,
    build_part_v_vi_prompt,
    build_solution_prompt,
    custom_section_builder,
    solution_builder,
)
from .template_reducer import short_label

PromptBuilder = Callable[[StepContext], str]
NextResolver = Callable[[StepContext], int]

CUSTOM_FIRST_SECTION_STEP = 2

SOLUTION_STEPS: dict[int, S] = {
    1: S.PART_IV_SOL1,
    2: S.PART_IV_SOL2,
    3: S.PART_IV_SOL3,
    4: S.PART_IV_SOL4,
    5: S.PART_IV_SOL5,
}
REVIEW_STEPS: dict[int, S] = {
    1: S.PART_IV_SOL1_REVIEW,
    2: S.PART_IV_SOL2_REVIEW,
    3: S.PART_IV_SOL3_REVIEW,
    4: S.PART_IV_SOL4_REVIEW,
    5: S.PART_IV_SOL5_REVIEW,
}

STEP_LABELS: dict[S, str] = {
    S.INPUT_FORM: "Thông tin",
    S.OUTLINE: "Dàn ý",
    S.PART_I_II: "Phần I & II",
    S.PART_III: "Phần III",
    **{step: f"Giải pháp {n}" for n, step in SOLUTION_STEPS.items()},
    **{step: f"Duyệt giải pháp {n}" for n, step in REVIEW_STEPS.items()},
    S.PART_V_VI: "Phần V & VI",
    S.APPENDIX: "Phụ lục",
    S.COMPLETED: "Hoàn thành",
}


@dataclass(frozen=True)
class StepRule:
    next_step: NextResolver
    build_prompt: PromptBuilder | None
    append: bool = True


@dataclass(frozen=True)
class StepTransition:
    """Resolved outcome of advancing from one step."""
    prompt: str | None
    next_step: int
    append: bool

    @property
    def generates(self) -> bool:
        return self.prompt is not None


# ---------------------------------------------------------------------------
# Standard flow
# ---------------------------------------------------------------------------

def _to(step: int) -> NextResolver:
    return lambda ctx: int(step)


def _after_review(number: int) -> NextResolver:
    def _resolve(ctx: StepContext) -> int:
        if number < ctx.num_solutions:
            return int(SOLUTION_STEPS[number + 1])
        return int(S.PART_V_VI)
    return _resolve


def _continue_after_review(number: int) -> PromptBuilder:
    def _build(ctx: StepContext) -> str:
        if number < ctx.num_solutions:
            return build_solution_prompt(number + 1, ctx)
        return build_part_v_vi_prompt(ctx)
    return _build


def _standard_table() -> dict[int, StepRule]:
    table: dict[int, StepRule] = {
        S.OUTLINE: StepRule(_to(S.PART_I_II), build_part_i_ii_prompt),
        S.PART_I_II: StepRule(_to(S.PART_III), build_part_iii_prompt),
        S.PART_III: StepRule(_to(S.PART_IV_SOL1), solution_builder(1)),
        S.PART_V_VI: StepRule(_to(S.COMPLETED), build_completion_prompt, append=False),
    }
    for n in SOLUTION_STEPS:
        table[SOLUTION_STEPS[n]] = StepRule(_to(REVIEW_STEPS[n]), None, append=False)
        table[REVIEW_STEPS[n]] = StepRule(_after_review(n), _continue_after_review(n))
    return table


STANDARD_TRANSITIONS: dict[int, StepRule] = _standard_table()


# ---------------------------------------------------------------------------
# Custom template flow
# ---------------------------------------------------------------------------

def custom_appendix_step(sections: list[SKKNSection]) -> int:
    return CUSTOM_FIRST_SECTION_STEP + len(sections)


def custom_completed_step(sections: list[SKKNSection]) -> int:
    return custom_appendix_step(sections) + 1


def custom_transitions(sections: list[SKKNSection]) -> dict[int, StepRule]:
    """Transition table for a custom template with the given addressable sections."""
    n = len(sections)
    table: dict[int, StepRule] = {
        S.OUTLINE: StepRule(_to(CUSTOM_FIRST_SECTION_STEP), custom_section_builder(0)),
    }
    for k in range(n):
        step = CUSTOM_FIRST_SECTION_STEP + k
        if k < n - 1:
            table[step] = StepRule(_to(step + 1), custom_section_builder(k + 1))
        else:
            table[step] = StepRule(
                _to(custom_completed_step(sections)), build_custom_completion_prompt, append=False,
            )
    return table


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def transitions_for(ctx: StepContext) -> dict[int, StepRule]:
    if ctx.is_custom_flow:
        return custom_transitions(ctx.sections)
    return STANDARD_TRANSITIONS


def completed_step(ctx: StepContext) -> int:
    if ctx.is_custom_flow:
        return custom_completed_step(ctx.sections)
    return int(S.COMPLETED)


def next_transition(step: int, ctx: StepContext) -> StepTransition | None:
    """Resolve prompt, next step and append flag for advancing from *step*.

    Returns ``None`` when *step* has no outgoing transition (input form,
    completed).
    """
    rule = transitions_for(ctx).get(int(step))
    if rule is None:
        return None
    prompt = rule.build_prompt(ctx) if rule.build_prompt is not None else None
    return StepTransition(prompt=prompt, next_step=rule.next_step(ctx), append=rule.append)


def chain(ctx: StepContext) -> list[int]:
    """Steps visited from OUTLINE to completion, without building prompts."""
    table = transitions_for(ctx)
    visited = [int(S.OUTLINE)]
    step = int(S.OUTLINE)
    while step in table:
        step = table[step].next_step(ctx)
        visited.append(step)
    return visited


def solution_number(step: int) -> int | None:
    """Solution index written by a standard-flow SOL step."""
    for n, s in SOLUTION_STEPS.items():
        if s == step:
            return n
    return None


def review_number(step: int, ctx: StepContext | None = None) -> int | None:
    """Solution index reviewed at a standard-flow REVIEW step."""
    if ctx is not None and ctx.is_custom_flow:
        return None
    for n, s in REVIEW_STEPS.items():
        if s == step:
            return n
    return None


def step_label(step: int, sections: list[SKKNSection] | None = None) -> str:
    if sections:
        if step >= CUSTOM_FIRST_SECTION_STEP:
            k = step - CUSTOM_FIRST_SECTION_STEP
            if k < len(sections):
                return short_label(sections[k].title)
            if step == custom_appendix_step(sections):
                return STEP_LABELS[S.APPENDIX]
            return STEP_LABELS[S.COMPLETED]
    try:
        return STEP_LABELS[S(step)]
    except ValueError:
        return f"Bước {step}"

"""Step discipline guard.

Keeps the model from calling a question "the final question" before step 5
and from summarizing before step 6. Violations trigger a bounded number of
corrective re-prompts; after that the turn falls back to a templated
message that is never re-checked.
"""

import re
from dataclasses import dataclass

from app.core.discovery_steps import STEP_TOPIC_DETAILS, STEP_TOPICS
from app.core.schemas_discovery import PLACEHOLDER, ContextSummary, StepViolation

MAX_CORRECTIVE_RETRIES = 2

FINAL_QUESTION_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\bfinal\s+question\b",
        r"\blast\s+question\b",
        r"\bone\s+(?:last|final)\s+(?:thing|question)\b",
        r"\bbefore\s+(?:we|I)\s+wrap\s+up\b",
    )
]

SUMMARY_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\b(?:here'?s|here\s+is)\s+a\s+(?:quick\s+|brief\s+)?summary\b",
        r"\bsummary\s+of\s+(?:our|what|everything)\b",
        r"\bto\s+summari[sz]e\b",
        r"\bin\s+summary\b",
        r"\blet\s+me\s+summari[sz]e\b",
        r"\bto\s+recap\b",
        r"\blet\s+me\s+recap\b",
        r"\bquick\s+recap\b",
        r"\b(?:generate|prepare|create)\s+your\s+(?:ai\s+)?(?:action\s+|business\s+|implementation\s+)?plan\b",
    )
]


def _matches_any(patterns: list[re.Pattern], text: str) -> bool:
    return any(pattern.search(text) for pattern in patterns)


def detect_violation(text: str, step: int) -> StepViolation | None:
    """
    Return at most one violation for this step.

    Final-question phrasing is checked only for steps 1-4 and summary
    phrasing only for steps 1-5. The final-question check wins when both hit.
    """
    if not text:
        return None
    if step <= 4 and _matches_any(FINAL_QUESTION_PATTERNS, text):
        return StepViolation.FINAL_QUESTION_EARLY
    if step <= 5 and _matches_any(SUMMARY_PATTERNS, text):
        return StepViolation.SUMMARY_TOO_EARLY
    return None


def _required_turn(step: int) -> str:
    if step >= 6:
        return "Provide a concise summary of the conversation. Do not ask a new question."
    return (
        f"Ask Question {step} of 5 about {STEP_TOPICS[step]} "
        f"({STEP_TOPIC_DETAILS[step]}). Begin with the header "
        f'"**Question {step}: {STEP_TOPICS[step]}**".'
    )


def build_corrective_note(violation: StepViolation, step: int) -> str:
    if violation == StepViolation.FINAL_QUESTION_EARLY:
        problem = (
            f'Your previous reply called this the final or last question, but this is '
            f"question {step} of 5."
        )
        forbidden = 'Do NOT use the phrases "final question", "last question", or similar.'
    else:
        problem = (
            f"Your previous reply summarized the conversation, but this is question {step} "
            f"of 5 and the summary only comes after all 5 questions."
        )
        forbidden = 'Do NOT summarize, recap, or mention generating a plan.'

    return (
        f"CORRECTION REQUIRED ({violation.value}): {problem}\n"
        f"{_required_turn(step)}\n"
        f"{forbidden}"
    )


def build_rejection_note(step: int) -> str:
    return (
        "CORRECTION REQUIRED: Your previous reply was empty, too short, or contained "
        "only internal reasoning.\n"
        f"{_required_turn(step)}\n"
        "Reply with the user-facing text only. No <think> tags, notes, or planning."
    )


@dataclass(frozen=True)
class GuardrailAttempt:
    """Immutable retry state for one turn's guard loop.

    attempt_number 0 is the initial call; 1..MAX_CORRECTIVE_RETRIES are
    corrective re-prompts.
    """

    attempt_number: int = 0
    violation: StepViolation | None = None
    corrective_note: str | None = None

    @classmethod
    def first(cls) -> "GuardrailAttempt":
        return cls()

    @property
    def can_retry(self) -> bool:
        return self.attempt_number < MAX_CORRECTIVE_RETRIES

    def next(self, violation: StepViolation | None, note: str) -> "GuardrailAttempt":
        if not self.can_retry:
            raise ValueError("Corrective retries exhausted")
        return GuardrailAttempt(
            attempt_number=self.attempt_number + 1,
            violation=violation,
            corrective_note=note,
        )


# =============================================================================
# Deterministic fallback
# =============================================================================


def _known(value: str | None) -> str | None:
    if not value or value.strip() == PLACEHOLDER:
        return None
    return value.strip()


def build_fallback_message(step: int, context: ContextSummary | None = None) -> str:
    """Templated question (steps 1-5) or summary (step 6) from known context."""
    context = context or ContextSummary()
    business = _known(context.business_type)
    pains = _known(context.pain_points)
    tools = _known(context.prior_tech_use)

    if step <= 1:
        return (
            f"**Question 1: {STEP_TOPICS[1]}**\n"
            "I'm excited to help you discover where AI can make a real difference. "
            "To get started, could you tell me what your business does, what industry "
            "you're in, and roughly how big your team is?"
        )
    if step == 2:
        lead = f"Thanks for telling me about your {business} business. " if business else "Thanks for sharing that. "
        return (
            f"**Question 2: {STEP_TOPICS[2]}**\n"
            f"{lead}What would you say is the biggest obstacle slowing you down or "
            "costing you time and money right now?"
        )
    if step == 3:
        lead = f"That helps me understand the challenge around {pains}. " if pains else "That's helpful context. "
        return (
            f"**Question 3: {STEP_TOPICS[3]}**\n"
            f"{lead}Who is your ideal customer, and how do you currently reach and "
            "serve them?"
        )
    if step == 4:
        lead = f"You mentioned using {tools}. " if tools else "Let's talk about how the work gets done. "
        return (
            f"**Question 4: {STEP_TOPICS[4]}**\n"
            f"{lead}Which day-to-day processes feel the most tedious, and what software, "
            "spreadsheets, or data do you rely on to run them?"
        )
    if step == 5:
        return (
            f"**Question 5: {STEP_TOPICS[5]}**\n"
            "For my final question: if you could achieve one major goal for your business "
            "in the next 12 months, what would it be and why does it matter to you?"
        )

    labels = (
        ("Business", context.business_type),
        ("Challenges", context.pain_points),
        ("Goals", context.goals),
        ("Tools", context.prior_tech_use),
        ("Data", context.data_available),
        ("Growth plans", context.growth_intent),
    )
    bullets = [f"* **{label}:** {value}" for label, value in labels if _known(value)]
    if not bullets:
        bullets = ["* We covered your business, challenges, customers, operations, and goals."]
    return (
        "Thank you for walking me through your business. Here's a summary of what I've learned:\n\n"
        + "\n".join(bullets)
        + "\n\nIf that looks right, reply to confirm and I'll prepare your personalized AI action plan."
    )

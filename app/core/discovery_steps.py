"""Step derivation for the discovery conversation.

The authoritative step is recomputed from turn counts on every request; the
client-declared step can only raise it.
"""

from collections.abc import Iterable
from dataclasses import dataclass

from app.core.schemas_discovery import ChatTurn, DiscoveryStep

SUMMARY_STEP = 6
PLAN_TURN_THRESHOLD = 6

STEP_TOPICS: dict[int, str] = {
    1: "Business overview",
    2: "Pain points",
    3: "Customers & reach",
    4: "Operations & data",
    5: "Goals & vision",
    6: "Summary",
}

STEP_TOPIC_DETAILS: dict[int, str] = {
    1: "what they do, their industry, and size/location if relevant",
    2: "what slows them down or costs them time and money",
    3: "who they serve and how they reach and serve them",
    4: "processes, software or spreadsheets they use, what is tedious, what data they have or lack",
    5: "the single most important 12-month outcome and why it matters",
    6: "a concise summary of everything learned so far",
}


@dataclass(frozen=True)
class StepState:
    """Authoritative position in the discovery flow for one request."""

    step: DiscoveryStep
    user_turns: int
    assistant_turns: int
    plan_requested: bool

    @property
    def phase(self) -> DiscoveryStep:
        return DiscoveryStep.PLAN_REQUESTED if self.plan_requested else self.step

    @property
    def topic(self) -> str:
        return STEP_TOPICS[int(self.step)]


def count_turns(turns: Iterable[ChatTurn]) -> tuple[int, int]:
    """Count (user, assistant) turns; system turns are ignored."""
    user = 0
    assistant = 0
    for turn in turns:
        if turn.role == "user":
            user += 1
        elif turn.role == "assistant":
            assistant += 1
    return user, assistant


def should_generate_plan(user_turns: int, assistant_turns: int) -> bool:
    """Plan generation needs five Q&A exchanges plus the summary confirmation."""
    return user_turns >= PLAN_TURN_THRESHOLD and assistant_turns >= PLAN_TURN_THRESHOLD


def derive_step(turns: Iterable[ChatTurn], declared_step: int | None = None) -> StepState:
    """
    Derive the authoritative step from the turn history.

    step = min(6, assistant_turns + 1), raised (never lowered) by a larger
    declared step, which is itself capped at 6. Pure and idempotent.
    """
    user_turns, assistant_turns = count_turns(turns)
    step = min(SUMMARY_STEP, assistant_turns + 1)
    if declared_step is not None:
        step = max(step, min(SUMMARY_STEP, int(declared_step)))

    return StepState(
        step=DiscoveryStep(step),
        user_turns=user_turns,
        assistant_turns=assistant_turns,
        plan_requested=should_generate_plan(user_turns, assistant_turns),
    )

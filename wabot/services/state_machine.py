from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel, Field, model_validator

from wabot.services.normalizer import ButtonSelection, FreeText, Inbound
from wabot.services.outbound import OutboundMessage, SendText, SendYesNo


class Mode(str, Enum):
    UNSET = "unset"
    SCRIPTED_A = "scripted_a"
    SCRIPTED_B = "scripted_b"
    FREEFORM = "freeform"


SCRIPTED_MODES = (Mode.SCRIPTED_A, Mode.SCRIPTED_B)


class Session(BaseModel):
    mode: Mode = Mode.UNSET
    step: Optional[str] = None
    collected_fields: dict[str, str] = Field(default_factory=dict)
    persona: Optional[str] = None

    @model_validator(mode="after")
    def _check_mode_invariants(self) -> "Session":
        if self.mode == Mode.UNSET and (self.step or self.collected_fields):
            raise ValueError("unset session cannot carry a step or collected fields")
        if self.mode == Mode.FREEFORM and self.step is not None:
            raise ValueError("freeform session has no step")
        if self.mode in SCRIPTED_MODES and not self.step:
            raise ValueError(f"{self.mode.value} session requires a step")
        return self


class InvalidStepError(Exception):
    def __init__(self, mode: Mode, step: Optional[str]):
        self.mode = mode
        self.step = step
        super().__init__(f"Invalid step for {mode.value}: {step!r}")


# Validators return the cleaned value, or None when the answer is rejected.
Validator = Callable[[str], Optional[str]]


def validate_non_empty(text: str) -> Optional[str]:
    value = (text or "").strip()
    return value or None


def validate_email(text: str) -> Optional[str]:
    """Accept values with an '@' followed later by a '.'."""
    value = (text or "").strip()
    if not value or any(ch.isspace() for ch in value):
        return None
    at = value.find("@")
    if at < 1:
        return None
    domain = value[at + 1 :]
    dot = domain.find(".")
    if dot < 1 or domain.endswith("."):
        return None
    return value


def validate_digits(text: str) -> Optional[str]:
    value = "".join((text or "").split()).replace("-", "")
    return value if value.isascii() and value.isdigit() else None


def validate_phone(text: str) -> Optional[str]:
    value = "".join((text or "").split()).replace("-", "")
    digits = value[1:] if value.startswith("+") else value
    if not (digits.isascii() and digits.isdigit()) or not 7 <= len(digits) <= 15:
        return None
    return value


VALIDATORS: dict[str, Validator] = {
    "non_empty": validate_non_empty,
    "email": validate_email,
    "digits": validate_digits,
    "phone": validate_phone,
}

YES_WORDS = {"yes", "y", "yeah", "yep", "yes please", "sure", "ok", "okay"}
NO_WORDS = {"no", "n", "nope", "nah", "no thanks"}


def parse_yes_no(text: str) -> Optional[bool]:
    normalized = (text or "").strip().casefold().rstrip(".!")
    if normalized in YES_WORDS:
        return True
    if normalized in NO_WORDS:
        return False
    return None


@dataclass(frozen=True)
class StepSpec:
    name: str
    field: str
    prompt: str
    validator: Validator
    error_prefix: str = ""


@dataclass(frozen=True)
class BranchSpec:
    name: str
    field: str
    prompt: str
    yes_id: str
    no_id: str
    error_prefix: str = ""

    def answer(self, signal: Inbound) -> Optional[bool]:
        if isinstance(signal, ButtonSelection):
            if signal.id == self.yes_id:
                return True
            if signal.id == self.no_id:
                return False
            return None
        if isinstance(signal, FreeText):
            return parse_yes_no(signal.text)
        return None


@dataclass(frozen=True)
class TerminalSpec:
    name: str
    messages: tuple[str, ...]


@dataclass(frozen=True)
class FlowSpec:
    """A linear question flow ending in a yes/no branch with two terminals."""

    mode: Mode
    title: str
    steps: tuple[StepSpec, ...]
    branch: BranchSpec
    on_yes: TerminalSpec
    on_no: TerminalSpec
    intro: str = ""
    _index: dict[str, int] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        names = [step.name for step in self.steps] + [self.branch.name]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate step names in flow {self.mode.value}: {names}")
        self._index.update({name: position for position, name in enumerate(names)})

    @property
    def initial_step(self) -> str:
        return self.steps[0].name if self.steps else self.branch.name

    @property
    def step_names(self) -> tuple[str, ...]:
        return tuple(self._index)

    def has_step(self, name: Optional[str]) -> bool:
        return name in self._index

    def next_step(self, name: str) -> str:
        position = self._index[name]
        return self.step_names[position + 1]

    def get_step(self, name: Optional[str]) -> StepSpec:
        if name not in self._index or name == self.branch.name:
            raise InvalidStepError(self.mode, name)
        return self.steps[self._index[name]]

    def terminal(self, answer: bool) -> TerminalSpec:
        return self.on_yes if answer else self.on_no


def prompt_for(flow: FlowSpec, step_name: str, to: str, prefix: str = "") -> OutboundMessage:
    """Prompt emitted on entering (or re-entering) a step."""
    if step_name == flow.branch.name:
        return SendYesNo(
            to=to,
            yes_id=flow.branch.yes_id,
            no_id=flow.branch.no_id,
            prompt_text=f"{prefix}{flow.branch.prompt}",
        )
    step = flow.get_step(step_name)
    return SendText(to=to, body=f"{prefix}{step.prompt}")


def start_flow(flow: FlowSpec, to: str) -> tuple[Session, list[OutboundMessage]]:
    session = Session(mode=flow.mode, step=flow.initial_step, collected_fields={})
    intro = f"{flow.intro}\n\n" if flow.intro else ""
    return session, [prompt_for(flow, flow.initial_step, to, prefix=intro)]


def advance_flow(
    flow: FlowSpec,
    session: Session,
    signal: Inbound,
    to: str,
) -> tuple[Optional[Session], list[OutboundMessage]]:
    """
    Apply one answer to a scripted flow.

    Returns the next session (None once a terminal is reached) and the
    messages to send. Rejected answers leave the session untouched and
    re-emit the current prompt with the step's corrective prefix.
    """
    if session.mode != flow.mode or not flow.has_step(session.step):
        raise InvalidStepError(session.mode, session.step)

    if session.step == flow.branch.name:
        answer = flow.branch.answer(signal)
        if answer is None:
            return session, [prompt_for(flow, session.step, to, prefix=flow.branch.error_prefix)]

        fields = {**session.collected_fields, flow.branch.field: "yes" if answer else "no"}
        terminal = flow.terminal(answer)
        return None, [SendText(to=to, body=template.format_map(fields)) for template in terminal.messages]

    step = flow.get_step(session.step)
    value = step.validator(signal.text) if isinstance(signal, FreeText) else None
    if value is None:
        return session, [prompt_for(flow, step.name, to, prefix=step.error_prefix)]

    next_name = flow.next_step(step.name)
    updated = session.model_copy(
        update={
            "step": next_name,
            "collected_fields": {**session.collected_fields, step.field: value},
        }
    )
    return updated, [prompt_for(flow, next_name, to)]

from __future__ import annotations

import string
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

import yaml

from wabot.logging_config import get_logger
from wabot.services.outbound import MenuOption, SendMenu
from wabot.services.state_machine import (
    SCRIPTED_MODES,
    VALIDATORS,
    BranchSpec,
    FlowSpec,
    Mode,
    StepSpec,
    TerminalSpec,
)

_KNOWLEDGE_DIR = Path(__file__).resolve().parents[1] / "knowledge"
DEFAULT_CONTENT_PATH = _KNOWLEDGE_DIR / "flows.yaml"

# Menu buttons per interactive message allowed by the platform.
MAX_MENU_OPTIONS = 3

logger = get_logger("content")


class ContentError(Exception):
    pass


@dataclass(frozen=True)
class MenuEntry:
    id: str
    label: str
    mode: Mode
    persona: Optional[str] = None


@dataclass(frozen=True)
class SystemMessages:
    selected: str
    backend_unavailable: str
    empty_reply: str
    unsupported_input: str
    support_stub: str


@dataclass(frozen=True)
class BotContent:
    menu_prompt: str
    options: tuple[MenuEntry, ...]
    personas: dict[str, str]
    messages: SystemMessages
    flows: dict[Mode, FlowSpec]

    def option_by_id(self, option_id: str) -> Optional[MenuEntry]:
        for option in self.options:
            if option.id == option_id:
                return option
        return None

    def option_by_shortcut(self, text: str) -> Optional[MenuEntry]:
        """'1'..'n' pick the menu option at that position."""
        token = (text or "").strip()
        if len(token) != 1 or not token.isdigit():
            return None
        position = int(token) - 1
        if 0 <= position < len(self.options):
            return self.options[position]
        return None

    def menu_message(self, to: str) -> SendMenu:
        return SendMenu(
            to=to,
            prompt_text=self.menu_prompt,
            options=tuple(MenuOption(id=option.id, label=option.label) for option in self.options),
        )


def _require(data: dict, key: str, where: str) -> Any:
    value = data.get(key) if isinstance(data, dict) else None
    if value in (None, "", [], {}):
        raise ContentError(f"{where}: missing '{key}'")
    return value


def _template_fields(template: str) -> set[str]:
    """Placeholder names in a str.format template; "" stands for a positional {}."""
    try:
        return {name for _, name, _, _ in string.Formatter().parse(template) if name is not None}
    except ValueError as exc:
        raise ContentError(f"malformed template '{template}': {exc}") from exc


def _parse_step(data: dict, where: str) -> StepSpec:
    validator_name = data.get("validator", "non_empty")
    validator = VALIDATORS.get(validator_name)
    if validator is None:
        raise ContentError(f"{where}: unknown validator '{validator_name}'")
    return StepSpec(
        name=_require(data, "name", where),
        field=_require(data, "field", where),
        prompt=_require(data, "prompt", where),
        validator=validator,
        error_prefix=data.get("error_prefix", ""),
    )


def _parse_terminal(data: dict, where: str, known_fields: set[str]) -> TerminalSpec:
    messages = _require(data, "messages", where)
    if isinstance(messages, str):
        messages = [messages]
    for template in messages:
        unknown = _template_fields(template) - known_fields
        if unknown:
            raise ContentError(f"{where}: unknown fields {sorted(unknown)} in '{template}'")
    return TerminalSpec(name=_require(data, "name", where), messages=tuple(messages))


def _parse_flow(mode: Mode, data: dict) -> FlowSpec:
    where = f"flows.{mode.value}"
    steps = tuple(_parse_step(step, f"{where}.steps[{i}]") for i, step in enumerate(data.get("steps") or []))

    branch_data = _require(data, "branch", where)
    branch = BranchSpec(
        name=_require(branch_data, "name", f"{where}.branch"),
        field=_require(branch_data, "field", f"{where}.branch"),
        prompt=_require(branch_data, "prompt", f"{where}.branch"),
        yes_id=_require(branch_data, "yes_id", f"{where}.branch"),
        no_id=_require(branch_data, "no_id", f"{where}.branch"),
        error_prefix=branch_data.get("error_prefix", ""),
    )

    known_fields = {step.field for step in steps} | {branch.field}
    terminals = _require(data, "terminals", where)
    # Unquoted yes/no keys load as booleans.
    yes_data = terminals.get("yes", terminals.get(True))
    no_data = terminals.get("no", terminals.get(False))
    if not yes_data or not no_data:
        raise ContentError(f"{where}.terminals: both 'yes' and 'no' are required")
    try:
        return FlowSpec(
            mode=mode,
            title=data.get("title") or mode.value,
            intro=data.get("intro") or "",
            steps=steps,
            branch=branch,
            on_yes=_parse_terminal(yes_data, f"{where}.terminals.yes", known_fields),
            on_no=_parse_terminal(no_data, f"{where}.terminals.no", known_fields),
        )
    except ValueError as exc:
        raise ContentError(str(exc)) from exc


def parse_content(data: dict) -> BotContent:
    """Build and validate BotContent from the raw YAML document."""
    if not isinstance(data, dict):
        raise ContentError("content document must be a mapping")

    personas = data.get("personas") or {}

    flows: dict[Mode, FlowSpec] = {}
    for raw_mode, flow_data in (data.get("flows") or {}).items():
        try:
            mode = Mode(raw_mode)
        except ValueError as exc:
            raise ContentError(f"flows: unknown mode '{raw_mode}'") from exc
        if mode not in SCRIPTED_MODES:
            raise ContentError(f"flows: mode '{raw_mode}' is not a scripted mode")
        flows[mode] = _parse_flow(mode, flow_data)

    menu = _require(data, "menu", "content")
    raw_options = _require(menu, "options", "menu")
    if len(raw_options) > MAX_MENU_OPTIONS:
        raise ContentError(f"menu: at most {MAX_MENU_OPTIONS} options are supported")

    options = []
    for i, raw in enumerate(raw_options):
        where = f"menu.options[{i}]"
        try:
            mode = Mode(_require(raw, "mode", where))
        except ValueError as exc:
            raise ContentError(f"{where}: unknown mode '{raw.get('mode')}'") from exc
        if mode == Mode.UNSET:
            raise ContentError(f"{where}: options cannot select the unset mode")
        if mode in SCRIPTED_MODES and mode not in flows:
            raise ContentError(f"{where}: no flow defined for mode '{mode.value}'")
        persona = raw.get("persona")
        if mode == Mode.FREEFORM and persona not in personas:
            raise ContentError(f"{where}: unknown persona '{persona}'")
        options.append(MenuEntry(id=_require(raw, "id", where), label=_require(raw, "label", where), mode=mode, persona=persona))

    if len({option.id for option in options}) != len(options):
        raise ContentError("menu: option ids must be unique")

    unused = set(personas) - {option.persona for option in options}
    if unused:
        raise ContentError(f"personas: not used by any menu option: {sorted(unused)}")

    raw_messages = _require(data, "messages", "content")
    messages = SystemMessages(
        **{name: _require(raw_messages, name, "messages") for name in SystemMessages.__dataclass_fields__}
    )
    unknown = _template_fields(messages.selected) - {"label"}
    if unknown:
        raise ContentError(f"messages.selected: unknown fields {sorted(unknown)}; only {{label}} is available")

    return BotContent(
        menu_prompt=_require(menu, "prompt", "menu"),
        options=tuple(options),
        personas=dict(personas),
        messages=messages,
        flows=flows,
    )


@lru_cache(maxsize=4)
def load_content(path: Optional[str] = None) -> BotContent:
    content_path = Path(path) if path else DEFAULT_CONTENT_PATH
    with content_path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    content = parse_content(data)
    logger.info(
        "Conversation content loaded",
        extra={"context": {"path": str(content_path), "options": [option.id for option in content.options]}},
    )
    return content

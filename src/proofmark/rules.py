from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .syntax import CONTAINER_KINDS, SyntaxKind


class Action(str, Enum):
    INCLUDE = "include"  # checked as prose
    EXCLUDE = "exclude"  # skipped, read as nothing
    TRANSFORM = "transform"  # skipped, read as `replacement` (or the character it denotes)
    DESCEND = "descend"  # containers only: children decide


@dataclass(frozen=True)
class KindRule:
    action: Action
    replacement: str | None = None


@dataclass(frozen=True)
class FunctionRule:
    """Code call whose content blocks hold prose, e.g. ``#footnote[...]``.

    The call head reads as ``before`` and the closing bracket as ``after``.
    """

    before: str = ""
    after: str = ""


def _default_kinds() -> dict[SyntaxKind, KindRule]:
    descend = KindRule(Action.DESCEND)
    exclude = KindRule(Action.EXCLUDE)
    return {
        SyntaxKind.MARKUP: descend,
        SyntaxKind.TEXT: KindRule(Action.INCLUDE),
        SyntaxKind.SPACE: KindRule(Action.TRANSFORM, " "),
        SyntaxKind.PARBREAK: KindRule(Action.TRANSFORM, "\n\n"),
        SyntaxKind.LINEBREAK: KindRule(Action.TRANSFORM, "\n"),
        SyntaxKind.ESCAPE: KindRule(Action.TRANSFORM),
        SyntaxKind.SHORTHAND: KindRule(Action.TRANSFORM),
        SyntaxKind.STRONG: descend,
        SyntaxKind.EMPH: descend,
        SyntaxKind.HEADING: descend,
        SyntaxKind.HEADING_MARKER: exclude,
        SyntaxKind.LIST_ITEM: descend,
        SyntaxKind.ENUM_ITEM: descend,
        SyntaxKind.LIST_MARKER: exclude,
        SyntaxKind.RAW: KindRule(Action.TRANSFORM, "_"),
        SyntaxKind.EQUATION: KindRule(Action.TRANSFORM, "X"),
        SyntaxKind.CODE: descend,
        SyntaxKind.CODE_HEAD: exclude,
        SyntaxKind.CONTENT_BLOCK: descend,
        SyntaxKind.BRACKET: exclude,
        SyntaxKind.LABEL: exclude,
        SyntaxKind.REF: KindRule(Action.TRANSFORM, "Reference"),
        SyntaxKind.LINK: KindRule(Action.TRANSFORM, "link"),
        SyntaxKind.LINE_COMMENT: exclude,
        SyntaxKind.BLOCK_COMMENT: exclude,
        SyntaxKind.DELIMITER: exclude,
    }


def _default_functions() -> dict[str, FunctionRule]:
    plain = FunctionRule()
    functions = {
        name: plain
        for name in (
            "text",
            "emph",
            "strong",
            "underline",
            "overline",
            "strike",
            "highlight",
            "smallcaps",
            "sub",
            "super",
            "align",
            "block",
            "box",
            "pad",
            "par",
            "heading",
            "link",
        )
    }
    functions["footnote"] = FunctionRule(before=" (", after=")")
    functions["quote"] = FunctionRule(before='"', after='"')
    return functions


@dataclass(frozen=True)
class Rules:
    """Which syntax kinds are prose, which are noise, and how noise reads."""

    kinds: Mapping[SyntaxKind, KindRule] = field(default_factory=_default_kinds)
    functions: Mapping[str, FunctionRule] = field(default_factory=_default_functions)

    def rule_for(self, kind: SyntaxKind) -> KindRule:
        return self.kinds.get(kind, KindRule(Action.EXCLUDE))

    def function_rule(self, name: str) -> FunctionRule | None:
        return self.functions.get(name)


def _parse_kind_rule(kind: SyntaxKind, value: Any) -> KindRule:
    if isinstance(value, dict):
        raw_action = value.get("action")
        replacement = value.get("replacement")
    else:
        raw_action = value
        replacement = None
    try:
        action = Action(str(raw_action).strip().lower())
    except ValueError as e:
        allowed = ", ".join(a.value for a in Action)
        raise ValueError(f"Invalid action for rules.kinds.{kind.value}: {raw_action!r}. Allowed: {allowed}") from e
    if action == Action.DESCEND and kind not in CONTAINER_KINDS:
        raise ValueError(f"rules.kinds.{kind.value}: 'descend' only applies to container kinds")
    return KindRule(action=action, replacement=(str(replacement) if replacement is not None else None))


def rules_from_dict(data: Mapping[str, Any] | None) -> Rules:
    """Build rules from the ``rules:`` config section, on top of the defaults.

    ``kinds`` maps a syntax kind to an action (or ``{action, replacement}``);
    ``functions`` maps a callee to ``{before, after}``, or ``null`` to drop it.
    """
    data = data or {}
    kinds = _default_kinds()
    for raw_kind, value in (data.get("kinds", {}) or {}).items():
        try:
            kind = SyntaxKind(str(raw_kind).strip().lower())
        except ValueError as e:
            raise ValueError(f"Unknown syntax kind in rules.kinds: {raw_kind!r}") from e
        kinds[kind] = _parse_kind_rule(kind, value)

    functions = {} if data.get("replace_functions") else _default_functions()
    for name, value in (data.get("functions", {}) or {}).items():
        if value is None:
            functions.pop(str(name), None)
            continue
        if not isinstance(value, dict):
            raise ValueError(f"rules.functions.{name} must be a mapping with 'before'/'after', got {value!r}")
        functions[str(name)] = FunctionRule(before=str(value.get("before", "")), after=str(value.get("after", "")))
    return Rules(kinds=kinds, functions=functions)

"""
Open question parsing and spec patching.

Generated specs may carry an <open_questions> section of structured
clarification requests. This module extracts them, turns the user's
answers back into prompt text, applies the find/replace patches the agent
returns, and strips answered questions out of the spec.

Parsing is regex based and best effort: the input is LLM output, so
malformed markup degrades to "no questions" or "no patches" instead of
raising.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from ralph.lib.validate import is_valid

logger = logging.getLogger(__name__)

CUSTOM_OPTION_ID = "custom"

_OPEN_QUESTIONS_RE = re.compile(r'<open_questions[^>]*>.*?<question.*?</open_questions>', re.IGNORECASE | re.DOTALL)
_OPEN_QUESTIONS_BLOCK_RE = re.compile(r'\s*<open_questions>.*?</open_questions>', re.IGNORECASE | re.DOTALL)
_QUESTION_RE = re.compile(r'<question.*?</question>', re.IGNORECASE | re.DOTALL)
_OPTION_RE = re.compile(r'<option.*?</option>', re.IGNORECASE | re.DOTALL)
_FENCED_JSON_RE = re.compile(r'```(?:json)?\s*(.*?)```', re.DOTALL)


@dataclass(frozen=True)
class QuestionOption:
    id: str
    label: str
    description: str
    recommended: bool = False

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "label": self.label,
            "description": self.description,
            "recommended": self.recommended,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "QuestionOption":
        return cls(
            id=data["id"],
            label=data["label"],
            description=data["description"],
            recommended=bool(data.get("recommended", False)),
        )


@dataclass(frozen=True)
class OpenQuestion:
    id: str
    text: str
    context: str
    options: tuple[QuestionOption, ...] = field(default_factory=tuple)

    def option(self, option_id: str) -> Optional[QuestionOption]:
        for opt in self.options:
            if opt.id == option_id:
                return opt
        return None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "text": self.text,
            "context": self.context,
            "options": [opt.to_dict() for opt in self.options],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "OpenQuestion":
        return cls(
            id=data["id"],
            text=data["text"],
            context=data["context"],
            options=tuple(QuestionOption.from_dict(o) for o in data["options"]),
        )


@dataclass(frozen=True)
class QuestionAnswer:
    """The user's answer to one question.

    custom_response is set if and only if the custom option was selected.
    """
    question_id: str
    selected_option_id: str
    custom_response: Optional[str] = None

    def __post_init__(self):
        is_custom = self.selected_option_id == CUSTOM_OPTION_ID
        if is_custom and self.custom_response is None:
            raise ValueError(f"Answer to {self.question_id!r} selects 'custom' without a custom response")
        if not is_custom and self.custom_response is not None:
            raise ValueError(
                f"Answer to {self.question_id!r} has a custom response but selects {self.selected_option_id!r}"
            )

    def to_dict(self) -> dict:
        data = {"questionId": self.question_id, "selectedOptionId": self.selected_option_id}
        if self.custom_response is not None:
            data["customResponse"] = self.custom_response
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "QuestionAnswer":
        return cls(
            question_id=data["questionId"],
            selected_option_id=data["selectedOptionId"],
            custom_response=data.get("customResponse"),
        )


@dataclass(frozen=True)
class SpecPatchItem:
    find: str
    replace: str


@dataclass(frozen=True)
class SpecPatch:
    patches: tuple[SpecPatchItem, ...] = ()


# --- Parsing ---------------------------------------------------------------


def _tag_content(xml: str, tag: str) -> Optional[str]:
    match = re.search(rf'<{tag}[^>]*>(.*?)</{tag}>', xml, re.IGNORECASE | re.DOTALL)
    return match.group(1).strip() if match else None


def _attribute(xml: str, name: str) -> Optional[str]:
    match = re.search(rf'\b{name}\s*=\s*["\']([^"\']*)["\']', xml, re.IGNORECASE)
    return match.group(1) if match else None


def _parse_option(option_xml: str) -> Optional[QuestionOption]:
    option_id = _attribute(option_xml, "id")
    label = _tag_content(option_xml, "label")
    description = _tag_content(option_xml, "description")
    if not option_id or not label or not description:
        return None
    return QuestionOption(
        id=option_id,
        label=label,
        description=description,
        recommended=_attribute(option_xml, "recommended") == "true",
    )


def _parse_question(question_xml: str) -> Optional[OpenQuestion]:
    question_id = _attribute(question_xml, "id")
    text = _tag_content(question_xml, "text")
    context = _tag_content(question_xml, "context")
    options_xml = _tag_content(question_xml, "options")
    if not question_id or not text or not context or not options_xml:
        logger.debug(f"Dropping question {question_id!r}: missing id, text, context or options")
        return None

    options = [opt for opt in map(_parse_option, _OPTION_RE.findall(options_xml)) if opt]
    # Need at least 2 options (one of them is normally "custom")
    if len(options) < 2:
        logger.debug(f"Dropping question {question_id!r}: only {len(options)} valid option(s)")
        return None

    return OpenQuestion(id=question_id, text=text, context=context, options=tuple(options))


def has_open_questions(spec: str) -> bool:
    """Quick check for an <open_questions> section with at least one question."""
    return _OPEN_QUESTIONS_RE.search(spec) is not None


def parse_open_questions(spec: str) -> list[OpenQuestion]:
    """Extract the open questions from a generated spec.

    Returns an empty list if the section is absent or holds no valid
    question. Never raises for malformed markup.
    """
    section = _tag_content(spec, "open_questions")
    if not section:
        return []
    return [q for q in map(_parse_question, _QUESTION_RE.findall(section)) if q]


def format_questions_as_markup(questions: list[OpenQuestion]) -> str:
    """Render questions in the <open_questions> markup the agent produces."""
    lines = ["<open_questions>"]
    for question in questions:
        lines.append(f'  <question id="{question.id}">')
        lines.append(f"    <text>{question.text}</text>")
        lines.append(f"    <context>{question.context}</context>")
        lines.append("    <options>")
        for opt in question.options:
            recommended = ' recommended="true"' if opt.recommended else ""
            lines.append(f'      <option id="{opt.id}"{recommended}>')
            lines.append(f"        <label>{opt.label}</label>")
            lines.append(f"        <description>{opt.description}</description>")
            lines.append("      </option>")
        lines.append("    </options>")
        lines.append("  </question>")
    lines.append("</open_questions>")
    return "\n".join(lines)


def format_answers_for_prompt(questions: list[OpenQuestion], answers: dict[str, QuestionAnswer]) -> str:
    """Render answered questions for the patch prompt, in question order."""
    lines = []
    for question in questions:
        answer = answers.get(question.id)
        if answer is None:
            continue

        lines.append(f"## {question.text}")
        selected = question.option(answer.selected_option_id)
        if answer.selected_option_id == CUSTOM_OPTION_ID and answer.custom_response:
            lines.append(f"**User's answer:** {answer.custom_response}")
        elif selected:
            lines.append(f"**Selected:** {selected.label}")
            lines.append(f"**Description:** {selected.description}")
        lines.append("")

    return "\n".join(lines)


# --- Patching --------------------------------------------------------------


def apply_patches(spec: str, patch: SpecPatch) -> str:
    """Apply find/replace patches in order, first occurrence only.

    Each patch sees the result of the previous one. A patch whose find
    text is absent is skipped.
    """
    result = spec
    for item in patch.patches:
        result = result.replace(item.find, item.replace, 1)
    return result


def remove_answered_questions(spec: str, answered_ids: list[str]) -> str:
    """Remove answered question blocks; drop the section once it is empty."""
    result = spec
    for question_id in answered_ids:
        # Tag names match case-insensitively, the id exactly
        pattern = re.compile(
            rf'\s*<(?i:question)\s+(?i:id)=["\']{re.escape(question_id)}["\'][^>]*>.*?</(?i:question)>',
            re.DOTALL,
        )
        result = pattern.sub("", result)

    section = _tag_content(result, "open_questions")
    if section is not None and not _QUESTION_RE.search(section):
        result = _OPEN_QUESTIONS_BLOCK_RE.sub("", result)

    return result


def parse_patch_response(response: str) -> Optional[SpecPatch]:
    """Parse the agent's JSON patch response, fenced or bare.

    Returns None if the text isn't JSON or doesn't match the
    patch_response schema. The schema is checked per item too, so a
    well-formed object with a malformed entry (a non-object item, or a
    find/replace that isn't a string) is rejected as a whole rather than
    partially applied.
    """
    match = _FENCED_JSON_RE.search(response)
    json_str = match.group(1).strip() if match else response.strip()

    try:
        data = json.loads(json_str)
    except json.JSONDecodeError:
        logger.warning("Patch response is not valid JSON")
        return None

    if not is_valid(data, "patch_response"):
        logger.warning("Patch response does not match the patch_response schema")
        return None

    return SpecPatch(patches=tuple(
        SpecPatchItem(find=p["find"], replace=p["replace"]) for p in data["patches"]
    ))

"""Tests for ralph.lib.questions module."""

import pytest

from ralph.lib.questions import (
    OpenQuestion,
    QuestionAnswer,
    QuestionOption,
    SpecPatch,
    SpecPatchItem,
    apply_patches,
    format_answers_for_prompt,
    format_questions_as_markup,
    has_open_questions,
    parse_open_questions,
    parse_patch_response,
    remove_answered_questions,
)

THEME_QUESTION = """
  <question id="theme-source">
    <text>Where should the theme come from?</text>
    <context>Decides whether we need a settings screen.</context>
    <options>
      <option id="a" recommended="true">
        <label>System setting</label>
        <description>Follow the OS preference.</description>
      </option>
      <option id="b">
        <label>App toggle</label>
        <description>Add a toggle in settings.</description>
      </option>
      <option id="custom">
        <label>Custom response</label>
        <description>Provide your own answer to this question.</description>
      </option>
    </options>
  </question>"""

STORAGE_QUESTION = """
  <question id='storage'>
    <text>Where is the preference stored?</text>
    <context>Affects sync across devices.</context>
    <options>
      <option id='local'>
        <label>Local storage</label>
        <description>Per device.</description>
      </option>
      <option id='custom'>
        <label>Custom response</label>
        <description>Provide your own answer to this question.</description>
      </option>
    </options>
  </question>"""


def make_spec(*questions: str) -> str:
    return (
        "<specification>\n"
        "  <name>Dark mode</name>\n"
        "  <overview>Add a dark theme.</overview>\n"
        "  <open_questions>" + "".join(questions) + "\n  </open_questions>\n"
        "  <success_criteria>Users can switch themes.</success_criteria>\n"
        "</specification>"
    )


class TestParseOpenQuestions:
    """Tests for parse_open_questions()."""

    def test_parses_two_questions(self):
        questions = parse_open_questions(make_spec(THEME_QUESTION, STORAGE_QUESTION))
        assert [q.id for q in questions] == ["theme-source", "storage"]

    def test_parses_fields_and_options(self):
        question = parse_open_questions(make_spec(THEME_QUESTION))[0]
        assert question.text == "Where should the theme come from?"
        assert question.context == "Decides whether we need a settings screen."
        assert [o.id for o in question.options] == ["a", "b", "custom"]
        assert question.options[0].recommended is True
        assert question.options[1].recommended is False
        assert question.options[0].label == "System setting"

    def test_single_quoted_attributes(self):
        question = parse_open_questions(make_spec(STORAGE_QUESTION))[0]
        assert question.id == "storage"
        assert [o.id for o in question.options] == ["local", "custom"]

    def test_no_section_returns_empty(self):
        assert parse_open_questions("<specification><name>X</name></specification>") == []

    def test_empty_section_returns_empty(self):
        assert parse_open_questions("<open_questions>\n</open_questions>") == []

    def test_question_missing_context_is_dropped(self):
        broken = THEME_QUESTION.replace(
            "<context>Decides whether we need a settings screen.</context>", ""
        )
        questions = parse_open_questions(make_spec(broken, STORAGE_QUESTION))
        assert [q.id for q in questions] == ["storage"]

    def test_question_with_one_valid_option_is_dropped(self):
        one_option = STORAGE_QUESTION.replace("<label>Local storage</label>", "")
        assert parse_open_questions(make_spec(one_option)) == []

    def test_option_without_description_is_skipped(self):
        partial = THEME_QUESTION.replace("<description>Add a toggle in settings.</description>", "")
        question = parse_open_questions(make_spec(partial))[0]
        assert [o.id for o in question.options] == ["a", "custom"]

    def test_tag_names_case_insensitive(self):
        spec = make_spec(THEME_QUESTION).replace("<open_questions>", "<OPEN_QUESTIONS>")
        spec = spec.replace("</open_questions>", "</OPEN_QUESTIONS>")
        assert len(parse_open_questions(spec)) == 1

    def test_malformed_markup_does_not_raise(self):
        assert parse_open_questions("<open_questions><question id=\"x\"><text>unclosed") == []

    def test_round_trip_through_markup(self):
        questions = [
            OpenQuestion(
                id="q1",
                text="Pick a database",
                context="Drives hosting cost.",
                options=(
                    QuestionOption("pg", "Postgres", "Managed instance.", recommended=True),
                    QuestionOption("custom", "Custom response", "Your own answer."),
                ),
            ),
            OpenQuestion(
                id="q2",
                text="Auth provider?",
                context="Login flow.",
                options=(
                    QuestionOption("oauth", "OAuth", "Third party."),
                    QuestionOption("custom", "Custom response", "Your own answer."),
                ),
            ),
        ]
        parsed = parse_open_questions(format_questions_as_markup(questions))
        assert parsed == questions


class TestHasOpenQuestions:
    """Tests for has_open_questions()."""

    def test_true_with_question(self):
        assert has_open_questions(make_spec(THEME_QUESTION))

    def test_false_without_section(self):
        assert not has_open_questions("<specification></specification>")

    def test_false_with_empty_section(self):
        assert not has_open_questions("<open_questions></open_questions>")

    def test_section_with_attributes(self):
        assert has_open_questions(make_spec(THEME_QUESTION).replace("<open_questions>", "<open_questions count=\"1\">"))


class TestQuestionAnswer:
    """QuestionAnswer enforces custom_response iff custom option."""

    def test_custom_requires_response(self):
        with pytest.raises(ValueError):
            QuestionAnswer("q1", "custom")

    def test_non_custom_rejects_response(self):
        with pytest.raises(ValueError):
            QuestionAnswer("q1", "a", custom_response="text")

    def test_valid_answers(self):
        assert QuestionAnswer("q1", "a").custom_response is None
        assert QuestionAnswer("q1", "custom", "mine").custom_response == "mine"

    def test_dict_round_trip(self):
        answer = QuestionAnswer("q1", "custom", "mine")
        assert answer.to_dict() == {
            "questionId": "q1",
            "selectedOptionId": "custom",
            "customResponse": "mine",
        }
        assert QuestionAnswer.from_dict(answer.to_dict()) == answer


class TestFormatAnswersForPrompt:
    """Tests for format_answers_for_prompt()."""

    def test_selected_and_custom_answers_in_question_order(self):
        questions = parse_open_questions(make_spec(THEME_QUESTION, STORAGE_QUESTION))
        answers = {
            "storage": QuestionAnswer("storage", "custom", "Sync via account"),
            "theme-source": QuestionAnswer("theme-source", "a"),
        }
        text = format_answers_for_prompt(questions, answers)
        assert text == (
            "## Where should the theme come from?\n"
            "**Selected:** System setting\n"
            "**Description:** Follow the OS preference.\n"
            "\n"
            "## Where is the preference stored?\n"
            "**User's answer:** Sync via account\n"
        )

    def test_unanswered_questions_skipped(self):
        questions = parse_open_questions(make_spec(THEME_QUESTION, STORAGE_QUESTION))
        text = format_answers_for_prompt(questions, {"storage": QuestionAnswer("storage", "local")})
        assert "theme come from" not in text
        assert "**Selected:** Local storage" in text

    def test_no_answers_gives_empty_text(self):
        questions = parse_open_questions(make_spec(THEME_QUESTION))
        assert format_answers_for_prompt(questions, {}) == ""


class TestApplyPatches:
    """Tests for apply_patches()."""

    def test_applies_in_order(self):
        patch = SpecPatch(patches=(
            SpecPatchItem("dark theme", "dark and light theme"),
            SpecPatchItem("light theme", "high-contrast theme"),
        ))
        # Second patch sees the result of the first
        assert apply_patches("Add a dark theme.", patch) == "Add a dark and high-contrast theme."

    def test_first_occurrence_only(self):
        patch = SpecPatch(patches=(SpecPatchItem("a", "b"),))
        assert apply_patches("a a a", patch) == "b a a"

    def test_missing_find_is_noop(self):
        patch = SpecPatch(patches=(SpecPatchItem("absent", "x"),))
        assert apply_patches("unchanged", patch) == "unchanged"

    def test_length_changes_by_replace_delta(self):
        spec = "alpha beta gamma"
        items = (SpecPatchItem("alpha", "A"), SpecPatchItem("gamma", "GAMMA-RAY"))
        result = apply_patches(spec, SpecPatch(patches=items))
        expected = len(spec) + sum(len(i.replace) - len(i.find) for i in items)
        assert len(result) == expected

    def test_empty_patch(self):
        assert apply_patches("text", SpecPatch()) == "text"


class TestRemoveAnsweredQuestions:
    """Tests for remove_answered_questions()."""

    def test_removes_only_answered(self):
        result = remove_answered_questions(make_spec(THEME_QUESTION, STORAGE_QUESTION), ["theme-source"])
        assert [q.id for q in parse_open_questions(result)] == ["storage"]
        assert "<open_questions>" in result

    def test_removes_section_when_empty(self):
        result = remove_answered_questions(make_spec(THEME_QUESTION), ["theme-source"])
        assert "<open_questions>" not in result
        assert "</open_questions>" not in result
        assert "<name>Dark mode</name>" in result
        assert "<success_criteria>" in result

    def test_idempotent(self):
        spec = make_spec(THEME_QUESTION, STORAGE_QUESTION)
        once = remove_answered_questions(spec, ["storage"])
        assert remove_answered_questions(once, ["storage"]) == once

    def test_id_match_is_exact(self):
        result = remove_answered_questions(make_spec(THEME_QUESTION), ["THEME-SOURCE"])
        assert len(parse_open_questions(result)) == 1

    def test_id_with_regex_characters(self):
        spec = make_spec(THEME_QUESTION.replace('id="theme-source"', 'id="q.1+(x)"'))
        result = remove_answered_questions(spec, ["q.1+(x)"])
        assert "<open_questions>" not in result

    def test_no_section_unchanged(self):
        assert remove_answered_questions("<name>X</name>", ["q1"]) == "<name>X</name>"


class TestParsePatchResponse:
    """Tests for parse_patch_response()."""

    def test_not_json(self):
        assert parse_patch_response("not json") is None

    def test_fenced_empty_patches(self):
        patch = parse_patch_response('```json\n{"patches":[]}\n```')
        assert patch == SpecPatch(patches=())

    def test_bare_json(self):
        patch = parse_patch_response('{"patches": [{"find": "a", "replace": "b"}]}')
        assert patch.patches == (SpecPatchItem("a", "b"),)

    def test_fence_without_language(self):
        text = 'Here you go:\n```\n{"patches": [{"find": "x", "replace": "y"}]}\n```\nDone.'
        assert parse_patch_response(text).patches == (SpecPatchItem("x", "y"),)

    def test_missing_patches_key(self):
        assert parse_patch_response('{"changes": []}') is None

    def test_patches_not_a_list(self):
        assert parse_patch_response('{"patches": "none"}') is None

    def test_patch_item_missing_replace(self):
        assert parse_patch_response('{"patches": [{"find": "a"}]}') is None

    def test_null_replace_rejects_whole_response(self):
        text = '{"patches": [{"find": "a", "replace": "b"}, {"find": "c", "replace": null}]}'
        assert parse_patch_response(text) is None

    def test_non_object_item(self):
        assert parse_patch_response('{"patches": ["x"]}') is None

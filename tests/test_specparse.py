"""Tests for ralph.lib.specparse module."""

from ralph.lib.specparse import UNTITLED, extract_title_from_spec


class TestExtractTitle:
    """Tests for extract_title_from_spec()."""

    def test_name_tag(self):
        assert extract_title_from_spec("<specification>\n  <name> Dark mode </name>\n") == "Dark mode"

    def test_name_tag_case_insensitive(self):
        assert extract_title_from_spec("<NAME>Dark mode</NAME>") == "Dark mode"

    def test_first_meaningful_line(self):
        spec = '<?xml version="1.0"?>\n<!-- generated -->\n<specification>\n\n<overview>Add a dark theme</overview>'
        assert extract_title_from_spec(spec) == "Add a dark theme"

    def test_markdown_header(self):
        assert extract_title_from_spec("```xml\n# Dark mode\nbody") == "Dark mode"

    def test_plain_text(self):
        assert extract_title_from_spec("Hello") == "Hello"

    def test_fallback(self):
        assert extract_title_from_spec("") == UNTITLED
        assert extract_title_from_spec("<specification>\n<overview></overview>") == UNTITLED

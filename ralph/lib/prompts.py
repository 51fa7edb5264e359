"""
Prompt loader for ralph.

Loads prompt templates from the package's prompts/ directory and interpolates variables.
Templates use Python str.format() syntax: {variable_name}
Use {{ and }} for literal braces in LLM output (e.g., JSON examples).

HTML comments (<!-- ... -->) are stripped before rendering - use them for
documentation that shouldn't be sent to the LLM. Templates listed in
_KEEP_INLINE_COMMENTS show the LLM example markup that contains comments,
so only their leading documentation comment is stripped.
"""

import logging
import re
from functools import lru_cache
from pathlib import Path

logger = logging.getLogger(__name__)

__all__ = ["PromptError", "load_prompt", "render_prompt", "clear_cache", "PROMPTS_DIR"]

# Pattern to strip HTML comments (including multiline)
_HTML_COMMENT_PATTERN = re.compile(r'<!--.*?-->\s*', re.DOTALL)

# Header comment block at the very top of a template (template documentation)
_HEADER_COMMENT_PATTERN = re.compile(r'\A\s*<!--.*?-->\s*', re.DOTALL)

PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"

_KEEP_INLINE_COMMENTS = {"spec"}


class PromptError(Exception):
    """Raised when prompt loading or rendering fails."""
    pass


@lru_cache(maxsize=32)
def load_prompt(name: str) -> str:
    """
    Load a prompt template by name (cached).

    HTML comments are stripped - use them for documentation.

    Args:
        name: Prompt name without extension (e.g., 'spec', 'patch')

    Returns:
        Prompt template content (HTML comments stripped)

    Raises:
        PromptError: If prompt file doesn't exist
    """
    prompt_path = PROMPTS_DIR / f"{name}.md"

    if not prompt_path.exists():
        raise PromptError(
            f"Prompt template '{name}' not found. "
            f"Expected file: {prompt_path}"
        )

    logger.debug(f"Loading prompt template: {name}")
    content = prompt_path.read_text()

    if name in _KEEP_INLINE_COMMENTS:
        content = _HEADER_COMMENT_PATTERN.sub('', content)
    else:
        content = _HTML_COMMENT_PATTERN.sub('', content)

    return content.lstrip()  # Remove leading whitespace left by stripped comments


def render_prompt(name: str, **kwargs) -> str:
    """
    Load and render a prompt template with variables.

    Uses Python string formatting with {variable} placeholders.
    Double braces {{ and }} are used for literal braces in output.

    Raises:
        PromptError: If template not found or required variable missing

    Example:
        render_prompt('feedback', description='...', previous_spec='...', feedback='...')
    """
    template = load_prompt(name)

    try:
        return template.format(**kwargs)
    except KeyError as e:
        raise PromptError(
            f"Missing required variable {e} in prompt '{name}'. "
            f"Provided: {list(kwargs.keys())}"
        ) from e


def clear_cache():
    """Clear the prompt cache (useful for testing or hot-reload)."""
    load_prompt.cache_clear()

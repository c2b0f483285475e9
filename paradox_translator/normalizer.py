import os
import re
from typing import Tuple

# `key:0 "value"` as emitted by the game files; the numeric id is dropped.
KEY_WITH_ID_PATTERN = re.compile(r'^(\s*)([\w.\-\']+):\d+\s+(.*)$')
# `key: value` where the value may be unquoted or quoted on one side only.
KEY_VALUE_PATTERN = re.compile(r'^(\s*)([\w.\-\']+):\s+(.*?)\s*$')


def _is_blank_or_comment(line: str) -> bool:
    stripped = line.strip()
    return not stripped or stripped.startswith('#')


def _quote_value(value: str) -> str:
    """
    Ensure ``value`` is wrapped in double quotes.

    Values that already carry quotes are returned unchanged, except for the
    half-quoted form (a single quote on one side only), which is completed.
    """
    if not value:
        return value
    quote_count = value.count('"')
    if quote_count == 0:
        return f'"{value}"'
    if quote_count == 1:
        if value.startswith('"'):
            return f'{value}"'
        if value.endswith('"'):
            return f'"{value}'
    return value


def normalize_line(line: str) -> str:
    """Repair a single localisation line. Lines that match no repair pattern pass through."""
    if _is_blank_or_comment(line):
        return line

    # 1. `key:0 value` -> `key: value`
    fixed = KEY_WITH_ID_PATTERN.sub(r'\1\2: \3', line)

    # 2. Quote the value
    match = KEY_VALUE_PATTERN.match(fixed)
    if match:
        indent, key, value = match.groups()
        fixed = f'{indent}{key}: {_quote_value(value)}'

    # 3. Indentation is always a multiple of two spaces
    trimmed = fixed.lstrip()
    indent_width = len(fixed) - len(trimmed)
    return ' ' * (indent_width // 2 * 2) + trimmed


def normalize_content(content: str) -> str:
    """
    Best-effort repair of a malformed localisation document.

    The output has the same number of lines as the input. Blank and comment
    lines are left untouched.

    Args:
        content: The raw document text, BOM already stripped.

    Returns:
        The normalized document text.
    """
    return '\n'.join(normalize_line(line) for line in content.splitlines())


def split_language_header(content: str, source_lang: str) -> Tuple[str, str]:
    """
    Remove the ``l_<source_lang>:`` header line and dedent the remaining lines.

    Only the first non-blank, non-comment line may be the header. If that line
    is anything else, the document is treated as headerless.

    Args:
        content: The normalized document.
        source_lang: The source language tag (e.g. "english").

    Returns:
        Tuple[str, str]: The header line (empty if absent) and the dedented body.
    """
    lines = content.splitlines()
    header = ''
    header_prefix = f'l_{source_lang}:'

    for index, line in enumerate(lines):
        if _is_blank_or_comment(line):
            continue
        if line.strip().startswith(header_prefix):
            header = lines.pop(index).strip()
        break

    body = '\n'.join(line.lstrip() for line in lines)
    return header, body


def generate_target_filename(source_filename: str, source_lang: str, target_lang: str) -> str:
    """
    Derive the translated file name, e.g. ``events_l_english.yaml`` ->
    ``events_l_french.yml``.
    """
    renamed = source_filename.replace(f'l_{source_lang}', f'l_{target_lang}')
    stem, extension = os.path.splitext(renamed)
    if extension.lower() in ('.yml', '.yaml'):
        return f'{stem}.yml'
    return renamed

import logging
import re
from dataclasses import dataclass
from functools import partial
from typing import Callable, List

import tiktoken

logger = logging.getLogger(__name__)

# A key line starts a new entry; anything else (comments, blank lines,
# continuation text) belongs to the entry above it.
ENTRY_START_PATTERN = re.compile(r'^[^\s#:][^\s:]*:')


@dataclass(frozen=True)
class Slice:
    """A contiguous, inclusive, 1-based line range of a document body and its text."""
    content: str
    start_line: int
    end_line: int

    @property
    def line_count(self) -> int:
        return self.end_line - self.start_line + 1


def count_tokens(text: str, model_name: str = 'gpt-3.5-turbo') -> int:
    """Count the number of tokens in ``text`` for ``model_name``.

    ``tiktoken.encoding_for_model`` may try to download model data when it is
    not cached. If that fails the ``gpt2`` encoding is tried, and as a last
    resort a whitespace split is used.
    """
    try:
        encoding = tiktoken.encoding_for_model(model_name)
    except Exception:
        try:
            encoding = tiktoken.get_encoding("gpt2")
        except Exception:
            return len(text.split())

    try:
        return len(encoding.encode(text))
    except Exception:
        return len(text.split())


def token_counter(model_name: str) -> Callable[[str], int]:
    """Return a size function measuring text in tokens of ``model_name``."""
    return partial(count_tokens, model_name=model_name)


def is_entry_start(line: str) -> bool:
    return bool(ENTRY_START_PATTERN.match(line))


def group_entries(lines: List[str]) -> List[List[str]]:
    """
    Group body lines into logical entries.

    Lines before the first key line are attached to the first entry so that a
    slice boundary can only ever fall on a key line.
    """
    groups: List[List[str]] = []
    current: List[str] = []
    current_has_key = False
    for line in lines:
        starts_entry = is_entry_start(line)
        if starts_entry and current_has_key:
            groups.append(current)
            current = []
        current.append(line)
        current_has_key = current_has_key or starts_entry
    if current:
        groups.append(current)
    return groups


def split_into_slices(body: str, max_size: int, measure: Callable[[str], int] = len) -> List[Slice]:
    """
    Partition a header-stripped body into size-bounded slices.

    Slices are closed only at entry boundaries, cover every line of the body
    exactly once and are numbered from line 1. The budget is advisory: an entry
    larger than ``max_size`` becomes its own oversized slice.

    Args:
        body: The dedented document body.
        max_size: The size budget of one slice, in units of ``measure``.
        measure: The size function, ``len`` for characters or a token counter.

    Returns:
        List[Slice]: The slices in line order; empty when there is nothing to translate.
    """
    if max_size <= 0:
        raise ValueError(f"max_size must be positive, got {max_size}")
    if not body.strip():
        return []

    slices: List[Slice] = []
    current_lines: List[str] = []
    current_size = 0
    start_line = 1
    next_line = 1

    for group in group_entries(body.splitlines()):
        group_size = measure('\n'.join(group))
        separator = 1 if current_lines else 0

        if current_lines and current_size + separator + group_size > max_size:
            slices.append(Slice('\n'.join(current_lines), start_line, next_line - 1))
            current_lines = []
            current_size = 0
            separator = 0
            start_line = next_line

        if group_size > max_size:
            logger.warning(
                "Entry at line %d is larger than the chunk budget (%d > %d); it gets its own slice.",
                next_line, group_size, max_size
            )

        current_lines.extend(group)
        current_size += separator + group_size
        next_line += len(group)

    if current_lines:
        slices.append(Slice('\n'.join(current_lines), start_line, next_line - 1))

    return slices

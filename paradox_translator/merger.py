from typing import Iterable

from paradox_translator.chunker import Slice
from paradox_translator.errors import InconsistentSlicesError, MergeFailedError

# Body lines sit two levels (2 spaces each) below the language header.
BODY_INDENT = '    '


def merge_slices(slices: Iterable[Slice], indent: str = BODY_INDENT) -> str:
    """
    Reassemble translated slices into one body, in line order.

    Raises:
        InconsistentSlicesError: If no slice is given.
        MergeFailedError: If the sorted slices leave a gap or overlap.
    """
    sorted_slices = sorted(slices, key=lambda s: s.start_line)
    if not sorted_slices:
        raise InconsistentSlicesError("A document must resolve to at least one slice.")

    for previous, current in zip(sorted_slices, sorted_slices[1:]):
        if current.start_line != previous.end_line + 1:
            raise MergeFailedError(
                f"Slices are not contiguous: {current.start_line} != {previous.end_line} + 1"
            )

    lines = []
    for translated_slice in sorted_slices:
        for line in translated_slice.content.split('\n'):
            lines.append(f'{indent}{line}' if line.strip() else '')
    return '\n'.join(lines)


def reconstruct_document(slices: Iterable[Slice], target_lang: str) -> str:
    """Merge ``slices`` and put the ``l_<target_lang>:`` header on top."""
    return f'l_{target_lang}:\n' + merge_slices(slices)

import os
import re
from typing import List

BOM = '\ufeff'
LOCALISATION_EXTENSIONS = ('.yml', '.yaml')

# 'Ã' followed by a byte in 0x80-0xFF is what UTF-8 text looks like after
# being decoded as latin-1 or cp1252.
MOJIBAKE_PATTERN = re.compile(r'Ã[\x80-\xff]')


def find_localisation_files(root: str, follow_symlinks: bool = True) -> List[str]:
    """
    Recursively collect the ``.yml``/``.yaml`` files under ``root``.

    Returns:
        List[str]: File paths in depth-first, name-sorted order.
    """
    found = []
    for dirpath, dirnames, filenames in os.walk(root, followlinks=follow_symlinks):
        dirnames.sort()
        for filename in sorted(filenames):
            if os.path.splitext(filename)[1].lower() in LOCALISATION_EXTENSIONS:
                found.append(os.path.join(dirpath, filename))
    return found


def read_document(path: str) -> str:
    """Read a localisation file as UTF-8, dropping a leading byte-order mark."""
    with open(path, 'r', encoding='utf-8') as f:
        content = f.read()
    if content.startswith(BOM):
        content = content[len(BOM):]
    return content


def write_translated_file(content: str, output_path: str, create_dirs: bool = True) -> None:
    """Write ``content`` as UTF-8 with a byte-order mark, as the game expects."""
    if create_dirs:
        parent = os.path.dirname(output_path)
        if parent:
            os.makedirs(parent, exist_ok=True)
    if not content.startswith(BOM):
        content = BOM + content
    with open(output_path, 'w', encoding='utf-8', newline='\n') as f:
        f.write(content)


def check_encoding_and_mojibake(content: str) -> List[str]:
    """
    Look for signs of an earlier encoding accident in decoded text.

    Returns:
        A list of warning messages. An empty list means nothing suspicious was found.
    """
    warnings = []
    if MOJIBAKE_PATTERN.search(content):
        warnings.append("Potential mojibake detected. Found patterns like 'Ã¼', 'Ã¤', etc.")
    if '\uFFFD' in content:
        warnings.append(
            "Content contains the Unicode replacement character (\uFFFD), "
            "indicating a previous encoding/decoding error."
        )
    return warnings

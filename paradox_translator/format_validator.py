"""Structural checks between a source slice and its translation.

Two kinds of damage are detected: keys that appeared or vanished, and
game-engine markup tokens (icons, variables, colour codes, commands) that
were dropped or altered by the model.
"""
import re
from dataclasses import dataclass
from typing import Dict, List, Tuple, Union

# Order matters: problems are reported class by class in this order.
MARKUP_PATTERNS: Dict[str, re.Pattern] = {
    'icon': re.compile(r'£[^£]+£'),
    'variable': re.compile(r'\$[^$]+\$'),
    'color': re.compile(r'§[^§]'),
    'command': re.compile(r'\[[^\]]+\]'),
}


@dataclass(frozen=True)
class MissingKey:
    key: str

    def __str__(self) -> str:
        return f"Missing key '{self.key}'"


@dataclass(frozen=True)
class ExtraKey:
    key: str

    def __str__(self) -> str:
        return f"Extra key '{self.key}'"


@dataclass(frozen=True)
class PatternNotFound:
    key: str
    original: str

    def __str__(self) -> str:
        return f"Pattern not found for key '{self.key}': '{self.original}'"


@dataclass(frozen=True)
class PatternMismatch:
    key: str
    original: str
    translated: str

    def __str__(self) -> str:
        return f"Pattern mismatch for key '{self.key}': '{self.original}' => '{self.translated}'"


Problem = Union[MissingKey, ExtraKey, PatternNotFound, PatternMismatch]


def parse_key_values(text: str) -> Dict[str, str]:
    """
    Split slice text into an ordered ``key -> value`` mapping.

    Each line is split on its first ``:``. Lines without a colon and comment
    lines produce no pair. A repeated key keeps its last value.
    """
    items: Dict[str, str] = {}
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith('#') or ':' not in stripped:
            continue
        key, value = stripped.split(':', 1)
        items[key.strip()] = value.strip()
    return items


def check_key_coverage(original_keys: List[str], translated_keys: List[str]) -> Tuple[List[str], List[str]]:
    """
    Compare the keys of a translated slice against its source.

    Returns:
        A tuple of two lists:
        - missing_keys: keys of the source absent from the translation, in source order.
        - extra_keys: keys of the translation absent from the source, in translated order.
    """
    original_set = set(original_keys)
    translated_set = set(translated_keys)
    missing_keys = [key for key in original_keys if key not in translated_set]
    extra_keys = [key for key in translated_keys if key not in original_set]
    return missing_keys, extra_keys


def compare_tokens(key: str, original_tokens: List[str], translated_tokens: List[str]) -> List[Problem]:
    """
    Compare the tokens of one markup class for one key.

    When the counts differ, tokens of the source that do not occur at all in the
    translation are reported as not found and dropped from the source list. The
    remaining tokens are compared position by position.
    """
    problems: List[Problem] = []
    if len(original_tokens) != len(translated_tokens):
        translated_set = set(translated_tokens)
        missing = list(dict.fromkeys(token for token in original_tokens if token not in translated_set))
        problems.extend(PatternNotFound(key=key, original=token) for token in missing)
        original_tokens = [token for token in original_tokens if token in translated_set]

    for original_token, translated_token in zip(original_tokens, translated_tokens):
        if original_token != translated_token:
            problems.append(PatternMismatch(key=key, original=original_token, translated=translated_token))
    return problems


class FormatValidator:
    """Validates that a translation kept the keys and markup of its source slice."""

    def __init__(self, patterns: Dict[str, re.Pattern] = None):
        self.patterns = patterns if patterns is not None else MARKUP_PATTERNS

    def validate(self, original: str, translated: str) -> List[Problem]:
        original_items = parse_key_values(original)
        translated_items = parse_key_values(translated)

        problems: List[Problem] = []
        missing_keys, extra_keys = check_key_coverage(list(original_items), list(translated_items))
        problems.extend(MissingKey(key=key) for key in missing_keys)
        problems.extend(ExtraKey(key=key) for key in extra_keys)

        for key, original_value in original_items.items():
            if key in translated_items:
                problems.extend(self.validate_patterns(key, original_value, translated_items[key]))
        return problems

    def validate_patterns(self, key: str, original: str, translated: str) -> List[Problem]:
        problems: List[Problem] = []
        for pattern in self.patterns.values():
            problems.extend(compare_tokens(key, pattern.findall(original), pattern.findall(translated)))
        return problems

    def extract_markers(self, text: str) -> List[str]:
        """Return every markup token of ``text``, grouped by class."""
        markers: List[str] = []
        for pattern in self.patterns.values():
            markers.extend(pattern.findall(text))
        return markers


def validate_format(original: str, translated: str) -> List[Problem]:
    return FormatValidator().validate(original, translated)

import csv
import io
import json
import logging
import os
import re
import sys
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

import jsonschema

from paradox_translator.errors import ConfigurationError, GlossaryError
from paradox_translator.format_validator import MARKUP_PATTERNS

logger = logging.getLogger(__name__)

COLOR_CODE_PATTERN = MARKUP_PATTERNS['color']

USER_DATA_DIR_NAME = 'paradox-translator'
MATCH_MODES = ('word', 'substring')

# Kana, CJK ideographs and Hangul: scripts where words are not separated by
# spaces, so a neighbouring character never marks a longer word.
UNSPACED_SCRIPT_PATTERN = re.compile(r'[\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff\uac00-\ud7af\uf900-\ufaff]')


def _is_word_char(char: str) -> bool:
    return (char.isalnum() or char == '_') and not UNSPACED_SCRIPT_PATTERN.match(char)


def _joins(left: str, right: str) -> bool:
    return _is_word_char(left) and _is_word_char(right)


def _occurs_as_word(term: str, text: str) -> bool:
    """True if some occurrence of ``term`` is not glued to a longer word on either side."""
    if not term:
        return False
    start = text.find(term)
    while start != -1:
        end = start + len(term)
        if (start == 0 or not _joins(text[start - 1], term[0])) and \
                (end == len(text) or not _joins(term[-1], text[end])):
            return True
        start = text.find(term, start + 1)
    return False


# A glossary maps a source term either to its translation or to an object
# carrying the translation and the `force` flag.
GLOSSARY_SCHEMA = {
    "type": "object",
    "patternProperties": {
        "^.+$": {
            "oneOf": [
                {"type": "string"},
                {
                    "type": "object",
                    "properties": {
                        "target": {"type": "string"},
                        "force": {"type": "boolean"}
                    },
                    "required": ["target"],
                    "additionalProperties": False
                }
            ]
        }
    },
    "additionalProperties": False
}


@dataclass
class GlossaryEntry:
    source: str
    target: str
    force: bool = False


class Glossary:
    """Source term to GlossaryEntry mapping used to steer translation consistency."""

    def __init__(self, entries: Optional[Dict[str, GlossaryEntry]] = None):
        self.entries: Dict[str, GlossaryEntry] = dict(entries or {})

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, term: str) -> bool:
        return term in self.entries

    def get(self, term: str) -> Optional[GlossaryEntry]:
        return self.entries.get(term)

    @classmethod
    def from_mapping(cls, raw: Dict) -> 'Glossary':
        entries = {}
        for source, value in raw.items():
            if isinstance(value, str):
                entries[source] = GlossaryEntry(source=source, target=value)
            else:
                entries[source] = GlossaryEntry(
                    source=source,
                    target=value['target'],
                    force=value.get('force', False)
                )
        return cls(entries)

    @classmethod
    def from_json_file(cls, path: str) -> 'Glossary':
        """
        Load a glossary from a JSON file.

        Raises:
            GlossaryError: If the file cannot be read, is not JSON, or does not match the schema.
        """
        try:
            with open(path, 'r', encoding='utf-8-sig') as f:
                raw = json.load(f)
            jsonschema.validate(instance=raw, schema=GLOSSARY_SCHEMA)
        except (OSError, UnicodeDecodeError) as exc:
            raise GlossaryError(f"Could not read glossary file '{path}': {exc}") from exc
        except json.JSONDecodeError as exc:
            raise GlossaryError(f"Glossary file '{path}' is not valid JSON: {exc}") from exc
        except jsonschema.ValidationError as exc:
            raise GlossaryError(f"Glossary file '{path}' has an invalid structure: {exc.message}") from exc
        return cls.from_mapping(raw)

    @classmethod
    def merge(cls, glossaries: Iterable['Glossary']) -> 'Glossary':
        """Merge glossaries in order; a later glossary wins on conflicting terms."""
        merged: Dict[str, GlossaryEntry] = {}
        for glossary in glossaries:
            merged.update(glossary.entries)
        return cls(merged)

    def find_terms_in_text(self, text: str, source_lang: str, match_mode: str = 'word') -> List[str]:
        """
        Return the glossary terms occurring in ``text``, sorted and deduplicated.

        ``match_mode='word'`` only accepts occurrences not flanked by word
        characters. Kana, CJK and Hangul characters never count as flanking, so
        terms are still found in Chinese, Japanese and Korean text.
        ``'substring'`` accepts any containment, which also matches inside
        longer words.
        """
        if match_mode not in MATCH_MODES:
            raise ValueError(f"Unknown glossary match mode '{match_mode}'")
        if match_mode == 'substring':
            found = [term for term in self.entries if term in text]
        else:
            # `§YEnergy§!`: the colour code letter must not glue onto the term.
            text = COLOR_CODE_PATTERN.sub(' ', text)
            found = [term for term in self.entries if _occurs_as_word(term, text)]
        logger.debug("Found %d glossary terms in %s text", len(found), source_lang)
        return sorted(set(found))

    def forced_terms(self, terms: Iterable[str]) -> List[str]:
        return [term for term in terms if term in self.entries and self.entries[term].force]

    def to_csv(self, source_lang: str, target_lang: str, terms: Iterable[str]) -> str:
        """
        Render a two-column term table for prompt injection.

        Terms that are not in the glossary are omitted. Forced terms must stay
        untranslated, so their own text is given as the target.
        """
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator='\n')
        writer.writerow([source_lang, target_lang])
        for term in terms:
            entry = self.entries.get(term)
            if entry is None:
                continue
            writer.writerow([entry.source, entry.source if entry.force else entry.target])
        return buffer.getvalue().rstrip('\n')


def get_user_data_dir() -> str:
    """
    Return the per-user data directory.

    - Windows: %APPDATA%\\paradox-translator\\data
    - elsewhere: ~/.local/share/paradox-translator/data
    """
    if sys.platform == 'win32':
        appdata = os.environ.get('APPDATA')
        if not appdata:
            raise ConfigurationError("APPDATA environment variable not found.")
        return os.path.join(appdata, USER_DATA_DIR_NAME, 'data')
    return os.path.join(os.path.expanduser('~'), '.local', 'share', USER_DATA_DIR_NAME, 'data')


def data_search_dirs(data_dir: str) -> List[str]:
    """The data directories in lookup order: project-local first, then per-user."""
    return [data_dir, get_user_data_dir()]


def find_data_file(relative_path: str, data_dir: str = 'data') -> Optional[str]:
    """Return the first existing ``<dir>/<relative_path>`` over the data search order, or None."""
    for directory in data_search_dirs(data_dir):
        candidate = os.path.join(directory, relative_path)
        if os.path.isfile(candidate):
            return candidate
    return None


def resolve_glossary_path(name: str, data_dir: str = 'data') -> str:
    """
    Locate glossary ``name``. A ``glossary_custom`` file in any data directory
    overrides the bundled ``glossary`` file of the same name.

    Raises:
        ConfigurationError: If no candidate exists.
    """
    relative_paths = [
        os.path.join('glossary_custom', f'{name}.json'),
        os.path.join('glossary', f'{name}.json'),
    ]
    searched = []
    for relative_path in relative_paths:
        for directory in data_search_dirs(data_dir):
            candidate = os.path.join(directory, relative_path)
            if os.path.isfile(candidate):
                return candidate
            searched.append(candidate)
    searched_text = '\n'.join(f"{i}. {path}" for i, path in enumerate(searched, 1))
    raise ConfigurationError(f"Glossary file not found: '{name}'. Searched in:\n{searched_text}")


def load_glossaries(names: Iterable[str], data_dir: str = 'data') -> Glossary:
    """Resolve, load and merge the named glossaries, last one winning on conflicts."""
    glossaries = []
    for name in names:
        path = resolve_glossary_path(name, data_dir)
        logger.debug("Loading glossary: %s", path)
        glossary = Glossary.from_json_file(path)
        logger.info("Loaded glossary '%s' with %d entries", name, len(glossary))
        glossaries.append(glossary)
    return Glossary.merge(glossaries)

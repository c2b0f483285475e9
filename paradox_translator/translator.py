import asyncio
import logging
import os
import re
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Sequence, Set, TypeVar

from aiolimiter import AsyncLimiter
from tqdm.asyncio import tqdm

from paradox_translator.chunker import Slice
from paradox_translator.errors import ConfigurationError, ForcedTermMissingError, InvalidResponseError
from paradox_translator.format_validator import FormatValidator, Problem
from paradox_translator.glossary import Glossary, find_data_file
from paradox_translator.llm_client import system_message, user_message

logger = logging.getLogger(__name__)

PROMPT_TEMPLATE_PATH = os.path.join('prompts', 'translate_system.txt')
NO_RELATED_TERMS = '(no related terms)'

CODE_FENCE_PATTERN = re.compile(r'^\s*```[\w-]*[ \t]*\n(.*?)\n\s*```\s*$', re.DOTALL)

T = TypeVar('T')
R = TypeVar('R')


@dataclass
class SliceTranslation:
    slice: Slice
    problems: List[Problem] = field(default_factory=list)


def load_prompt_template(data_dir: str = 'data') -> str:
    """
    Read the system prompt template from the data directories.

    Raises:
        ConfigurationError: If the template is missing or unreadable.
    """
    path = find_data_file(PROMPT_TEMPLATE_PATH, data_dir)
    if path is None:
        raise ConfigurationError(
            f"Prompt template '{PROMPT_TEMPLATE_PATH}' not found in '{data_dir}' or the user data directory."
        )
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return f.read()
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigurationError(f"Failed to load prompt template '{path}': {exc}") from exc


def clean_translated_text(translated_text: str, original_text: str) -> str:
    """
    Clean the model's answer: unwrap a code fence the source did not have,
    drop trailing whitespace, and give it the same surrounding blank lines
    as the source slice.
    """
    if not original_text.lstrip().startswith('```'):
        match = CODE_FENCE_PATTERN.match(translated_text)
        if match:
            translated_text = match.group(1)
    lines = [line.rstrip() for line in translated_text.splitlines()]
    while lines and not lines[0]:
        lines.pop(0)
    while lines and not lines[-1]:
        lines.pop()

    original_lines = original_text.split('\n')
    leading = len(original_lines) - len(_drop_leading_blanks(original_lines))
    trailing = len(original_lines) - len(_drop_leading_blanks(original_lines[::-1]))
    if not lines:
        return '\n'.join([''] * len(original_lines))
    return '\n'.join([''] * leading + lines + [''] * trailing)


def _drop_leading_blanks(lines: List[str]) -> List[str]:
    for index, line in enumerate(lines):
        if line.strip():
            return lines[index:]
    return []


class TranslationBatcher:
    """
    Bounds the number of remote calls in flight across every chunk, file and
    language of a run.

    One instance is built per run and shared; a pool of size 1 serialises all
    remote calls.
    """

    def __init__(self, max_concurrent: int, rate_limiter: Optional[AsyncLimiter] = None):
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be at least 1, got {max_concurrent}")
        self.max_concurrent = max_concurrent
        self.semaphore = asyncio.Semaphore(max_concurrent)
        self.rate_limiter = rate_limiter
        # Tasks holding a slot (and a rate-limiter token) right now.
        self._in_flight: Set[asyncio.Task] = set()

    @asynccontextmanager
    async def permit(self):
        """Hold one slot of the pool; the slot is released however the block exits."""
        async with self.semaphore:
            if self.rate_limiter is not None:
                await self.rate_limiter.acquire()
            task = asyncio.current_task()
            self._in_flight.add(task)
            try:
                yield
            finally:
                self._in_flight.discard(task)

    def _abandon(self, tasks: List[asyncio.Task]) -> None:
        """Cancel tasks still waiting for a slot; let in-flight calls finish unobserved."""
        for task in tasks:
            if not task.done() and task not in self._in_flight:
                task.cancel()
            task.add_done_callback(_discard_result)

    async def process_batch(
            self,
            items: Sequence[T],
            worker: Callable[[T], Awaitable[R]],
            desc: Optional[str] = None
    ) -> List[R]:
        """
        Run ``worker`` over all items concurrently.

        Results come back in completion order. The first failure is raised as
        soon as it is seen. Tasks still queued for a slot are cancelled; remote
        calls already in flight are left to finish and their results are
        discarded.
        """
        if not items:
            return []
        tasks = [asyncio.ensure_future(worker(item)) for item in items]
        results = []
        try:
            for future in tqdm.as_completed(tasks, desc=desc, unit="chunk", leave=False):
                results.append(await future)
        except BaseException:
            self._abandon(tasks)
            raise
        return results


def _discard_result(task: asyncio.Task) -> None:
    if not task.cancelled():
        task.exception()


class Translator:
    """Translates slices through the remote model and checks what comes back."""

    def __init__(
            self,
            client,
            glossary: Glossary,
            prompt_template: str,
            batcher: TranslationBatcher,
            match_mode: str = 'word',
            enforce_forced_terms: bool = False,
            validator: Optional[FormatValidator] = None
    ):
        self.client = client
        self.glossary = glossary
        self.prompt_template = prompt_template
        self.batcher = batcher
        self.match_mode = match_mode
        self.enforce_forced_terms = enforce_forced_terms
        self.validator = validator or FormatValidator()

    def find_terms(self, source_text: str, source_lang: str) -> List[str]:
        return self.glossary.find_terms_in_text(source_text, source_lang, self.match_mode)

    def build_system_prompt(self, source_text: str, source_lang: str, target_lang: str) -> str:
        """Fill the template with the glossary excerpt for the terms found in ``source_text``."""
        terms = self.find_terms(source_text, source_lang)
        glossary_csv = ''
        if terms:
            glossary_csv = self.glossary.to_csv(source_lang, target_lang, terms)
            logger.debug("Found %d terms for translation", len(terms))

        prompt = self.prompt_template.replace('{{glossary_csv}}', glossary_csv or NO_RELATED_TERMS)
        prompt = prompt.replace('{{source_lang}}', source_lang)
        return prompt.replace('{{target_lang}}', target_lang)

    def check_forced_terms(self, source_text: str, translated_text: str, source_lang: str) -> None:
        forced = self.glossary.forced_terms(self.find_terms(source_text, source_lang))
        missing = [term for term in forced if term not in translated_text]
        if missing:
            raise ForcedTermMissingError(missing)

    async def translate_slice(self, source_slice: Slice, source_lang: str, target_lang: str) -> SliceTranslation:
        """
        Translate one slice.

        Structural problems in the answer are logged and returned, never raised.

        Raises:
            RemoteCallError: If the remote call fails.
            InvalidResponseError: If the response holds no choice.
            ForcedTermMissingError: If forced terms are enforced and one was translated.
        """
        messages = [
            system_message(self.build_system_prompt(source_slice.content, source_lang, target_lang)),
            user_message(source_slice.content),
        ]
        async with self.batcher.permit():
            choices = await self.client.complete(messages)

        if not choices:
            raise InvalidResponseError(
                f"No choices in API response for lines {source_slice.start_line}-{source_slice.end_line}"
            )

        translated_text = clean_translated_text(choices[0], source_slice.content)
        problems = self.validator.validate(source_slice.content, translated_text)
        for problem in problems:
            logger.warning(
                "Lines %d-%d (%s -> %s): %s",
                source_slice.start_line, source_slice.end_line, source_lang, target_lang, problem
            )

        if self.enforce_forced_terms:
            self.check_forced_terms(source_slice.content, translated_text, source_lang)

        translated_slice = Slice(
            content=translated_text,
            start_line=source_slice.start_line,
            end_line=source_slice.end_line
        )
        return SliceTranslation(slice=translated_slice, problems=problems)

    async def translate_slices(
            self,
            slices: Sequence[Slice],
            source_lang: str,
            target_lang: str,
            desc: Optional[str] = None
    ) -> List[SliceTranslation]:
        """Translate all slices of one document concurrently; results are in completion order."""
        return await self.batcher.process_batch(
            slices,
            lambda source_slice: self.translate_slice(source_slice, source_lang, target_lang),
            desc=desc
        )

import asyncio
import logging
import os
import sys
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from aiolimiter import AsyncLimiter

from paradox_translator.app_config import AppConfig, load_app_config
from paradox_translator.chunker import Slice, split_into_slices, token_counter
from paradox_translator.errors import (
    ConfigurationError,
    ForcedTermMissingError,
    RemoteCallError,
    StructuralError
)
from paradox_translator.file_io import (
    check_encoding_and_mojibake,
    find_localisation_files,
    read_document,
    write_translated_file
)
from paradox_translator.format_validator import Problem
from paradox_translator.glossary import Glossary, load_glossaries
from paradox_translator.llm_client import ChatClient, EchoChatClient
from paradox_translator.logging_config import LOGGER_NAME
from paradox_translator.merger import reconstruct_document
from paradox_translator.normalizer import generate_target_filename, normalize_content, split_language_header
from paradox_translator.translator import TranslationBatcher, Translator, load_prompt_template

# Named explicitly: under `python -m` this module is `__main__`.
logger = logging.getLogger(f"{LOGGER_NAME}.translate_localization_files")


@dataclass
class FileOutcome:
    """Result of translating one source file into one target language."""
    source_path: str
    target_lang: str
    output_path: Optional[str] = None
    problems: List[Problem] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


def build_measure(config: AppConfig) -> Callable[[str], int]:
    if config.chunk_size_unit == 'chars':
        return len
    return token_counter(config.model_name)


def prepare_slices(
        content: str,
        source_lang: str,
        max_chunk_size: int,
        measure: Callable[[str], int] = len
) -> List[Slice]:
    """Normalize a raw document, drop its language header and cut it into slices."""
    normalized = normalize_content(content)
    _header, body = split_language_header(normalized, source_lang)
    return split_into_slices(body, max_chunk_size, measure)


async def translate_document(
        content: str,
        translator: Translator,
        source_lang: str,
        target_lang: str,
        max_chunk_size: int,
        measure: Callable[[str], int] = len,
        desc: Optional[str] = None
) -> Tuple[str, List[Problem]]:
    """
    Translate a whole document.

    Returns:
        Tuple[str, List[Problem]]: The reconstructed document and every
        validation problem, in line order.
    """
    slices = prepare_slices(content, source_lang, max_chunk_size, measure)
    if not slices:
        logger.info("Nothing to translate%s.", f" in '{desc}'" if desc else "")
        return f'l_{target_lang}:\n', []

    logger.info("Document split into %d chunks", len(slices))
    results = await translator.translate_slices(slices, source_lang, target_lang, desc=desc)
    results.sort(key=lambda result: result.slice.start_line)

    problems = [problem for result in results for problem in result.problems]
    document = reconstruct_document([result.slice for result in results], target_lang)
    return document, problems


async def translate_file(
        source_path: str,
        output_path: str,
        target_lang: str,
        config: AppConfig,
        translator: Translator,
        measure: Callable[[str], int] = len
) -> FileOutcome:
    """
    Translate one file. I/O, remote-call and structural failures are recorded
    on the outcome instead of being raised, so sibling files still run.
    """
    outcome = FileOutcome(source_path=source_path, target_lang=target_lang)
    filename = os.path.basename(source_path)
    logger.info(f"Processing file '{filename}' for language '{target_lang}'...")

    try:
        content = read_document(source_path)
        for warning in check_encoding_and_mojibake(content):
            logger.warning(f"'{filename}': {warning}")

        document, problems = await translate_document(
            content,
            translator,
            config.source_lang,
            target_lang,
            config.max_chunk_size,
            measure,
            desc=f"{filename} -> {target_lang}"
        )
        outcome.problems = problems

        if config.dry_run:
            logger.info(f"[Dry Run] Would write translated content to '{output_path}'.")
        else:
            write_translated_file(document, output_path)
            logger.info(f"Translated file saved to '{output_path}'.")
        outcome.output_path = output_path

    except (OSError, UnicodeDecodeError) as exc:
        outcome.error = f"I/O error: {exc}"
    except (RemoteCallError, ForcedTermMissingError) as exc:
        outcome.error = f"Translation failed: {exc}"
    except StructuralError as exc:
        outcome.error = f"Internal slicing error: {exc}"

    if outcome.error:
        logger.error(f"Skipping '{filename}' ({target_lang}): {outcome.error}")
    elif outcome.problems:
        logger.warning(f"'{filename}' ({target_lang}) translated with {len(outcome.problems)} problem(s).")
    return outcome


async def translate_task(config: AppConfig, translator: Translator) -> List[FileOutcome]:
    """
    Translate every source file into every target language.

    Raises:
        ConfigurationError: If the source directory does not exist.
    """
    source_dir = config.source_dir()
    if not os.path.isdir(source_dir):
        raise ConfigurationError(f"Source directory '{source_dir}' does not exist.")

    logger.info("Source language: %s", config.source_lang)
    logger.info("Target languages: %s", ', '.join(config.target_langs))

    source_files = find_localisation_files(source_dir)
    logger.info(f"Found {len(source_files)} source files in '{source_dir}'")

    measure = build_measure(config)
    outcomes: List[FileOutcome] = []
    for target_lang in config.target_langs:
        target_dir = config.target_dir(target_lang)
        logger.info(f"Translating to '{target_lang}', output directory: '{target_dir}'")

        for source_path in source_files:
            relative_dir = os.path.relpath(os.path.dirname(source_path), source_dir)
            target_filename = generate_target_filename(
                os.path.basename(source_path), config.source_lang, target_lang
            )
            output_path = os.path.normpath(os.path.join(target_dir, relative_dir, target_filename))
            outcomes.append(
                await translate_file(source_path, output_path, target_lang, config, translator, measure)
            )
    return outcomes


def write_problem_report(outcomes: List[FileOutcome], report_path: str) -> bool:
    """
    Write a markdown report of failed files and validation problems.

    Returns:
        True if a report was written. When there is nothing to report, an old
        report at ``report_path`` is removed.
    """
    flagged = [outcome for outcome in outcomes if outcome.error or outcome.problems]
    if not flagged:
        if os.path.exists(report_path):
            os.remove(report_path)
        return False

    report_dir = os.path.dirname(report_path)
    if report_dir:
        os.makedirs(report_dir, exist_ok=True)
    with open(report_path, 'w', encoding='utf-8') as f:
        f.write("## Translation Report\n\n")
        f.write("Files below failed or were translated with structural problems. "
                "Problems were not corrected automatically and need a manual look.\n\n")
        for outcome in flagged:
            f.write(f"### `{outcome.source_path}` -> `{outcome.target_lang}`\n")
            if outcome.error:
                f.write(f"- **Failed**: {outcome.error}\n")
            for problem in outcome.problems:
                f.write(f"- {problem}\n")
            f.write("\n")
    return True


def build_translator(config: AppConfig, glossary: Glossary, prompt_template: str) -> Translator:
    if config.openai_client is None:
        client = EchoChatClient()
    else:
        client = ChatClient(
            config.openai_client,
            config.model_name,
            temperature=config.temperature,
            request_timeout=config.request_timeout,
            max_retries=config.max_retries
        )
    rate_limiter = AsyncLimiter(max_rate=config.requests_per_minute, time_period=60)
    batcher = TranslationBatcher(config.max_concurrent_api_calls, rate_limiter)
    return Translator(
        client,
        glossary,
        prompt_template,
        batcher,
        match_mode=config.glossary_match_mode,
        enforce_forced_terms=config.enforce_forced_terms
    )


async def main() -> List[FileOutcome]:
    """
    Main function to orchestrate the translation run.
    """
    config = load_app_config()

    # Glossaries and the prompt are loaded before any request is sent.
    glossary = load_glossaries(config.glossaries, config.data_dir)
    prompt_template = load_prompt_template(config.data_dir)
    translator = build_translator(config, glossary, prompt_template)

    outcomes = await translate_task(config, translator)

    failed = [outcome for outcome in outcomes if not outcome.succeeded]
    logger.info(f"Completed {len(outcomes) - len(failed)} of {len(outcomes)} translation(s).")
    if write_problem_report(outcomes, config.report_file_path):
        logger.info(f"Some files need attention. Report written to {config.report_file_path}")
    return outcomes


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except ConfigurationError as config_exc:
        logger.critical(f"Configuration error: {config_exc}")
        sys.exit(1)

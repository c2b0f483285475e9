"""Tests for prompt building, per-slice translation and the shared batcher."""
import asyncio
import gc
import os
import unittest
from unittest.mock import AsyncMock

import pytest

from paradox_translator.chunker import Slice
from paradox_translator.errors import ConfigurationError, ForcedTermMissingError, InvalidResponseError
from paradox_translator.format_validator import PatternNotFound
from paradox_translator.glossary import Glossary
from paradox_translator.translator import (
    NO_RELATED_TERMS,
    PROMPT_TEMPLATE_PATH,
    SliceTranslation,
    TranslationBatcher,
    Translator,
    clean_translated_text,
    load_prompt_template
)

PROMPT_TEMPLATE = "Translate from {{source_lang}} to {{target_lang}}.\nGlossary:\n{{glossary_csv}}"

GLOSSARY = Glossary.from_mapping({
    "Energy Credits": "Crédits d'énergie",
    "Stellaris": {"target": "Stellaris", "force": True},
})


def make_translator(complete, max_concurrent=4, enforce_forced_terms=False):
    client = AsyncMock()
    client.complete.side_effect = complete
    batcher = TranslationBatcher(max_concurrent)
    translator = Translator(client, GLOSSARY, PROMPT_TEMPLATE, batcher, enforce_forced_terms=enforce_forced_terms)
    return translator, client


class TestBuildSystemPrompt(unittest.TestCase):
    def setUp(self):
        self.translator, _ = make_translator(None)

    def test_related_terms_injected_as_csv(self):
        prompt = self.translator.build_system_prompt('a: "Earn Energy Credits"', 'english', 'french')
        self.assertEqual(
            prompt,
            "Translate from english to french.\nGlossary:\nenglish,french\nEnergy Credits,Crédits d'énergie"
        )

    def test_placeholder_when_no_terms(self):
        prompt = self.translator.build_system_prompt('a: "Nothing here"', 'english', 'german')
        self.assertTrue(prompt.endswith(NO_RELATED_TERMS))
        self.assertNotIn("{{", prompt)


class TestTranslateSlice(unittest.IsolatedAsyncioTestCase):
    async def test_translated_slice_keeps_line_range(self):
        translator, client = make_translator([['a: "Un"']])

        result = await translator.translate_slice(Slice('a: "One"', 4, 4), 'english', 'french')

        self.assertEqual(result, SliceTranslation(slice=Slice('a: "Un"', 4, 4), problems=[]))
        messages = client.complete.call_args.args[0]
        self.assertEqual([message["role"] for message in messages], ["system", "user"])
        self.assertEqual(messages[1]["content"], 'a: "One"')

    async def test_first_choice_is_used(self):
        translator, _ = make_translator([['a: "Un"', 'a: "Une"']])
        result = await translator.translate_slice(Slice('a: "One"', 1, 1), 'english', 'french')
        self.assertEqual(result.slice.content, 'a: "Un"')

    async def test_empty_choices_raise(self):
        translator, _ = make_translator([[]])
        with self.assertRaises(InvalidResponseError):
            await translator.translate_slice(Slice('a: "One"', 1, 1), 'english', 'french')

    async def test_problems_are_reported_not_raised(self):
        translator, _ = make_translator([['gold: "Or"']])

        with self.assertLogs('paradox_translator.translator', level='WARNING') as logs:
            result = await translator.translate_slice(Slice('gold: "£gold£ Gold"', 2, 2), 'english', 'french')

        self.assertEqual(result.problems, [PatternNotFound(key='gold', original='£gold£')])
        self.assertEqual(result.slice.content, 'gold: "Or"')
        self.assertIn("Lines 2-2 (english -> french)", logs.output[0])

    async def test_forced_term_enforced(self):
        translator, _ = make_translator([['a: "Stellaire"']], enforce_forced_terms=True)
        with self.assertRaises(ForcedTermMissingError) as ctx:
            await translator.translate_slice(Slice('a: "Stellaris"', 1, 1), 'english', 'french')
        self.assertEqual(ctx.exception.terms, ["Stellaris"])

    async def test_forced_term_not_enforced_by_default(self):
        translator, _ = make_translator([['a: "Stellaire"']])
        result = await translator.translate_slice(Slice('a: "Stellaris"', 1, 1), 'english', 'french')
        self.assertEqual(result.slice.content, 'a: "Stellaire"')

    async def test_translate_slices_returns_every_slice(self):
        async def echo(messages):
            return [messages[-1]["content"].replace("One", "Un")]

        translator, _ = make_translator(echo)
        slices = [Slice('a: "One"', 1, 1), Slice('b: "One"', 2, 2), Slice('c: "One"', 3, 3)]

        results = await translator.translate_slices(slices, 'english', 'french')

        self.assertEqual(
            sorted((result.slice.start_line, result.slice.content) for result in results),
            [(1, 'a: "Un"'), (2, 'b: "Un"'), (3, 'c: "Un"')]
        )


class TestTranslationBatcher(unittest.IsolatedAsyncioTestCase):
    async def test_pool_of_one_serialises_remote_calls(self):
        in_flight = 0
        peak = 0

        async def slow_complete(messages):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return [messages[-1]["content"]]

        translator, _ = make_translator(slow_complete, max_concurrent=1)
        slices = [Slice(f'k{i}: "v"', i, i) for i in range(1, 6)]

        results = await translator.translate_slices(slices, 'english', 'french')

        self.assertEqual(len(results), 5)
        self.assertEqual(peak, 1)

    async def test_pool_allows_parallel_calls(self):
        in_flight = 0
        peak = 0

        async def slow_complete(messages):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return [messages[-1]["content"]]

        translator, _ = make_translator(slow_complete, max_concurrent=3)
        slices = [Slice(f'k{i}: "v"', i, i) for i in range(1, 7)]
        await translator.translate_slices(slices, 'english', 'french')

        self.assertEqual(peak, 3)

    async def test_first_failure_is_raised(self):
        batcher = TranslationBatcher(2)

        async def worker(item):
            if item == 2:
                raise InvalidResponseError("no choices")
            await asyncio.sleep(0)
            return item

        with self.assertRaises(InvalidResponseError):
            await batcher.process_batch([1, 2, 3], worker)

    async def test_queued_work_is_cancelled_after_failure(self):
        batcher = TranslationBatcher(1)
        started = []
        finished = []

        async def worker(item):
            if item == 'bad':
                raise InvalidResponseError("no choices")
            async with batcher.permit():
                started.append(item)
                await asyncio.sleep(0.05)
                finished.append(item)
            return item

        with self.assertRaises(InvalidResponseError):
            await batcher.process_batch(['slow', 'bad', 'queued'], worker)
        await asyncio.sleep(0.1)

        self.assertEqual(started, ['slow'])
        self.assertEqual(finished, ['slow'])
        self.assertFalse(batcher.semaphore.locked())

    async def test_late_failures_are_not_reported_as_unretrieved(self):
        batcher = TranslationBatcher(2)
        reported = []
        asyncio.get_running_loop().set_exception_handler(lambda loop, context: reported.append(context))

        async def worker(item):
            async with batcher.permit():
                await asyncio.sleep(0 if item == 1 else 0.02)
                raise InvalidResponseError(f"no choices for {item}")

        with self.assertRaises(InvalidResponseError):
            await batcher.process_batch([1, 2], worker)
        await asyncio.sleep(0.05)
        gc.collect()

        self.assertEqual(reported, [])

    async def test_permit_released_after_failure(self):
        batcher = TranslationBatcher(1)
        with self.assertRaises(RuntimeError):
            async with batcher.permit():
                raise RuntimeError("boom")
        self.assertFalse(batcher.semaphore.locked())

    async def test_empty_batch(self):
        self.assertEqual(await TranslationBatcher(1).process_batch([], AsyncMock()), [])

    def test_pool_size_must_be_positive(self):
        with self.assertRaises(ValueError):
            TranslationBatcher(0)


class TestCleanTranslatedText(unittest.TestCase):
    def test_code_fence_unwrapped(self):
        answer = '```yaml\na: "Un"\nb: "Deux"\n```'
        self.assertEqual(clean_translated_text(answer, 'a: "One"\nb: "Two"'), 'a: "Un"\nb: "Deux"')

    def test_trailing_whitespace_stripped(self):
        self.assertEqual(clean_translated_text('\n\na: "Un"   \n\n', 'a: "One"'), 'a: "Un"')

    def test_source_blank_lines_restored(self):
        self.assertEqual(clean_translated_text('a: "Un"', 'a: "One"\n'), 'a: "Un"\n')
        self.assertEqual(clean_translated_text('a: "Un"\n\n\n', '\na: "One"'), '\na: "Un"')


class TestLoadPromptTemplate:
    def test_loaded_from_project_data_dir(self, tmp_path, user_data_dir):
        path = tmp_path / "data" / PROMPT_TEMPLATE_PATH
        path.parent.mkdir(parents=True)
        path.write_text(PROMPT_TEMPLATE, encoding="utf-8")
        assert load_prompt_template(str(tmp_path / "data")) == PROMPT_TEMPLATE

    def test_falls_back_to_user_data_dir(self, tmp_path, user_data_dir):
        path = user_data_dir / PROMPT_TEMPLATE_PATH
        path.parent.mkdir(parents=True)
        path.write_text("user prompt", encoding="utf-8")
        assert load_prompt_template(str(tmp_path / "data")) == "user prompt"

    def test_missing_template_is_configuration_error(self, tmp_path, user_data_dir):
        with pytest.raises(ConfigurationError):
            load_prompt_template(os.path.join(str(tmp_path), "nothing"))


if __name__ == '__main__':
    unittest.main()

import json
import os
from unittest import mock

import pytest

from paradox_translator.app_config import AppConfig

SOURCE_DOCUMENT = (
    "\ufeffl_english:\n"
    " # Economy\n"
    " energy_name:0 \"£energy£ Energy Credits\"\n"
    " energy_desc:0 \"Gain $AMOUNT$ §YEnergy Credits§! per month.\"\n"
    " leader_title: [Root.GetLeaderName] rules\n"
)


def make_chat_response(*contents):
    """Build an object shaped like an OpenAI chat completion response."""
    return mock.Mock(choices=[mock.Mock(message=mock.Mock(content=content)) for content in contents])


def make_config(tmp_path, **overrides) -> AppConfig:
    values = dict(
        project_root=str(tmp_path),
        localisation_root=str(tmp_path / "localisation"),
        output_root=str(tmp_path / "output"),
        data_dir=str(tmp_path / "data"),
        report_file_path=str(tmp_path / "logs" / "translation_report.md"),
        source_lang="english",
        target_langs=["french"],
        glossaries=[],
        model_name="gpt-4o-mini",
        api_base_url=None,
        temperature=0.3,
        request_timeout=30.0,
        max_retries=1,
        dry_run=False,
        max_chunk_size=2000,
        chunk_size_unit="chars",
        max_concurrent_api_calls=2,
        requests_per_minute=600,
        glossary_match_mode="word",
        enforce_forced_terms=False,
        openai_client=None,
    )
    values.update(overrides)
    return AppConfig(**values)


@pytest.fixture
def localisation_tree(tmp_path):
    """A small Paradox mod layout with one nested and one top-level source file."""
    source_dir = tmp_path / "localisation" / "english"
    (source_dir / "events").mkdir(parents=True)
    with open(source_dir / "economy_l_english.yml", "w", encoding="utf-8") as f:
        f.write(SOURCE_DOCUMENT)
    with open(source_dir / "events" / "events_l_english.yaml", "w", encoding="utf-8") as f:
        f.write("l_english:\n event.1.name: \"The Hyperlane\"\n")
    with open(source_dir / "notes.txt", "w", encoding="utf-8") as f:
        f.write("not a localisation file")

    data_dir = tmp_path / "data"
    (data_dir / "prompts").mkdir(parents=True)
    (data_dir / "glossary").mkdir()
    with open(data_dir / "prompts" / "translate_system.txt", "w", encoding="utf-8") as f:
        f.write("Translate from {{source_lang}} to {{target_lang}}.\nGlossary:\n{{glossary_csv}}\n")
    with open(data_dir / "glossary" / "stellaris.json", "w", encoding="utf-8") as f:
        json.dump({"Energy Credits": "Crédits d'énergie", "Hyperlane": "Hyperligne"}, f, ensure_ascii=False)

    return tmp_path


@pytest.fixture
def user_data_dir(tmp_path):
    """Point the per-user data directory at an empty temporary folder."""
    path = tmp_path / "user_data"
    path.mkdir()
    with mock.patch("paradox_translator.glossary.get_user_data_dir", return_value=str(path)):
        yield path


@pytest.fixture(autouse=True)
def keep_cwd():
    cwd = os.getcwd()
    yield
    os.chdir(cwd)

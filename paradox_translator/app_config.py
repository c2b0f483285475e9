"""Application configuration for the localisation translator."""
import logging
import os
import sys
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any

import yaml
from dotenv import load_dotenv
from openai import AsyncOpenAI

from paradox_translator.errors import ConfigurationError
from paradox_translator.glossary import MATCH_MODES
from paradox_translator.logging_config import setup_logger

CHUNK_SIZE_UNITS = ('tokens', 'chars')


@dataclass
class AppConfig:
    """Application configuration dataclass."""
    # Core paths
    project_root: str
    localisation_root: str
    output_root: Optional[str]
    data_dir: str
    report_file_path: str

    # Languages
    source_lang: str
    target_langs: List[str]
    glossaries: List[str]

    # Model configuration
    model_name: str
    api_base_url: Optional[str]
    temperature: float
    request_timeout: float
    max_retries: int

    # Processing settings
    dry_run: bool
    max_chunk_size: int
    chunk_size_unit: str
    max_concurrent_api_calls: int
    requests_per_minute: int
    glossary_match_mode: str
    enforce_forced_terms: bool

    # OpenAI client
    openai_client: Optional[AsyncOpenAI] = field(default=None, repr=False)

    def source_dir(self) -> str:
        """Source files live in ``<localisation_root>/<source_lang>/``."""
        return os.path.join(self.localisation_root, self.source_lang)

    def target_dir(self, target_lang: str) -> str:
        """Translations go to ``<output_root or localisation_root>/<target_lang>/``."""
        return os.path.join(self.output_root or self.localisation_root, target_lang)


def _compute_project_root() -> str:
    """Compute the project root directory."""
    script_real_path = os.path.realpath(__file__)
    script_dir = os.path.dirname(script_real_path)
    return os.path.abspath(os.path.join(script_dir, os.pardir))


def _load_dotenv_files(project_root: str) -> None:
    """Load .env files from project root or docker directory."""
    dotenv_path_project_root = os.path.join(project_root, '.env')
    dotenv_path_docker_dir = os.path.join(project_root, 'docker', '.env')

    if os.path.exists(dotenv_path_project_root):
        load_dotenv(dotenv_path_project_root)
    elif os.path.exists(dotenv_path_docker_dir):
        load_dotenv(dotenv_path_docker_dir)


def _load_yaml_config(project_root: str) -> Dict[str, Any]:
    """Load the YAML configuration file, falling back to an empty mapping on any problem."""
    # TRANSLATOR_CONFIG_FILE (possibly from .env) overrides the default location.
    default_config_path = os.path.join(project_root, 'config.yaml')
    config_file = os.environ.get('TRANSLATOR_CONFIG_FILE', default_config_path)

    if not os.path.isabs(config_file):
        config_file = os.path.abspath(config_file)

    config = {}
    try:
        if not os.path.exists(config_file):
            print(f"Warning: Configuration file '{config_file}' not found. Using default configuration.",
                  file=sys.stderr)
            print(f"Tip: Create a config.yaml file in '{project_root}' or set TRANSLATOR_CONFIG_FILE environment variable.",
                  file=sys.stderr)
            return config

        if not os.access(config_file, os.R_OK):
            print(f"Error: Configuration file '{config_file}' exists but is not readable. Check file permissions.",
                  file=sys.stderr)
            return config

        with open(config_file, 'r', encoding='utf-8') as config_file_stream:
            loaded_config = yaml.safe_load(config_file_stream)
            if loaded_config is None:
                print(f"Warning: Configuration file '{config_file}' is empty. Using default configuration.",
                      file=sys.stderr)
            elif isinstance(loaded_config, dict):
                config = loaded_config
                print(f"Successfully loaded configuration from: {config_file}", file=sys.stderr)
            else:
                print(f"Error: Configuration file '{config_file}' must contain a YAML dictionary. Using defaults.",
                      file=sys.stderr)

    except yaml.YAMLError as e:
        print(f"Error: Invalid YAML in configuration file '{config_file}': {e}", file=sys.stderr)
        print("Please check your YAML syntax. Using default configuration.", file=sys.stderr)
    except (OSError, IOError) as e:
        print(f"Error: Could not read configuration file '{config_file}': {e}", file=sys.stderr)
        print("Using default configuration.", file=sys.stderr)

    return config


def _setup_logger_from_config(config: Dict[str, Any]) -> logging.Logger:
    """Set up logger based on configuration."""
    log_config = config.get('logging', {})
    log_level_str = log_config.get('log_level', 'INFO').upper()
    log_file_path = log_config.get('log_file_path', 'logs/translation_log.log')
    log_to_console = log_config.get('log_to_console', True)
    return setup_logger(log_level_str, log_file_path, log_to_console)


def _log_dotenv_status(logger: logging.Logger, project_root: str) -> None:
    """Log the status of .env file loading."""
    dotenv_path_project_root = os.path.join(project_root, '.env')
    dotenv_path_docker_dir = os.path.join(project_root, 'docker', '.env')

    if os.path.exists(dotenv_path_project_root):
        logger.info("Loaded environment variables from: %s", dotenv_path_project_root)
    elif os.path.exists(dotenv_path_docker_dir):
        logger.info("Loaded environment variables from: %s", dotenv_path_docker_dir)
    else:
        logger.info(
            "No .env file found in project root ('%s') or in docker/ ('%s'). Relying on system environment variables if any.",
            dotenv_path_project_root,
            dotenv_path_docker_dir
        )


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [str(item) for item in value]


def _choice(config: Dict[str, Any], key: str, default: str, allowed: tuple) -> str:
    value = str(config.get(key, default)).lower()
    if value not in allowed:
        raise ConfigurationError(f"Invalid value '{value}' for '{key}'. Expected one of: {', '.join(allowed)}")
    return value


def _create_openai_client(
        dry_run: bool,
        api_base_url: Optional[str],
        logger: logging.Logger
) -> Optional[AsyncOpenAI]:
    """Create the OpenAI client unless running dry; a missing API key ends the run."""
    if dry_run:
        logger.info("Running in dry-run mode, OpenAI client will not be initialized")
        return None

    api_key_from_env = os.environ.get('OPENAI_API_KEY')
    if not api_key_from_env:
        logger.critical("CRITICAL: OPENAI_API_KEY environment variable not found.")
        logger.critical("Please set OPENAI_API_KEY or enable dry_run mode in configuration.")
        logger.critical("For dry-run mode, set 'dry_run: true' in your config file.")
        sys.exit(1)

    try:
        if api_base_url:
            client = AsyncOpenAI(api_key=api_key_from_env, base_url=api_base_url)
        else:
            client = AsyncOpenAI(api_key=api_key_from_env)
        logger.info("OpenAI client initialized successfully")
        return client
    except Exception as e:
        logger.critical("Failed to initialize OpenAI client: %s", str(e))
        logger.critical("Please check your OPENAI_API_KEY and OPENAI_BASE_URL.")
        sys.exit(1)


def load_app_config() -> AppConfig:
    """
    Load application configuration from YAML file and environment variables.

    Returns:
        AppConfig: The loaded application configuration.

    Raises:
        ConfigurationError: If a setting has a value outside its allowed set.
    """
    project_root = _compute_project_root()

    _load_dotenv_files(project_root)

    config = _load_yaml_config(project_root)

    logger = _setup_logger_from_config(config)

    _log_dotenv_status(logger, project_root)

    dry_run = config.get('dry_run', False)
    model_name = os.environ.get('MODEL_NAME', config.get('model_name', 'gpt-4o-mini'))
    api_base_url = os.environ.get('OPENAI_BASE_URL', config.get('api_base_url'))
    max_concurrent_api_calls = int(os.environ.get('MAX_CONCURRENT_API_CALLS',
                                                  config.get('max_concurrent_api_calls', 4)))

    chunk_size_unit = _choice(config, 'chunk_size_unit', 'tokens', CHUNK_SIZE_UNITS)
    glossary_match_mode = _choice(config, 'glossary_match_mode', 'word', MATCH_MODES)

    openai_client = _create_openai_client(dry_run, api_base_url, logger)

    return AppConfig(
        project_root=project_root,
        localisation_root=config.get('localisation_root', 'localisation'),
        output_root=config.get('output_root'),
        data_dir=config.get('data_dir', 'data'),
        report_file_path=config.get('report_file_path', os.path.join('logs', 'translation_report.md')),
        source_lang=config.get('source_lang', 'english'),
        target_langs=_as_list(config.get('target_langs', [])),
        glossaries=_as_list(config.get('glossaries', [])),
        model_name=model_name,
        api_base_url=api_base_url,
        temperature=float(config.get('temperature', 0.3)),
        request_timeout=float(config.get('request_timeout', 120.0)),
        max_retries=int(config.get('max_retries', 3)),
        dry_run=dry_run,
        max_chunk_size=int(config.get('max_chunk_size', 2000)),
        chunk_size_unit=chunk_size_unit,
        max_concurrent_api_calls=max_concurrent_api_calls,
        requests_per_minute=int(config.get('requests_per_minute', 60)),
        glossary_match_mode=glossary_match_mode,
        enforce_forced_terms=bool(config.get('enforce_forced_terms', False)),
        openai_client=openai_client
    )

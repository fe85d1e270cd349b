"""Handles loading configuration from YAML files."""

import yaml
import os
import logging
from typing import Any, Dict

from .exceptions import ConfigurationError, InvalidConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: Dict[str, Any] = {
    'whisper_model': 'base',
    'device': 'cuda',
    'whisper_fp16': True,
    'language': None,
    'sample_rate': 16000,
    'max_chunk_duration': 60.0,
    'chunk_overlap': 1.0,
    'silence_search_window': 10.0,
    'min_silence_duration': 0.5,
    'silence_threshold_factor': 0.5,
    'similarity_threshold': 0.8,
    'min_confidence': 0.0,
    'trim_threshold_factor': 0.5,
    'inference_retries': 2,
    'inference_workers': 1,
    'transform_workers': 4,
    'translation_model': 'Helsinki-NLP/opus-mt-en-de',
    'openai_model': 'gpt-4o-mini',
    'openai_base_url': None,
    'output_format': 'srt',
    'max_chars_per_line': 42,
    'max_lines_per_block': 2,
    'ffmpeg_path': None,
    'log_dir': 'logs',
    'log_file': 'substitch.log',
    'log_max_bytes': 10 * 1024 * 1024,
    'log_backup_count': 5,
}

_PLANNER_KEYS = {
    'max_chunk_duration': 'max_chunk_duration',
    'chunk_overlap': 'overlap_duration',
    'silence_search_window': 'silence_search_window',
    'min_silence_duration': 'min_silence_duration',
    'silence_threshold_factor': 'silence_threshold_factor',
}


class ConfigLoader:
    """Loads configuration settings from a YAML file."""

    def load_config(self, config_path: str) -> dict:
        """
        Loads configuration from the specified YAML file path, filling in defaults.

        Args:
            config_path: The path to the YAML configuration file.

        Returns:
            A dictionary containing the loaded configuration settings.

        Raises:
            FileNotFoundError: If the configuration file does not exist.
            ConfigurationError: If the file cannot be parsed as YAML or
                              if there are other reading errors.
        """
        logger.info(f"Attempting to load configuration from: {config_path}")
        if not os.path.exists(config_path):
            logger.error(f"Configuration file not found at path: {config_path}")
            raise FileNotFoundError(f"Configuration file not found: {config_path}")
        if not os.path.isfile(config_path):
             logger.error(f"Configuration path is not a file: {config_path}")
             raise ConfigurationError(f"Configuration path is not a file: {config_path}")

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as e:
            logger.error(f"Error parsing YAML configuration file {config_path}: {e}", exc_info=True)
            raise ConfigurationError(f"Invalid YAML format in {config_path}: {e}") from e
        except IOError as e:
            logger.error(f"Error reading configuration file {config_path}: {e}", exc_info=True)
            raise ConfigurationError(f"Could not read configuration file {config_path}: {e}") from e

        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            logger.error(f"Configuration file {config_path} did not load as a dictionary (root object).")
            raise ConfigurationError(f"Invalid YAML structure in {config_path}. Root must be a mapping (dictionary).")

        unknown = sorted(set(loaded) - set(DEFAULT_CONFIG))
        if unknown:
            logger.warning(f"Ignoring unknown configuration keys: {', '.join(unknown)}")

        config = dict(DEFAULT_CONFIG)
        config.update(loaded)
        logger.info(f"Configuration loaded successfully from {config_path}")
        return config


def _number(config: dict, key: str) -> float:
    value = config.get(key, DEFAULT_CONFIG[key])
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidConfigurationError(f"'{key}' must be a number, got {value!r}")
    return float(value)


def _integer(config: dict, key: str) -> int:
    value = config.get(key, DEFAULT_CONFIG[key])
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidConfigurationError(f"'{key}' must be an integer, got {value!r}")
    return value


def build_planner_settings(config: dict) -> Dict[str, float]:
    """
    Extracts ChunkPlanner keyword arguments from a config dictionary.

    Raises:
        InvalidConfigurationError: If a value is not numeric.
    """
    return {param: _number(config, key) for key, param in _PLANNER_KEYS.items()}


def build_runner_settings(config: dict) -> Dict[str, Any]:
    """
    Extracts the inference, stitching and transform settings from a config dictionary.

    Raises:
        InvalidConfigurationError: If a value has the wrong type or is out of range.
    """
    settings = {
        'sample_rate': _integer(config, 'sample_rate'),
        'similarity_threshold': _number(config, 'similarity_threshold'),
        'min_confidence': _number(config, 'min_confidence'),
        'trim_threshold_factor': _number(config, 'trim_threshold_factor'),
        'inference_retries': _integer(config, 'inference_retries'),
        'inference_workers': _integer(config, 'inference_workers'),
        'transform_workers': _integer(config, 'transform_workers'),
    }
    if settings['sample_rate'] <= 0:
        raise InvalidConfigurationError(f"'sample_rate' must be positive, got {settings['sample_rate']}")
    if settings['trim_threshold_factor'] <= 0:
        raise InvalidConfigurationError(f"'trim_threshold_factor' must be positive, got {settings['trim_threshold_factor']}")
    return settings

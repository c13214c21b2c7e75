"""
Configuration for the card search tool.

Handles:
- Default settings and loading a JSON config file over them
- .searchignore files for the filesystem indexer
- Building the one-time capability objects (platform profile, segmenter,
  keyword extractor, plausibility policy) from settings

Usage:
    from cardsearch_lib.config import load_config, build_extractor

    config = load_config(Path('cardsearch.json'))
    extractor = build_extractor(config)
"""

import copy
import dataclasses
import json
import logging
from pathlib import Path
from typing import Optional

from cardsearch_lib.platform_info import PlatformProfile, current_profile
from cardsearch_lib.segment import KeywordExtractor, Segmenter, get_segmenter
from cardsearch_lib.text_filter import DEFAULT_POLICY, TextPlausibilityPolicy

logger = logging.getLogger(__name__)

SEARCHIGNORE_NAME = ".searchignore"

# Default configuration
DEFAULT_CONFIG = {
    "db_path": "cardsearch.db",
    "segmenter": "jieba",
    "user_dict": None,
    "search_limit": 50,
    "snippet_length": 32,
    "file_timeout": 30.0,
    "max_file_size": 50 * 1024 * 1024,
    "scan_workers": 2,
    "extract_documents": True,
    "exclude_patterns": [],
    "encodings": None,
    "plausibility": {},
}

CONFIG_TYPES = {
    "db_path": (str,),
    "segmenter": (str,),
    "user_dict": (str, type(None)),
    "search_limit": (int,),
    "snippet_length": (int,),
    "file_timeout": (int, float),
    "max_file_size": (int,),
    "scan_workers": (int,),
    "extract_documents": (bool,),
    "exclude_patterns": (list,),
    "encodings": (list, type(None)),
    "plausibility": (dict,),
}

SEGMENTER_ENGINES = ("jieba", "maxmatch")

# Written into new roots by `cardsearch scan --init-ignore`
DEFAULT_SEARCHIGNORE = """\
# Patterns excluded from the file index (one per line, glob syntax)
# Directory patterns end with /
.git/
node_modules/
__pycache__/
*.pyc
*.db
*.db-journal
*.tmp
"""


class ConfigError(Exception):
    """Invalid configuration file or value."""
    pass


def _validate(config: dict) -> None:
    unknown = set(config) - set(DEFAULT_CONFIG)
    if unknown:
        raise ConfigError(f"Unknown config keys: {', '.join(sorted(unknown))}")

    for key, value in config.items():
        expected = CONFIG_TYPES[key]
        # bool is an int subclass; only accept it where bool is expected
        if isinstance(value, bool) and bool not in expected:
            raise ConfigError(f"Config key '{key}' must not be a boolean")
        if not isinstance(value, expected):
            names = ' or '.join(t.__name__ for t in expected)
            raise ConfigError(f"Config key '{key}' must be {names}, got {type(value).__name__}")

    if config.get("segmenter") not in SEGMENTER_ENGINES:
        raise ConfigError(
            f"Unknown segmenter '{config.get('segmenter')}', expected one of {', '.join(SEGMENTER_ENGINES)}"
        )
    for key in ("search_limit", "snippet_length", "scan_workers", "max_file_size"):
        if config[key] < 1:
            raise ConfigError(f"Config key '{key}' must be positive")
    if config["file_timeout"] <= 0:
        raise ConfigError("Config key 'file_timeout' must be positive")

    policy_fields = {f.name for f in dataclasses.fields(TextPlausibilityPolicy)}
    unknown_policy = set(config["plausibility"]) - policy_fields
    if unknown_policy:
        raise ConfigError(f"Unknown plausibility settings: {', '.join(sorted(unknown_policy))}")


def load_config(config_path: Optional[Path] = None) -> dict:
    """
    Load settings, merging a JSON config file over the defaults.

    Args:
        config_path: JSON file to read; defaults only if None

    Returns:
        Complete configuration dictionary

    Raises:
        ConfigError: If the file is unreadable, not a JSON object, or
                     contains unknown keys or wrongly typed values
    """
    config = copy.deepcopy(DEFAULT_CONFIG)
    if config_path is None:
        return config

    config_path = Path(config_path)
    try:
        with open(config_path, encoding="utf-8") as f:
            loaded = json.load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {config_path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Config file {config_path} is not valid JSON: {e}") from e

    if not isinstance(loaded, dict):
        raise ConfigError(f"Config file {config_path} must contain a JSON object")

    config.update(loaded)
    _validate(config)
    logger.debug(f"Loaded config from {config_path}")
    return config


def read_searchignore(root_path: Path) -> list[str]:
    """
    Read .searchignore file if it exists.

    Args:
        root_path: Root directory to search for .searchignore

    Returns:
        List of patterns from .searchignore, or empty list if not found
    """
    ignore_file = Path(root_path) / SEARCHIGNORE_NAME
    if not ignore_file.is_file():
        return []

    patterns = []
    for line in ignore_file.read_text(encoding="utf-8", errors="replace").splitlines():
        line = line.strip()
        # Skip comments and empty lines
        if line and not line.startswith("#"):
            patterns.append(line)

    return patterns


def write_default_searchignore(root_path: Path) -> bool:
    """Create a default .searchignore in a root; never overwrites. Returns True if written."""
    ignore_file = Path(root_path) / SEARCHIGNORE_NAME
    if ignore_file.exists():
        return False
    ignore_file.write_text(DEFAULT_SEARCHIGNORE, encoding="utf-8")
    return True


def build_policy(config: dict) -> TextPlausibilityPolicy:
    """Plausibility policy with the config's overrides applied."""
    overrides = dict(config.get("plausibility") or {})
    if not overrides:
        return DEFAULT_POLICY
    for key, value in overrides.items():
        if isinstance(value, list):
            overrides[key] = tuple(tuple(item) if isinstance(item, list) else item for item in value)
    return dataclasses.replace(DEFAULT_POLICY, **overrides)


def build_profile(config: dict) -> PlatformProfile:
    """Platform profile, with the encoding candidates replaced if configured."""
    profile = current_profile()
    if config.get("encodings"):
        profile = profile.with_encodings(config["encodings"])
    return profile


def build_segmenter(config: dict) -> Segmenter:
    return get_segmenter(config.get("segmenter", "jieba"), config.get("user_dict"))


def build_extractor(config: dict) -> KeywordExtractor:
    return KeywordExtractor(build_segmenter(config))

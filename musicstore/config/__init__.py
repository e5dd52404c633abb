"""
Configuration management for the music store.

This module loads the library behaviour flags the store reads once at
construction. Values come from a TOML file with `[musicfiles]` and `[music]`
sections:

    [musicfiles]
    treatFolderAsAlbum = true
    lastImport = "2024-3-7 9:5:0"

    [music]
    extensions = ".mp3,.flac"

Every value is parsed with a default: a missing or invalid value never raises,
it falls back to the documented default for its key.
"""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass
from datetime import datetime
from enum import IntEnum
from pathlib import Path
from typing import Any, Mapping

logger = logging.getLogger(__name__)

# `yyyy-M-d H:m:s`: strptime accepts unpadded fields.
LAST_IMPORT_FORMAT = "%Y-%m-%d %H:%M:%S"
LAST_IMPORT_EPOCH = datetime(1900, 1, 1, 0, 0, 0)

DEFAULT_AUDIO_EXTENSIONS = (
    ".mp3,.wma,.ogg,.flac,.wav,.cda,.m3u,.pls,.b4s,.m4a,.m4p,.mp4,"
    ".wpl,.wv,.ape,.mpc,.aac,.mpa,.mp2,.mka,.wax"
)
DEFAULT_ARTIST_PREFIXES = "The, Les, Die"

_TRUE_VALUES = frozenset({"true", "yes", "on", "1"})
_FALSE_VALUES = frozenset({"false", "no", "off", "0"})


class DateAddedPolicy(IntEnum):
    """Which timestamp becomes a song's DateAdded."""

    CURRENT_DATE = 0
    CREATION_TIME = 1
    LAST_WRITE_TIME = 2


# ---------------------------------------------------------------------------
# Parse-with-default helpers
# ---------------------------------------------------------------------------


def get_value(data: Mapping[str, Any], section: str, key: str) -> Any | None:
    """Look up `section.key`, matching names case-insensitively."""
    sect = data.get(section)
    if sect is None:
        sect = next((v for k, v in data.items() if k.lower() == section.lower()), None)
    if not isinstance(sect, Mapping):
        return None
    if key in sect:
        return sect[key]
    return next((v for k, v in sect.items() if k.lower() == key.lower()), None)


def get_bool(data: Mapping[str, Any], section: str, key: str, default: bool) -> bool:
    value = get_value(data, section, key)
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        v = value.strip().lower()
        if v in _TRUE_VALUES:
            return True
        if v in _FALSE_VALUES:
            return False
    if value is not None:
        logger.warning("Invalid boolean for %s.%s: %r (using %s)", section, key, value, default)
    return default


def get_int(data: Mapping[str, Any], section: str, key: str, default: int) -> int:
    value = get_value(data, section, key)
    if isinstance(value, bool) or value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning("Invalid integer for %s.%s: %r (using %d)", section, key, value, default)
        return default


def get_str(data: Mapping[str, Any], section: str, key: str, default: str) -> str:
    value = get_value(data, section, key)
    if value is None:
        return default
    return str(value)


def parse_last_import(value: Any) -> datetime:
    """
    Parse a `yyyy-M-d H:m:s` watermark.

    Returns LAST_IMPORT_EPOCH when the value is missing or malformed, which
    forces a full rescan.
    """
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        return LAST_IMPORT_EPOCH
    try:
        return datetime.strptime(value.strip(), LAST_IMPORT_FORMAT)
    except ValueError:
        logger.warning("Invalid lastImport value %r; using %s", value, LAST_IMPORT_EPOCH)
        return LAST_IMPORT_EPOCH


def format_last_import(value: datetime) -> str:
    """Format a watermark the way it is stored in settings (no zero padding)."""
    return (
        f"{value.year}-{value.month}-{value.day} "
        f"{value.hour}:{value.minute}:{value.second}"
    )


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@dataclass
class LibrarySettings:
    """Behaviour flags consumed by the music store."""

    treat_folder_as_album: bool = False
    extract_thumbs: bool = True
    use_folder_thumbs: bool = True
    use_all_images: bool = True
    create_missing_folder_thumbs: bool = False
    create_artist_thumbs: bool = False
    create_genre_thumbs: bool = True
    extensions: str = DEFAULT_AUDIO_EXTENSIONS
    strip_artist_prefixes: bool = False
    artist_prefixes: str = DEFAULT_ARTIST_PREFIXES
    date_added: int = 0
    update_since_last_import: bool = False
    last_import: datetime = LAST_IMPORT_EPOCH

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> LibrarySettings:
        """Build settings from parsed TOML (or any nested section mapping)."""
        treat_folder_as_album = get_bool(data, "musicfiles", "treatFolderAsAlbum", False)
        use_folder_thumbs = get_bool(data, "musicfiles", "useFolderThumbs", True)

        return cls(
            treat_folder_as_album=treat_folder_as_album,
            extract_thumbs=get_bool(data, "musicfiles", "extractthumbs", True),
            use_folder_thumbs=use_folder_thumbs,
            use_all_images=get_bool(data, "musicfiles", "useAllImages", use_folder_thumbs),
            create_missing_folder_thumbs=get_bool(
                data, "musicfiles", "createMissingFolderThumbs", treat_folder_as_album
            ),
            create_artist_thumbs=get_bool(data, "musicfiles", "createartistthumbs", False),
            create_genre_thumbs=get_bool(data, "musicfiles", "creategenrethumbs", True),
            extensions=get_str(data, "music", "extensions", DEFAULT_AUDIO_EXTENSIONS),
            strip_artist_prefixes=get_bool(data, "musicfiles", "stripartistprefixes", False),
            artist_prefixes=get_str(data, "musicfiles", "artistprefixes", DEFAULT_ARTIST_PREFIXES),
            date_added=get_int(data, "musicfiles", "dateadded", 0),
            update_since_last_import=get_bool(
                data, "musicfiles", "updateSinceLastImport", False
            ),
            last_import=parse_last_import(get_value(data, "musicfiles", "lastImport")),
        )

    def reset_last_import(self) -> None:
        """Reset the watermark so the next import rescans everything."""
        self.last_import = LAST_IMPORT_EPOCH

    @property
    def supported_extensions(self) -> frozenset[str]:
        out: set[str] = set()
        for ext in self.extensions.split(","):
            e = ext.strip().lower()
            if not e:
                continue
            out.add(e if e.startswith(".") else f".{e}")
        return frozenset(out)

    def is_supported_file(self, path: str | Path) -> bool:
        return Path(path).suffix.lower() in self.supported_extensions

    @property
    def artist_prefix_list(self) -> tuple[str, ...]:
        return tuple(p.strip() for p in self.artist_prefixes.split(",") if p.strip())

    @property
    def date_added_policy(self) -> DateAddedPolicy:
        try:
            return DateAddedPolicy(self.date_added)
        except ValueError:
            return DateAddedPolicy.CURRENT_DATE


def load_library_settings(config_path: Path | None = None) -> LibrarySettings:
    """
    Load library settings from a TOML file.

    Args:
        config_path: Path to the settings file. If None, defaults are used.

    Returns:
        Loaded LibrarySettings instance. An unreadable file yields defaults.
    """
    if config_path is None:
        return LibrarySettings()

    logger.debug("Loading library settings from %s", config_path)

    try:
        with config_path.open("rb") as f:
            data = tomllib.load(f)
    except FileNotFoundError:
        logger.warning("Settings file %s not found; using defaults", config_path)
        return LibrarySettings()
    except tomllib.TOMLDecodeError as e:
        logger.warning("Settings file %s is not valid TOML (%s); using defaults", config_path, e)
        return LibrarySettings()

    return LibrarySettings.from_mapping(data)

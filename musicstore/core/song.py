"""
Song domain model.

A `Song` is the in-memory record of one track's metadata. Normalization is
applied when a field is *assigned* (constructor, attribute set, clone), not
when the record is persisted:

- track, track_total, duration, disc_id, disc_total and resume_at never go
  below zero
- two-digit years are moved into the 1900s
- the artist name loses a leading "NN. " track prefix and everything before
  the first "[" (see `normalize_artist`)

This module has no DB knowledge and no SQL.
"""

from __future__ import annotations

import urllib.parse
from dataclasses import dataclass, fields, replace
from datetime import datetime
from enum import Enum
from typing import Any, Final

_NON_NEGATIVE_FIELDS: Final[frozenset[str]] = frozenset(
    {"track", "track_total", "duration", "disc_id", "disc_total", "resume_at"}
)

_UNIX_EPOCH: Final[datetime] = datetime(1970, 1, 1)


class SongStatus(Enum):
    """Audioscrobbler submit queue status."""

    INIT = "init"
    LOADED = "loaded"
    CACHED = "cached"
    QUEUED = "queued"
    SUBMITTED = "submitted"
    SHORT = "short"


class SongSource(Enum):
    """Who suggested the track (Audioscrobbler source letter)."""

    USER = "P"  # Chosen by the user
    BROADCAST = "R"  # Non-personalised broadcast
    RECOMMENDATION = "E"  # Personalised recommendation except Last.fm
    LASTFM = "L"
    UNKNOWN = "U"


class SongAction(Enum):
    """Rating action submitted with a scrobble."""

    NONE = ""
    LOVE = "L"
    BAN = "B"
    SKIP = "S"


# ---------------------------------------------------------------------------
# Normalization helpers
# ---------------------------------------------------------------------------


def clamp_non_negative(value: Any) -> int:
    v = int(value)
    return v if v > 0 else 0


def normalize_year(value: Any) -> int:
    """Negative -> 0, 1..99 -> 1901..1999, anything else unchanged."""
    year = int(value)
    if year < 0:
        return 0
    if 0 < year < 100:
        return year + 1900
    return year


def normalize_artist(value: str | None) -> str:
    """
    Clean up an artist name.

    - "01. Pink Floyd" -> "Pink Floyd" (two digits, dot, space)
    - text before the first "[" is dropped: "Pink Floyd [Live]" -> "[Live]"
    - surrounding whitespace is trimmed

    The "[" rule keeps the bracketed remainder rather than stripping it. Existing
    libraries were built with this behaviour, so it is kept as is.
    """
    s = value or ""
    if len(s) > 4 and s[0].isdigit() and s[1].isdigit() and s[2] == "." and s[3] == " ":
        s = s[4:]
    pos = s.find("[")
    if pos > 0:
        s = s[pos:]
    return s.strip()


def seconds_to_hms(seconds: int) -> str:
    """Format a duration as m:ss, or h:mm:ss from one hour up."""
    hours, rest = divmod(max(int(seconds), 0), 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


# ---------------------------------------------------------------------------
# External projections
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class MusicTag:
    """Tag metadata as handed to tag writers and players."""

    title: str = ""
    title_sort: str = ""
    album: str = ""
    album_sort: str = ""
    disc_id: int = 0
    disc_total: int = 0
    album_artist: str = ""
    album_artist_sort: str = ""
    amazon_id: str = ""
    artist: str = ""
    artist_sort: str = ""
    duration: int = 0
    genre: str = ""
    grouping: str = ""
    composer: str = ""
    composer_sort: str = ""
    conductor: str = ""
    copyright: str = ""
    track: int = 0
    track_total: int = 0
    year: int = 0
    rating: int = 0
    replay_gain_album: str = ""
    replay_gain_album_peak: str = ""
    replay_gain_track: str = ""
    replay_gain_track_peak: str = ""
    times_played: int = 0
    lyrics: str = ""
    musicbrainz_artist_id: str = ""
    musicbrainz_disc_id: str = ""
    musicbrainz_release_artist_id: str = ""
    musicbrainz_release_country: str = ""
    musicbrainz_release_id: str = ""
    musicbrainz_release_status: str = ""
    musicbrainz_release_track_id: str = ""
    musicbrainz_release_type: str = ""
    music_ip_id: str = ""
    date_time_modified: datetime = datetime.min
    date_time_played: datetime = datetime.min
    comment: str = ""
    file_type: str = ""
    codec: str = ""
    bit_rate_mode: str = ""
    bpm: int = 0
    bit_rate: int = 0
    channels: int = 0
    sample_rate: int = 0
    has_album_artist: bool = False


@dataclass(frozen=True, slots=True)
class PlaylistItem:
    """A playable entry handed to playlist code."""

    file_name: str
    description: str
    duration: int
    music_tag: MusicTag
    item_type: str = "audio"


# ---------------------------------------------------------------------------
# Song
# ---------------------------------------------------------------------------


@dataclass
class Song:
    """
    One track's metadata.

    Notes:
    - `id` is -1 until the song has been stored.
    - `file_name` is the full path of the file.
    - `date_time_modified` is persisted as the song's DateAdded column.
    - Multi-valued tags (artist, album_artist, genre, composer, conductor) use
      "|" as separator.
    """

    id: int = -1
    file_name: str = ""
    artist: str = ""
    artist_sort: str = ""
    album_artist: str = ""
    album_artist_sort: str = ""
    album: str = ""
    album_sort: str = ""
    amazon_id: str = ""
    genre: str = ""
    grouping: str = ""
    composer: str = ""
    composer_sort: str = ""
    conductor: str = ""
    copyright: str = ""
    title: str = ""
    title_sort: str = ""
    track: int = 0
    track_total: int = 0
    duration: int = 0  # seconds
    year: int = 0
    times_played: int = 0
    rating: int = 0
    favorite: bool = False
    date_time_modified: datetime = datetime.min
    date_time_played: datetime = datetime.min  # last time played
    audioscrobbler_status: SongStatus = SongStatus.INIT
    url: str = ""
    web_image: str = ""
    last_fm_match: str = ""
    resume_at: int = 0
    disc_id: int = 0
    disc_total: int = 0
    lyrics: str = ""
    comment: str = ""
    file_type: str = ""
    codec: str = ""
    bit_rate_mode: str = ""
    bpm: int = 0
    bit_rate: int = 0
    channels: int = 0
    sample_rate: int = 0
    musicbrainz_artist_id: str = ""
    musicbrainz_disc_id: str = ""
    musicbrainz_release_artist_id: str = ""
    musicbrainz_release_country: str = ""
    musicbrainz_release_id: str = ""
    musicbrainz_release_status: str = ""
    musicbrainz_release_track_id: str = ""
    musicbrainz_release_type: str = ""
    music_ip_id: str = ""
    replay_gain_track: str = ""
    replay_gain_track_peak: str = ""
    replay_gain_album: str = ""
    replay_gain_album_peak: str = ""
    source: SongSource = SongSource.USER
    auth_token: str = ""
    audioscrobbler_action: SongAction = SongAction.NONE

    def __setattr__(self, name: str, value: Any) -> None:
        if name in _NON_NEGATIVE_FIELDS:
            value = clamp_non_negative(value)
        elif name == "year":
            value = normalize_year(value)
        elif name == "artist":
            value = normalize_artist(value)
        object.__setattr__(self, name, value)

    def clone(self) -> Song:
        """Field-for-field copy. Normalization runs again on the copy."""
        return replace(self)

    def clear(self) -> None:
        """Reset every field to its default, in place."""
        for f in fields(self):
            setattr(self, f.name, f.default)

    # -----------------------------------------------------------------------
    # Projections
    # -----------------------------------------------------------------------

    def to_tag(self) -> MusicTag:
        shared = {
            f.name: getattr(self, f.name)
            for f in fields(MusicTag)
            if f.name != "has_album_artist"
        }
        return MusicTag(**shared, has_album_artist=bool(self.album_artist))

    def to_playlist_item(self) -> PlaylistItem:
        return PlaylistItem(
            file_name=self.file_name,
            description=self.title,
            duration=self.duration,
            music_tag=self.to_tag(),
        )

    # -----------------------------------------------------------------------
    # Display / scrobble text
    # -----------------------------------------------------------------------

    def to_short_string(self) -> str:
        s = self.title if self.title else "(Untitled)"
        if self.artist:
            s += f" - {self.artist}"
        if self.album:
            s += f" ({self.album})"
        return s

    def to_scrobble_string(self) -> str:
        s = f"{self.artist} - " if self.artist else ""
        s += self.title
        if self.duration > 0:
            s += f" [{seconds_to_hms(self.duration)}]"
        if self.times_played > 0:
            s += f" (played: {self.times_played} times)"
        return s

    def to_match_string(self, show_url: bool = False) -> str:
        s = ""
        if self.artist:
            s = self.artist
            if self.album:
                s += f" - {self.album}"
            else:
                if self.title:
                    s += f" - {self.title}"
                if self.genre:
                    s += f" (tagged: {self.genre})"
        elif self.album:
            s = self.album

        if self.last_fm_match:
            dot = self.last_fm_match.find(".")
            match = self.last_fm_match if dot == -1 else self.last_fm_match[: dot + 2]
            s += f" (match: {match}%)"

        if show_url and self.url:
            s += f" (link: {self.url})"
        return s

    def to_url_artist_string(self) -> str:
        return urllib.parse.quote_plus(self.artist)

    def __str__(self) -> str:
        played = self.date_time_played.isoformat(timespec="seconds")
        return f"{self.artist}\t{self.title}\t{self.album}\t{self.duration}\t{played}"

    def queue_time(self, as_unix_time: bool) -> str:
        """Time played, as Unix seconds or as `yyyy-MM-dd HH:mm:ss`."""
        played = self.date_time_played
        if as_unix_time:
            if played <= _UNIX_EPOCH:
                return "0"
            return str(int(played.timestamp()))
        return (
            f"{played.year:04d}-{played.month:02d}-{played.day:02d} "
            f"{played.hour:02d}:{played.minute:02d}:{played.second:02d}"
        )

    def rate_action_param(self) -> str:
        return self.audioscrobbler_action.value

    def source_param(self) -> str:
        if self.source is SongSource.LASTFM:
            return f"L{self.auth_token}"
        return self.source.value

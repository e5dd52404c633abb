"""
Library DB queries used by `musicstore.core.music_db.MusicDatabase`.

This module contains:
- Configuration rows
- Lookup-or-insert helpers for shares, folders, artists, albums and genres
- Song row insert/update/read and role junction links

Design:
- Functions are *pure DB helpers*: they take a `QueryExecutor` and return ids,
  `Song` objects or `WriteResult`s. A lookup that fails returns None.
- Cells come back as text; this module re-parses ints and timestamps.

Important:
- Do NOT interpolate user input into SQL. Table and column names used in
  f-strings below come from the static whitelists in this module.
"""

from __future__ import annotations

import logging
from dataclasses import fields
from datetime import datetime
from typing import Any, Final

from musicstore.core.db.executor import QueryExecutor, ResultSet, WriteResult
from musicstore.core.song import Song

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT: Final[str] = "%Y-%m-%d %H:%M:%S"

# (column, Song attribute) for every Song column except Id/IdFolder/IdAlbum/FileName.
SONG_COLUMNS: Final[tuple[tuple[str, str], ...]] = (
    ("Title", "title"),
    ("TitleSort", "title_sort"),
    ("Track", "track"),
    ("TrackCount", "track_total"),
    ("Disc", "disc_id"),
    ("DiscCount", "disc_total"),
    ("Duration", "duration"),
    ("Year", "year"),
    ("TimesPlayed", "times_played"),
    ("Rating", "rating"),
    ("Favorite", "favorite"),
    ("ResumeAt", "resume_at"),
    ("Lyrics", "lyrics"),
    ("Comment", "comment"),
    ("Copyright", "copyright"),
    ("AmazonId", "amazon_id"),
    ("Grouping", "grouping"),
    ("MusicBrainzArtistId", "musicbrainz_artist_id"),
    ("MusicBrainzDiscId", "musicbrainz_disc_id"),
    ("MusicBrainzReleaseArtistId", "musicbrainz_release_artist_id"),
    ("MusicBrainzReleaseCountry", "musicbrainz_release_country"),
    ("MusicBrainzReleaseId", "musicbrainz_release_id"),
    ("MusicBrainzReleaseStatus", "musicbrainz_release_status"),
    ("MusicBrainzReleaseTrackId", "musicbrainz_release_track_id"),
    ("MusicBrainzReleaseType", "musicbrainz_release_type"),
    ("MusicIpid", "music_ip_id"),
    ("ReplayGainTrack", "replay_gain_track"),
    ("ReplayGainTrackPeak", "replay_gain_track_peak"),
    ("ReplayGainAlbum", "replay_gain_album"),
    ("ReplayGainAlbumPeak", "replay_gain_album_peak"),
    ("FileType", "file_type"),
    ("Codec", "codec"),
    ("BitRateMode", "bit_rate_mode"),
    ("BPM", "bpm"),
    ("BitRate", "bit_rate"),
    ("Channels", "channels"),
    ("SampleRate", "sample_rate"),
    ("DateLastPlayed", "date_time_played"),
    ("DateAdded", "date_time_modified"),
)

# Role junctions: table -> entity id column. All roles point at Artist.
ROLE_JUNCTIONS: Final[dict[str, str]] = {
    "ArtistSong": "IdArtist",
    "ComposerSong": "IdComposer",
    "ConductorSong": "IdConductor",
}

_SONG_DEFAULTS: Final[dict[str, Any]] = {f.name: f.default for f in fields(Song)}


# ---------------------------------------------------------------------------
# Value conversion
# ---------------------------------------------------------------------------


def format_timestamp(value: datetime) -> str:
    return value.strftime(TIMESTAMP_FORMAT) if value != datetime.min else ""


def parse_timestamp(text: str) -> datetime:
    if not text:
        return datetime.min
    try:
        return datetime.strptime(text, TIMESTAMP_FORMAT)
    except ValueError:
        return datetime.min


def parse_int(text: str, default: int = 0) -> int:
    try:
        return int(text)
    except (TypeError, ValueError):
        try:
            return int(float(text))
        except (TypeError, ValueError):
            return default


def _to_db(attr: str, value: Any) -> Any:
    default = _SONG_DEFAULTS[attr]
    if isinstance(default, bool):
        return 1 if value else 0
    if isinstance(default, datetime):
        return format_timestamp(value)
    return value


def _from_db(attr: str, text: str) -> Any:
    default = _SONG_DEFAULTS[attr]
    if isinstance(default, bool):
        return parse_int(text) != 0
    if isinstance(default, int):
        return parse_int(text)
    if isinstance(default, datetime):
        return parse_timestamp(text)
    return text


def _first_id(result: ResultSet) -> int | None:
    if not result.ok or result.is_empty:
        return None
    value = parse_int(result.get(0, 0), default=-1)
    return value if value >= 0 else None


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


async def get_configuration(db: QueryExecutor, parameter: str) -> str | None:
    result = await db.execute_query(
        "SELECT Value FROM Configuration WHERE Parameter = ?;", (parameter,)
    )
    if not result.ok or result.is_empty:
        return None
    return result.get(0, "Value")


async def set_configuration(db: QueryExecutor, parameter: str, value: str) -> WriteResult:
    updated = await db.execute_nonquery(
        "UPDATE Configuration SET Value = ? WHERE Parameter = ?;", (value, parameter)
    )
    if not updated or updated.rows_affected > 0:
        return updated
    return await db.execute_nonquery(
        "INSERT INTO Configuration (Parameter, Value) VALUES (?, ?);", (parameter, value)
    )


# ---------------------------------------------------------------------------
# Lookup-or-insert
# ---------------------------------------------------------------------------


async def _lookup_or_insert(
    db: QueryExecutor,
    select_sql: str,
    select_params: tuple,
    insert_sql: str,
    insert_params: tuple,
) -> int | None:
    existing = await db.execute_query(select_sql, select_params)
    if not existing.ok:
        return None
    found = _first_id(existing)
    if found is not None:
        return found

    inserted = await db.execute_nonquery(insert_sql, insert_params)
    if not inserted:
        return None
    return inserted.last_row_id


async def ensure_share(db: QueryExecutor, name: str) -> int | None:
    """Get or create a share by name, return ID."""
    return await _lookup_or_insert(
        db,
        "SELECT Id FROM Share WHERE ShareName = ?;",
        (name,),
        "INSERT INTO Share (ShareName) VALUES (?);",
        (name,),
    )


async def ensure_folder(db: QueryExecutor, share_id: int, folder_name: str) -> int | None:
    """Get or create a folder below a share, return ID."""
    return await _lookup_or_insert(
        db,
        "SELECT Id FROM Folder WHERE IdShare = ? AND FolderName = ?;",
        (share_id, folder_name),
        "INSERT INTO Folder (IdShare, FolderName) VALUES (?, ?);",
        (share_id, folder_name),
    )


async def ensure_artist(db: QueryExecutor, name: str, sort_name: str = "") -> int | None:
    """Get or create an artist by name, return ID."""
    return await _lookup_or_insert(
        db,
        "SELECT Id FROM Artist WHERE ArtistName = ?;",
        (name,),
        "INSERT INTO Artist (ArtistName, ArtistSortName) VALUES (?, ?);",
        (name, sort_name or name),
    )


async def ensure_genre(db: QueryExecutor, name: str) -> int | None:
    """Get or create a genre by name, return ID."""
    return await _lookup_or_insert(
        db,
        "SELECT Id FROM Genre WHERE GenreName = ?;",
        (name,),
        "INSERT INTO Genre (GenreName) VALUES (?);",
        (name,),
    )


async def ensure_album(
    db: QueryExecutor,
    name: str,
    sort_name: str = "",
    year: int = 0,
    artist_id: int | None = None,
) -> int | None:
    """
    Get or create an album by name + album artist, return ID.

    With an artist the album must be linked to it through AlbumArtist; without
    one only albums that have no album artist match.
    """
    if artist_id is not None:
        select_sql = """
            SELECT a.Id FROM Album a
            JOIN AlbumArtist aa ON aa.IdAlbum = a.Id
            WHERE a.AlbumName = ? AND aa.IdArtist = ?
            ORDER BY a.Id LIMIT 1;
        """
        select_params: tuple = (name, artist_id)
    else:
        select_sql = """
            SELECT a.Id FROM Album a
            WHERE a.AlbumName = ?
              AND NOT EXISTS (SELECT 1 FROM AlbumArtist aa WHERE aa.IdAlbum = a.Id)
            ORDER BY a.Id LIMIT 1;
        """
        select_params = (name,)

    album_id = await _lookup_or_insert(
        db,
        select_sql,
        select_params,
        "INSERT INTO Album (AlbumName, AlbumSortName, Year) VALUES (?, ?, ?);",
        (name, sort_name or name, year),
    )
    if album_id is not None and artist_id is not None:
        await link_album_artist(db, artist_id, album_id)
    return album_id


# ---------------------------------------------------------------------------
# Junctions
# ---------------------------------------------------------------------------


async def link_album_artist(db: QueryExecutor, artist_id: int, album_id: int) -> WriteResult:
    return await db.execute_nonquery(
        "INSERT OR IGNORE INTO AlbumArtist (IdArtist, IdAlbum) VALUES (?, ?);",
        (artist_id, album_id),
    )


async def link_genre(db: QueryExecutor, genre_id: int, song_id: int) -> WriteResult:
    return await db.execute_nonquery(
        "INSERT OR IGNORE INTO GenreSong (IdGenre, IdSong) VALUES (?, ?);",
        (genre_id, song_id),
    )


async def link_role(db: QueryExecutor, table: str, artist_id: int, song_id: int) -> WriteResult:
    """Link an artist to a song in one of the ROLE_JUNCTIONS tables."""
    column = ROLE_JUNCTIONS[table]
    return await db.execute_nonquery(
        f"INSERT OR IGNORE INTO {table} ({column}, IdSong) VALUES (?, ?);",
        (artist_id, song_id),
    )


async def clear_song_links(db: QueryExecutor, song_id: int) -> bool:
    """Drop the genre and role links of a song before relinking on rescan."""
    ok = True
    for table in ("GenreSong", *ROLE_JUNCTIONS):
        result = await db.execute_nonquery(f"DELETE FROM {table} WHERE IdSong = ?;", (song_id,))
        ok = ok and bool(result)
    return ok


# ---------------------------------------------------------------------------
# Songs
# ---------------------------------------------------------------------------


async def find_song_id(db: QueryExecutor, folder_id: int, file_name: str) -> int | None:
    result = await db.execute_query(
        "SELECT Id FROM Song WHERE IdFolder = ? AND FileName = ?;", (folder_id, file_name)
    )
    return _first_id(result)


async def insert_song(
    db: QueryExecutor, song: Song, *, folder_id: int, album_id: int, file_name: str
) -> int | None:
    columns = ["IdFolder", "IdAlbum", "FileName"] + [c for c, _ in SONG_COLUMNS]
    values = [folder_id, album_id, file_name] + [
        _to_db(attr, getattr(song, attr)) for _, attr in SONG_COLUMNS
    ]
    placeholders = ", ".join("?" for _ in columns)
    result = await db.execute_nonquery(
        f"INSERT INTO Song ({', '.join(columns)}) VALUES ({placeholders});", tuple(values)
    )
    return result.last_row_id if result else None


async def update_song(
    db: QueryExecutor, song_id: int, song: Song, *, album_id: int
) -> WriteResult:
    """Update a song row in place. DateAdded keeps its first value."""
    updated = [(c, attr) for c, attr in SONG_COLUMNS if c != "DateAdded"]
    assignments = ", ".join(f"{c} = ?" for c, _ in updated)
    values = [album_id] + [_to_db(attr, getattr(song, attr)) for _, attr in updated]
    return await db.execute_nonquery(
        f"UPDATE Song SET IdAlbum = ?, {assignments} WHERE Id = ?;", (*values, song_id)
    )


_SONG_SELECT: Final[str] = f"""
    SELECT
        s.Id, s.FileName, f.FolderName, sh.ShareName,
        al.AlbumName, al.AlbumSortName,
        {', '.join('s.' + c for c, _ in SONG_COLUMNS)},
        (SELECT group_concat(ar.ArtistName, ' | ') FROM ArtistSong x
            JOIN Artist ar ON ar.Id = x.IdArtist WHERE x.IdSong = s.Id) AS Artists,
        (SELECT group_concat(ar.ArtistName, ' | ') FROM AlbumArtist x
            JOIN Artist ar ON ar.Id = x.IdArtist WHERE x.IdAlbum = s.IdAlbum) AS AlbumArtists,
        (SELECT group_concat(g.GenreName, ' | ') FROM GenreSong x
            JOIN Genre g ON g.Id = x.IdGenre WHERE x.IdSong = s.Id) AS Genres,
        (SELECT group_concat(ar.ArtistName, ' | ') FROM ComposerSong x
            JOIN Artist ar ON ar.Id = x.IdComposer WHERE x.IdSong = s.Id) AS Composers,
        (SELECT group_concat(ar.ArtistName, ' | ') FROM ConductorSong x
            JOIN Artist ar ON ar.Id = x.IdConductor WHERE x.IdSong = s.Id) AS Conductors
    FROM Song s
    JOIN Folder f ON f.Id = s.IdFolder
    JOIN Share sh ON sh.Id = f.IdShare
    JOIN Album al ON al.Id = s.IdAlbum
"""


def song_from_row(result: ResultSet, row: int, file_name: str) -> Song:
    """
    Rebuild a Song from one row of a `_SONG_SELECT` result.

    The joined performer names were normalized when they were stored; they are
    set without running the artist rule again, which would cut a joined value
    at its first "[".
    """
    song = Song(
        id=parse_int(result.get(row, "Id"), default=-1),
        file_name=file_name,
        album=result.get(row, "AlbumName"),
        album_sort=result.get(row, "AlbumSortName"),
        album_artist=result.get(row, "AlbumArtists"),
        genre=result.get(row, "Genres"),
        composer=result.get(row, "Composers"),
        conductor=result.get(row, "Conductors"),
    )
    object.__setattr__(song, "artist", result.get(row, "Artists"))
    for column, attr in SONG_COLUMNS:
        setattr(song, attr, _from_db(attr, result.get(row, column)))
    return song


async def find_songs_by_file_name(db: QueryExecutor, file_name: str) -> ResultSet:
    """Songs with this bare file name, with share and folder for path matching."""
    return await db.execute_query(_SONG_SELECT + " WHERE s.FileName = ?;", (file_name,))


async def count_songs(db: QueryExecutor) -> int:
    result = await db.execute_query("SELECT COUNT(*) AS c FROM Song;")
    return parse_int(result.get(0, "c"))


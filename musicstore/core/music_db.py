"""
Music library database: public facade.

Goals:
- One explicitly constructed store object, injected into whatever needs it
  (no global instance).
- SQLite + aiosqlite, async/await friendly, one shared connection.
- Failures degrade to empty results / falsy values with a log trail; callers
  that need to know *why* inspect `ResultSet.status` or `WriteResult.error`.

Note:
- Schema/versioning lives in `musicstore.core.db.schema`
- Connection lifecycle lives in `musicstore.core.db.connection`
- Query execution lives in `musicstore.core.db.executor`
- Transactions live in `musicstore.core.db.transaction`
- Lookup-or-insert and song row helpers live in `musicstore.core.db.queries_library`
"""

from __future__ import annotations

import logging
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from pathlib import Path
from typing import Iterable, Sequence

from musicstore.config import DateAddedPolicy, LibrarySettings
from musicstore.core import DatabaseOpenError, TransactionError
from musicstore.core.db import queries_library as queries
from musicstore.core.db.connection import ConnectionManager
from musicstore.core.db.executor import Params, QueryExecutor, ResultSet, WriteResult
from musicstore.core.db.schema import VERSION_PARAMETER
from musicstore.core.db.transaction import TransactionController
from musicstore.core.song import Song, clamp_non_negative

logger = logging.getLogger(__name__)


def split_multi(value: str) -> list[str]:
    """Split a "|"-separated tag value into unique, trimmed names (order kept)."""
    out: list[str] = []
    for part in value.split("|"):
        name = part.strip()
        if name and name not in out:
            out.append(name)
    return out


def sort_name_for(name: str, prefixes: Sequence[str]) -> str:
    """Move a leading prefix to the end: "The Beatles" -> "Beatles, The"."""
    for prefix in prefixes:
        head = name[: len(prefix)]
        rest = name[len(prefix) :]
        if head.lower() == prefix.lower() and rest.startswith(" ") and rest.strip():
            return f"{rest.strip()}, {head}"
    return name


class MusicDatabase:
    """
    Async access layer for the music metadata store.

    Usage:
        db = MusicDatabase("/var/lib/music", settings)
        await db.open()
        async with db.transaction():
            await db.add_song(song, share="/music")
        await db.close()

    Notes:
    - Settings are read once, at construction.
    - Every call acquires the managed connection; the first call opens (and
      if necessary creates) the database even without `open()`.
    """

    def __init__(self, db_dir: str | Path, settings: LibrarySettings | None = None) -> None:
        self._settings = settings if settings is not None else LibrarySettings()
        self._connections = ConnectionManager(db_dir, self._settings)
        self._executor = QueryExecutor(self._connections)
        self._transactions = TransactionController(self._executor)

    @property
    def settings(self) -> LibrarySettings:
        return self._settings

    @property
    def db_path(self) -> Path:
        return self._connections.db_path

    @property
    def database_name(self) -> str:
        return str(self.db_path)

    @property
    def is_open(self) -> bool:
        return self._connections.is_open

    @property
    def connections(self) -> ConnectionManager:
        return self._connections

    @property
    def transactions(self) -> TransactionController:
        return self._transactions

    # ===========================================================================
    # Lifecycle
    # ===========================================================================

    async def open(self) -> bool:
        """Open (or create) the database. Returns False if that failed."""
        try:
            await self._connections.get_connection()
        except DatabaseOpenError as e:
            logger.error("Cannot open music database: %s", e)
            return False
        return True

    async def close(self) -> None:
        await self._connections.close()

    async def reopen(self) -> None:
        await self._connections.reopen()

    # ===========================================================================
    # Raw execution
    # ===========================================================================

    async def execute_query(self, sql: str, params: Params = ()) -> ResultSet:
        return await self._executor.execute_query(sql, params)

    async def execute_nonquery(self, sql: str, params: Params = ()) -> WriteResult:
        return await self._executor.execute_nonquery(sql, params)

    # ===========================================================================
    # Transactions
    # ===========================================================================

    async def begin_transaction(self) -> WriteResult:
        return await self._transactions.begin()

    async def commit_transaction(self) -> WriteResult:
        return await self._transactions.commit()

    async def rollback_transaction(self) -> WriteResult:
        return await self._transactions.rollback()

    def transaction(self) -> AbstractAsyncContextManager[TransactionController]:
        return self._transactions.transaction()

    # ===========================================================================
    # Configuration
    # ===========================================================================

    async def get_configuration(self, parameter: str) -> str | None:
        return await queries.get_configuration(self._executor, parameter)

    async def set_configuration(self, parameter: str, value: str) -> WriteResult:
        return await queries.set_configuration(self._executor, parameter, value)

    async def get_schema_version(self) -> int | None:
        value = await self.get_configuration(VERSION_PARAMETER)
        if value is None:
            return None
        version = queries.parse_int(value, default=-1)
        return version if version >= 0 else None

    # ===========================================================================
    # Import helpers
    # ===========================================================================

    def is_supported_file(self, path: str | Path) -> bool:
        return self._settings.is_supported_file(path)

    async def needs_update(self, path: str | Path) -> bool:
        """
        Whether an importer should (re)read this file.

        With `update_since_last_import` only files modified after the last
        import watermark qualify. The store is opened first: creating a new
        database resets the watermark.
        """
        if not self._settings.update_since_last_import:
            return True
        if not await self.open():
            return True
        try:
            modified = datetime.fromtimestamp(Path(path).stat().st_mtime)
        except OSError:
            return True
        return modified > self._settings.last_import

    def _date_added(self, path: Path) -> datetime:
        policy = self._settings.date_added_policy
        if policy is not DateAddedPolicy.CURRENT_DATE:
            try:
                st = path.stat()
                if policy is DateAddedPolicy.CREATION_TIME:
                    ts = getattr(st, "st_birthtime", st.st_ctime)
                else:
                    ts = st.st_mtime
                return datetime.fromtimestamp(ts).replace(microsecond=0)
            except OSError as e:
                logger.debug("Cannot stat %s for date added: %s", path, e)
        return datetime.now().replace(microsecond=0)

    def _artist_sort(self, name: str, tagged_sort: str = "") -> str:
        if tagged_sort:
            return tagged_sort
        if self._settings.strip_artist_prefixes:
            return sort_name_for(name, self._settings.artist_prefix_list)
        return name

    async def _ensure_artists(self, names: list[str], tagged_sort: str) -> list[int]:
        ids: list[int] = []
        for name in names:
            sort = self._artist_sort(name, tagged_sort if len(names) == 1 else "")
            artist_id = await queries.ensure_artist(self._executor, name, sort)
            if artist_id is not None:
                ids.append(artist_id)
        return ids

    # ===========================================================================
    # Songs
    # ===========================================================================

    async def add_song(self, song: Song, *, share: str | Path) -> int | None:
        """
        Insert or update a song, creating share/folder/album/artist/genre rows
        as needed. Returns the song id, or None if a write failed.

        `song.file_name` must be a full path below `share`.
        """
        path = Path(song.file_name)
        share_path = Path(share)
        try:
            relative = path.parent.relative_to(share_path)
        except ValueError as e:
            raise ValueError(f"{path} is not below share {share_path}") from e
        folder_name = "" if relative == Path(".") else relative.as_posix()

        ex = self._executor
        share_id = await queries.ensure_share(ex, str(share_path))
        if share_id is None:
            return None
        folder_id = await queries.ensure_folder(ex, share_id, folder_name)
        if folder_id is None:
            return None

        performers = split_multi(song.artist)
        album_artists = split_multi(song.album_artist) or performers
        performer_ids = await self._ensure_artists(performers, song.artist_sort)
        album_artist_ids = await self._ensure_artists(album_artists, song.album_artist_sort)

        album_name = song.album
        if not album_name and self._settings.treat_folder_as_album:
            album_name = path.parent.name
        album_id = await queries.ensure_album(
            ex,
            album_name,
            song.album_sort,
            song.year,
            album_artist_ids[0] if album_artist_ids else None,
        )
        if album_id is None:
            return None
        for artist_id in album_artist_ids[1:]:
            await queries.link_album_artist(ex, artist_id, album_id)

        song_id = await queries.find_song_id(ex, folder_id, path.name)
        if song_id is None:
            stored = song.clone()
            if stored.date_time_modified == datetime.min:
                stored.date_time_modified = self._date_added(path)
            song_id = await queries.insert_song(
                ex, stored, folder_id=folder_id, album_id=album_id, file_name=path.name
            )
            if song_id is None:
                return None
            song.date_time_modified = stored.date_time_modified
        else:
            if not await queries.update_song(ex, song_id, song, album_id=album_id):
                return None
            await queries.clear_song_links(ex, song_id)

        for artist_id in performer_ids:
            await queries.link_role(ex, "ArtistSong", artist_id, song_id)
        for genre in split_multi(song.genre):
            genre_id = await queries.ensure_genre(ex, genre)
            if genre_id is not None:
                await queries.link_genre(ex, genre_id, song_id)
        for artist_id in await self._ensure_artists(split_multi(song.composer), song.composer_sort):
            await queries.link_role(ex, "ComposerSong", artist_id, song_id)
        for artist_id in await self._ensure_artists(split_multi(song.conductor), ""):
            await queries.link_role(ex, "ConductorSong", artist_id, song_id)

        song.id = song_id
        return song_id

    async def add_songs(self, songs: Iterable[Song], *, share: str | Path) -> int:
        """
        Add many songs in one transaction. Returns how many were stored.

        A song outside the share is logged and skipped; the rest of the batch
        is still committed.
        """
        count = 0
        try:
            async with self.transaction():
                for song in songs:
                    try:
                        song_id = await self.add_song(song, share=share)
                    except ValueError as e:
                        logger.warning("Skipping %s: %s", song.file_name, e)
                        continue
                    if song_id is not None:
                        count += 1
        except TransactionError as e:
            logger.error("Import transaction failed: %s", e)
            return 0
        return count

    async def get_song_by_path(self, path: str | Path) -> Song | None:
        p = Path(path)
        result = await queries.find_songs_by_file_name(self._executor, p.name)
        for row in range(len(result)):
            folder = result.get(row, "FolderName")
            full = Path(result.get(row, "ShareName")) / folder / p.name
            if full == p:
                return queries.song_from_row(result, row, str(full))
        return None

    async def count_songs(self) -> int:
        return await queries.count_songs(self._executor)

    async def _update_song_field(self, sql: str, params: tuple) -> bool:
        result = await self._executor.execute_nonquery(sql, params)
        return bool(result) and result.rows_affected > 0

    async def increment_times_played(
        self, song_id: int, played_at: datetime | None = None
    ) -> bool:
        played = (played_at or datetime.now()).replace(microsecond=0)
        return await self._update_song_field(
            "UPDATE Song SET TimesPlayed = COALESCE(TimesPlayed, 0) + 1, DateLastPlayed = ? "
            "WHERE Id = ?;",
            (queries.format_timestamp(played), song_id),
        )

    async def set_rating(self, song_id: int, rating: int) -> bool:
        return await self._update_song_field(
            "UPDATE Song SET Rating = ? WHERE Id = ?;", (int(rating), song_id)
        )

    async def set_favorite(self, song_id: int, favorite: bool) -> bool:
        return await self._update_song_field(
            "UPDATE Song SET Favorite = ? WHERE Id = ?;", (1 if favorite else 0, song_id)
        )

    async def set_resume_at(self, song_id: int, seconds: int) -> bool:
        return await self._update_song_field(
            "UPDATE Song SET ResumeAt = ? WHERE Id = ?;", (clamp_non_negative(seconds), song_id)
        )

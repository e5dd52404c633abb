"""
Tests for musicstore.core.music_db and the query/transaction layers below it.

These tests verify:
- QueryExecutor result values (text cells, OK/EMPTY/ERROR, write results)
- TransactionController bracketing, guards and commit-failure recovery
- Song storage: lookup-or-insert, in-place rescan, role junctions
- Library settings that affect storage (sort names, folder-as-album, DateAdded)
"""

from __future__ import annotations

import os
from datetime import datetime
from pathlib import Path

import pytest

from musicstore.config import LAST_IMPORT_EPOCH, LibrarySettings
from musicstore.core import TransactionError
from musicstore.core.db import ErrorKind, ResultSet, ResultStatus
from musicstore.core.db.transaction import TransactionState
from musicstore.core.music_db import MusicDatabase, sort_name_for, split_multi
from musicstore.core.song import Song


@pytest.fixture
async def db(tmp_path: Path) -> MusicDatabase:
    """Create a database in a temporary directory."""
    db = MusicDatabase(tmp_path / "db")
    assert await db.open()
    yield db
    await db.close()


@pytest.fixture
def share(tmp_path: Path) -> Path:
    path = tmp_path / "music"
    path.mkdir()
    return path


async def _count(db: MusicDatabase, table: str) -> int:
    result = await db.execute_query(f"SELECT COUNT(*) FROM {table};")
    return int(result.get(0, 0))


def _meddle_track(share: Path, title: str = "One of These Days", track: int = 1) -> Song:
    return Song(
        file_name=str(share / "Pink Floyd" / "Meddle" / f"{track:02d} {title}.mp3"),
        title=title,
        artist="Pink Floyd",
        album_artist="Pink Floyd",
        album="Meddle",
        genre="Rock",
        year=1971,
        track=track,
        track_total=6,
        duration=357,
    )


# =============================================================================
# Module helpers
# =============================================================================


class TestHelpers:
    def test_split_multi(self) -> None:
        assert split_multi("Rock | Progressive |  | Rock") == ["Rock", "Progressive"]
        assert split_multi("") == []

    def test_sort_name_for(self) -> None:
        prefixes = ("The", "Les", "Die")
        assert sort_name_for("The Beatles", prefixes) == "Beatles, The"
        assert sort_name_for("Die Toten Hosen", prefixes) == "Toten Hosen, Die"
        assert sort_name_for("Theatre of Tragedy", prefixes) == "Theatre of Tragedy"
        assert sort_name_for("The", prefixes) == "The"


# =============================================================================
# QueryExecutor
# =============================================================================


class TestQueryExecutor:
    """Results are explicit values, never exceptions."""

    async def test_cells_are_text(self, db: MusicDatabase) -> None:
        """Test that every cell type is coerced to text."""
        result = await db.execute_query(
            "SELECT 1 AS a, 2.5 AS b, NULL AS c, 'x' AS d, X'6869' AS e;"
        )
        assert result.status is ResultStatus.OK
        assert result.columns == ["a", "b", "c", "d", "e"]
        assert result.rows == [["1", "2.5", "", "x", "hi"]]
        assert result.last_command.startswith("SELECT 1")

    async def test_empty_result(self, db: MusicDatabase) -> None:
        """Test that no rows is EMPTY, not ERROR."""
        result = await db.execute_query("SELECT Id FROM Song;")
        assert result.status is ResultStatus.EMPTY
        assert result.ok
        assert result.is_empty
        assert len(result) == 0

    async def test_failed_query(self, db: MusicDatabase) -> None:
        """Test that a bad query comes back as an ERROR result."""
        result = await db.execute_query("SELECT * FROM NoSuchTable;")
        assert result.status is ResultStatus.ERROR
        assert result.error.kind is ErrorKind.QUERY
        assert "NoSuchTable" in result.error.sql
        assert result.rows == []

    async def test_parameters_are_bound(self, db: MusicDatabase) -> None:
        """Test that values pass through as parameters, not SQL text."""
        tricky = "O'Brien\"; DROP TABLE Genre; --"
        assert await db.execute_nonquery("INSERT INTO Genre (GenreName) VALUES (?);", (tricky,))

        result = await db.execute_query("SELECT GenreName FROM Genre WHERE GenreName = ?;", (tricky,))
        assert result.get(0, "GenreName") == tricky
        assert await _count(db, "Genre") == 1

    async def test_write_result(self, db: MusicDatabase) -> None:
        """Test rows_affected and last_row_id on a successful write."""
        result = await db.execute_nonquery("INSERT INTO Genre (GenreName) VALUES (?);", ("Jazz",))
        assert result
        assert result.rows_affected == 1
        assert result.last_row_id == 1

    async def test_failed_write(self, db: MusicDatabase) -> None:
        """Test that a failing write is falsy and carries a WRITE fault."""
        result = await db.execute_nonquery("INSERT INTO NoSuchTable VALUES (1);")
        assert not result
        assert result.error.kind is ErrorKind.WRITE

    async def test_lazy_open_on_first_query(self, tmp_path: Path) -> None:
        """Test that executing without open() still opens the database."""
        db = MusicDatabase(tmp_path)
        assert not db.is_open
        result = await db.execute_query("SELECT COUNT(*) FROM Song;")
        assert result.get(0, 0) == "0"
        assert db.is_open
        await db.close()

    def test_result_set_lookup(self) -> None:
        """Test column lookup by name (case-insensitive) and index."""
        result = ResultSet(columns=["Id", "Name"], rows=[["1", "Rock"]])
        assert result.get(0, "name") == "Rock"
        assert result.get(0, 0) == "1"
        assert result.get(0, "Missing", default="?") == "?"
        assert result.get(5, "Id") == ""
        with pytest.raises(KeyError):
            result.column_index("Missing")


# =============================================================================
# Transactions
# =============================================================================


class TestTransactions:
    """BEGIN/COMMIT/ROLLBACK bracketing on the shared connection."""

    async def test_commit_makes_writes_visible(self, db: MusicDatabase) -> None:
        """Test that committed writes persist."""
        assert await db.begin_transaction()
        assert db.transactions.state is TransactionState.IN_TRANSACTION
        assert await db.execute_nonquery("INSERT INTO Genre (GenreName) VALUES ('Rock');")
        assert await db.commit_transaction()

        assert db.transactions.state is TransactionState.IDLE
        assert await _count(db, "Genre") == 1

    async def test_rollback_discards_writes(self, db: MusicDatabase) -> None:
        """Test that rolled back writes are gone."""
        assert await db.begin_transaction()
        assert await db.execute_nonquery("INSERT INTO Genre (GenreName) VALUES ('Rock');")
        assert await db.rollback_transaction()

        assert db.transactions.state is TransactionState.IDLE
        assert await _count(db, "Genre") == 0

    async def test_nested_begin_is_refused(self, db: MusicDatabase) -> None:
        """Test that a second begin does not disturb the open transaction."""
        assert await db.begin_transaction()
        nested = await db.begin_transaction()
        assert not nested
        assert nested.error.kind is ErrorKind.TRANSACTION
        assert db.transactions.in_transaction
        assert await db.rollback_transaction()

    async def test_commit_without_begin_is_refused(self, db: MusicDatabase) -> None:
        """Test that commit and rollback need an open transaction."""
        commit = await db.commit_transaction()
        rollback = await db.rollback_transaction()
        assert not commit
        assert not rollback
        assert commit.error.kind is ErrorKind.TRANSACTION
        assert rollback.error.kind is ErrorKind.TRANSACTION
        assert db.transactions.state is TransactionState.IDLE

    async def test_commit_failure_reopens_and_discards(self, db: MusicDatabase) -> None:
        """Test that a failed commit leaves no partial writes behind."""
        assert await db.begin_transaction()
        assert await db.execute_nonquery("PRAGMA defer_foreign_keys = ON;")
        assert await db.execute_nonquery("INSERT INTO Genre (GenreName) VALUES ('Rock');")
        assert await db.execute_nonquery(
            "INSERT INTO Song (IdFolder, IdAlbum, FileName, Title) VALUES (999, 999, 'a.mp3', 'A');"
        )

        result = await db.commit_transaction()
        assert not result
        assert result.error.kind is ErrorKind.TRANSACTION
        assert db.transactions.state is TransactionState.IDLE
        assert not db.is_open

        assert await _count(db, "Genre") == 0
        assert await _count(db, "Song") == 0
        assert db.is_open

    async def test_context_manager_commits(self, db: MusicDatabase) -> None:
        """Test that a clean block is committed."""
        async with db.transaction():
            await db.execute_nonquery("INSERT INTO Genre (GenreName) VALUES ('Rock');")
        assert await _count(db, "Genre") == 1

    async def test_context_manager_rolls_back_on_error(self, db: MusicDatabase) -> None:
        """Test that an exception rolls back and propagates."""
        with pytest.raises(RuntimeError, match="boom"):
            async with db.transaction():
                await db.execute_nonquery("INSERT INTO Genre (GenreName) VALUES ('Rock');")
                raise RuntimeError("boom")

        assert await _count(db, "Genre") == 0
        assert db.transactions.state is TransactionState.IDLE

    async def test_context_manager_raises_on_nested(self, db: MusicDatabase) -> None:
        """Test that entering while a transaction is open raises."""
        assert await db.begin_transaction()
        with pytest.raises(TransactionError):
            async with db.transaction():
                pass
        assert await db.rollback_transaction()

    async def test_failed_begin_stays_idle(self, tmp_path: Path) -> None:
        """Test that a begin on an unopenable store leaves the state IDLE."""
        blocker = tmp_path / "blocker"
        blocker.write_text("x")
        db = MusicDatabase(blocker)

        result = await db.begin_transaction()
        assert not result
        assert result.error.kind is ErrorKind.OPEN
        assert db.transactions.state is TransactionState.IDLE

        with pytest.raises(TransactionError):
            async with db.transaction():
                pass
        assert db.transactions.state is TransactionState.IDLE

    async def test_rollback_failure_reopens(self, db: MusicDatabase) -> None:
        """Test that a failed rollback reopens the connection and returns to IDLE."""
        assert await db.begin_transaction()
        assert await db.execute_nonquery("INSERT INTO Genre (GenreName) VALUES ('Rock');")
        # Ending the engine transaction behind the controller's back makes ROLLBACK fail.
        assert await db.execute_nonquery("COMMIT;")

        result = await db.rollback_transaction()
        assert not result
        assert result.error.kind is ErrorKind.TRANSACTION
        assert db.transactions.state is TransactionState.IDLE
        assert not db.is_open

        assert await _count(db, "Genre") == 1
        assert db.is_open


# =============================================================================
# Configuration rows
# =============================================================================


class TestConfiguration:
    async def test_set_and_get(self, db: MusicDatabase) -> None:
        """Test that a parameter is inserted then updated in place."""
        assert await db.get_configuration("LastScan") is None

        assert await db.set_configuration("LastScan", "first")
        assert await db.set_configuration("LastScan", "second")

        assert await db.get_configuration("LastScan") == "second"
        result = await db.execute_query(
            "SELECT COUNT(*) FROM Configuration WHERE Parameter = 'LastScan';"
        )
        assert result.get(0, 0) == "1"


# =============================================================================
# Songs
# =============================================================================


class TestAddSong:
    """Storing songs with their share/folder/album/artist/genre rows."""

    async def test_round_trip(self, db: MusicDatabase, share: Path) -> None:
        """Test that a stored song reads back with the same metadata."""
        song = _meddle_track(share)
        song.composer = "Roger Waters | David Gilmour"
        song.favorite = True
        song.bit_rate = 320
        song.replay_gain_track = "-6.50 dB"
        song.date_time_played = datetime(2024, 1, 2, 3, 4, 5)

        song_id = await db.add_song(song, share=share)
        assert song_id is not None
        assert song.id == song_id

        stored = await db.get_song_by_path(song.file_name)
        assert stored is not None
        assert stored.id == song_id
        assert stored.file_name == song.file_name
        assert stored.title == "One of These Days"
        assert stored.artist == "Pink Floyd"
        assert stored.album_artist == "Pink Floyd"
        assert stored.album == "Meddle"
        assert stored.genre == "Rock"
        assert set(split_multi(stored.composer)) == {"Roger Waters", "David Gilmour"}
        assert stored.year == 1971
        assert stored.track == 1
        assert stored.track_total == 6
        assert stored.duration == 357
        assert stored.favorite is True
        assert stored.bit_rate == 320
        assert stored.replay_gain_track == "-6.50 dB"
        assert stored.date_time_played == datetime(2024, 1, 2, 3, 4, 5)
        assert stored.date_time_modified == song.date_time_modified
        assert stored.date_time_modified != datetime.min

    async def test_unknown_path(self, db: MusicDatabase, share: Path) -> None:
        """Test that an unknown file returns None."""
        assert await db.get_song_by_path(share / "nothing.mp3") is None

    async def test_file_outside_share(self, db: MusicDatabase, tmp_path: Path, share: Path) -> None:
        """Test that a file outside the share is rejected."""
        song = Song(file_name=str(tmp_path / "elsewhere" / "x.mp3"), title="x")
        with pytest.raises(ValueError):
            await db.add_song(song, share=share)

    async def test_file_at_share_root(self, db: MusicDatabase, share: Path) -> None:
        """Test that a file directly in the share uses an empty folder name."""
        song = Song(file_name=str(share / "loose.mp3"), title="Loose")
        assert await db.add_song(song, share=share) is not None

        result = await db.execute_query("SELECT FolderName FROM Folder;")
        assert result.rows == [[""]]
        assert (await db.get_song_by_path(share / "loose.mp3")).title == "Loose"

    async def test_lookup_rows_are_reused(self, db: MusicDatabase, share: Path) -> None:
        """Test that a second track reuses share, folder, artist, album and genre."""
        await db.add_song(_meddle_track(share, "One of These Days", 1), share=share)
        await db.add_song(_meddle_track(share, "Echoes", 6), share=share)

        assert await db.count_songs() == 2
        assert await _count(db, "Share") == 1
        assert await _count(db, "Folder") == 1
        assert await _count(db, "Artist") == 1
        assert await _count(db, "Album") == 1
        assert await _count(db, "Genre") == 1
        assert await _count(db, "AlbumArtist") == 1

    async def test_same_album_name_different_artists(self, db: MusicDatabase, share: Path) -> None:
        """Test that album identity includes the album artist."""
        first = Song(
            file_name=str(share / "a" / "01.mp3"), title="A", artist="Weezer", album="Greatest Hits"
        )
        second = Song(
            file_name=str(share / "b" / "01.mp3"), title="B", artist="Queen", album="Greatest Hits"
        )
        await db.add_song(first, share=share)
        await db.add_song(second, share=share)

        assert await _count(db, "Album") == 2

    async def test_rescan_updates_in_place(self, db: MusicDatabase, share: Path) -> None:
        """Test that storing the same file again updates the existing row."""
        song = _meddle_track(share)
        song_id = await db.add_song(song, share=share)
        added = song.date_time_modified

        rescanned = _meddle_track(share)
        rescanned.title = "One Of These Days (Remastered)"
        rescanned.genre = "Progressive Rock"
        rescanned.date_time_modified = datetime(2030, 1, 1)
        assert await db.add_song(rescanned, share=share) == song_id

        assert await db.count_songs() == 1
        stored = await db.get_song_by_path(song.file_name)
        assert stored.title == "One Of These Days (Remastered)"
        assert stored.genre == "Progressive Rock"
        assert stored.date_time_modified == added
        assert await _count(db, "GenreSong") == 1

    async def test_multi_valued_tags(self, db: MusicDatabase, share: Path) -> None:
        """Test that each '|' value gets its own junction row."""
        song = Song(
            file_name=str(share / "collab.mp3"),
            title="Under Pressure",
            artist="Queen | David Bowie",
            album="Hot Space",
            genre="Rock | Pop",
            conductor="Somebody",
        )
        song_id = await db.add_song(song, share=share)

        artists = await db.execute_query(
            "SELECT COUNT(*) FROM ArtistSong WHERE IdSong = ?;", (song_id,)
        )
        genres = await db.execute_query("SELECT COUNT(*) FROM GenreSong WHERE IdSong = ?;", (song_id,))
        conductors = await db.execute_query(
            "SELECT COUNT(*) FROM ConductorSong WHERE IdSong = ?;", (song_id,)
        )
        assert artists.get(0, 0) == "2"
        assert genres.get(0, 0) == "2"
        assert conductors.get(0, 0) == "1"

        stored = await db.get_song_by_path(song.file_name)
        assert set(split_multi(stored.artist)) == {"Queen", "David Bowie"}
        assert set(split_multi(stored.genre)) == {"Rock", "Pop"}
        assert stored.conductor == "Somebody"

    async def test_add_songs_in_one_transaction(self, db: MusicDatabase, share: Path) -> None:
        """Test that add_songs stores a batch and reports the count."""
        songs = [_meddle_track(share, f"Track {n}", n) for n in range(1, 4)]
        assert await db.add_songs(songs, share=share) == 3
        assert await db.count_songs() == 3
        assert db.transactions.state is TransactionState.IDLE

    async def test_add_songs_skips_file_outside_share(
        self, db: MusicDatabase, tmp_path: Path, share: Path
    ) -> None:
        """Test that one song outside the share does not discard the batch."""
        good = _meddle_track(share, "Echoes", 6)
        stray = Song(file_name=str(tmp_path / "elsewhere" / "x.mp3"), title="x")
        after = _meddle_track(share, "Fearless", 2)

        assert await db.add_songs([good, stray, after], share=share) == 2
        assert await db.count_songs() == 2
        assert await db.get_song_by_path(good.file_name) is not None
        assert await db.get_song_by_path(after.file_name) is not None
        assert db.transactions.state is TransactionState.IDLE

    async def test_joined_artists_read_back_unchanged(self, db: MusicDatabase, share: Path) -> None:
        """Test that a bracketed artist name does not swallow the other performers."""
        live = Song(file_name=str(share / "live.mp3"), title="Live", artist="[Live]")
        song = Song(file_name=str(share / "studio.mp3"), title="Studio", artist="Queen")
        await db.add_song(live, share=share)
        song_id = await db.add_song(song, share=share)

        artist = await db.execute_query("SELECT Id FROM Artist WHERE ArtistName = '[Live]';")
        assert await db.execute_nonquery(
            "INSERT INTO ArtistSong (IdArtist, IdSong) VALUES (?, ?);",
            (int(artist.get(0, 0)), song_id),
        )

        stored = await db.get_song_by_path(song.file_name)
        assert set(split_multi(stored.artist)) == {"Queen", "[Live]"}


class TestLibrarySettingsEffects:
    """Settings read at construction change how rows are written."""

    async def test_strip_artist_prefixes(self, tmp_path: Path, share: Path) -> None:
        """Test that configured prefixes move to the end of the sort name."""
        db = MusicDatabase(tmp_path / "db", LibrarySettings(strip_artist_prefixes=True))
        await db.add_song(Song(file_name=str(share / "x.mp3"), title="x", artist="The Beatles"), share=share)

        result = await db.execute_query("SELECT ArtistName, ArtistSortName FROM Artist;")
        assert result.rows == [["The Beatles", "Beatles, The"]]
        await db.close()

    async def test_prefixes_kept_by_default(self, db: MusicDatabase, share: Path) -> None:
        """Test that the sort name equals the name without the setting."""
        await db.add_song(Song(file_name=str(share / "x.mp3"), title="x", artist="The Beatles"), share=share)

        result = await db.execute_query("SELECT ArtistSortName FROM Artist;")
        assert result.get(0, 0) == "The Beatles"

    async def test_treat_folder_as_album(self, tmp_path: Path, share: Path) -> None:
        """Test that an untagged album takes the folder name."""
        db = MusicDatabase(tmp_path / "db", LibrarySettings(treat_folder_as_album=True))
        song = Song(file_name=str(share / "Mixes" / "a.mp3"), title="a")
        await db.add_song(song, share=share)

        stored = await db.get_song_by_path(song.file_name)
        assert stored.album == "Mixes"
        await db.close()

    async def test_date_added_from_file_time(self, tmp_path: Path, share: Path) -> None:
        """Test that DateAdded follows the file's modification time when configured."""
        path = share / "dated.mp3"
        path.write_bytes(b"")
        stamp = datetime(2015, 6, 1, 12, 30, 0).timestamp()
        os.utime(path, (stamp, stamp))

        db = MusicDatabase(tmp_path / "db", LibrarySettings(date_added=2))
        await db.add_song(Song(file_name=str(path), title="dated"), share=share)

        stored = await db.get_song_by_path(path)
        assert stored.date_time_modified == datetime(2015, 6, 1, 12, 30, 0)
        await db.close()

    async def test_needs_update(self, tmp_path: Path, share: Path) -> None:
        """Test that only files newer than the watermark need an update."""
        old = share / "old.mp3"
        new = share / "new.mp3"
        old.write_bytes(b"")
        new.write_bytes(b"")
        stamp = datetime(1999, 1, 1).timestamp()
        os.utime(old, (stamp, stamp))

        existing = MusicDatabase(tmp_path / "db")
        assert await existing.open()
        await existing.close()

        settings = LibrarySettings(update_since_last_import=True, last_import=datetime(2000, 1, 1))
        db = MusicDatabase(tmp_path / "db", settings)

        assert await db.needs_update(new)
        assert not await db.needs_update(old)
        assert await MusicDatabase(tmp_path / "db2").needs_update(old)
        await db.close()

    async def test_needs_update_on_new_database(self, tmp_path: Path, share: Path) -> None:
        """Test that a database about to be created forces a full rescan."""
        old = share / "old.mp3"
        old.write_bytes(b"")
        stamp = datetime(1999, 1, 1).timestamp()
        os.utime(old, (stamp, stamp))

        settings = LibrarySettings(update_since_last_import=True, last_import=datetime(2000, 1, 1))
        db = MusicDatabase(tmp_path / "fresh", settings)

        assert await db.needs_update(old)
        assert settings.last_import == LAST_IMPORT_EPOCH
        assert db.is_open
        await db.close()

    def test_is_supported_file(self, tmp_path: Path) -> None:
        db = MusicDatabase(tmp_path, LibrarySettings(extensions=".mp3,.flac"))
        assert db.is_supported_file("/music/a.FLAC")
        assert not db.is_supported_file("/music/a.ogg")


class TestPlayState:
    """Small per-song updates."""

    async def test_increment_times_played(self, db: MusicDatabase, share: Path) -> None:
        """Test that playing bumps the counter and the last-played time."""
        song = _meddle_track(share)
        song_id = await db.add_song(song, share=share)
        played = datetime(2024, 3, 7, 9, 5, 0)

        assert await db.increment_times_played(song_id, played)
        assert await db.increment_times_played(song_id, played)

        stored = await db.get_song_by_path(song.file_name)
        assert stored.times_played == 2
        assert stored.date_time_played == played

    async def test_rating_favorite_resume(self, db: MusicDatabase, share: Path) -> None:
        """Test rating, favorite and resume position updates."""
        song = _meddle_track(share)
        song_id = await db.add_song(song, share=share)

        assert await db.set_rating(song_id, 4)
        assert await db.set_favorite(song_id, True)
        assert await db.set_resume_at(song_id, -10)

        stored = await db.get_song_by_path(song.file_name)
        assert stored.rating == 4
        assert stored.favorite is True
        assert stored.resume_at == 0

    async def test_unknown_song_id(self, db: MusicDatabase) -> None:
        """Test that updates report False for a missing song."""
        assert await db.set_rating(12345, 3) is False
        assert await db.increment_times_played(12345) is False

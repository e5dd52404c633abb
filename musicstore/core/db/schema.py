"""
Database schema + versioning for the music store.

This module is split out of `musicstore.core.music_db` to keep responsibilities
separated:

- Connection management lives in `connection.py`
- Query execution lives in `executor.py`
- The table catalog, file preparation, schema creation and the version check
  live here

Design notes:
- The schema version is stored as the `Version` row of the `Configuration`
  table (not `PRAGMA user_version`), so existing `MusicDatabase.db3` files stay
  readable.
- Migrations are forward-only (no downgrade support).
- Column names match the historical layout exactly; do not rename them.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Final

import aiosqlite

from musicstore.core import SchemaVersionError

if TYPE_CHECKING:
    from musicstore.config import LibrarySettings

logger = logging.getLogger(__name__)

# Bump when you change the schema and register the steps in `MIGRATIONS`.
SCHEMA_VERSION: Final[int] = 1

VERSION_PARAMETER: Final[str] = "Version"

DATABASE_FILE_NAME: Final[str] = "MusicDatabase.db3"
LEGACY_DATABASE_FILE_NAME: Final[str] = "MusicDatabaseV12.db3"
LEGACY_BACKUP_FILE_NAME: Final[str] = "MusicDatabaseV12-backup.db3"

# Applied to every new connection. foreign_keys is per-connection in SQLite;
# encoding and page_size only take effect before the first table exists.
PRAGMAS: Final[tuple[str, ...]] = (
    'PRAGMA encoding = "UTF-8";',
    "PRAGMA cache_size = 4096;",
    "PRAGMA page_size = 8192;",
    "PRAGMA synchronous = OFF;",
    "PRAGMA auto_vacuum = 0;",
    "PRAGMA foreign_keys = ON;",
)

# ---------------------------------------------------------------------------
# Catalog (dependency order)
# ---------------------------------------------------------------------------

CONFIGURATION_TABLES: Final[tuple[str, ...]] = (
    """
    CREATE TABLE Configuration (
        Parameter string NOT NULL,
        Value string NOT NULL
    )
    """,
    "CREATE UNIQUE INDEX IdxConfiguration_Parameter ON Configuration(Parameter);",
)

LIBRARY_TABLES: Final[tuple[str, ...]] = (
    """
    CREATE TABLE Share (
        Id integer PRIMARY KEY,
        ShareName text NOT NULL
    )
    """,
    """
    CREATE TABLE Folder (
        Id integer PRIMARY KEY,
        IdShare integer NOT NULL,
        FolderName text NOT NULL,
        FOREIGN KEY (IdShare) REFERENCES Share(Id)
    )
    """,
    # Shared by performers, album artists, composers and conductors.
    """
    CREATE TABLE Artist (
        Id integer PRIMARY KEY,
        ArtistName text NOT NULL,
        ArtistSortName text NOT NULL
    )
    """,
    "CREATE INDEX IdxArtist_ArtistName ON Artist(ArtistName ASC);",
    """
    CREATE TABLE Album (
        Id integer PRIMARY KEY,
        AlbumName text NOT NULL,
        AlbumSortName text NOT NULL,
        Year integer
    )
    """,
    "CREATE INDEX IdxAlbum_AlbumName ON Album(AlbumName ASC);",
    """
    CREATE TABLE Genre (
        Id integer PRIMARY KEY,
        GenreName text NOT NULL
    )
    """,
    "CREATE INDEX IdxGenre_GenreName ON Genre(GenreName ASC);",
    # FileName is relative to ShareName + FolderName.
    """
    CREATE TABLE Song (
        Id integer PRIMARY KEY,
        IdFolder integer NOT NULL,
        IdAlbum integer NOT NULL,
        FileName text NOT NULL,
        Title text NOT NULL,
        TitleSort text,
        Track integer,
        TrackCount integer,
        Disc integer,
        DiscCount integer,
        Duration integer,
        Year integer,
        TimesPlayed integer,
        Rating integer,
        Favorite integer,
        ResumeAt integer,
        Lyrics text,
        Comment text,
        Copyright text,
        AmazonId text,
        Grouping text,
        MusicBrainzArtistId text,
        MusicBrainzDiscId text,
        MusicBrainzReleaseArtistId text,
        MusicBrainzReleaseCountry text,
        MusicBrainzReleaseId text,
        MusicBrainzReleaseStatus text,
        MusicBrainzReleaseTrackId text,
        MusicBrainzReleaseType text,
        MusicIpid text,
        ReplayGainTrack text,
        ReplayGainTrackPeak text,
        ReplayGainAlbum text,
        ReplayGainAlbumPeak text,
        FileType text,
        Codec text,
        BitRateMode text,
        BPM integer,
        BitRate integer,
        Channels integer,
        SampleRate integer,
        DateLastPlayed timestamp,
        DateAdded timestamp,
        FOREIGN KEY (IdFolder) REFERENCES Folder(Id),
        FOREIGN KEY (IdAlbum) REFERENCES Album(Id)
    )
    """,
    "CREATE INDEX IdxSong_FileName ON Song(FileName ASC);",
)

# One junction per role; never collapse roles into a single table.
JUNCTION_TABLES: Final[tuple[str, ...]] = (
    """
    CREATE TABLE AlbumArtist (
        IdArtist integer NOT NULL,
        IdAlbum integer NOT NULL,
        PRIMARY KEY (IdArtist, IdAlbum),
        FOREIGN KEY (IdArtist) REFERENCES Artist(Id),
        FOREIGN KEY (IdAlbum) REFERENCES Album(Id)
    )
    """,
    """
    CREATE TABLE ArtistSong (
        IdArtist integer NOT NULL,
        IdSong integer NOT NULL,
        PRIMARY KEY (IdArtist, IdSong),
        FOREIGN KEY (IdArtist) REFERENCES Artist(Id),
        FOREIGN KEY (IdSong) REFERENCES Song(Id)
    )
    """,
    """
    CREATE TABLE GenreSong (
        IdGenre integer NOT NULL,
        IdSong integer NOT NULL,
        PRIMARY KEY (IdGenre, IdSong),
        FOREIGN KEY (IdGenre) REFERENCES Genre(Id),
        FOREIGN KEY (IdSong) REFERENCES Song(Id)
    )
    """,
    """
    CREATE TABLE ComposerSong (
        IdComposer integer NOT NULL,
        IdSong integer NOT NULL,
        PRIMARY KEY (IdComposer, IdSong),
        FOREIGN KEY (IdComposer) REFERENCES Artist(Id),
        FOREIGN KEY (IdSong) REFERENCES Song(Id)
    )
    """,
    """
    CREATE TABLE ConductorSong (
        IdConductor integer NOT NULL,
        IdSong integer NOT NULL,
        PRIMARY KEY (IdConductor, IdSong),
        FOREIGN KEY (IdConductor) REFERENCES Artist(Id),
        FOREIGN KEY (IdSong) REFERENCES Song(Id)
    )
    """,
)

INFO_TABLES: Final[tuple[str, ...]] = (
    """
    CREATE TABLE albuminfo (
        idAlbumInfo integer PRIMARY KEY AUTOINCREMENT,
        strAlbum text,
        strArtist text,
        strAlbumArtist text,
        iYear integer,
        idGenre integer,
        strTones text,
        strStyles text,
        strReview text,
        strImage text,
        strTracks text,
        iRating integer
    )
    """,
    """
    CREATE TABLE artistinfo (
        idArtistInfo integer PRIMARY KEY AUTOINCREMENT,
        strArtist text,
        strBorn text,
        strYearsActive text,
        strGenres text,
        strTones text,
        strStyles text,
        strInstruments text,
        strImage text,
        strAMGBio text,
        strAlbums text,
        strCompilations text,
        strSingles text,
        strMisc text
    )
    """,
    "CREATE INDEX idxalbuminfo_strAlbum ON albuminfo(strAlbum ASC);",
    "CREATE INDEX idxalbuminfo_strArtist ON albuminfo(strArtist ASC);",
    "CREATE INDEX idxalbuminfo_idGenre ON albuminfo(idGenre ASC);",
    "CREATE INDEX idxartistinfo_strArtist ON artistinfo(strArtist ASC);",
)

SCROBBLE_TABLES: Final[tuple[str, ...]] = (
    """
    CREATE TABLE scrobbleusers (
        idScrobbleUser integer PRIMARY KEY,
        strUsername text,
        strPassword text
    )
    """,
    """
    CREATE TABLE scrobblesettings (
        idScrobbleSettings integer PRIMARY KEY,
        idScrobbleUser integer,
        iAddArtists integer,
        iAddTracks integer,
        iNeighbourMode integer,
        iRandomness integer,
        iScrobbleDefault integer,
        iSubmitOn integer,
        iDebugLog integer,
        iOfflineMode integer,
        iPlaylistLimit integer,
        iPreferCount integer,
        iRememberStartArtist integer,
        iAnnounce integer
    )
    """,
    """
    CREATE TABLE scrobblemode (
        idScrobbleMode integer PRIMARY KEY,
        idScrobbleUser integer,
        iSortID integer,
        strModeName text
    )
    """,
    """
    CREATE TABLE scrobbletags (
        idScrobbleTag integer PRIMARY KEY,
        idScrobbleMode integer,
        iSortID integer,
        strTagName text
    )
    """,
)

# Forward-only migration steps, keyed by the version they upgrade *from*.
MIGRATIONS: Final[dict[int, tuple[str, ...]]] = {}


# ---------------------------------------------------------------------------
# File preparation
# ---------------------------------------------------------------------------


def prepare_database_file(db_dir: Path, settings: LibrarySettings | None = None) -> bool:
    """
    Prepare the database directory before connecting.

    Returns True if the database file does not exist yet (the caller must
    create the schema after connecting).
    """
    try:
        db_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.warning("Could not create database directory %s: %s", db_dir, e)

    db_file = db_dir / DATABASE_FILE_NAME
    if db_file.exists():
        return False

    legacy = db_dir / LEGACY_DATABASE_FILE_NAME
    backup = db_dir / LEGACY_BACKUP_FILE_NAME
    if legacy.exists():
        if backup.exists():
            logger.warning(
                "Found older, incompatible database %s but backup %s already exists; leaving both",
                legacy,
                backup,
            )
        else:
            logger.info(
                "Found older, incompatible version of database. Backing up to %s", backup
            )
            legacy.rename(backup)

    # A new database needs a full rescan regardless of the last import setting.
    if settings is not None:
        settings.reset_last_import()

    logger.info("Database %s does not exist. Creating it.", db_file)
    return True


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


async def _execute_logged(conn: aiosqlite.Connection, sql: str, params: tuple = ()) -> bool:
    try:
        await conn.execute(sql, params)
        return True
    except aiosqlite.Error as e:
        logger.error("Schema statement failed: %s\n%s", " ".join(sql.split()), e)
        return False


async def create_schema(conn: aiosqlite.Connection) -> bool:
    """
    Create every table and index in dependency order, stamping the version
    row right after the Configuration table.

    A failing statement is logged and the remaining statements still run.
    Returns False only if the sequence itself could not complete.
    """
    try:
        failed = 0
        for sql in CONFIGURATION_TABLES:
            if not await _execute_logged(conn, sql):
                failed += 1

        if not await _execute_logged(
            conn,
            "INSERT INTO Configuration (Parameter, Value) VALUES (?, ?);",
            (VERSION_PARAMETER, str(SCHEMA_VERSION)),
        ):
            failed += 1

        for sql in LIBRARY_TABLES + JUNCTION_TABLES + INFO_TABLES + SCROBBLE_TABLES:
            if not await _execute_logged(conn, sql):
                failed += 1

        await conn.commit()
    except Exception as e:
        logger.error("Create of database failed: %s", e, exc_info=True)
        return False

    if failed:
        logger.warning("Database created with %d failed statement(s)", failed)
    else:
        logger.info("New database created successfully")
    return True


# ---------------------------------------------------------------------------
# Versioning
# ---------------------------------------------------------------------------


async def read_version(conn: aiosqlite.Connection) -> int:
    """
    Read the stored schema version.

    Raises SchemaVersionError if the row is missing or unparsable; that state
    means the file is corrupt, not merely old.
    """
    try:
        async with conn.execute(
            "SELECT Value FROM Configuration WHERE Parameter = ?;",
            (VERSION_PARAMETER,),
        ) as cursor:
            row = await cursor.fetchone()
    except aiosqlite.Error as e:
        raise SchemaVersionError(f"Cannot read schema version: {e}") from e

    if row is None:
        raise SchemaVersionError("Configuration table has no Version row.")
    try:
        return int(row[0])
    except (TypeError, ValueError) as e:
        raise SchemaVersionError(f"Unparsable schema version {row[0]!r}.") from e


async def check_version(conn: aiosqlite.Connection) -> int:
    """Validate the stored version and migrate if needed. Returns the final version."""
    current = await read_version(conn)
    if current == SCHEMA_VERSION:
        return current

    logger.info("Database schema version %d differs from %d; migrating", current, SCHEMA_VERSION)
    await migrate(conn, from_version=current, to_version=SCHEMA_VERSION)
    return SCHEMA_VERSION


async def migrate(conn: aiosqlite.Connection, *, from_version: int, to_version: int) -> None:
    """
    Perform forward-only migrations and rewrite the Version row.

    Version 1 is the first layout, so no steps are registered yet.
    """
    if from_version > to_version:
        raise SchemaVersionError(
            f"Database schema version {from_version} is newer than supported {to_version}."
        )

    version = from_version
    while version < to_version:
        steps = MIGRATIONS.get(version, ())
        if not steps:
            logger.debug("No migration steps registered for version %d", version)
        for sql in steps:
            await conn.execute(sql)
        version += 1

    await conn.execute(
        "UPDATE Configuration SET Value = ? WHERE Parameter = ?;",
        (str(to_version), VERSION_PARAMETER),
    )
    await conn.commit()

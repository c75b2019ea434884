"""Shared pytest fixtures."""

from datetime import datetime
from pathlib import PurePosixPath
from unittest.mock import Mock

import pytest

from reclaim_arr.config import DatabaseConfig
from reclaim_arr.db.models import (
    MatchedBy,
    MediaFile,
    Movie,
    MovieFile,
    RadarrInstance,
    Volume,
)
from reclaim_arr.db.session import create_db_engine, create_session_factory, init_db

FIXED_NOW = datetime(2026, 3, 15, 12, 0, 0)


@pytest.fixture
def engine():
    engine = create_db_engine(DatabaseConfig(url="sqlite:///:memory:"))
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    """In-memory database session."""
    session = create_session_factory(engine)()
    yield session
    session.close()


@pytest.fixture
def make_volume(session):
    def factory(host_path="/data/movies", name=None, **kwargs):
        volume = Volume(
            name=name or PurePosixPath(host_path).name,
            path=kwargs.pop("path", host_path),
            host_path=host_path,
            **kwargs,
        )
        session.add(volume)
        session.flush()
        return volume
    return factory


@pytest.fixture
def make_media_file(session):
    def factory(volume, file_path, size=1_000_000_000, **kwargs):
        media_file = MediaFile(
            volume=volume,
            file_path=file_path,
            file_name=PurePosixPath(file_path).name,
            file_size_bytes=size,
            **kwargs,
        )
        session.add(media_file)
        session.flush()
        return media_file
    return factory


@pytest.fixture
def make_movie(session):
    def factory(title, year=None, **kwargs):
        movie = Movie(title=title, year=year, **kwargs)
        session.add(movie)
        session.flush()
        return movie
    return factory


@pytest.fixture
def link(session):
    def factory(movie, media_file, matched_by=MatchedBy.RADARR_API, confidence=1.0):
        movie_file = MovieFile(movie=movie, media_file=media_file, matched_by=matched_by.value, confidence=confidence)
        session.add(movie_file)
        session.flush()
        return movie_file
    return factory


@pytest.fixture
def radarr_instance(session):
    instance = RadarrInstance(name="main", url="http://radarr:7878", api_key="secret", is_active=True)
    session.add(instance)
    session.flush()
    return instance


@pytest.fixture
def radarr_client():
    """Mock RadarrClient with empty defaults."""
    client = Mock()
    client.get_root_folders.return_value = []
    client.get_movie_files.return_value = []
    client.get_history.return_value = []
    client.get_movies.return_value = []
    return client


@pytest.fixture
def radarr_factory(radarr_client):
    return lambda instance: radarr_client

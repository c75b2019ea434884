"""Tests for the external service clients."""

from unittest.mock import Mock

import pytest
import requests

from reclaim_arr.api.qbit_client import QBittorrentClient
from reclaim_arr.api.radarr_client import RadarrClient
from reclaim_arr.api.tmdb_client import TmdbClient
from reclaim_arr.api.watcher_client import WatcherClient
from reclaim_arr.config import (
    ClientPathMapping,
    PathsConfig,
    QBittorrentConfig,
    TmdbConfig,
    WatcherConfig,
)
from reclaim_arr.db.models import RadarrInstance
from reclaim_arr.exceptions import ExternalServiceError


def _response(payload):
    response = Mock()
    response.json.return_value = payload
    return response


class TestTmdbClient:

    def test_search_parses_results(self):
        http = Mock()
        http.get.return_value = _response({"results": [
            {"id": 949, "title": "Heat", "release_date": "1995-12-15", "poster_path": "/p.jpg"},
            {"title": "missing id"},
        ]})
        client = TmdbClient(TmdbConfig(api_key="k"), session=http)

        results = client.search("Heat", 1995)

        assert [(r.id, r.year) for r in results] == [(949, 1995)]
        assert results[0].poster_url == "https://image.tmdb.org/t/p/w500/p.jpg"
        assert http.get.call_args.kwargs["params"]["year"] == 1995

    def test_get_movie_details(self):
        http = Mock()
        http.get.return_value = _response({
            "title": "Heat",
            "genres": [{"name": "Crime"}, {"name": "Thriller"}],
            "vote_average": 7.94,
            "runtime": 170,
        })
        movie = TmdbClient(TmdbConfig(api_key="k"), session=http).get_movie(949)

        assert movie.genres == "Crime, Thriller"
        assert movie.rating == 7.9
        assert movie.runtime_minutes == 170

    def test_unconfigured_client_does_not_call_out(self):
        http = Mock()
        client = TmdbClient(TmdbConfig(api_key=""), session=http)

        assert client.search("Heat") == []
        assert client.get_movie(949) is None
        http.get.assert_not_called()

    def test_http_errors_become_service_errors(self):
        http = Mock()
        http.get.side_effect = requests.ConnectionError("no route")

        with pytest.raises(ExternalServiceError) as excinfo:
            TmdbClient(TmdbConfig(api_key="k"), session=http).search("Heat")
        assert excinfo.value.service == "tmdb"


class TestWatcherClient:

    def test_request_replacement_posts_command(self):
        http = Mock()
        http.post.return_value = Mock(ok=True)
        client = WatcherClient(WatcherConfig(url="http://watcher:8081/", auth_token="t"), session=http)

        assert client.request_replacement(3, "/src.mkv", "/dst.mkv", "/mnt/player") is True

        args, kwargs = http.post.call_args
        assert args[0] == "http://watcher:8081/internal/commands"
        assert kwargs["headers"] == {"X-Internal-Token": "t"}
        assert kwargs["json"]["type"] == "command.files.hardlink"
        data = kwargs["json"]["data"]
        assert (data["deletion_id"], data["source_path"], data["target_path"], data["volume_path"]) == (
            "3", "/src.mkv", "/dst.mkv", "/mnt/player"
        )
        assert data["request_id"]

    def test_refusal_and_transport_errors_return_false(self):
        http = Mock()
        http.post.return_value = Mock(ok=False, status_code=503)
        client = WatcherClient(WatcherConfig(), session=http)
        assert client.request_replacement(1, "a", "b", "c") is False

        http.post.side_effect = requests.Timeout("slow")
        assert client.request_replacement(1, "a", "b", "c") is False


class TestRadarrClient:

    @pytest.fixture
    def client(self):
        instance = RadarrInstance(name="main", url="http://radarr:7878", api_key="k")
        client = RadarrClient(instance, PathsConfig(remote_path_base="/movies", local_path_base="/mnt/data/movies"))
        client._client = Mock()
        return client

    def test_root_folders_are_remapped(self, client):
        client._client.get_root_folder.return_value = [{"path": "/movies"}, {"path": "/other"}, {}]

        assert client.get_root_folders() == ["/mnt/data/movies", "/other"]

    def test_movie_files_accept_single_dict(self, client):
        client._client.get_movie_files_by_movie_id.return_value = {
            "path": "/movies/Heat (1995)/Heat.mkv", "relativePath": "Heat.mkv", "size": 7,
        }

        files = client.get_movie_files(7)

        assert [(f.path, f.size) for f in files] == [("/mnt/data/movies/Heat (1995)/Heat.mkv", 7)]

    def test_history_keeps_grabs_with_ids(self, client):
        client._client.get_history.return_value = {"records": [
            {"downloadId": "ABC", "movieId": 1},
            {"downloadId": None, "movieId": 2},
        ]}

        assert [(r.download_id, r.movie_id) for r in client.get_history()] == [("ABC", 1)]

    def test_movies_map_ratings_and_posters(self, client):
        client._client.get_movie.return_value = [{
            "id": 1, "title": "Heat", "tmdbId": 949, "monitored": True, "hasFile": True,
            "ratings": {"tmdb": {"value": 7.9}},
            "images": [{"coverType": "fanart", "url": "f"}, {"coverType": "poster", "remoteUrl": "p"}],
        }]

        movie = client.get_movies()[0]

        assert (movie.tmdb_id, movie.rating, movie.poster_url, movie.monitored) == (949, 7.9, "p", True)

    def test_update_monitoring(self, client):
        client._client.get_movie.return_value = {"id": 1, "monitored": True}

        client.update_monitoring(1, False)

        client._client.upd_movie.assert_called_once_with({"id": 1, "monitored": False})

    def test_failures_become_service_errors(self, client):
        client._client.del_movie.side_effect = RuntimeError("500")

        with pytest.raises(ExternalServiceError) as excinfo:
            client.dereference(1)
        assert excinfo.value.service == "radarr"


class TestQBittorrentClient:

    @pytest.fixture
    def client(self):
        config = QBittorrentConfig(
            host="qbit",
            path_mappings=[ClientPathMapping(client="/downloads", host="/mnt/data/torrents")],
        )
        client = QBittorrentClient(config)
        client._client = Mock()
        return client

    def test_list_torrents_falls_back_to_tracker_list(self, client):
        client._client.torrents_info.return_value = [
            {"hash": "aa", "name": "Heat", "tracker": "https://t.example/a", "ratio": 1.5, "state": "uploading"},
            {"hash": "bb", "name": "Alien", "tracker": ""},
        ]
        client._client.torrents_trackers.return_value = [Mock(url="** [DHT] **"), Mock(url="udp://u.example:80")]

        torrents = client.list_torrents()

        assert [(t.hash, t.tracker) for t in torrents] == [
            ("aa", "https://t.example/a"),
            ("bb", "udp://u.example:80"),
        ]

    def test_tracker_lookup_failure_leaves_tracker_unknown(self, client):
        client._client.torrents_info.return_value = [
            {"hash": "aa", "name": "Heat", "tracker": "https://t.example/a"},
            {"hash": "bb", "name": "Alien", "tracker": ""},
        ]
        client._client.torrents_trackers.side_effect = RuntimeError("404 torrent gone")

        torrents = client.list_torrents()

        assert [(t.hash, t.tracker) for t in torrents] == [("aa", "https://t.example/a"), ("bb", None)]

    def test_list_files(self, client):
        client._client.torrents_files.return_value = [Mock(size=3)]
        client._client.torrents_files.return_value[0].name = "Heat/Heat.mkv"

        assert [(f.name, f.size) for f in client.list_files("aa")] == [("Heat/Heat.mkv", 3)]

    def test_listing_failure_is_a_service_error(self, client):
        client._client.torrents_info.side_effect = RuntimeError("403")

        with pytest.raises(ExternalServiceError):
            client.list_torrents()

    @pytest.mark.parametrize("path,expected", [
        ("/downloads/Heat (1995)", "/mnt/data/torrents/Heat (1995)"),
        ("/downloads", "/mnt/data/torrents"),
        ("/downloads-old/Heat", "/downloads-old/Heat"),
    ])
    def test_map_client_path_to_host(self, client, path, expected):
        assert client.map_client_path_to_host(path) == expected

    def test_is_configured(self):
        assert not QBittorrentClient(QBittorrentConfig(host="")).is_configured()

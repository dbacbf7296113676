import itertools

import httpx
import pytest
from psycopg2.errors import UniqueViolation

from services.catalog_api import config
from services.catalog_api.routes import music
from services.catalog_api.routes.music import slugify
from services.common.runtime_utils import build_http_client

ORACLE_BASE = "https://objectstorage.test/p/abc/n/ns/b/music/o/"

TRACKS = [
    {"id": 1, "title": "One", "file_path": "music/tracks/4/1_one.mp3"},
    {"id": 2, "title": "Two", "file_path": "music/tracks/4/2_two.mp3"},
]


@pytest.mark.parametrize(
    "name, slug",
    [("Daft Punk", "daft-punk"), ("  AC/DC!! ", "ac-dc"), ("???", "artist")],
)
def test_slugify(name: str, slug: str) -> None:
    assert slugify(name) == slug


# ── Browse ──────────────────────────────────────────────────────────

def test_list_artists_clamps_paging(client, fake_db) -> None:
    fake_db.on("FROM artists ORDER BY", [{"id": 4, "name": "Daft Punk"}])

    response = client.get("/api/music/artists", params={"limit": 500, "offset": -3})

    assert response.json() == {"data": [{"id": 4, "name": "Daft Punk"}], "paging": {"limit": 50, "offset": 0}}
    (_, _, params), = fake_db.statements("FROM artists ORDER BY")
    assert params == (50, 0)


def test_get_artist_with_playlists(client, fake_db) -> None:
    fake_db.on("FROM artists WHERE id", {"id": 4, "name": "Daft Punk"})
    fake_db.on("FROM playlists WHERE artist_id", [{"id": 11, "name": "Discovery"}])

    response = client.get("/api/music/artists/4")

    assert response.json() == {
        "data": {"id": 4, "name": "Daft Punk"},
        "playlists": [{"id": 11, "name": "Discovery"}],
    }


def test_get_unknown_artist(client) -> None:
    response = client.get("/api/music/artists/4")

    assert response.status_code == 404
    assert response.json() == {"message": "Artist not found"}


def test_playlist_tracks_get_cached_signed_urls(client, fake_db, r2) -> None:
    fake_db.on("FROM playlists WHERE id", {"id": 11, "artist_id": 4, "name": "Discovery"})
    fake_db.on("FROM playlist_tracks pt", TRACKS)

    first = client.get("/api/music/playlists/11").json()
    second = client.get("/api/music/playlists/11").json()

    assert first["data"]["name"] == "Discovery"
    assert [t["stream_url"] for t in first["tracks"]] == [
        "https://signed.test/music/tracks/4/1_one.mp3?op=get_object&expires=3600",
        "https://signed.test/music/tracks/4/2_two.mp3?op=get_object&expires=3600",
    ]
    assert second == first
    assert len(r2.client.presigned) == 2


def test_playlist_tracks_use_oracle_when_configured(client, fake_db, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "ORACLE_MUSIC_BASE_URL", ORACLE_BASE)
    fake_db.on("FROM playlists WHERE id", {"id": 11, "artist_id": 4, "name": "Discovery"})
    fake_db.on("FROM playlist_tracks pt", TRACKS[:1])

    response = client.get("/api/music/playlists/11")

    assert response.json()["tracks"][0]["stream_url"] == ORACLE_BASE + "music/tracks/4/1_one.mp3"


def test_get_unknown_playlist(client) -> None:
    assert client.get("/api/music/playlists/11").status_code == 404


def test_get_track_without_file(client, fake_db) -> None:
    fake_db.on("FROM tracks WHERE id", {"id": 1, "title": "One", "file_path": None})

    response = client.get("/api/music/tracks/1")

    assert response.json() == {"data": {"id": 1, "title": "One", "file_path": None, "stream_url": None}}


# ── Oracle PAR ──────────────────────────────────────────────────────

def test_oracle_presign_requires_configuration(client, admin_headers) -> None:
    response = client.post("/api/music/oracle/presign", json={"filename": "a.mp3"}, headers=admin_headers)

    assert response.status_code == 500
    assert response.json() == {"message": "ORACLE_MUSIC_BASE_URL not configured"}


def test_oracle_presign_track(client, admin_headers, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "ORACLE_MUSIC_BASE_URL", ORACLE_BASE)

    response = client.post(
        "/api/music/oracle/presign",
        json={"type": "track", "artistId": "4", "filename": "My Song.mp3"},
        headers=admin_headers,
    )

    body = response.json()
    assert body["file_path"].startswith("music/tracks/4/")
    assert body["file_path"].endswith("_My Song.mp3")
    assert body["upload_url"] == body["public_url"]
    assert body["upload_url"].startswith(ORACLE_BASE + "music/tracks/4/")


def test_oracle_presign_requires_filename(client, admin_headers, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "ORACLE_MUSIC_BASE_URL", ORACLE_BASE)

    response = client.post("/api/music/oracle/presign", json={"type": "track"}, headers=admin_headers)

    assert response.status_code == 400
    assert response.json() == {"message": "filename required"}


def test_oracle_diagnostics(client, admin_headers, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "ORACLE_MUSIC_BASE_URL", ORACLE_BASE)
    transport = httpx.MockTransport(lambda request: httpx.Response(403, text="PAR expired"))
    monkeypatch.setattr(music, "_diagnostics_client", lambda: build_http_client(transport=transport))

    response = client.post("/api/music/oracle/diagnostics", headers=admin_headers)

    body = response.json()
    assert body["diagnosis"] == "forbidden (PAR expired or invalid)"
    assert body["result"]["status"] == 403
    assert body["result"]["body"] == "PAR expired"


# ── Admin writes ────────────────────────────────────────────────────

def test_create_artist_derives_slug(client, fake_db, admin_headers) -> None:
    fake_db.on(
        "INSERT INTO artists",
        lambda params: {"id": 4, "name": params[0], "slug": params[1], "image_url": params[2]},
    )

    response = client.post("/api/music/artists", data={"name": "Daft Punk"}, headers=admin_headers)

    assert response.status_code == 201
    assert response.json()["data"] == {"id": 4, "name": "Daft Punk", "slug": "daft-punk", "image_url": None}


def test_create_artist_requires_name(client, admin_headers) -> None:
    response = client.post("/api/music/artists", data={"name": " "}, headers=admin_headers)

    assert response.status_code == 400
    assert response.json() == {"message": "name required"}


def test_create_artist_with_image_upload(client, fake_db, admin_headers, r2) -> None:
    fake_db.on(
        "INSERT INTO artists",
        lambda params: {"id": 4, "name": params[0], "slug": params[1], "image_url": params[2]},
    )

    response = client.post(
        "/api/music/artists",
        data={"name": "Daft Punk"},
        files={"image": ("face.png", b"png", "image/png")},
        headers=admin_headers,
    )

    assert response.status_code == 201
    assert response.json()["data"]["image_url"].startswith("https://cdn.test/music/artists/")
    (key,) = r2.client.objects
    assert key.endswith("_face.png")


def test_create_artist_duplicate_slug(client, fake_db, admin_headers) -> None:
    fake_db.on("INSERT INTO artists", UniqueViolation("duplicate key"))

    response = client.post("/api/music/artists", data={"name": "Daft Punk"}, headers=admin_headers)

    assert response.status_code == 409
    assert fake_db.rollbacks == 1


def test_create_playlist(client, fake_db, admin_headers) -> None:
    fake_db.on("FROM artists WHERE id", {"id": 4})
    fake_db.on("INSERT INTO playlists", {"id": 11, "artist_id": 4, "name": "Discovery"})

    response = client.post("/api/music/artists/4/playlists", json={"name": "Discovery"}, headers=admin_headers)

    assert response.status_code == 201
    assert response.json()["data"]["id"] == 11


def test_create_playlist_for_unknown_artist(client, admin_headers) -> None:
    response = client.post("/api/music/artists/4/playlists", json={"name": "Discovery"}, headers=admin_headers)

    assert response.status_code == 404


def _track_rows(fake_db) -> None:
    ids = itertools.count(100)
    fake_db.on("INSERT INTO tracks", lambda params: {"id": next(ids), "title": params[1], "file_url": params[3]})


def test_tracks_meta_records_oracle_uploads(client, fake_db, admin_headers, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "ORACLE_MUSIC_BASE_URL", ORACLE_BASE)
    fake_db.on("FROM artists WHERE id", {"id": 4})
    fake_db.on("INSERT INTO playlists", {"id": 11})
    _track_rows(fake_db)

    response = client.post(
        "/api/music/artists/4/tracks-meta",
        json={
            "tracks": [
                {"title": "One", "file_path": "music/tracks/4/1_one.mp3", "release_date": "2001-03-12"},
                {"title": "Two", "file_path": "music/tracks/4/2_two.mp3"},
            ],
            "createPlaylistName": "Discovery",
        },
        headers=admin_headers,
    )

    assert response.status_code == 201
    body = response.json()
    assert body["playlist_id"] == 11
    assert [t["file_url"] for t in body["data"]] == [
        ORACLE_BASE + "music/tracks/4/1_one.mp3",
        ORACLE_BASE + "music/tracks/4/2_two.mp3",
    ]
    positions = [params for _, _, params in fake_db.statements("INSERT INTO playlist_tracks")]
    assert positions == [(11, 100, 1), (11, 101, 2)]
    assert fake_db.commits == 1


def test_tracks_meta_requires_tracks(client, admin_headers) -> None:
    response = client.post("/api/music/artists/4/tracks-meta", json={"tracks": []}, headers=admin_headers)

    assert response.status_code == 400
    assert response.json() == {"message": "tracks required"}


def test_upload_tracks_to_r2(client, fake_db, admin_headers, r2) -> None:
    fake_db.on("FROM artists WHERE id", {"id": 4})
    _track_rows(fake_db)

    response = client.post(
        "/api/music/artists/4/tracks",
        data={"titles": ["One", "Two"], "durations": ["215", "nope"], "playlistId": "11"},
        files=[
            ("tracks", ("one.mp3", b"aaa", "audio/mpeg")),
            ("tracks", ("two.mp3", b"bbbb", "audio/mpeg")),
        ],
        headers=admin_headers,
    )

    assert response.status_code == 201
    assert [t["title"] for t in response.json()["data"]] == ["One", "Two"]
    inserts = [params for _, _, params in fake_db.statements("INSERT INTO tracks")]
    assert [p[2] for p in inserts] == [215, 0]
    assert [p[6] for p in inserts] == [3, 4]
    assert all(p[4].startswith("music/tracks/4/") for p in inserts)
    assert len(r2.client.objects) == 2
    positions = [params for _, _, params in fake_db.statements("INSERT INTO playlist_tracks")]
    assert positions == [(11, 100, 1), (11, 101, 2)]


def test_upload_tracks_rejects_non_audio(client, fake_db, admin_headers, r2) -> None:
    fake_db.on("FROM artists WHERE id", {"id": 4})

    response = client.post(
        "/api/music/artists/4/tracks",
        files=[("tracks", ("cover.png", b"png", "image/png"))],
        headers=admin_headers,
    )

    assert response.status_code == 400
    assert response.json() == {"message": "Invalid audio type"}
    assert r2.client.objects == {}


def test_add_track_to_playlist(client, fake_db, admin_headers) -> None:
    fake_db.on("FROM playlists WHERE id", {"id": 11})

    response = client.put(
        "/api/music/playlists/11/add-track", json={"track_id": 100, "position": 3}, headers=admin_headers
    )

    assert response.json() == {"ok": True}
    (_, _, params), = fake_db.statements("INSERT INTO playlist_tracks")
    assert params == (11, 100, 3)


def test_delete_track_removes_object_and_clears_url(client, fake_db, admin_headers, r2) -> None:
    fake_db.on("SELECT file_path FROM tracks", {"file_path": "music/tracks/4/1_one.mp3"})

    response = client.delete("/api/music/tracks/1", headers=admin_headers)

    assert response.json() == {"ok": True}
    assert r2.client.deleted == ["music/tracks/4/1_one.mp3"]
    (_, _, params), = fake_db.statements("UPDATE tracks SET file_url = NULL")
    assert params == (1,)


def test_delete_track_keeps_oracle_objects(client, fake_db, admin_headers, r2, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "ORACLE_MUSIC_BASE_URL", ORACLE_BASE)
    fake_db.on("SELECT file_path FROM tracks", {"file_path": "music/tracks/4/1_one.mp3"})

    response = client.delete("/api/music/tracks/1", headers=admin_headers)

    assert response.json() == {"ok": True}
    assert r2.client.deleted == []


def test_upload_tracks_removes_earlier_objects_when_a_later_upload_fails(
    client, fake_db, admin_headers, r2, monkeypatch
) -> None:
    fake_db.on("FROM artists WHERE id", {"id": 4})
    _track_rows(fake_db)
    put_object = r2.client.put_object

    def fail_second(**kwargs):
        if r2.client.objects:
            r2.client.fail_with = "SlowDown"
        try:
            return put_object(**kwargs)
        finally:
            r2.client.fail_with = None

    monkeypatch.setattr(r2.client, "put_object", fail_second)

    response = client.post(
        "/api/music/artists/4/tracks",
        files=[
            ("tracks", ("one.mp3", b"aaa", "audio/mpeg")),
            ("tracks", ("two.mp3", b"bbbb", "audio/mpeg")),
        ],
        headers=admin_headers,
    )

    assert response.status_code == 500
    assert response.json()["message"] == "Upload failed"
    assert len(r2.client.deleted) == 1
    assert r2.client.deleted[0].startswith("music/tracks/4/")
    assert r2.client.objects == {}
    assert fake_db.commits == 0

"""Tests for the local background music library."""

import json

import pytest

from scene_assembler.services.music_library import MusicLibrary


@pytest.fixture
def library(temp_output_dir):
    public_root = temp_output_dir / "public"
    library_dir = public_root / "audio" / "background-music"
    library_dir.mkdir(parents=True)
    (library_dir / "peaceful-morning.mp3").write_bytes(b"ID3")
    (library_dir / "upbeat_drive.wav").write_bytes(b"RIFF")
    (library_dir / "notes.txt").write_text("not audio")
    (library_dir / "catalog.json").write_text(json.dumps({
        "tracks": [
            {
                "id": "peaceful-morning",
                "title": "Peaceful Morning",
                "duration": 120,
                "genre": ["ambient"],
                "mood": ["calm", "happy"],
                "file_path": "/audio/background-music/peaceful-morning.mp3",
            },
            {
                "id": "epic-rise",
                "title": "Epic Rise",
                "duration": 45,
                "genre": ["cinematic"],
                "mood": ["energetic"],
                "file_path": "/audio/background-music/epic-rise.mp3",
            },
        ]
    }))
    return MusicLibrary(library_dir=str(library_dir), public_root=str(public_root))


class TestMusicLibrary:
    """Tests for catalog loading and track lookup."""

    def test_catalog_merged_with_discovered_files(self, library):
        ids = [t.id for t in library.all_tracks()]
        assert ids == ["peaceful-morning", "epic-rise", "upbeat_drive"]

    def test_discovered_track_metadata(self, library):
        track = library.get_track("upbeat_drive")
        assert track.title == "Upbeat Drive"
        assert track.file_path == "/audio/background-music/upbeat_drive.wav"

    def test_track_file_path(self, library):
        path = library.get_track_file_path("peaceful-morning")
        assert path is not None and path.name == "peaceful-morning.mp3"

    def test_catalogued_track_with_missing_file(self, library):
        assert library.get_track("epic-rise") is not None
        assert library.get_track_file_path("epic-rise") is None

    def test_unknown_track(self, library):
        assert library.get_track("nope") is None
        assert library.get_track_file_path("nope") is None

    def test_search(self, library):
        assert [t.id for t in library.search(mood=["calm"])] == ["peaceful-morning"]
        assert [t.id for t in library.search(genre=["cinematic", "ambient"])] == ["peaceful-morning", "epic-rise"]
        assert [t.id for t in library.search(min_duration=60)] == ["peaceful-morning"]
        assert [t.id for t in library.search(max_duration=60)] == ["epic-rise"]
        assert len(library.search(max_results=1)) == 1

    def test_invalid_catalog(self, temp_output_dir):
        library_dir = temp_output_dir / "broken"
        library_dir.mkdir()
        (library_dir / "catalog.json").write_text("{not json")
        library = MusicLibrary(library_dir=str(library_dir), public_root=str(temp_output_dir))
        with pytest.raises(ValueError, match="Failed to load music catalog"):
            library.all_tracks()

    def test_missing_directory_is_empty(self, temp_output_dir):
        library = MusicLibrary(library_dir=str(temp_output_dir / "nope"), public_root=str(temp_output_dir))
        assert library.all_tracks() == []

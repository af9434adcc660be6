"""Tests for environment-driven settings."""

from scene_assembler.config import Settings


class TestSettings:
    """Tests for Settings defaults and overrides."""

    def test_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.segment_timeout_s == 120
        assert settings.music_download_timeout_s == 5
        assert settings.concat_audio_sample_rate == 44100
        assert settings.concat_audio_channels == 2

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("SCENE_ASSEMBLER_SEGMENT_TIMEOUT_S", "30")
        monkeypatch.setenv("SCENE_ASSEMBLER_PRESERVE_DEBUG_SEGMENTS", "false")
        settings = Settings(_env_file=None)
        assert settings.segment_timeout_s == 30
        assert settings.preserve_debug_segments is False

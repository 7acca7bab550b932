"""Tests for the beatmap descriptor decoder, rulesets and progress notifications."""

from __future__ import annotations

from io import BytesIO

import pytest

from BeatmapLibrary.decoding import Beatmap, HitObject, LegacyBeatmapDecoder, get_decoder
from BeatmapLibrary.errors import DecodeError
from BeatmapLibrary.models import RulesetInfo
from BeatmapLibrary.notifications import ProgressNotification, ProgressState
from BeatmapLibrary.rulesets import DensityDifficultyCalculator, DifficultyCalculator, RulesetStore
from tests.beatmap_library.builders import make_osu


def _decode(data: bytes) -> Beatmap:
    return get_decoder().decode(BytesIO(data))


class TestLegacyDecoder:
    """Parsing of ``osu file format vN`` descriptors."""

    def test_sections(self):
        beatmap = _decode(make_osu("Insane", mode=3, hit_objects=3))

        assert beatmap.format_version == 14
        assert beatmap.beatmap_info.version == "Insane"
        assert beatmap.beatmap_info.ruleset_id == 3
        assert beatmap.metadata.title == "Test Song"
        assert beatmap.metadata.author == "Mapper"
        assert beatmap.metadata.audio_file == "audio.mp3"
        assert beatmap.metadata.background_file == "bg.jpg"
        assert beatmap.metadata.preview_time == 1000
        assert beatmap.metadata.online_beatmap_set_id == 1001
        assert beatmap.difficulty.approach_rate == 8.0
        assert beatmap.timing_points == [(0.0, 500.0)]
        assert beatmap.hit_objects[1] == HitObject(x=64, y=192, start_time=1500.0, type=1)

    def test_bom_and_comments(self):
        data = b"\xef\xbb\xbfosu file format v9\n// comment\n[Metadata]\nTitle:Bom\n"

        beatmap = _decode(data)

        assert beatmap.format_version == 9
        assert beatmap.metadata.title == "Bom"

    def test_missing_preview_time_defaults(self):
        beatmap = _decode(b"osu file format v14\n[General]\nAudioFilename: a.mp3\n")

        assert beatmap.metadata.preview_time == -1

    def test_missing_header(self):
        with pytest.raises(DecodeError):
            _decode(b"[General]\nAudioFilename: a.mp3\n")

    def test_bad_version(self):
        with pytest.raises(DecodeError):
            _decode(b"osu file format vX\n")

    def test_malformed_hit_object(self):
        with pytest.raises(DecodeError):
            _decode(b"osu file format v14\n[HitObjects]\n1,2,three,1\n")

    def test_malformed_difficulty(self):
        with pytest.raises(DecodeError):
            _decode(b"osu file format v14\n[Difficulty]\nApproachRate:fast\n")

    def test_not_utf8(self):
        with pytest.raises(DecodeError):
            _decode(b"osu file format v14\n[Metadata]\nTitle:\xff\xfe\n")

    def test_decode_into_layers_storyboard(self):
        decoder = LegacyBeatmapDecoder()
        beatmap = decoder.decode(BytesIO(make_osu()))

        decoder.decode_into(BytesIO(b"[Events]\nSprite,Background,Centre,\"x.png\",0,0\n"), beatmap)

        assert beatmap.storyboard == ['Sprite,Background,Centre,"x.png",0,0']
        assert beatmap.metadata.background_file == "bg.jpg"


class TestRulesets:
    """Ruleset registry and difficulty calculation."""

    def test_default_rulesets(self):
        store = RulesetStore()

        assert [r.short_name for r in store.all()] == ["osu", "taiko", "fruits", "mania"]

    def test_unavailable_ruleset_hidden(self):
        store = RulesetStore([RulesetInfo(id=5, name="Custom", short_name="custom", available=False)])

        assert store.get(5) is None
        assert store.get(0) is None

    def test_density_calculator(self):
        beatmap = _decode(make_osu(hit_objects=4))

        assert DensityDifficultyCalculator(beatmap).calculate() == pytest.approx(4.53)

    def test_single_object_is_zero(self):
        beatmap = _decode(make_osu(hit_objects=1))

        assert DensityDifficultyCalculator(beatmap).calculate() == 0.0

    def test_custom_calculator(self):
        class Fixed(DifficultyCalculator):
            def calculate(self):
                return 7.0

        store = RulesetStore()
        store.register(RulesetInfo(id=9, name="Fixed", short_name="fixed"), Fixed)
        ruleset = store.get(9)

        calculator = store.create_difficulty_calculator(ruleset, Beatmap())

        assert calculator.calculate() == 7.0


class TestProgressNotification:
    """State transitions of progress notifications."""

    def test_cancel_then_complete(self):
        notification = ProgressNotification()
        notification.cancel()
        notification.complete()

        assert notification.state == ProgressState.CANCELLED

    def test_progress_clamped(self):
        notification = ProgressNotification()
        notification.update("too far", 1.5)

        assert notification.progress == 1.0
        assert notification.text == "too far"

import pytest

from render_api import storage
from render_api.errors import ValidationError
from render_api.payload import (
    BinauralLayer,
    MusicLayer,
    SolfeggioLayer,
    VoiceLayer,
    check_headroom,
    parse_payload,
)
from render_api.tracks import config_from_payload, payload_from_config


def test_defaults():
    p = parse_payload({"script": "Relax."})
    assert p.duration_min == 5
    assert p.pause_sec == 5
    assert p.loop_mode is True
    assert (p.gains.master, p.gains.voice, p.gains.music) == (0, -1, -10)
    assert (p.gains.solfeggio, p.gains.binaural) == (-18, -20)
    assert [type(layer) for layer in p.layers()] == [VoiceLayer]


def test_layers_follow_enabled_sections():
    p = parse_payload(
        {
            "script": "Relax.",
            "backgroundMusic": {"id": "rain"},
            "solfeggio": {"enabled": False, "hz": 528},
            "binaural": {"enabled": True, "band": "gamma"},
        }
    )
    layers = p.layers()
    assert [type(layer) for layer in layers] == [VoiceLayer, MusicLayer, BinauralLayer]
    assert layers[2].beat_hz == 40
    assert not any(isinstance(layer, SolfeggioLayer) for layer in layers)


@pytest.mark.parametrize(
    "data",
    [
        {"script": ""},
        {"script": "x", "durationMin": 31},
        {"script": "x", "voice": {"speed": 2.0}},
        {"script": "x", "solfeggio": {"hz": 440}},
        {"script": "x", "binaural": {"band": "epsilon"}},
        {"script": "x", "binaural": {"band": "alpha", "carrierHz": 50}},
        {"script": "x", "gains": {"solfeggio": -3}},
        {"script": "x", "format": "flac"},
    ],
)
def test_invalid_payloads(data):
    with pytest.raises(ValidationError) as exc:
        parse_payload(data)
    assert exc.value.errors


def test_headroom_warns_per_active_layer():
    p = parse_payload(
        {
            "script": "x",
            "solfeggio": {"enabled": True, "hz": 174},
            "gains": {"master": 3, "voice": 1, "solfeggio": -6},
        }
    )
    assert [w.layer for w in check_headroom(p)] == ["voice"]
    assert check_headroom(parse_payload({"script": "x"})) == []


def test_config_round_trip_keeps_the_render_inputs():
    data = {
        "script": "x",
        "voice": {"provider": "elevenlabs", "id": "voice-123", "model": "eleven_turbo_v2", "speed": 0.8},
        "durationMin": 12,
        "loopMode": False,
        "startDelaySec": 15,
        "backgroundMusic": {"id": "rain", "name": "Rain", "url": "music/rain.mp3"},
        "binaural": {"enabled": True, "band": "beta", "beatHz": 18, "carrierHz": 300},
        "gains": {"music": -16},
        "format": "wav",
    }
    p = parse_payload(data)
    again = payload_from_config(p.script, config_from_payload(p))
    assert again.to_wire() == p.to_wire()


class TestStorage:
    def test_upload_writes_file_and_returns_url(self, media_dir):
        url = storage.upload(b"abc", storage.render_path("t1", 7, "mp3"))
        assert url == "https://cdn.test/media/renders/t1/7.mp3"
        assert (media_dir / "renders" / "t1" / "7.mp3").read_bytes() == b"abc"

    @pytest.mark.parametrize("path", ["/etc/passwd", "../escape.mp3", "t1/../../x.mp3"])
    def test_upload_rejects_paths_outside_the_media_dir(self, path):
        with pytest.raises(ValueError):
            storage.upload(b"abc", path)

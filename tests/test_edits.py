import pytest

from render_api import edits, jobs
from render_api.database import db, set_config
from render_api.errors import EditConflict, PaymentRequired, TrackArchived, TrackNotFound, ValidationError
from render_api.tracks import create_track, get_track, payload_from_config


@pytest.fixture
def track_id(payload):
    payload = {
        **payload,
        "solfeggio": {"enabled": True, "hz": 528},
        "binaural": {"enabled": True, "band": "theta"},
        "gains": {"voice": -2, "solfeggio": -20},
    }
    track_id, _, _ = create_track("owner", "Evening wind-down", payload)
    return track_id


def set_edit_count(track_id, n):
    with db() as conn:
        conn.execute("UPDATE tracks SET edit_count=? WHERE id=?", (n, track_id))


def test_free_edit_merges_and_requeues(track_id):
    result = edits.request_edit(track_id, "owner", {"gains": {"voice": 1.5}, "voiceSpeed": 0.9})

    track = get_track(track_id)
    assert result.edit_count == 1
    assert track.edit_count == 1
    assert track.status == "draft"
    assert track.gain_config["voice"] == 1.5
    # untouched values carry over
    assert track.gain_config["solfeggio"] == -20
    assert track.voice_config["speed"] == 0.9

    job = jobs.get_job(result.job_id)
    assert job.status == "pending"
    assert job.payload["gains"]["voice"] == 1.5
    assert job.payload["voice"]["speed"] == 0.9
    assert job.payload["binaural"]["band"] == "theta"


def test_paid_edit_requires_token(track_id):
    set_edit_count(track_id, 3)

    with pytest.raises(PaymentRequired) as exc:
        edits.request_edit(track_id, "owner", {"gains": {"master": -3}})
    assert exc.value.edit_count == 3
    assert exc.value.fee_cents == 99
    assert get_track(track_id).edit_count == 3

    result = edits.request_edit(track_id, "owner", {"gains": {"master": -3}}, payment_token="tok_123")
    assert result.edit_count == 4
    assert get_track(track_id).edit_count == 4


def test_rejected_payment_token(track_id):
    set_edit_count(track_id, 3)
    with pytest.raises(PaymentRequired):
        edits.request_edit(
            track_id, "owner", {"durationMin": 2}, payment_token="tok", verify_payment=lambda *_: False
        )


def test_free_edit_limit_comes_from_config(track_id):
    set_config("free_edit_limit", "1")
    edits.request_edit(track_id, "owner", {"startDelaySec": 5})
    with pytest.raises(PaymentRequired):
        edits.request_edit(track_id, "owner", {"startDelaySec": 10})


def test_original_config_is_written_once(track_id):
    before = get_track(track_id).config_snapshot()

    edits.request_edit(track_id, "owner", {"gains": {"music": -20}})
    edits.request_edit(track_id, "owner", {"gains": {"music": -5}})

    track = get_track(track_id)
    assert track.original_config == before
    assert track.gain_config["music"] == -5


def test_disabling_a_frequency_layer_nulls_it(track_id):
    result = edits.request_edit(track_id, "owner", {"solfeggio": {"enabled": False}})

    track = get_track(track_id)
    assert track.frequency_config["solfeggio"] is None
    assert track.frequency_config["binaural"]["band"] == "theta"
    payload = jobs.get_job(result.job_id).payload
    assert payload["solfeggio"] is None


def test_enabling_binaural_with_new_band_uses_its_default(track_id):
    edits.request_edit(track_id, "owner", {"binaural": {"enabled": True, "band": "delta"}})
    binaural = get_track(track_id).frequency_config["binaural"]
    assert binaural["band"] == "delta"
    assert binaural["beat_hz"] == 2.0


def test_invalid_edit_is_rejected_before_anything_changes(track_id):
    with pytest.raises(ValidationError):
        edits.request_edit(track_id, "owner", {"gains": {"voice": 9}})
    with pytest.raises(ValidationError):
        edits.request_edit(track_id, "owner", {"solfeggio": {"enabled": True, "hz": 440}})
    with pytest.raises(ValidationError):
        edits.request_edit(track_id, "owner", {"tempo": 2})
    assert get_track(track_id).edit_count == 0
    assert len(jobs.list_jobs_for_track(track_id)) == 1


def test_foreign_track_is_not_found(track_id):
    with pytest.raises(TrackNotFound):
        edits.request_edit(track_id, "someone-else", {"voiceSpeed": 1.1})
    with pytest.raises(TrackNotFound):
        edits.edit_eligibility(track_id, "someone-else")


def test_archived_track_cannot_be_edited(track_id):
    with db() as conn:
        conn.execute("UPDATE tracks SET status='archived' WHERE id=?", (track_id,))
    with pytest.raises(TrackArchived):
        edits.request_edit(track_id, "owner", {"voiceSpeed": 1.1})


def test_concurrent_edit_loses_the_compare_and_swap(track_id):
    track = get_track(track_id)
    parsed = edits.parse_edits({"voiceSpeed": 1.2})
    config = edits.merge_edits(track, parsed)
    edits.request_edit(track_id, "owner", {"voiceSpeed": 0.8})

    with pytest.raises(EditConflict):
        edits._persist_and_enqueue(
            track, "owner", config, payload_from_config(track.script, config), count_edit=True
        )
    assert get_track(track_id).voice_config["speed"] == 0.8


def test_eligibility(track_id):
    assert edits.edit_eligibility(track_id, "owner") == {
        "canEdit": True,
        "editCount": 0,
        "freeEditsRemaining": 3,
        "totalFeeCents": 0,
    }
    set_edit_count(track_id, 3)
    info = edits.edit_eligibility(track_id, "owner")
    assert info["freeEditsRemaining"] == 0
    assert info["totalFeeCents"] == 99


def test_restore_original_is_not_counted_as_an_edit(track_id):
    original = get_track(track_id).config_snapshot()
    edits.request_edit(track_id, "owner", {"gains": {"voice": 2}, "solfeggio": {"enabled": False}})

    job_id = edits.restore_original(track_id, "owner")

    track = get_track(track_id)
    assert track.config_snapshot() == original
    assert track.original_config == original
    assert track.edit_count == 1
    assert jobs.get_job(job_id).payload["solfeggio"]["hz"] == 528


def test_restore_without_edits_is_rejected(track_id):
    with pytest.raises(ValidationError):
        edits.restore_original(track_id, "owner")


def test_loud_edit_returns_clipping_warning(track_id):
    result = edits.request_edit(track_id, "owner", {"gains": {"voice": 3, "master": 3}})
    assert [w.layer for w in result.warnings] == ["voice"]


def test_loop_toggle_keeps_the_stored_pause(payload):
    track_id, _, _ = create_track("owner", "Long pauses", {**payload, "pauseSec": 12})

    result = edits.request_edit(track_id, "owner", {"loop": {"enabled": False}})

    loop = get_track(track_id).output_config["loop"]
    assert loop == {"enabled": False, "pause_seconds": 12}
    assert jobs.get_job(result.job_id).payload["pauseSec"] == 12


def test_loop_edit_can_set_a_new_pause(track_id):
    edits.request_edit(track_id, "owner", {"loop": {"enabled": True, "pause_seconds": 20}})
    assert get_track(track_id).output_config["loop"]["pause_seconds"] == 20

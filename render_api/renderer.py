import logging
import os
import shutil
import tempfile
from typing import Callable

from render_api import storage
from render_api.generators import SAMPLE_RATE, binaural_beat, load_music, solfeggio_tone, synthesize_voice
from render_api.mixer import apply_fades, build_voice_track, encode, fit_length, mix
from render_api.models import AudioJob, RenderResult
from render_api.payload import BinauralLayer, JobPayload, MusicLayer, SolfeggioLayer, VoiceLayer, parse_payload

logger = logging.getLogger(__name__)

MUSIC_FADE_IN_SEC = 1.0
MUSIC_FADE_OUT_SEC = 1.5
MASTER_FADE_IN_SEC = 1.0
MASTER_FADE_OUT_SEC = 1.5

Progress = Callable[[int, str], None]


def _render_voice(layer: VoiceLayer, payload: JobPayload, workdir: str, progress: Progress):
    progress(10, "Synthesizing voice")
    voice = synthesize_voice(layer, workdir)
    return build_voice_track(
        voice,
        payload.duration_sec,
        pause_sec=layer.pause_sec,
        start_delay_sec=layer.start_delay_sec,
        loop=layer.loop,
    )


def _render_music(layer: MusicLayer, payload: JobPayload, workdir: str, progress: Progress):
    progress(30, "Preparing background music")
    music = load_music(layer, workdir)
    music = fit_length(music, int(round(payload.duration_sec * SAMPLE_RATE)), loop=True)
    return apply_fades(music, SAMPLE_RATE, MUSIC_FADE_IN_SEC, MUSIC_FADE_OUT_SEC)


def _render_solfeggio(layer: SolfeggioLayer, payload: JobPayload, workdir: str, progress: Progress):
    progress(40, f"Generating solfeggio tone ({layer.hz} Hz)")
    return solfeggio_tone(layer, payload.duration_sec)


def _render_binaural(layer: BinauralLayer, payload: JobPayload, workdir: str, progress: Progress):
    progress(50, f"Generating binaural beat ({layer.band})")
    return binaural_beat(layer, payload.duration_sec)


LAYER_RENDERERS = {
    VoiceLayer: _render_voice,
    MusicLayer: _render_music,
    SolfeggioLayer: _render_solfeggio,
    BinauralLayer: _render_binaural,
}


def render_job(job: AudioJob, progress: Progress) -> RenderResult:
    """Run the full pipeline for one claimed job and upload the artifact."""
    payload = parse_payload(job.payload)
    workdir = tempfile.mkdtemp(prefix=f"render-{job.id}-")
    try:
        buffers = {}
        for layer in payload.layers():
            buffers[layer.name] = LAYER_RENDERERS[type(layer)](layer, payload, workdir, progress)

        master = mix(
            buffers,
            payload.gains,
            num_frames=int(round(payload.duration_sec * SAMPLE_RATE)),
            fade_in_sec=MASTER_FADE_IN_SEC,
            fade_out_sec=MASTER_FADE_OUT_SEC,
            on_stage=progress,
        )

        progress(85, "Encoding")
        out_path = os.path.join(workdir, f"output.{payload.format}")
        encode(master, payload.format, payload.quality, out_path)

        progress(95, "Uploading")
        with open(out_path, "rb") as f:
            data = f.read()
        path = storage.render_path(job.track_id, job.id, payload.format)
        url = storage.upload(data, path)

        return RenderResult(
            url=url,
            path=path,
            duration_sec=master.duration_sec,
            size=len(data),
            format=payload.format,
            layers=master.layers,
        )
    finally:
        shutil.rmtree(workdir, ignore_errors=True)

SOLFEGGIO_FREQUENCIES = {
    174: {"name": "Ease & Grounding", "description": "Physical and mental easing"},
    285: {"name": "Reset & Restore", "description": "Gentle reset feeling"},
    396: {"name": "Release & Momentum", "description": "Letting go of guilt and fear"},
    417: {"name": "Change & Creativity", "description": "Transitions and fresh starts"},
    528: {"name": "Soothing Renewal", "description": "Popular feel-good tone"},
    639: {"name": "Connection & Communication", "description": "Empathy and clearer communication"},
    741: {"name": "Clear & Cleanse", "description": "Mental decluttering"},
    852: {"name": "Intuition & Clarity", "description": "Reflective, intuitive states"},
    963: {"name": "Spacious & Open", "description": "Expansive; quiet mind"},
}

# band -> (low Hz, high Hz), default beat Hz
BINAURAL_BANDS = {
    "delta": {"range": (1.0, 4.0), "name": "Deep Rest", "default_hz": 2.0},
    "theta": {"range": (4.0, 8.0), "name": "Meditative Drift", "default_hz": 6.0},
    "alpha": {"range": (8.0, 13.0), "name": "Relaxed Focus", "default_hz": 10.0},
    "beta": {"range": (14.0, 30.0), "name": "Alert & Engaged", "default_hz": 20.0},
    "gamma": {"range": (30.0, 100.0), "name": "Insight & Integration", "default_hz": 40.0},
}

DEFAULT_CARRIER_HZ = 200.0
CARRIER_RANGE_HZ = (100.0, 1000.0)


def band_range(band: str) -> tuple[float, float]:
    return BINAURAL_BANDS[band]["range"]


def resolve_beat_hz(band: str, beat_hz: float | None = None) -> float:
    """Return the beat frequency for ``band``, using its default when none is given.

    Raises ``ValueError`` for an unknown band or a beat outside the band range.
    """
    if band not in BINAURAL_BANDS:
        raise ValueError(f"Unknown binaural band: {band}")
    if beat_hz is None:
        return BINAURAL_BANDS[band]["default_hz"]
    lo, hi = band_range(band)
    if not (lo <= beat_hz <= hi):
        raise ValueError(f"{band} beat must be within {lo:g}-{hi:g} Hz, got {beat_hz:g}")
    return float(beat_hz)

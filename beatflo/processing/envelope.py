"""Waveform envelopes for the player UI.

These are display approximations. Nothing here is signal analysis: there is
no FFT and no true peak detection, and the synthesized envelopes are a
procedural shape scaled by overall loudness.
"""

from typing import List, Optional, Sequence
import numpy as np


def bucket_levels(levels_db: Sequence[float], samples: int = 200) -> List[float]:
    """Reduce per-frame RMS levels (dB) to ``samples`` bars in [0, 1].

    Frames are converted to linear amplitude, averaged per bucket and
    normalized to the loudest bucket.
    """
    if len(levels_db) == 0 or samples <= 0:
        return []
    amplitude = np.power(10.0, np.asarray(levels_db, dtype=np.float64) / 20.0)
    buckets = np.array_split(amplitude, min(samples, len(amplitude)))
    means = np.array([b.mean() for b in buckets])
    if len(means) < samples:
        # Fewer frames than bars: stretch to the requested resolution
        positions = np.linspace(0, len(means) - 1, samples)
        means = np.interp(positions, np.arange(len(means)), means)
    peak = means.max()
    if peak <= 0:
        return [0.0] * samples
    return [round(float(v), 3) for v in means / peak]


def synthesize_envelope(
    samples: int = 200,
    duration: float = 180.0,
    mean_db: float = -20.0,
    max_db: float = -3.0,
    jitter: float = 0.08,
    rng: Optional[np.random.Generator] = None,
) -> List[float]:
    """Procedural track shape: quiet intro, build, peaked middle, taper.

    The middle section gets a "drop" accent roughly every 30 seconds of
    track time. Overall height follows the mean loudness, the accent
    strength follows the headroom between mean and max volume.
    """
    if samples <= 0:
        return []
    rng = rng or np.random.default_rng()
    t = np.linspace(0.0, 1.0, samples)

    shape = np.empty(samples)
    intro = t < 0.1
    build = (t >= 0.1) & (t < 0.3)
    middle = (t >= 0.3) & (t < 0.85)
    outro = t >= 0.85
    shape[intro] = 0.3 + 3.0 * t[intro]
    shape[build] = 0.6 + 1.25 * (t[build] - 0.1)
    shape[middle] = 0.85
    shape[outro] = 0.85 - 4.0 * (t[outro] - 0.85)

    drops = max(1, int(duration // 30))
    accent = np.clip(np.sin(t * drops * 2 * np.pi), 0.0, None) ** 4
    headroom = np.clip((max_db - mean_db) / 20.0, 0.0, 1.0)
    shape[middle] += 0.15 * headroom * accent[middle]

    loudness = np.clip(1.0 + mean_db / 40.0, 0.4, 1.0)
    noise = rng.uniform(-jitter, jitter, samples)
    envelope = np.clip(shape * loudness + noise, 0.05, 1.0)
    return [round(float(v), 3) for v in envelope]

"""Audio for the theremin: position to sound mapping and real-time sine synthesis.

Two threads meet here. The video (control) thread computes positions and writes
``(amplitude, frequency, enabled)`` into a ``ThereminState``; the audio device's
callback thread pulls samples out of a ``ThereminSource``, which reads that state.
The state is the only thing the two share. Each source owns its own phase.
"""

import copy
import math
import threading
from contextlib import contextmanager
from typing import Callable, Dict, NamedTuple, Optional, Sequence, Tuple

import numpy as np

from aruco_theremin.config import (
    DFLT_AMPLITUDE,
    DFLT_AUDIO_MAPPING,
    DFLT_CHANNELS,
    DFLT_FREQUENCY,
    DFLT_LOCK_TIMEOUT,
    DFLT_MAX_SAMPLE,
    DFLT_SAMPLE_RATE,
    DFLT_VOLUME,
    AudioMappingConfig,
)
from aruco_theremin.util import clamp

TWO_PI = 2 * math.pi


class AudioDeviceError(Exception):
    """Exception raised when the audio output can't be opened."""

    pass


class StateLockError(RuntimeError):
    """Exception raised when the shared theremin state can't be locked in time."""

    pass


# -------------------------------------------------------------------------------
# Position to audio mapping
# -------------------------------------------------------------------------------


class StepMapper:
    """
    A callable class that maps values of a range to a fixed table of outputs,
    cutting the range into equal-width bins.
    Bins are half-open ``[lo, hi)``, except the last one, which includes ``high``.
    Values outside the range get the default.

    >>> mapper = StepMapper((1, 2, 3, 4), low=0, high=1, default=0)
    >>> mapper(0.0), mapper(0.25), mapper(0.49), mapper(1.0)
    (1, 2, 2, 4)
    >>> mapper(1.5)   # Above range
    0
    >>> mapper(-0.1)  # Below range
    0
    """

    def __init__(
        self,
        bins: Sequence[float],
        *,
        low: float = -1.0,
        high: float = 1.0,
        default: Optional[float] = None,
    ):
        if not bins:
            raise ValueError("bins can't be empty")
        self.bins = tuple(bins)
        self.low, self.high = low, high
        self.default = default

        # Precompute the bin edges, so that the lookup is exact at the boundaries
        n_bins = len(self.bins)
        bin_width = (high - low) / n_bins
        self._inner_edges = tuple(
            round(low + k * bin_width, 12) for k in range(1, n_bins)
        )

    def bin_index(self, value: float) -> Optional[int]:
        """The index of the bin the value falls in, or None if it's out of range."""
        if not self.low <= value <= self.high:  # also False for nan
            return None
        for index, edge in enumerate(self._inner_edges):
            if value < edge:
                return index
        return len(self.bins) - 1

    def __call__(self, value: float) -> float:
        index = self.bin_index(value)
        if index is None:
            return self.default
        return self.bins[index]


def amplitude_mapper(config: AudioMappingConfig = DFLT_AUDIO_MAPPING) -> StepMapper:
    return StepMapper(
        config.amplitude_bins,
        low=config.low,
        high=config.high,
        default=config.default_amplitude,
    )


def frequency_mapper(config: AudioMappingConfig = DFLT_AUDIO_MAPPING) -> StepMapper:
    return StepMapper(
        config.frequency_bins,
        low=config.low,
        high=config.high,
        default=config.default_frequency,
    )


class PositionToAudio:
    """
    Maps a normalized (x, y) position to a (frequency, amplitude) pair:
    x (left to right) sets the amplitude, y (top to bottom) sets the frequency.

    >>> to_audio = PositionToAudio()
    >>> to_audio(-1.0, -1.0)
    (130.81, 0.1)
    >>> to_audio(1.0, 1.0)
    (440.0, 1.0)
    >>> to_audio(0.0, -0.01)
    (220.0, 0.6)
    """

    def __init__(self, config: AudioMappingConfig = DFLT_AUDIO_MAPPING):
        self.config = config
        self.amplitude = amplitude_mapper(config)
        self.frequency = frequency_mapper(config)

    def __call__(self, x: float, y: float) -> Tuple[float, float]:
        return self.frequency(y), self.amplitude(x)


_dflt_position_to_audio = PositionToAudio()


def map_position_to_audio(
    x: float, y: float, config: AudioMappingConfig = DFLT_AUDIO_MAPPING
) -> Tuple[float, float]:
    """
    Map a normalized position to (frequency_hz, amplitude).

    >>> map_position_to_audio(-0.01, 0.0)
    (261.63, 0.5)
    >>> map_position_to_audio(5.0, 5.0)  # out of range: defaults
    (440.0, 0.5)
    """
    if config is DFLT_AUDIO_MAPPING:
        return _dflt_position_to_audio(x, y)
    return PositionToAudio(config)(x, y)


def position_knobs(position, config: AudioMappingConfig = DFLT_AUDIO_MAPPING) -> Dict[str, float]:
    """
    Maps a normalized position (anything with x and y attributes) to synth knobs.

    Returns:
        Dict[str, float]: Dictionary with 'freq', 'volume' keys.
    """
    freq, volume = map_position_to_audio(position.x, position.y, config)
    return {'freq': freq, 'volume': volume}


# -------------------------------------------------------------------------------
# Shared state
# -------------------------------------------------------------------------------


class StateSnapshot(NamedTuple):
    amplitude: float
    frequency: float
    enabled: bool


class ThereminState:
    """
    The amplitude, frequency and enabled flag shared by the control thread
    (writer) and the audio thread (reader).

    All three fields are read together, under one lock acquisition, so a reader
    never sees the amplitude of one write with the frequency of another.
    Acquisitions time out (``StateLockError``) rather than block forever.

    >>> state = ThereminState(0.5, 440.0)
    >>> state.update(0.2, 220.0)
    >>> state.snapshot()
    StateSnapshot(amplitude=0.2, frequency=220.0, enabled=True)
    """

    def __init__(
        self,
        amplitude: float = DFLT_AMPLITUDE,
        frequency: float = DFLT_FREQUENCY,
        enabled: bool = True,
        *,
        lock_timeout: float = DFLT_LOCK_TIMEOUT,
    ):
        self._lock = threading.Lock()
        self._amplitude = float(amplitude)
        self._frequency = float(frequency)
        self._enabled = bool(enabled)
        self.lock_timeout = lock_timeout

    @contextmanager
    def _locked(self, blocking: bool = True):
        if blocking:
            acquired = self._lock.acquire(timeout=self.lock_timeout)
        else:
            acquired = self._lock.acquire(blocking=False)
        if not acquired:
            raise StateLockError(
                f"Couldn't acquire the theremin state lock (timeout={self.lock_timeout}s, "
                f"blocking={blocking})"
            )
        try:
            yield
        finally:
            self._lock.release()

    def snapshot(self, blocking: bool = True) -> StateSnapshot:
        """
        Read all three fields at once. With ``blocking=False`` the lock is only
        tried, never waited for (this is what the audio thread does).
        """
        with self._locked(blocking):
            return StateSnapshot(self._amplitude, self._frequency, self._enabled)

    def update(self, amplitude: float, frequency: float):
        with self._locked():
            self._amplitude = float(amplitude)
            self._frequency = float(frequency)

    def set_enabled(self, enabled: bool):
        with self._locked():
            self._enabled = bool(enabled)

    @property
    def amplitude(self) -> float:
        return self.snapshot().amplitude

    @property
    def frequency(self) -> float:
        return self.snapshot().frequency

    @property
    def enabled(self) -> bool:
        return self.snapshot().enabled


SILENT_SNAPSHOT = StateSnapshot(0.0, 0.0, False)

# -------------------------------------------------------------------------------
# Sample source
# -------------------------------------------------------------------------------


class ThereminSource:
    """
    An endless sine wave whose amplitude, frequency and on/off state are read,
    live, from a ``ThereminState``.

    Iterating gives one mono sample at a time; ``read`` gives a block of them.
    The phase belongs to the source alone and is kept in ``[0, 2*pi)``.

    >>> source = ThereminSource(ThereminState(0.5, 5512.5), sample_rate=44100)
    >>> [round(next(source), 4) for _ in range(3)]
    [0.3536, 0.5, 0.3536]
    """

    def __init__(
        self,
        state: Optional[ThereminState] = None,
        sample_rate: int = DFLT_SAMPLE_RATE,
        *,
        channels: int = DFLT_CHANNELS,
        max_sample: float = DFLT_MAX_SAMPLE,
    ):
        if sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, was {sample_rate}")
        self.state = state if state is not None else ThereminState()
        self.sample_rate = sample_rate
        self.channels = channels
        self.max_sample = max_sample
        self._phase = 0.0
        self.lock_failures = 0

    @property
    def phase(self) -> float:
        return self._phase

    def clone(self) -> 'ThereminSource':
        """A new source reading the same state, with its own phase starting at zero."""
        return copy.copy(self)

    def __copy__(self):
        return type(self)(
            self.state,
            self.sample_rate,
            channels=self.channels,
            max_sample=self.max_sample,
        )

    # Parameters --------------------------------------------------------------

    def update_parameters(self, amplitude: float, frequency: float):
        self.state.update(amplitude, frequency)

    def set_enabled(self, enabled: bool):
        self.state.set_enabled(enabled)

    def is_enabled(self) -> bool:
        return self.state.enabled

    @property
    def amplitude(self) -> float:
        return self.state.amplitude

    @property
    def frequency(self) -> float:
        return self.state.frequency

    # Sample generation -------------------------------------------------------

    def _snapshot(self) -> StateSnapshot:
        # Runs on the audio thread: a busy lock means silence, never a wait
        try:
            return self.state.snapshot(blocking=False)
        except StateLockError:
            self.lock_failures += 1
            return SILENT_SNAPSHOT

    def _phase_increment(self, frequency: float) -> float:
        return TWO_PI * frequency / self.sample_rate

    def generate_sample(self) -> float:
        amplitude, frequency, enabled = self._snapshot()
        if not enabled:
            return 0.0

        self._phase = (self._phase + self._phase_increment(frequency)) % TWO_PI

        sample = math.sin(self._phase) * amplitude
        return clamp(sample, -self.max_sample, self.max_sample)

    def __iter__(self):
        return self

    def __next__(self) -> float:
        return self.generate_sample()

    def read(self, frames: int) -> np.ndarray:
        """
        Render the next ``frames`` mono samples as a float32 array.

        The state is read once for the whole block. The phase carries on as it
        would with ``frames`` calls to ``next`` (up to float rounding).
        """
        amplitude, frequency, enabled = self._snapshot()
        if frames <= 0 or not enabled:
            return np.zeros(max(frames, 0), dtype=np.float32)

        increment = self._phase_increment(frequency)
        phases = self._phase + increment * np.arange(1, frames + 1)
        phases %= TWO_PI
        self._phase = float(phases[-1])

        samples = amplitude * np.sin(phases)
        np.clip(samples, -self.max_sample, self.max_sample, out=samples)
        return samples.astype(np.float32)

    def __repr__(self):
        return (
            f"{type(self).__name__}(sample_rate={self.sample_rate}, "
            f"channels={self.channels}, phase={self._phase:.4f})"
        )


# -------------------------------------------------------------------------------
# Audio output
# -------------------------------------------------------------------------------


def sounddevice_stream_factory(*, samplerate, channels, callback, blocksize=0, device=None):
    """Open (but don't start) a sounddevice float32 output stream."""
    # Import here so that the rest of the package works without an audio backend
    try:
        import sounddevice as sd
    except (ImportError, OSError) as e:
        raise AudioDeviceError(f"sounddevice isn't usable: {e}") from e

    try:
        return sd.OutputStream(
            samplerate=samplerate,
            channels=channels,
            dtype='float32',
            blocksize=blocksize,
            device=device,
            callback=callback,
        )
    except sd.PortAudioError as e:
        raise AudioDeviceError(f"Could not open the audio output: {e}") from e


StreamFactory = Callable[..., object]


class AudioSink:
    """
    Plays a ``ThereminSource`` on an output stream.

    The stream's callback pulls blocks of samples from the source, scales them
    by ``volume`` and copies them onto every output channel. The sink must be
    kept alive (and not stopped) for as long as sound should come out.
    ``stop`` is final.
    """

    def __init__(
        self,
        source: ThereminSource,
        *,
        volume: float = DFLT_VOLUME,
        channels: Optional[int] = None,
        blocksize: int = 0,
        device=None,
        stream_factory: StreamFactory = sounddevice_stream_factory,
    ):
        self.source = source
        self.volume = volume
        self.channels = channels or source.channels
        self.blocksize = blocksize
        self.device = device
        self.stream_factory = stream_factory
        self.stream = None
        self._stopped = False
        self.status_count = 0

    @property
    def is_stopped(self) -> bool:
        return self._stopped

    @property
    def is_open(self) -> bool:
        return self.stream is not None and not self._stopped

    def render(self, frames: int) -> np.ndarray:
        """The next (frames, channels) block of output."""
        if self._stopped:
            return np.zeros((frames, self.channels), dtype=np.float32)
        mono = self.source.read(frames) * np.float32(self.volume)
        return np.repeat(mono[:, np.newaxis], self.channels, axis=1)

    def _callback(self, outdata, frames, time, status):
        if status:
            self.status_count += 1
        outdata[:] = self.render(frames)

    def open(self):
        """Open and start the output stream. Raises ``AudioDeviceError`` on failure."""
        if self._stopped:
            raise AudioDeviceError("This sink was stopped, it can't be reopened")
        if self.stream is not None:
            return self
        try:
            stream = self.stream_factory(
                samplerate=self.source.sample_rate,
                channels=self.channels,
                callback=self._callback,
                blocksize=self.blocksize,
                device=self.device,
            )
            stream.start()
        except AudioDeviceError:
            raise
        except Exception as e:
            raise AudioDeviceError(f"Could not start the audio output: {e}") from e
        self.stream = stream
        return self

    def stop(self):
        """Silence the output and release the stream, for good."""
        if self._stopped:
            return
        self._stopped = True
        if self.stream is not None:
            try:
                self.stream.stop()
            finally:
                self.stream.close()

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()

from __future__ import annotations

import copy
import math
import threading
import time

import numpy as np
import pytest

from aruco_theremin.audio import (
    TWO_PI,
    StateLockError,
    ThereminSource,
    ThereminState,
)

SAMPLE_RATE = 44100


def _source(amplitude: float = 0.5, frequency: float = 441.0, **kwargs) -> ThereminSource:
    return ThereminSource(ThereminState(amplitude, frequency), SAMPLE_RATE, **kwargs)


def test_samples_follow_a_sine_wave() -> None:
    frequency, amplitude = 441.0, 0.5  # a period of 100 samples
    source = _source(amplitude, frequency)
    samples = [next(source) for _ in range(1000)]
    k = np.arange(1, 1001)
    expected = amplitude * np.sin(2 * np.pi * frequency * k / SAMPLE_RATE)
    np.testing.assert_allclose(samples, expected, atol=1e-9)


def test_period_is_sample_rate_over_frequency() -> None:
    source = _source(0.5, 441.0)
    samples = np.array([next(source) for _ in range(1000)])
    np.testing.assert_allclose(samples[100:], samples[:-100], atol=1e-9)
    # A full period sums to zero
    assert abs(samples[:100].sum()) < 1e-9


def test_phase_stays_wrapped() -> None:
    source = _source(0.5, 19000.0)
    for _ in range(20000):
        next(source)
        assert 0.0 <= source.phase < TWO_PI


def test_block_phase_stays_wrapped() -> None:
    source = _source(0.5, 19000.0)
    for _ in range(50):
        source.read(4096)
        assert 0.0 <= source.phase < TWO_PI


def test_samples_are_clamped() -> None:
    source = _source(amplitude=3.0, frequency=1000.0)
    samples = [next(source) for _ in range(500)]
    assert max(samples) == pytest.approx(0.8)
    assert min(samples) == pytest.approx(-0.8)
    block = source.read(500)
    assert block.max() <= np.float32(0.8)
    assert block.min() >= np.float32(-0.8)


def test_disabled_source_is_silent_and_keeps_its_phase() -> None:
    source = _source()
    for _ in range(10):
        next(source)
    phase = source.phase
    source.set_enabled(False)
    assert [next(source) for _ in range(100)] == [0.0] * 100
    assert not source.read(256).any()
    assert source.phase == phase

    source.set_enabled(True)
    assert next(source) != 0.0
    assert source.phase != phase


def test_read_matches_sample_by_sample_generation() -> None:
    by_sample, by_block = _source(0.7, 523.25), _source(0.7, 523.25)
    samples = [next(by_sample) for _ in range(3000)]
    blocks = np.concatenate([by_block.read(n) for n in (1000, 512, 1, 1487)])
    assert blocks.dtype == np.float32
    np.testing.assert_allclose(blocks, samples, atol=1e-6)
    assert by_block.phase == pytest.approx(by_sample.phase, abs=1e-9)


def test_read_zero_frames() -> None:
    source = _source()
    assert source.read(0).shape == (0,)
    assert source.phase == 0.0


def test_parameter_changes_are_picked_up() -> None:
    source = _source(0.5, 441.0)
    next(source)
    source.update_parameters(0.25, 882.0)
    assert source.amplitude == 0.25
    assert source.frequency == 882.0
    phase = source.phase
    sample = next(source)
    expected_phase = phase + TWO_PI * 882.0 / SAMPLE_RATE
    assert sample == pytest.approx(0.25 * math.sin(expected_phase))


def test_clone_shares_state_but_not_phase() -> None:
    source = _source()
    for _ in range(37):
        next(source)
    clone = source.clone()
    assert clone.state is source.state
    assert clone.phase == 0.0
    assert source.phase != 0.0
    assert clone.sample_rate == source.sample_rate

    next(clone)
    assert clone.phase != source.phase

    source.update_parameters(0.1, 100.0)
    assert clone.amplitude == 0.1
    assert clone.frequency == 100.0

    assert copy.copy(source).phase == 0.0


def test_source_is_an_endless_iterator() -> None:
    source = _source()
    assert iter(source) is source
    assert len([sample for sample, _ in zip(source, range(10000))]) == 10000
    assert source.channels == 2
    assert source.sample_rate == SAMPLE_RATE


def test_invalid_sample_rate() -> None:
    with pytest.raises(ValueError):
        ThereminSource(ThereminState(), 0)


def test_stuck_lock_gives_silence() -> None:
    state = ThereminState(0.5, 440.0, lock_timeout=0.01)
    source = ThereminSource(state, SAMPLE_RATE)
    state._lock.acquire()
    try:
        assert next(source) == 0.0
        assert not source.read(64).any()
        assert source.lock_failures == 2
        with pytest.raises(StateLockError):
            state.snapshot(blocking=False)
        with pytest.raises(StateLockError):
            state.update(0.1, 100.0)
        with pytest.raises(StateLockError):
            state.snapshot()
    finally:
        state._lock.release()
    assert next(source) != 0.0


def test_audio_reads_never_wait_for_the_lock() -> None:
    state = ThereminState(0.5, 440.0, lock_timeout=1.0)
    source = ThereminSource(state, SAMPLE_RATE)
    state._lock.acquire()
    try:
        start = time.perf_counter()
        block = source.read(512)
        sample = next(source)
        elapsed = time.perf_counter() - start
    finally:
        state._lock.release()
    assert not block.any() and sample == 0.0
    assert elapsed < 0.05  # far below the 1s writer timeout
    assert source.read(512).any()


def test_concurrent_updates_are_never_torn() -> None:
    """Each write pairs an amplitude with frequency == 1000 * amplitude."""
    state = ThereminState(0.001, 1.0, lock_timeout=5.0)
    stop = threading.Event()
    errors = []

    def writer(offset: int) -> None:
        k = 0
        while not stop.is_set():
            amplitude = ((k * 7 + offset) % 997 + 1) / 1000
            state.update(amplitude, amplitude * 1000)
            k += 1

    def reader() -> None:
        for _ in range(20000):
            snapshot = state.snapshot()
            if snapshot.frequency != snapshot.amplitude * 1000:
                errors.append(snapshot)

    writers = [threading.Thread(target=writer, args=(i,)) for i in range(3)]
    for thread in writers:
        thread.start()
    try:
        reader()
    finally:
        stop.set()
        for thread in writers:
            thread.join()

    assert errors == []

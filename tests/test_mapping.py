from __future__ import annotations

import math

import pytest

from aruco_theremin.audio import (
    PositionToAudio,
    StepMapper,
    map_position_to_audio,
    position_knobs,
)
from aruco_theremin.config import (
    DFLT_AMPLITUDE_BINS,
    DFLT_FREQUENCY_BINS,
    AudioMappingConfig,
)
from aruco_theremin.markers import NormalizedPosition


def _amplitude(x: float) -> float:
    return map_position_to_audio(x, 0.0)[1]


def _frequency(y: float) -> float:
    return map_position_to_audio(0.0, y)[0]


def test_amplitude_boundaries() -> None:
    assert _amplitude(-1.0) == 0.10
    assert _amplitude(1.0) == 1.00
    assert _amplitude(-0.01) == 0.50
    assert _amplitude(0.0) == 0.60


def test_frequency_boundaries() -> None:
    assert _frequency(-1.0) == 130.81
    assert _frequency(1.0) == 440.00
    assert _frequency(-0.01) == 220.00
    assert _frequency(0.0) == 261.63


@pytest.mark.parametrize(
    "x, expected",
    [
        (-0.8, 0.2),
        (-0.81, 0.1),
        (-0.6, 0.3),
        (-0.4, 0.4),
        (-0.2, 0.5),
        (0.2, 0.7),
        (0.4, 0.8),
        (0.6, 0.9),
        (0.79, 0.9),
        (0.8, 1.0),
    ],
)
def test_bins_are_half_open(x: float, expected: float) -> None:
    assert _amplitude(x) == expected


def test_every_bin_is_reached_in_order() -> None:
    centers = [-0.9 + 0.2 * k for k in range(10)]
    assert [_amplitude(x) for x in centers] == list(DFLT_AMPLITUDE_BINS)
    assert [_frequency(y) for y in centers] == list(DFLT_FREQUENCY_BINS)


def test_mapping_is_monotonic() -> None:
    values = [-1.0 + k / 500 for k in range(1001)]
    amplitudes = [_amplitude(x) for x in values]
    frequencies = [_frequency(y) for y in values]
    assert amplitudes == sorted(amplitudes)
    assert frequencies == sorted(frequencies)


def test_mapping_is_deterministic() -> None:
    points = [(-1.0, 1.0), (-0.33, 0.71), (0.0, 0.0), (0.999, -0.5), (0.2, 0.2)]
    first = [map_position_to_audio(x, y) for x, y in points]
    for _ in range(3):
        assert [map_position_to_audio(x, y) for x, y in points] == first


@pytest.mark.parametrize("value", [-1.0001, 1.0001, -5.0, 7.0, math.nan, math.inf])
def test_out_of_range_falls_back_to_defaults(value: float) -> None:
    assert map_position_to_audio(value, value) == (440.0, 0.5)


def test_custom_config() -> None:
    config = AudioMappingConfig(
        amplitude_bins=(0.0, 1.0),
        frequency_bins=(100.0, 200.0),
        low=0.0,
        high=1.0,
        default_amplitude=0.25,
        default_frequency=50.0,
    )
    assert map_position_to_audio(0.49, 0.5, config) == (200.0, 0.0)
    assert map_position_to_audio(-0.5, 0.1, config) == (100.0, 0.25)
    assert PositionToAudio(config)(1.0, 2.0) == (50.0, 1.0)


def test_config_validation() -> None:
    with pytest.raises(ValueError):
        AudioMappingConfig(amplitude_bins=(0.1, 0.2), frequency_bins=(100.0,))
    with pytest.raises(ValueError):
        AudioMappingConfig(amplitude_bins=(), frequency_bins=())
    with pytest.raises(ValueError):
        AudioMappingConfig(low=1.0, high=-1.0)


def test_step_mapper_bin_index() -> None:
    mapper = StepMapper(range(5), low=0, high=10)
    assert [mapper.bin_index(v) for v in (0, 1.99, 2, 9.99, 10)] == [0, 0, 1, 4, 4]
    assert mapper.bin_index(10.5) is None
    with pytest.raises(ValueError):
        StepMapper(())


def test_step_mapper_without_default() -> None:
    mapper = StepMapper((1.0, 2.0))
    assert mapper.default is None
    assert mapper(-2.0) is None
    assert mapper(float("nan")) is None
    assert StepMapper((1.0, 2.0), default=0.5)(2.0) == 0.5


def test_position_knobs() -> None:
    knobs = position_knobs(NormalizedPosition(0.9, -0.9, True))
    assert knobs == {'freq': 130.81, 'volume': 1.0}

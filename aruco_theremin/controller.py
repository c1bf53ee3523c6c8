"""The theremin controller: positions in, sound out.

The controller is either sounding or muted (it starts sounding). It always
remembers the last (amplitude, frequency) computed from a position, even while
muted, so that unmuting plays the latest gesture right away.
"""

from typing import Callable, Optional, Tuple

from aruco_theremin.audio import (
    AudioSink,
    PositionToAudio,
    ThereminSource,
    ThereminState,
    sounddevice_stream_factory,
)
from aruco_theremin.config import (
    DFLT_AMPLITUDE,
    DFLT_AUDIO_MAPPING,
    DFLT_FREQUENCY,
    DFLT_OUTPUT,
    DFLT_PITCH,
    AudioMappingConfig,
    OutputConfig,
    PitchConfig,
)
from aruco_theremin.util import return_none


class ThereminController:
    """
    Owns the shared state, the sample source and the audio sink playing it.

    Args:
        mapping_config: How positions map to frequency and amplitude
        output_config: Sample rate, channels, sink volume and initial sound
        pitch_config: Limits and steps of the pitch transposition
        sink_factory: Makes the sink from a source (``AudioSink`` by default)
        stream_factory: Opens the output stream the sink plays on
        log: Called with status messages (does nothing by default)

    Raises:
        AudioDeviceError: If the audio output can't be opened.
    """

    def __init__(
        self,
        *,
        mapping_config: AudioMappingConfig = DFLT_AUDIO_MAPPING,
        output_config: OutputConfig = DFLT_OUTPUT,
        pitch_config: PitchConfig = DFLT_PITCH,
        sink_factory: Callable[..., AudioSink] = AudioSink,
        stream_factory: Callable = sounddevice_stream_factory,
        log: Optional[Callable] = None,
    ):
        self.position_to_audio = PositionToAudio(mapping_config)
        self.output_config = output_config
        self.pitch_config = pitch_config
        self.log = log or return_none

        state = ThereminState(
            output_config.initial_amplitude,
            output_config.initial_frequency,
            enabled=True,
            lock_timeout=output_config.lock_timeout,
        )
        self.source = ThereminSource(
            state,
            output_config.sample_rate,
            channels=output_config.channels,
            max_sample=output_config.max_sample,
        )
        # The sink plays a clone: same state, its own phase
        self.sink = sink_factory(
            self.source.clone(),
            volume=output_config.volume,
            channels=output_config.channels,
            blocksize=output_config.blocksize,
            device=output_config.device,
            stream_factory=stream_factory,
        )
        self.sink.open()

        self.last_amplitude = output_config.initial_amplitude
        self.last_frequency = output_config.initial_frequency
        self.pitch_factor = pitch_config.default

        self._commands = {
            'toggle_audio': self.toggle,
            'reset_pitch': self.reset_pitch,
            'increase_pitch': lambda: self.adjust_pitch(pitch_config.fine_up),
            'decrease_pitch': lambda: self.adjust_pitch(pitch_config.fine_down),
            'stop_audio': self.stop,
            'test_sound': self.play_test_tone,
            'pitch_up_coarse': lambda: self.adjust_pitch(pitch_config.coarse_up),
            'pitch_down_coarse': lambda: self.adjust_pitch(pitch_config.coarse_down),
        }

    # State -------------------------------------------------------------------

    def is_enabled(self) -> bool:
        return self.source.is_enabled()

    @property
    def is_stopped(self) -> bool:
        return self.sink.is_stopped

    @property
    def frequency(self) -> float:
        """The frequency currently played (or that will be, when unmuted)."""
        return self.source.frequency

    @property
    def amplitude(self) -> float:
        return self.source.amplitude

    def _push(self, amplitude: float, frequency: float):
        self.source.update_parameters(amplitude, frequency * self.pitch_factor)

    # Operations --------------------------------------------------------------

    def update_from_position(self, x: float, y: float) -> Tuple[float, float]:
        """
        Compute (frequency, amplitude) from a normalized position and remember it.
        The sound is only updated if it's on.
        """
        frequency, amplitude = self.position_to_audio(x, y)

        self.last_amplitude = amplitude
        self.last_frequency = frequency

        if self.is_enabled():
            self._push(amplitude, frequency)
        return frequency, amplitude

    def toggle(self) -> bool:
        """Mute or unmute. Unmuting restores the last known sound. Returns the new state."""
        enabled = not self.is_enabled()
        self.source.set_enabled(enabled)
        if enabled:
            self._push(self.last_amplitude, self.last_frequency)
            self.log("Sound on")
        else:
            self.log("Sound off")
        return enabled

    def stop(self):
        """Stop the audio output. There's no coming back from this."""
        self.sink.stop()
        self.log("Audio stopped")
        if self.sink.status_count:
            self.log(f"The audio stream reported {self.sink.status_count} under/overflows")

    # Pitch -------------------------------------------------------------------

    def adjust_pitch(self, factor: float) -> float:
        """Multiply the pitch factor, within the configured limits."""
        new_pitch = self.pitch_config.clamp(self.pitch_factor * factor)
        if abs(new_pitch - self.pitch_factor) > 1e-3:
            direction = "up" if new_pitch > self.pitch_factor else "down"
            self.pitch_factor = new_pitch
            self.log(f"Pitch {direction} to {new_pitch:.2f}")
            if self.is_enabled():
                self._push(self.last_amplitude, self.last_frequency)
        return self.pitch_factor

    def reset_pitch(self) -> float:
        self.pitch_factor = self.pitch_config.default
        self.log(f"Pitch reset to {self.pitch_factor:.2f}")
        if self.is_enabled():
            self._push(self.last_amplitude, self.last_frequency)
        return self.pitch_factor

    def play_test_tone(
        self, amplitude: float = DFLT_AMPLITUDE, frequency: float = DFLT_FREQUENCY
    ):
        """Play a reference tone, until the next position update."""
        if self.is_enabled():
            self.source.update_parameters(amplitude, frequency)
            self.log(f"Test tone: {frequency:.2f} Hz")

    # Commands ----------------------------------------------------------------

    @property
    def command_names(self):
        return tuple(self._commands)

    def apply_command(self, command_name: str):
        """Run a named command (see ``aruco_theremin.config.MARKER_COMMANDS``)."""
        if command_name not in self._commands:
            raise ValueError(f"Unknown command: {command_name}")
        return self._commands[command_name]()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()

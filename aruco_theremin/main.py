#!/usr/bin/env python
"""
Command-line interface for the theremin application.

This script provides a CLI wrapper around the run_theremin function, allowing all
parameters to be controlled via command-line arguments.

Examples:
    # Run with default settings (ArUco marker 0 controls the sound)
    python -m aruco_theremin.main

    # Let markers 0-7 fire their commands when they show up
    python -m aruco_theremin.main --marker-commands

    # Follow a moving palm instead of a marker, and log the audio features
    python -m aruco_theremin.main --position-source palm --log-audio-features

    # Follow a hand with MediaPipe
    python -m aruco_theremin.main --position-source hand --hand-model-path hand_landmarker.task
"""

import argh

from aruco_theremin.script_utils import theremin_cli


def dispatched_theremin_cli():
    argh.dispatch_command(theremin_cli)


if __name__ == "__main__":
    dispatched_theremin_cli()

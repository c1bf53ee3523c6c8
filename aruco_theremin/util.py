"""Utils for aruco_theremin."""

import json
import math
import time
from typing import Sequence, Tuple

Point = Tuple[float, float]


def return_none(*args, **kwargs):
    """
    An empty function that returns None no matter the arguments.
    Often used as a "do nothing" general callback function.
    """
    return None


# --------------------------------------------------------------------------------------
# Geometry


def calculate_euclidean_distance(point1: Sequence[float], point2: Sequence[float]):
    """
    Calculate the Euclidean distance between two 2D points.

    >>> calculate_euclidean_distance((0, 0), (3, 4))
    5.0
    """
    return math.hypot(point1[0] - point2[0], point1[1] - point2[1])


def clamp(value, low, high):
    """
    Clamp value to the [low, high] interval.

    >>> clamp(1.5, -0.8, 0.8)
    0.8
    >>> clamp(-0.2, -0.8, 0.8)
    -0.2
    """
    return max(low, min(high, value))


# --------------------------------------------------------------------------------------
# String utils


def format_milliseconds_time(timestamp):
    """Format milliseconds as a string."""
    formatted_time = time.strftime('%H:%M:%S', time.localtime(timestamp))
    milliseconds = int((timestamp % 1) * 1000)
    return f"{formatted_time}.{milliseconds:03d}"


def current_time_string_with_milliseconds():
    """Get the current time with milliseconds, as a string."""
    return format_milliseconds_time(time.time())


def format_float(value, ndigits=3):
    return f"{value:.{ndigits}f}"


def format_label_xy(label, x, y, *, label_width=15, coord_width=8, ndigits=3):
    """
    Format the label and coordinates with customizable widths.

    Args:
        label (str): The label for the coordinates (e.g., "Marker 0:").
        x, y (float): The coordinates to format.
        label_width (int): The width of the label field.
        coord_width (int): The width of the coordinate fields.
        ndigits (int): The number of decimals of the coordinates.

    Returns:
        str: The formatted string.

    >>> format_label_xy('Marker 0:', 0.25, -0.5)
    'Marker 0:       x=   0.250 y=  -0.500'
    >>> format_label_xy('Marker 0:', 0.25, -0.5, label_width=10, coord_width=6, ndigits=2)
    'Marker 0:  x=  0.25 y= -0.50'
    """
    x, y = format_float(x, ndigits), format_float(y, ndigits)
    return f"{label:<{label_width}} x={x:>{coord_width}} y={y:>{coord_width}}"


def print_json_if_possible(x):
    """Prints the input (as json, if it can be serialized) and adds a newline."""
    try:
        x = json.dumps(x)
    except (TypeError, ValueError):
        pass
    print(x)
    print()


def timestamped_print(msg):
    """Prints the message prefixed with the current time."""
    print(f"[{current_time_string_with_milliseconds()}] {msg}")

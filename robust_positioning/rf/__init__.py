"""
RF (Radio Frequency) models for lateration.

Submodules:
    measurement_models: ranging and RSS path-loss models
    readings: conversion of sources and fingerprints into lateration inputs
"""

from robust_positioning.rf.measurement_models import (
    rss_pathloss,
    rss_to_distance,
    rss_to_distance_with_std,
    toa_range,
)
from robust_positioning.rf.readings import (
    LaterationInputs,
    build_lateration_inputs,
    position_standard_deviation,
    reading_distances,
)

__all__ = [
    # Measurement models
    "toa_range",
    "rss_pathloss",
    "rss_to_distance",
    "rss_to_distance_with_std",
    # Fingerprint flattening
    "LaterationInputs",
    "build_lateration_inputs",
    "position_standard_deviation",
    "reading_distances",
]

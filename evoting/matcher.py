# Filename: evoting/matcher.py
# Confidence scoring between a stored reference image and a captured proof.
# Neither matcher is a real biometric algorithm; both honour the same
# score(reference, proof) -> [0, 1] contract so one can be swapped in.

import random

import cv2

from .capture import decode_png
from .models import FACE, PALM

HIST_BINS = [8, 8, 8]
HIST_RANGES = [0, 256, 0, 256, 0, 256]


def color_histogram(image):
    hist = cv2.calcHist([image], [0, 1, 2], None, HIST_BINS, HIST_RANGES)
    return cv2.normalize(hist, hist).flatten()


class HistogramMatcher:
    """Colour-histogram correlation, clamped to [0, 1]."""

    def score(self, modality, reference, proof):
        try:
            ref_img = decode_png(reference)
            sample_img = decode_png(proof)
        except ValueError:
            return 0.0
        similarity = cv2.compareHist(color_histogram(ref_img), color_histogram(sample_img),
                                     cv2.HISTCMP_CORREL)
        return max(0.0, min(1.0, float(similarity)))


class SimulatedMatcher:
    """Demo matcher: succeeds at a fixed rate per modality."""

    SUCCESS_RATES = {FACE: 0.8, PALM: 0.9}

    def __init__(self, rng=None, success_rates=None):
        self.rng = rng or random.Random()
        self.success_rates = dict(self.SUCCESS_RATES, **(success_rates or {}))

    def score(self, modality, reference, proof):
        if self.rng.random() < self.success_rates.get(modality, 0.0):
            return 1.0
        return self.rng.uniform(0.0, 0.5)


def make_matcher(name):
    if name == "simulated":
        return SimulatedMatcher()
    if name == "histogram":
        return HistogramMatcher()
    raise ValueError(f"Unknown matcher: {name}")

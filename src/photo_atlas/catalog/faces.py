"""Nearest-match lookup of precomputed face descriptors."""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

import numpy as np

from photo_atlas.catalog.models import Tag

logger = logging.getLogger(__name__)

# Euclidean distance under which two descriptors belong to the same face
DEFAULT_MATCH_THRESHOLD = 0.6


@dataclass
class FaceMatch:
    tag: Tag
    distance: float


def descriptor_distance(a: Sequence[float], b: Sequence[float]) -> float:
    """Euclidean distance between two descriptors of equal length."""
    va = np.asarray(a, dtype=np.float32)
    vb = np.asarray(b, dtype=np.float32)
    if va.shape != vb.shape:
        raise ValueError(f"Descriptor length mismatch: {va.shape[0]} != {vb.shape[0]}")
    return float(np.linalg.norm(va - vb))


def find_best_match(
    vector: Sequence[float],
    face_tags: Iterable[Tag],
    threshold: float = DEFAULT_MATCH_THRESHOLD,
) -> Optional[FaceMatch]:
    """Return the face tag whose closest sample is nearest to ``vector``.

    Samples of a different length are ignored. None when no sample lies
    within ``threshold``.
    """
    query = np.asarray(vector, dtype=np.float32)
    best: Optional[FaceMatch] = None
    for tag in face_tags:
        face = tag.face
        if face is None or not face.samples:
            continue
        samples = [s for s in face.vectors if len(s) == query.shape[0]]
        if len(samples) != len(face.samples):
            logger.debug(f"Ignoring {len(face.samples) - len(samples)} mismatched samples of '{tag.name}'")
        if not samples:
            continue
        distances = np.linalg.norm(np.asarray(samples, dtype=np.float32) - query, axis=1)
        distance = float(distances.min())
        if distance <= threshold and (best is None or distance < best.distance):
            best = FaceMatch(tag=tag, distance=distance)
    return best

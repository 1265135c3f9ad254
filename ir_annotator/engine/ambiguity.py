from __future__ import annotations

import logging
from typing import List, Sequence

from ir_annotator.engine.records import Ambiguity, Annotation

logger = logging.getLogger(__name__)

DEFAULT_GAP_THRESHOLD = 0.05


def confidence_gap(annotation: Annotation) -> float | None:
    """Gap between the two best candidates, or None with fewer than two."""

    candidates = annotation.top_candidates
    if len(candidates) < 2:
        return None
    # Confidences carry three decimals; round so 0.75 - 0.70 compares as 0.05.
    return round(candidates[0].confidence - candidates[1].confidence, 3)


def detect_ambiguities(
    annotations: Sequence[Annotation],
    gap_threshold: float = DEFAULT_GAP_THRESHOLD,
) -> List[Ambiguity]:
    ambiguities: List[Ambiguity] = []
    for annotation in annotations:
        gap = confidence_gap(annotation)
        if gap is None or gap > gap_threshold:
            continue
        first, second = annotation.top_candidates[0], annotation.top_candidates[1]
        ambiguities.append(
            Ambiguity(
                peak_index=annotation.peak_index,
                peak=annotation.peak,
                top_confidence=first.confidence,
                second_confidence=second.confidence,
                confidence_gap=gap,
                top_candidates=(first, second),
                all_candidates=tuple(annotation.top_candidates),
            )
        )
    logger.info(
        "Ambiguity pass threshold=%.3g ambiguous=%d annotations=%d",
        gap_threshold,
        len(ambiguities),
        len(annotations),
    )
    return ambiguities

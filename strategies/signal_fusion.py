"""
signal_fusion.py - Internal/External Signal Fusion

Merges the internal score and an admitted external score into one composite
using confidence-weighted blending. Once admitted, the external model is
trusted more for the composite confidence (0.6 vs 0.4). The operation is
deliberately not symmetric in its two arguments.
"""

import logging
from typing import Optional

from strategies.base import CompositeSignal, Signal, clamp


logger = logging.getLogger(__name__)

DEFAULT_EXTERNAL_THRESHOLD = 0.70
INTERNAL_CONFIDENCE_WEIGHT = 0.4
EXTERNAL_CONFIDENCE_WEIGHT = 0.6


class SignalFuser:
    """
    Confidence-weighted fuser with internal-only fallback.

    Args:
        external_threshold: Minimum external confidence for the external
            signal to take part in the blend
    """

    def __init__(self, external_threshold: float = DEFAULT_EXTERNAL_THRESHOLD):
        if not 0.0 <= external_threshold <= 1.0:
            raise ValueError(f"external_threshold must be between 0 and 1, got {external_threshold}")
        self.external_threshold = external_threshold

    def fuse(self, internal: Signal, external: Optional[Signal] = None) -> CompositeSignal:
        """
        Fuse the two sources.

        Args:
            internal: Internal generator signal
            external: Admitted external signal, if any

        Returns:
            CompositeSignal; equal to the internal signal when the external
            one is absent or below the admission threshold
        """
        if (external is None
                or external.confidence < self.external_threshold
                or internal.confidence + external.confidence <= 0):
            if external is not None:
                logger.debug(
                    f"{internal.symbol}: external confidence {external.confidence:.3f} "
                    f"below threshold {self.external_threshold:.2f}, using internal signal"
                )
            return CompositeSignal(
                direction=internal.direction,
                confidence=internal.confidence,
                internal=internal,
                external=external,
                fused=False
            )

        total = internal.confidence + external.confidence
        weight_internal = internal.confidence / total
        weight_external = external.confidence / total

        direction = clamp(
            internal.direction * weight_internal + external.direction * weight_external,
            -1.0, 1.0
        )
        confidence = (INTERNAL_CONFIDENCE_WEIGHT * internal.confidence
                      + EXTERNAL_CONFIDENCE_WEIGHT * external.confidence)

        logger.debug(
            f"{internal.symbol}: fused direction={direction:+.3f} confidence={confidence:.3f} "
            f"(w_int={weight_internal:.2f}, w_ext={weight_external:.2f})"
        )

        return CompositeSignal(
            direction=direction,
            confidence=confidence,
            internal=internal,
            external=external,
            fused=True
        )

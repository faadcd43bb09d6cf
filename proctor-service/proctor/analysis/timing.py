"""
Timing Anomaly Analyzer — flags per-question answer times that look like
cheating.

Rules (all evaluated, reasons accumulate):
    too fast      time < 10% of the mean AND time < 5 s
    uniform       |time - mean| / mean < 5%   (only for more than 5 samples)
    copy-paste    current < 2 s AND next > 1.5 × mean   (adjacent pairs)

The mean is computed once per call and shared by every rule.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np

from proctor.core.errors import ValidationError

logger = logging.getLogger(__name__)

TOO_FAST_RATIO      = 0.10
TOO_FAST_MAX_MS     = 5000
UNIFORM_TOLERANCE   = 0.05
UNIFORM_MIN_SAMPLES = 5      # strictly more than this many samples
PASTE_FAST_MS       = 2000
PASTE_SLOW_RATIO    = 1.5


@dataclass
class QuestionTiming:
    question_index: int
    time_spent_ms:  float


@dataclass
class TimingAnalysis:
    suspicious: bool = False
    reasons: list[str] = field(default_factory=list)
    average_time:  float = 0.0
    fastest_time:  float = 0.0
    slowest_time:  float = 0.0
    time_variance: float = 0.0   # coefficient of variation (std / mean)


def analyze_timings(
    timings: list[QuestionTiming],
    apply_rules: bool = True,
) -> TimingAnalysis:
    """
    Run the timing heuristics over ``timings`` and return the verdict plus
    summary statistics. With ``apply_rules=False`` only the statistics are
    filled in (used when time analysis is disabled for the assessment).
    """
    if not timings:
        raise ValidationError("At least one question timing is required")
    for t in timings:
        if t.question_index < 0 or not np.isfinite(t.time_spent_ms) or t.time_spent_ms < 0:
            raise ValidationError(
                f"Invalid timing for question index {t.question_index}: "
                f"{t.time_spent_ms}ms"
            )

    times = np.array([t.time_spent_ms for t in timings], dtype=np.float64)
    mean  = float(times.mean())

    result = TimingAnalysis(
        average_time  = mean,
        fastest_time  = float(times.min()),
        slowest_time  = float(times.max()),
        time_variance = float(times.std() / mean) if mean > 0 else 0.0,
    )
    if not apply_rules:
        return result

    reasons: list[str] = []
    consider_uniform = len(timings) > UNIFORM_MIN_SAMPLES and mean > 0

    for t in timings:
        if t.time_spent_ms < mean * TOO_FAST_RATIO and t.time_spent_ms < TOO_FAST_MAX_MS:
            reasons.append(
                f"Question {t.question_index + 1} answered too quickly "
                f"({t.time_spent_ms:.0f}ms)"
            )

        if consider_uniform and abs(t.time_spent_ms - mean) / mean < UNIFORM_TOLERANCE:
            reasons.append(
                f"Suspiciously consistent timing pattern detected "
                f"at question {t.question_index + 1}"
            )

    for current, nxt in zip(timings, timings[1:]):
        if current.time_spent_ms < PASTE_FAST_MS and nxt.time_spent_ms > mean * PASTE_SLOW_RATIO:
            reasons.append(
                f"Possible copy-paste pattern detected between questions "
                f"{current.question_index + 1} and {nxt.question_index + 1}"
            )

    result.reasons    = reasons
    result.suspicious = bool(reasons)
    if result.suspicious:
        logger.info("Timing analysis flagged %d reason(s) over %d questions",
                    len(reasons), len(timings))
    return result

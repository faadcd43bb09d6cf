"""
Browser Environment Validator — checks client-reported environment signals
before a proctored attempt starts.

Four checks, each adding one warning:
    automation signature in the user-agent   → invalid
    webdriver / automation browser plugin    → invalid
    screen smaller than 800×600              → invalid
    timezone differs from the server's       → warning only

risk_score is 0 for a valid environment, otherwise 25 per warning.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from proctor.core.errors import ValidationError

logger = logging.getLogger(__name__)

AUTOMATION_AGENTS  = ("headless", "phantom", "selenium", "webdriver")
AUTOMATION_PLUGINS = ("webdriver", "automation")
MIN_WIDTH  = 800
MIN_HEIGHT = 600
RISK_PER_WARNING = 25
RECOMMENDED_ACTIONS = ["Use a supported browser", "Disable browser extensions"]

_RESOLUTION_RE = re.compile(r"^\s*(\d+)\s*[xX×]\s*(\d+)\s*$")


@dataclass
class BrowserSignals:
    user_agent:        str
    screen_resolution: str
    timezone:          str
    plugins:   list[str] = field(default_factory=list)
    languages: list[str] = field(default_factory=list)


@dataclass
class BrowserValidation:
    valid: bool = True
    warnings: list[str] = field(default_factory=list)
    risk_score: int = 0
    recommended_actions: list[str] = field(default_factory=list)


def parse_resolution(resolution: str) -> tuple[int, int]:
    """Parse ``"1920x1080"`` into ``(1920, 1080)``."""
    match = _RESOLUTION_RE.match(resolution or "")
    if not match:
        raise ValidationError(f"Malformed screen resolution: {resolution!r}")
    return int(match.group(1)), int(match.group(2))


def validate_browser(
    signals: BrowserSignals,
    expected_fingerprint: str | None = None,
    server_timezone: str = "UTC",
) -> BrowserValidation:
    # The fingerprint is carried for callers that pin a device; it is not one
    # of the scored checks, so the risk score stays within 4 × 25.
    if expected_fingerprint:
        logger.debug("Browser validation with pinned fingerprint %s", expected_fingerprint)

    width, height = parse_resolution(signals.screen_resolution)

    warnings: list[str] = []
    valid = True

    agent = signals.user_agent.lower()
    if any(sig in agent for sig in AUTOMATION_AGENTS):
        warnings.append("Suspicious user agent detected")
        valid = False

    if any(sig in plugin.lower() for plugin in signals.plugins for sig in AUTOMATION_PLUGINS):
        warnings.append("Browser automation tools detected")
        valid = False

    if width < MIN_WIDTH or height < MIN_HEIGHT:
        warnings.append("Screen resolution too small for assessment")
        valid = False

    if signals.timezone != server_timezone:
        warnings.append("Timezone mismatch detected")

    if not valid:
        logger.warning("Browser environment rejected: %s", "; ".join(warnings))

    return BrowserValidation(
        valid               = valid,
        warnings            = warnings,
        risk_score          = 0 if valid else RISK_PER_WARNING * len(warnings),
        recommended_actions = [] if valid else list(RECOMMENDED_ACTIONS),
    )

"""
Per-assessment anti-cheat policy.

``AntiCheatConfig`` is the effective, fully-populated policy a session runs
under. ``AntiCheatOverrides`` is the typed form of the override blob an
assessment may carry (stored in camelCase by the course service); every
field is optional and ``merge_config`` lays the set ones over the defaults.
"""
from __future__ import annotations

import pydantic
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from proctor.config import Settings, get_settings
from proctor.core.errors import ValidationError


class AntiCheatConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    # Browser lockdown toggles
    enable_browser_lockdown: bool = True
    prevent_tab_switching:   bool = True
    prevent_copy_paste:      bool = True
    prevent_right_click:     bool = True
    prevent_dev_tools:       bool = True
    require_fullscreen:      bool = True
    prevent_back_navigation: bool = True

    # Monitoring
    enable_webcam_monitoring:  bool = False
    enable_screen_recording:   bool = False
    time_analysis_enabled:     bool = True
    enable_keystroke_analysis: bool = False

    # Escalation limits
    max_violations_allowed: int = Field(default=5, ge=1, le=20)
    auto_flag_threshold:    int = Field(default=3, ge=1, le=10)
    session_timeout_ms:     int = Field(default=3_600_000, ge=300_000, le=14_400_000)

    # Network / delivery
    ip_restriction_enabled: bool = False
    allowed_ip_ranges: tuple[str, ...] = ()
    question_shuffling: bool = True
    option_shuffling:   bool = True


class AntiCheatOverrides(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    enable_browser_lockdown: bool | None = None
    prevent_tab_switching:   bool | None = None
    prevent_copy_paste:      bool | None = None
    prevent_right_click:     bool | None = None
    prevent_dev_tools:       bool | None = None
    require_fullscreen:      bool | None = None
    prevent_back_navigation: bool | None = None

    enable_webcam_monitoring:  bool | None = None
    enable_screen_recording:   bool | None = None
    time_analysis_enabled:     bool | None = None
    enable_keystroke_analysis: bool | None = None

    max_violations_allowed: int | None = None
    auto_flag_threshold:    int | None = None
    # stored as "sessionTimeout" (milliseconds) in assessment metadata
    session_timeout_ms:     int | None = Field(default=None, alias="sessionTimeout")

    ip_restriction_enabled: bool | None = None
    allowed_ip_ranges: list[str] | None = None
    question_shuffling: bool | None = None
    option_shuffling:   bool | None = None

    @classmethod
    def from_metadata(cls, metadata: dict | None) -> "AntiCheatOverrides":
        """Extract overrides from an assessment ``metadata`` JSON blob."""
        raw = (metadata or {}).get("antiCheatConfig")
        if not isinstance(raw, dict):
            return cls()
        try:
            return cls.model_validate(raw)
        except pydantic.ValidationError as exc:
            raise ValidationError(f"Invalid anti-cheat override: {exc}") from exc


def default_config(settings: Settings | None = None) -> AntiCheatConfig:
    settings = settings or get_settings()
    return AntiCheatConfig(
        max_violations_allowed = settings.default_max_violations_allowed,
        auto_flag_threshold    = settings.default_auto_flag_threshold,
        session_timeout_ms     = settings.default_session_timeout_ms,
    )


def merge_config(
    defaults:  AntiCheatConfig,
    overrides: AntiCheatOverrides | None,
) -> AntiCheatConfig:
    """Return ``defaults`` with every field set in ``overrides`` replaced."""
    if overrides is None:
        return defaults
    update = overrides.model_dump(exclude_none=True)
    if "allowed_ip_ranges" in update:
        update["allowed_ip_ranges"] = tuple(update["allowed_ip_ranges"])
    try:
        return AntiCheatConfig.model_validate({**defaults.model_dump(), **update})
    except pydantic.ValidationError as exc:
        raise ValidationError(f"Invalid anti-cheat override: {exc}") from exc

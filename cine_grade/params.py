from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, fields, replace
from typing import Any, Mapping

import numpy as np


log = logging.getLogger(__name__)

# Smallest gamma the kernel will divide by.
EPS = 0.01

# Legacy camelCase keys still found in saved grades.
_ALIASES = {
    "hueRotate": "hue_rotate",
}


@dataclass(frozen=True)
class GradingParameters:
    """Every control of a grade, fully defaulted.

    Each default is the identity value for the stage that reads it, so
    ``GradingParameters()`` grades an image into itself. Groups below are
    for readability only; the record is flat.
    """

    # Primary
    exposure: float = 0.0  # stops
    contrast: float = 1.0
    pivot: float = 0.5
    brightness: float = 1.0
    gamma: float = 1.0
    offset: float = 0.0  # black lift, 0..1 space
    opacity: float = 1.0
    invert: float = 0.0

    # White balance (0..255 pixel space)
    temperature: float = 0.0
    tint: float = 0.0

    # Saturation
    saturation: float = 1.0
    vibrance: float = 1.0
    hue_rotate: float = 0.0  # degrees; baked as a YIQ rotation after saturation, not only quick look

    # Log wheels (lift / gamma / gain / offset per channel)
    lift_r: float = 0.0
    lift_g: float = 0.0
    lift_b: float = 0.0
    gamma_r: float = 1.0
    gamma_g: float = 1.0
    gamma_b: float = 1.0
    gain_r: float = 1.0
    gain_g: float = 1.0
    gain_b: float = 1.0
    offset_r: float = 0.0
    offset_g: float = 0.0
    offset_b: float = 0.0

    # Channel mixer, mix_<out>_<in>
    mix_red_red: float = 1.0
    mix_red_green: float = 0.0
    mix_red_blue: float = 0.0
    mix_green_red: float = 0.0
    mix_green_green: float = 1.0
    mix_green_blue: float = 0.0
    mix_blue_red: float = 0.0
    mix_blue_green: float = 0.0
    mix_blue_blue: float = 1.0

    # HSL vector scope: saturation delta and hue shift (degrees) per axis
    sat_red: float = 0.0
    sat_orange: float = 0.0
    sat_yellow: float = 0.0
    sat_green: float = 0.0
    sat_cyan: float = 0.0
    sat_blue: float = 0.0
    sat_purple: float = 0.0
    sat_magenta: float = 0.0
    hue_red: float = 0.0
    hue_orange: float = 0.0
    hue_yellow: float = 0.0
    hue_green: float = 0.0
    hue_cyan: float = 0.0
    hue_blue: float = 0.0
    hue_purple: float = 0.0
    hue_magenta: float = 0.0

    # Split toning; hues are inert while every saturation is 0
    split_shadow_hue: float = 210.0
    split_shadow_sat: float = 0.0
    split_mid_hue: float = 0.0
    split_mid_sat: float = 0.0
    split_highlight_hue: float = 30.0
    split_highlight_sat: float = 0.0
    split_balance: float = 0.0

    # Film emulsion
    grain: float = 0.0
    grain_size: float = 1.0
    grain_roughness: float = 0.5
    grain_color: bool = False
    halation: float = 0.0
    halation_threshold: float = 0.8
    halation_radius: float = 0.0
    bloom: float = 0.0
    bloom_threshold: float = 0.8
    bloom_radius: float = 0.0
    diffusion: float = 0.0

    # Lens / geometry
    lens_distortion: float = 0.0
    anamorphic_squeeze: float = 1.0
    geometry_y: float = 1.0
    chromatic_aberration: float = 0.0
    vignette: float = 0.0
    vignette_roundness: float = 0.0
    vignette_feather: float = 0.5
    vignette_center_x: float = 0.0
    vignette_center_y: float = 0.0
    lens_center_x: float = 0.0
    lens_center_y: float = 0.0
    pan_x: float = 0.0
    pan_y: float = 0.0
    rotate: float = 0.0  # degrees
    crop_zoom: float = 0.0

    # Detail & beauty
    sharpness: float = 0.0
    structure: float = 0.0
    clarity: float = 0.0
    dehaze: float = 0.0
    denoise: float = 0.0
    denoise_chroma: float = 0.0
    skin_smooth: float = 0.0
    eye_clarity: float = 0.0
    teeth_whitening: float = 0.0
    feature_pop: float = 0.0
    face_warp: float = 0.0

    # Selective color
    selective_hue: float = 0.0  # degrees
    selective_threshold: float = 40.0  # degrees
    selective_mix: float = 0.0
    selective_target_sat: float = 0.0

    # Quick-look only filters (never baked)
    sepia: float = 0.0
    grayscale: float = 0.0
    blur: float = 0.0

    # Identity
    preset_name: str = "NEUTRAL"
    css_filter_string: str = field(default="none", init=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "css_filter_string", filter_description(self))

    def with_changes(self, **changes: Any) -> "GradingParameters":
        unknown = sorted(set(changes) - _FIELD_SET)
        if unknown:
            raise TypeError(f"Unknown grading field(s): {', '.join(unknown)}")
        return replace(self, **changes)

    def is_identity(self) -> bool:
        return self == DEFAULT_PARAMS.with_changes(preset_name=self.preset_name)

    def mixer_matrix(self) -> np.ndarray:
        return np.array(
            [
                [self.mix_red_red, self.mix_red_green, self.mix_red_blue],
                [self.mix_green_red, self.mix_green_green, self.mix_green_blue],
                [self.mix_blue_red, self.mix_blue_green, self.mix_blue_blue],
            ],
            dtype=np.float32,
        )

    def sanitized(self) -> "GradingParameters":
        """Clamp every numeric field into the range the kernel can evaluate.

        Non-finite values fall back to the field default. Out-of-domain input
        is never an error.
        """
        changes: dict[str, Any] = {}
        for f in _NUMERIC_FIELDS:
            v = getattr(self, f.name)
            if not math.isfinite(v):
                changes[f.name] = f.default
        p = replace(self, **changes) if changes else self

        clamp: dict[str, float] = {}
        for name in ("gamma", "gamma_r", "gamma_g", "gamma_b"):
            if getattr(p, name) < EPS:
                clamp[name] = EPS
        for name in ("pan_x", "pan_y"):
            v = getattr(p, name)
            if abs(v) > 0.5:
                clamp[name] = math.copysign(0.5, v)
        for name in ("halation_radius", "bloom_radius", "vignette_feather", "blur"):
            if getattr(p, name) < 0.0:
                clamp[name] = 0.0
        if p.grain_size < 1.0:
            clamp["grain_size"] = 1.0
        if p.selective_threshold < 0.5:
            clamp["selective_threshold"] = 0.5
        # dehaze divides by (1 - 0.2 * dehaze)
        if p.dehaze > 4.75:
            clamp["dehaze"] = 4.75
        if clamp:
            log.debug("Clamped grading fields: %s", clamp)
            p = replace(p, **clamp)
        return p

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "GradingParameters":
        """Build parameters from a (possibly partial) mapping.

        Missing keys keep their defaults; unknown keys are ignored.
        """
        return DEFAULT_PARAMS.with_changes(**coerce_fields(d))


def _parse_bool(value: Any) -> bool:
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("true", "1", "yes", "on"):
            return True
        if text in ("false", "0", "no", "off", ""):
            return False
        raise ValueError(f"not a boolean: {value!r}")
    if isinstance(value, (bool, int, float)):
        return bool(value)
    raise TypeError(f"not a boolean: {value!r}")


def coerce_fields(d: Mapping[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in d.items():
        name = _ALIASES.get(key, key)
        if name == "css_filter_string":
            continue
        f = _FIELDS_BY_NAME.get(name)
        if f is None:
            log.warning("Ignoring unknown grading field %r", key)
            continue
        try:
            if f.type == "bool":
                out[name] = _parse_bool(value)
            elif f.type == "str":
                out[name] = str(value)
            else:
                out[name] = float(value)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid value for {name!r}: {value!r}") from e
    return out


def field_names() -> tuple[str, ...]:
    return tuple(f.name for f in fields(GradingParameters) if f.init)


def _fmt(v: float) -> str:
    return f"{v:g}"


def filter_description(p: GradingParameters) -> str:
    """Cheap CSS-style filter chain for quick-look previews.

    Only non-identity terms are emitted, so the defaults describe to ``"none"``.
    """
    parts = []
    if p.brightness != 1.0:
        parts.append(f"brightness({_fmt(p.brightness)})")
    if p.contrast != 1.0:
        parts.append(f"contrast({_fmt(p.contrast)})")
    if p.saturation != 1.0:
        parts.append(f"saturate({_fmt(p.saturation)})")
    if p.blur:
        parts.append(f"blur({_fmt(p.blur)}px)")
    if p.sepia:
        parts.append(f"sepia({_fmt(p.sepia)})")
    if p.hue_rotate:
        parts.append(f"hue-rotate({_fmt(p.hue_rotate)}deg)")
    if p.grayscale:
        parts.append(f"grayscale({_fmt(p.grayscale)})")
    return " ".join(parts) if parts else "none"


_FIELDS_BY_NAME = {f.name: f for f in fields(GradingParameters) if f.init}
_FIELD_SET = frozenset(_FIELDS_BY_NAME)
_NUMERIC_FIELDS = tuple(f for f in _FIELDS_BY_NAME.values() if f.type == "float")

DEFAULT_PARAMS = GradingParameters()

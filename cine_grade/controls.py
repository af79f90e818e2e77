from __future__ import annotations

from dataclasses import dataclass

from .params import GradingParameters, field_names


@dataclass(frozen=True)
class ControlSpec:
    key: str
    label: str
    group: str
    minimum: float
    maximum: float
    step: float

    @property
    def steps(self) -> int:
        return int(round((self.maximum - self.minimum) / self.step))

    def slider_to_value(self, position: int) -> float:
        position = min(max(int(position), 0), self.steps)
        return round(self.minimum + position * self.step, 6)

    def value_to_slider(self, value: float) -> int:
        value = min(max(float(value), self.minimum), self.maximum)
        return int(round((value - self.minimum) / self.step))


def _c(key: str, label: str, group: str, lo: float, hi: float, step: float = 0.01) -> ControlSpec:
    return ControlSpec(key, label, group, lo, hi, step)


CONTROLS: tuple[ControlSpec, ...] = (
    # Primary
    _c("exposure", "Exposure", "PRIMARY", -4.0, 4.0),
    _c("contrast", "Contrast", "PRIMARY", 0.0, 2.0),
    _c("pivot", "Pivot", "PRIMARY", 0.0, 1.0),
    _c("brightness", "Brightness", "PRIMARY", 0.5, 1.8),
    _c("gamma", "Gamma", "PRIMARY", 0.2, 3.0),
    _c("offset", "Black Offset", "PRIMARY", -0.2, 0.2, 0.001),
    _c("temperature", "Temperature", "PRIMARY", -100.0, 100.0, 1.0),
    _c("tint", "Tint", "PRIMARY", -100.0, 100.0, 1.0),
    _c("opacity", "Opacity", "PRIMARY", 0.0, 1.0),
    _c("invert", "Invert", "PRIMARY", 0.0, 1.0),
    # Log wheels
    *(
        _c(f"{kind}_{ch}", f"{kind.title()} {ch.upper()}", "LGG", lo, hi, step)
        for kind, lo, hi, step in (
            ("lift", -0.2, 0.2, 0.001),
            ("gamma", 0.5, 2.0, 0.01),
            ("gain", 0.5, 1.5, 0.01),
            ("offset", -0.2, 0.2, 0.001),
        )
        for ch in "rgb"
    ),
    # Colour
    _c("saturation", "Saturation", "COLOR", 0.0, 2.5),
    _c("vibrance", "Vibrance", "COLOR", 0.0, 2.5),
    _c("hue_rotate", "Hue Rotate", "COLOR", -180.0, 180.0, 1.0),
    *(
        _c(f"mix_{out}_{src}", f"{out.title()} from {src.title()}", "MIXER", -2.0, 2.0)
        for out in ("red", "green", "blue")
        for src in ("red", "green", "blue")
    ),
    *(
        _c(f"sat_{axis}", f"{axis.title()} Sat", "HSL", -1.0, 1.0)
        for axis in ("red", "orange", "yellow", "green", "cyan", "blue", "purple", "magenta")
    ),
    *(
        _c(f"hue_{axis}", f"{axis.title()} Hue", "HSL", -30.0, 30.0, 1.0)
        for axis in ("red", "orange", "yellow", "green", "cyan", "blue", "purple", "magenta")
    ),
    _c("split_shadow_hue", "Shadow Hue", "SPLIT", 0.0, 360.0, 1.0),
    _c("split_shadow_sat", "Shadow Sat", "SPLIT", 0.0, 1.0),
    _c("split_mid_hue", "Mid Hue", "SPLIT", 0.0, 360.0, 1.0),
    _c("split_mid_sat", "Mid Sat", "SPLIT", 0.0, 1.0),
    _c("split_highlight_hue", "Highlight Hue", "SPLIT", 0.0, 360.0, 1.0),
    _c("split_highlight_sat", "Highlight Sat", "SPLIT", 0.0, 1.0),
    _c("split_balance", "Balance", "SPLIT", -0.5, 0.5),
    _c("selective_hue", "Keep Hue", "SPLIT", 0.0, 360.0, 1.0),
    _c("selective_threshold", "Keep Range", "SPLIT", 1.0, 180.0, 1.0),
    _c("selective_mix", "Desaturate Rest", "SPLIT", 0.0, 1.0),
    _c("selective_target_sat", "Boost Kept", "SPLIT", 0.0, 2.0),
    # Film
    _c("grain", "Grain", "FILM", 0.0, 1.0),
    _c("grain_size", "Grain Size", "FILM", 1.0, 6.0, 1.0),
    _c("halation", "Halation", "FILM", 0.0, 1.0),
    _c("halation_radius", "Halation Radius", "FILM", 0.0, 30.0, 0.5),
    _c("bloom", "Bloom", "FILM", 0.0, 1.0),
    _c("bloom_radius", "Bloom Radius", "FILM", 0.0, 2.0),
    _c("diffusion", "Diffusion", "FILM", 0.0, 1.0),
    # Lens
    _c("lens_distortion", "Distortion", "LENS", -1.0, 1.0),
    _c("chromatic_aberration", "Chromatic Aberration", "LENS", 0.0, 2.0),
    _c("vignette", "Vignette", "LENS", 0.0, 1.0),
    _c("vignette_roundness", "Vignette Roundness", "LENS", -1.0, 1.0),
    _c("vignette_feather", "Vignette Feather", "LENS", 0.0, 1.0),
    _c("vignette_center_x", "Vignette Center X", "LENS", -1.0, 1.0),
    _c("vignette_center_y", "Vignette Center Y", "LENS", -1.0, 1.0),
    # Detail
    _c("sharpness", "Sharpness", "DETAIL", 0.0, 2.0),
    _c("structure", "Structure", "DETAIL", 0.0, 2.0),
    _c("clarity", "Clarity", "DETAIL", -1.0, 1.0),
    _c("dehaze", "Dehaze", "DETAIL", -1.0, 1.0),
    _c("denoise", "Denoise", "DETAIL", 0.0, 1.0),
    _c("denoise_chroma", "Chroma Denoise", "DETAIL", 0.0, 1.0),
    _c("skin_smooth", "Skin Smooth", "DETAIL", 0.0, 1.0),
    _c("eye_clarity", "Eye Clarity", "DETAIL", 0.0, 1.0),
    _c("teeth_whitening", "Teeth Whitening", "DETAIL", 0.0, 1.0),
    _c("feature_pop", "Feature Pop", "DETAIL", 0.0, 1.0),
    # Geometry
    _c("anamorphic_squeeze", "Stretch X", "GEOMETRY", 0.5, 2.0),
    _c("geometry_y", "Stretch Y", "GEOMETRY", 0.5, 2.0),
    _c("crop_zoom", "Crop Zoom", "GEOMETRY", 0.0, 1.0),
    _c("pan_x", "Pan", "GEOMETRY", -0.5, 0.5),
    _c("pan_y", "Tilt", "GEOMETRY", -0.5, 0.5),
    _c("rotate", "Roll", "GEOMETRY", -45.0, 45.0, 0.5),
    _c("face_warp", "Face Slim", "GEOMETRY", 0.0, 1.0),
    _c("lens_center_x", "Lens Center X", "GEOMETRY", -1.0, 1.0),
    _c("lens_center_y", "Lens Center Y", "GEOMETRY", -1.0, 1.0),
)


def check_controls(controls: tuple[ControlSpec, ...]) -> None:
    unknown = sorted({c.key for c in controls} - set(field_names()))
    if unknown:
        raise ValueError(f"Controls bound to unknown grading field(s): {', '.join(unknown)}")


check_controls(CONTROLS)


def groups() -> list[str]:
    seen: list[str] = []
    for c in CONTROLS:
        if c.group not in seen:
            seen.append(c.group)
    return seen


def controls_in(group: str) -> list[ControlSpec]:
    return [c for c in CONTROLS if c.group == group]


def read_slider_values(params: GradingParameters) -> dict[str, int]:
    return {c.key: c.value_to_slider(getattr(params, c.key)) for c in CONTROLS}

from __future__ import annotations

import colorsys
import logging

import numpy as np

from .params import EPS, GradingParameters


log = logging.getLogger(__name__)

ArrayF = np.ndarray

# (name, hue center 0..1, half width) of the eight vector scope axes.
HUE_AXES = (
    ("red", 0.0, 0.08),
    ("orange", 0.08, 0.08),
    ("yellow", 0.16, 0.12),
    ("green", 0.33, 0.15),
    ("cyan", 0.5, 0.15),
    ("blue", 0.66, 0.15),
    ("purple", 0.78, 0.1),
    ("magenta", 0.9, 0.1),
)


def _to_float01(rgb8: np.ndarray) -> ArrayF:
    if rgb8.dtype != np.uint8:
        raise TypeError(f"Expected uint8 image, got {rgb8.dtype}")
    return rgb8.astype(np.float32) / 255.0


def _to_uint8(rgb01: ArrayF) -> np.ndarray:
    rgb01 = np.clip(rgb01, 0.0, 1.0)
    return (rgb01 * 255.0 + 0.5).astype(np.uint8)


def luminance(rgb: ArrayF) -> ArrayF:
    # Rec.709 luma; scale-agnostic (0..1 or 0..255)
    return rgb[..., 0] * 0.2126 + rgb[..., 1] * 0.7152 + rgb[..., 2] * 0.0722


def blend(original: ArrayF, filtered: ArrayF, strength: float) -> ArrayF:
    strength = float(np.clip(strength, 0.0, 1.0))
    return original * (1.0 - strength) + filtered * strength


def needs_spatial(p: GradingParameters) -> bool:
    return (
        p.sharpness > 0
        or p.structure > 0
        or p.feature_pop > 0
        or p.clarity != 0
        or p.skin_smooth > 0
        or p.denoise > 0
        or p.denoise_chroma > 0
        or p.teeth_whitening > 0
        or p.eye_clarity > 0
    )


def apply_chromatic_aberration(src255: ArrayF, amount: float) -> ArrayF:
    """Sample red from the left and blue from the right, more so near the edges.

    The shift grows with the squared normalized distance from the centre.
    Samples that would fall off the row keep the pixel's own channel.
    """
    amt = float(amount) * 1.5
    if amt <= 0:
        return src255

    h, w = src255.shape[:2]
    yy, xx = np.indices((h, w))
    dx = (xx - w / 2.0) / w
    dy = (yy - h / 2.0) / h
    off = np.floor(amt * (dx * dx + dy * dy) * 20.0).astype(np.int64)

    rx = xx - off
    bx = xx + off
    r_ok = (off > 0) & (rx >= 0)
    b_ok = (off > 0) & (bx < w)

    out = src255.copy()
    out[..., 0] = np.where(r_ok, src255[yy, np.clip(rx, 0, w - 1), 0], src255[..., 0])
    out[..., 2] = np.where(b_ok, src255[yy, np.clip(bx, 0, w - 1), 2], src255[..., 2])
    return out


def apply_spatial_detail(src255: ArrayF, center255: ArrayF, p: GradingParameters) -> ArrayF:
    """Neighbourhood pass over interior pixels; the outer 1px ring is copied through.

    Neighbours always come from ``src255`` (the frozen input); ``center255`` is
    the per-pixel value after chromatic aberration.
    """
    h, w = src255.shape[:2]
    if h < 3 or w < 3:
        return center255

    c = center255[1:-1, 1:-1]
    avg = (src255[:-2, 1:-1] + src255[2:, 1:-1] + src255[1:-1, :-2] + src255[1:-1, 2:] + c) * 0.2
    hp = c - avg
    v = c.copy()

    if p.sharpness > 0 or p.feature_pop > 0 or p.structure > 0:
        boost = p.sharpness * 3.0 + p.feature_pop * 2.0 + p.structure * 1.5
        v = v + hp * boost

    if p.clarity != 0:
        v = v + hp * (p.clarity * 0.5)

    if p.skin_smooth > 0 or p.denoise > 0:
        r, g, b = v[..., 0], v[..., 1], v[..., 2]
        # R > G > B with some red dominance reads as skin
        is_skin = (r > g) & (g > b) & (r > 40) & (np.abs(r - g) > 10)
        denoise = max(p.denoise, 0.0)
        strength = np.where(is_skin, max(denoise, p.skin_smooth), denoise)
        mix = (strength * 0.6)[..., None]
        v = v * (1.0 - mix) + avg * mix

    if p.denoise_chroma > 0:
        mix = p.denoise_chroma * 0.6
        y = luminance(v)[..., None]
        y_avg = luminance(avg)[..., None]
        v = y + (v - y) * (1.0 - mix) + (avg - y_avg) * mix

    luma = luminance(v)

    if p.teeth_whitening > 0:
        r, g, b = v[..., 0], v[..., 1], v[..., 2]
        mx = v.max(axis=-1)
        mn = v.min(axis=-1)
        sat = (mx - mn) / np.where(mx == 0, 1.0, mx)
        sel = (luma > 100) & (sat < 0.4) & (r > b) & (g > b)

        ws = p.teeth_whitening * 0.5
        t = v.copy()
        t[..., 0] = r * (1 - ws * 0.2) + 255 * ws * 0.2
        t[..., 1] = g * (1 - ws * 0.2) + 255 * ws * 0.2
        t[..., 2] = b * (1 - ws * 0.2) + 255 * ws * 0.4
        gray = t.mean(axis=-1, keepdims=True)
        t = t * (1 - ws * 0.3) + gray * (ws * 0.3)
        v = np.where(sel[..., None], t, v)

    if p.eye_clarity > 0:
        sel = (luma > 180) & (luma < 240)
        v = np.where(sel[..., None], v + hp * (p.eye_clarity * 4.0), v)

    out = center255.copy()
    out[1:-1, 1:-1] = v
    return out


def apply_channel_mixer(rgb: ArrayF, matrix: np.ndarray) -> ArrayF:
    if np.array_equal(matrix, np.eye(3, dtype=matrix.dtype)):
        return rgb
    return rgb @ matrix.T.astype(np.float32)


def apply_white_balance(rgb255: ArrayF, temperature: float, tint: float) -> ArrayF:
    # Additive shifts in 0..255 space: temperature warms R and cools B, tint lifts G.
    t = float(temperature) * 0.8
    ti = float(tint) * 0.8
    if t == 0.0 and ti == 0.0:
        return rgb255
    shift = np.array([t, ti, -t], dtype=np.float32)
    return rgb255 + shift


def apply_dehaze(rgb01: ArrayF, amount: float) -> ArrayF:
    a = float(amount)
    if a == 0.0:
        return rgb01
    f = a * 0.2
    min_c = rgb01.min(axis=-1, keepdims=True)
    return (rgb01 - min_c * f) / (1.0 - f)


def apply_tone(rgb01: ArrayF, p: GradingParameters) -> ArrayF:
    """Gamma, exposure, then pivoted contrast plus brightness and offset."""
    out = rgb01
    inv_gamma = 1.0 / max(p.gamma, EPS)
    if inv_gamma != 1.0:
        out = np.power(np.maximum(out, 0.0), inv_gamma)
    if p.exposure:
        out = out * (2.0 ** float(p.exposure))
    if p.contrast != 1.0 or p.brightness != 1.0 or p.offset != 0.0:
        out = (out - p.pivot) * p.contrast + p.pivot + (p.brightness - 1.0) + p.offset
    return out


def apply_log_wheels(rgb01: ArrayF, p: GradingParameters) -> ArrayF:
    lift = np.array([p.lift_r, p.lift_g, p.lift_b], dtype=np.float32)
    gamma = np.array([p.gamma_r, p.gamma_g, p.gamma_b], dtype=np.float32)
    gain = np.array([p.gain_r, p.gain_g, p.gain_b], dtype=np.float32)
    offset = np.array([p.offset_r, p.offset_g, p.offset_b], dtype=np.float32)
    if not (lift.any() or offset.any()) and (gamma == 1.0).all() and (gain == 1.0).all():
        return rgb01

    val = (rgb01 * (1.0 - lift) + lift + offset) * gain
    inv = 1.0 / np.maximum(gamma, EPS)
    pos = val > 0
    return np.where(pos, np.power(np.where(pos, val, 1.0), inv), val)


def hue_color(degrees: float) -> np.ndarray:
    """Fully saturated RGB (0..1) at the given hue."""
    r, g, b = colorsys.hls_to_rgb((float(degrees) % 360.0) / 360.0, 0.5, 1.0)
    return np.array([r, g, b], dtype=np.float32)


def apply_split_tone(rgb01: ArrayF, p: GradingParameters) -> ArrayF:
    if not (p.split_shadow_sat > 0 or p.split_mid_sat > 0 or p.split_highlight_sat > 0):
        return rgb01

    l = luminance(rgb01)
    bal = p.split_balance
    shadow_mask = np.maximum(0.0, 1.0 - l * 2.0 + bal)
    highlight_mask = np.maximum(0.0, (l - 0.5 - bal) * 2.0)
    mid_mask = 1.0 - shadow_mask - highlight_mask

    out = rgb01
    for mask, sat, hue in (
        (shadow_mask, p.split_shadow_sat, p.split_shadow_hue),
        (highlight_mask, p.split_highlight_sat, p.split_highlight_hue),
        (mid_mask, p.split_mid_sat, p.split_mid_hue),
    ):
        if sat <= 0:
            continue
        strength = np.where(mask > 0, mask * sat * 0.3, 0.0)[..., None]
        out = out + (hue_color(hue) - out) * strength
    return out


def rgb_to_hsl(rgb01: ArrayF) -> tuple[ArrayF, ArrayF, ArrayF]:
    """Return (hue 0..1, saturation, lightness); tolerates out-of-range input."""
    r, g, b = rgb01[..., 0], rgb01[..., 1], rgb01[..., 2]
    mx = rgb01.max(axis=-1)
    mn = rgb01.min(axis=-1)
    lum = (mx + mn) / 2.0
    d = mx - mn
    chromatic = d != 0

    denom = np.where(lum > 0.5, 2.0 - mx - mn, mx + mn)
    ok = chromatic & (denom != 0)
    sat = np.where(ok, d / np.where(ok, denom, 1.0), 0.0)

    safe_d = np.where(chromatic, d, 1.0)
    h_r = (g - b) / safe_d + np.where(g < b, 6.0, 0.0)
    h_g = (b - r) / safe_d + 2.0
    h_b = (r - g) / safe_d + 4.0
    hue = np.where(mx == r, h_r, np.where(mx == g, h_g, h_b))
    hue = np.where(chromatic, hue / 6.0, 0.0)
    return hue, sat, lum


def _hue_distance(hue: ArrayF, center: float) -> ArrayF:
    diff = np.abs(hue - center)
    return np.where(diff > 0.5, 1.0 - diff, diff)


def _rescale_chroma(rgb01: ArrayF, lum: ArrayF, factor: ArrayF | float) -> ArrayF:
    l = lum[..., None]
    f = factor[..., None] if isinstance(factor, np.ndarray) else factor
    return l + (rgb01 - l) * f


def apply_saturation_vibrance(rgb01: ArrayF, sat: ArrayF, lum: ArrayF, saturation: float, vibrance: float) -> ArrayF:
    # Vibrance is weighted toward muted pixels: (1 - 2s) flips sign past s=0.5.
    if saturation == 1.0 and vibrance == 1.0:
        return rgb01
    total = saturation + (vibrance - 1.0) * (1.0 - sat * 2.0)
    return np.where((sat > 0)[..., None], _rescale_chroma(rgb01, lum, total), rgb01)


def apply_hue_shift(rgb01: ArrayF, degrees: ArrayF | float) -> ArrayF:
    # Hue rotation in YIQ space; ``degrees`` may be a per-pixel array.
    theta = np.deg2rad(degrees)
    cos_t = np.cos(theta).astype(np.float32)
    sin_t = np.sin(theta).astype(np.float32)

    r = rgb01[..., 0]
    g = rgb01[..., 1]
    b = rgb01[..., 2]
    y = 0.299 * r + 0.587 * g + 0.114 * b
    i = 0.596 * r - 0.275 * g - 0.321 * b
    q = 0.212 * r - 0.523 * g + 0.311 * b

    i2 = i * cos_t - q * sin_t
    q2 = i * sin_t + q * cos_t

    r2 = y + 0.956 * i2 + 0.621 * q2
    g2 = y - 0.272 * i2 - 0.647 * q2
    b2 = y - 1.106 * i2 + 1.703 * q2
    return np.stack([r2, g2, b2], axis=-1).astype(np.float32)


def apply_hue_rotate(rgb01: ArrayF, degrees: float) -> ArrayF:
    if not degrees:
        return rgb01
    return apply_hue_shift(rgb01, float(degrees))


def hue_axis_weights(hue: ArrayF) -> dict[str, ArrayF]:
    """Triangular falloff weight of every pixel toward each vector scope axis."""
    weights = {}
    for name, center, width in HUE_AXES:
        diff = _hue_distance(hue, center)
        weights[name] = np.where(diff < width, 1.0 - diff / width, 0.0)
    return weights


def apply_hue_vectors(rgb01: ArrayF, hue: ArrayF, sat: ArrayF, lum: ArrayF, p: GradingParameters) -> ArrayF:
    sat_deltas = {name: getattr(p, f"sat_{name}") for name, _, _ in HUE_AXES}
    hue_shifts = {name: getattr(p, f"hue_{name}") for name, _, _ in HUE_AXES}
    if not any(sat_deltas.values()) and not any(hue_shifts.values()):
        return rgb01

    weights = hue_axis_weights(hue)
    out = rgb01

    boost = sum(sat_deltas[n] * weights[n] for n in weights if sat_deltas[n])
    if isinstance(boost, np.ndarray):
        sel = (boost != 0) & (sat > 0)
        out = np.where(sel[..., None], _rescale_chroma(out, lum, 1.0 + boost), out)

    shift = sum(hue_shifts[n] * weights[n] for n in weights if hue_shifts[n])
    if isinstance(shift, np.ndarray):
        shift = np.where(sat > 0, shift, 0.0)
        # Pixels with no shift skip the YIQ round trip and stay bit-exact.
        out = np.where((shift != 0)[..., None], apply_hue_shift(out, shift), out)
    return out


def selective_mask(hue: ArrayF, target_degrees: float, threshold_degrees: float) -> ArrayF:
    """1 at the target hue, square-root falloff to 0 at +-threshold."""
    thr = max(float(threshold_degrees), EPS) / 360.0
    diff = _hue_distance(hue, (float(target_degrees) % 360.0) / 360.0)
    return np.where(diff < thr, np.sqrt(np.clip(1.0 - diff / thr, 0.0, 1.0)), 0.0)


def apply_selective_color(rgb01: ArrayF, hue: ArrayF, lum: ArrayF, p: GradingParameters) -> ArrayF:
    if p.selective_mix <= 0:
        return rgb01

    mask = selective_mask(hue, p.selective_hue, p.selective_threshold)
    background = 1.0 - p.selective_mix
    out = _rescale_chroma(rgb01, lum, background + (1.0 - background) * mask)

    if p.selective_target_sat:
        boosted = _rescale_chroma(out, lum, 1.0 + mask * p.selective_target_sat)
        out = np.where((mask > 0)[..., None], boosted, out)
    return out


def grain_mask(lum: ArrayF) -> ArrayF:
    # Bell over lightness: 1 at mid-gray, 0 at black and white.
    return np.clip(1.0 - (2.0 * lum - 1.0) ** 4, 0.0, 1.0)


def apply_grain(
    rgb01: ArrayF,
    lum: ArrayF,
    amount: float,
    rng: np.random.Generator,
    size: float = 1.0,
    color: bool = False,
) -> ArrayF:
    if amount <= 0:
        return rgb01

    h, w = rgb01.shape[:2]
    cell = max(1, int(round(size)))
    gh = -(-h // cell)
    gw = -(-w // cell)
    noise = rng.random((gh, gw), dtype=np.float32) - 0.5
    if cell > 1:
        noise = np.repeat(np.repeat(noise, cell, axis=0), cell, axis=1)[:h, :w]
    noise = noise * (amount * 60.0 / 255.0) * grain_mask(lum)

    if color:
        per_channel = 1.0 + rng.random((h, w, 3), dtype=np.float32) * 0.5
        return rgb01 + noise[..., None] * per_channel
    return rgb01 + noise[..., None]


def grade(image: np.ndarray, params: GradingParameters, rng: np.random.Generator | None = None) -> np.ndarray:
    """Run the per-pixel colour and detail kernel over an HxWx3/4 uint8 array.

    The input is never modified: every step reads a frozen float snapshot and
    produces a new buffer. Alpha, if present, is passed through.
    """
    arr = np.asarray(image)
    if arr.dtype != np.uint8:
        raise TypeError(f"Expected uint8 image, got {arr.dtype}")
    if arr.ndim != 3 or arr.shape[2] not in (3, 4):
        raise ValueError(f"Expected HxWx3 or HxWx4 image, got shape {arr.shape}")

    p = params.sanitized()
    src = arr[..., :3].astype(np.float32)

    rgb = apply_chromatic_aberration(src, p.chromatic_aberration)
    if needs_spatial(p):
        rgb = apply_spatial_detail(src, rgb, p)
    rgb = apply_channel_mixer(rgb, p.mixer_matrix())
    rgb = apply_white_balance(rgb, p.temperature, p.tint)

    n = rgb / 255.0
    n = apply_dehaze(n, p.dehaze)
    n = apply_tone(n, p)
    n = apply_log_wheels(n, p)
    n = apply_split_tone(n, p)

    hue, sat, lum = rgb_to_hsl(n)
    n = apply_saturation_vibrance(n, sat, lum, p.saturation, p.vibrance)
    n = apply_hue_rotate(n, p.hue_rotate)
    n = apply_hue_vectors(n, hue, sat, lum, p)
    n = apply_selective_color(n, hue, lum, p)
    if p.grain > 0:
        n = apply_grain(n, lum, p.grain, rng or np.random.default_rng(), p.grain_size, p.grain_color)

    out = np.empty_like(arr)
    out[..., :3] = _to_uint8(n)
    if arr.shape[2] == 4:
        out[..., 3] = arr[..., 3]
    return out

from __future__ import annotations

import numpy as np
import pytest

from cine_grade.image_ops import (
    apply_chromatic_aberration,
    apply_dehaze,
    apply_log_wheels,
    grade,
    grain_mask,
    hue_axis_weights,
    needs_spatial,
    rgb_to_hsl,
    selective_mask,
)
from cine_grade.params import DEFAULT_PARAMS


def _flat(value: tuple[int, int, int], size: tuple[int, int] = (8, 8)) -> np.ndarray:
    arr = np.zeros((size[0], size[1], 3), dtype=np.uint8)
    arr[...] = value
    return arr


def test_default_params_are_exact_identity(rgb8):
    out = grade(rgb8, DEFAULT_PARAMS)
    assert out.dtype == np.uint8
    assert np.array_equal(out, rgb8)


def test_input_is_not_mutated(rgb8):
    before = rgb8.copy()
    grade(rgb8, DEFAULT_PARAMS.with_changes(sharpness=1.0, contrast=1.6, grain=0.5), rng=np.random.default_rng(0))
    assert np.array_equal(rgb8, before)


def test_alpha_is_passed_through(rgb8):
    rgba = np.dstack([rgb8, np.full(rgb8.shape[:2], 77, dtype=np.uint8)])
    out = grade(rgba, DEFAULT_PARAMS.with_changes(saturation=0.0))
    assert out.shape == rgba.shape
    assert (out[..., 3] == 77).all()


def test_rejects_non_uint8_and_bad_shapes(rgb8):
    with pytest.raises(TypeError):
        grade(rgb8.astype(np.float32), DEFAULT_PARAMS)
    with pytest.raises(ValueError):
        grade(rgb8[..., 0], DEFAULT_PARAMS)


def test_contrast_around_pivot_keeps_mid_gray():
    out = grade(_flat((128, 128, 128)), DEFAULT_PARAMS.with_changes(contrast=1.5, pivot=0.5))
    assert (out == 128).all()


def test_contrast_spreads_values_away_from_pivot():
    arr = np.array([[[64, 64, 64], [192, 192, 192]]], dtype=np.uint8)
    out = grade(arr, DEFAULT_PARAMS.with_changes(contrast=1.5))
    assert out[0, 0, 0] < 64
    assert out[0, 1, 0] > 192


def test_channel_mixer_adds_green_into_red(rgb8):
    out = grade(rgb8, DEFAULT_PARAMS.with_changes(mix_red_green=1.0))
    expected = np.minimum(255, rgb8[..., 0].astype(np.int32) + rgb8[..., 1])
    assert np.array_equal(out[..., 0], expected.astype(np.uint8))
    assert np.array_equal(out[..., 1:], rgb8[..., 1:])


def test_zero_split_saturation_is_transparent(rgb8):
    p = DEFAULT_PARAMS.with_changes(split_shadow_hue=120.0, split_highlight_hue=300.0, split_balance=0.3)
    assert np.array_equal(grade(rgb8, p), rgb8)


def test_split_tone_tints_shadows_toward_hue():
    dark = _flat((30, 30, 30))
    out = grade(dark, DEFAULT_PARAMS.with_changes(split_shadow_hue=240.0, split_shadow_sat=1.0))
    assert out[0, 0, 2] > out[0, 0, 0]


def test_zero_saturation_produces_gray(rgb8):
    out = grade(rgb8, DEFAULT_PARAMS.with_changes(saturation=0.0)).astype(np.int32)
    spread = out.max(axis=-1) - out.min(axis=-1)
    assert spread.max() <= 1


def test_hue_rotate_leaves_neutral_pixels_alone():
    gray = _flat((90, 90, 90))
    assert np.array_equal(grade(gray, DEFAULT_PARAMS.with_changes(hue_rotate=120.0)), gray)


def test_white_balance_warms_red_and_cools_blue():
    out = grade(_flat((100, 100, 100)), DEFAULT_PARAMS.with_changes(temperature=10.0))
    assert tuple(out[0, 0]) == (108, 100, 92)


def test_exposure_one_stop_doubles():
    out = grade(_flat((50, 50, 50)), DEFAULT_PARAMS.with_changes(exposure=1.0))
    assert (out == 100).all()


def test_invalid_gamma_is_clamped_not_raised(rgb8):
    out = grade(rgb8, DEFAULT_PARAMS.with_changes(gamma=0.0, gamma_r=-1.0))
    assert out.shape == rgb8.shape


def test_grain_is_deterministic_for_a_seed(rgb8):
    p = DEFAULT_PARAMS.with_changes(grain=0.8)
    a = grade(rgb8, p, rng=np.random.default_rng(7))
    b = grade(rgb8, p, rng=np.random.default_rng(7))
    c = grade(rgb8, p, rng=np.random.default_rng(8))
    assert np.array_equal(a, b)
    assert not np.array_equal(a, c)


def test_grain_noise_is_bounded():
    gray = _flat((128, 128, 128), size=(64, 64))
    out = grade(gray, DEFAULT_PARAMS.with_changes(grain=1.0), rng=np.random.default_rng(3))
    diff = np.abs(out.astype(np.int32) - 128)
    assert diff.max() <= 31
    assert diff.max() > 0


def test_grain_skips_black_and_white():
    arr = np.zeros((16, 16, 3), dtype=np.uint8)
    arr[8:] = 255
    out = grade(arr, DEFAULT_PARAMS.with_changes(grain=1.0), rng=np.random.default_rng(1))
    assert np.array_equal(out, arr)


def test_coarse_grain_repeats_in_cells():
    gray = _flat((128, 128, 128), size=(16, 16))
    out = grade(gray, DEFAULT_PARAMS.with_changes(grain=1.0, grain_size=4.0), rng=np.random.default_rng(5))
    cell = out[:4, :4, 0]
    assert (cell == cell[0, 0]).all()


def test_grain_mask_peaks_at_mid_gray():
    lum = np.array([0.0, 0.25, 0.5, 0.75, 1.0])
    m = grain_mask(lum)
    assert m[2] == pytest.approx(1.0)
    assert m[0] == pytest.approx(0.0)
    assert m[4] == pytest.approx(0.0)
    assert m[1] < m[2]


def test_selective_mask_grows_with_threshold():
    hue = np.linspace(0.0, 1.0, 361)
    narrow = selective_mask(hue, 0.0, 20.0)
    wide = selective_mask(hue, 0.0, 60.0)
    assert (wide >= narrow).all()
    assert narrow[0] == pytest.approx(1.0)
    assert narrow[180] == 0.0


def test_selective_color_keeps_target_hue():
    arr = np.array([[[200, 30, 30], [30, 30, 200]]], dtype=np.uint8)
    p = DEFAULT_PARAMS.with_changes(selective_hue=0.0, selective_threshold=30.0, selective_mix=1.0)
    out = grade(arr, p).astype(np.int32)
    assert out[0, 0, 0] - out[0, 0, 2] > 100
    assert abs(out[0, 1, 2] - out[0, 1, 0]) <= 1


def test_rgb_to_hsl_primaries():
    rgb = np.array([[1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0], [0.5, 0.5, 0.5]])
    hue, sat, lum = rgb_to_hsl(rgb)
    assert hue[:3] == pytest.approx([0.0, 1 / 3, 2 / 3])
    assert sat[:3] == pytest.approx([1.0, 1.0, 1.0])
    assert sat[3] == 0.0
    assert lum[3] == pytest.approx(0.5)


def test_sharpening_leaves_one_pixel_border_untouched(rgb8):
    out = grade(rgb8, DEFAULT_PARAMS.with_changes(sharpness=2.0))
    assert np.array_equal(out[0], rgb8[0])
    assert np.array_equal(out[-1], rgb8[-1])
    assert np.array_equal(out[:, 0], rgb8[:, 0])
    assert np.array_equal(out[:, -1], rgb8[:, -1])
    assert not np.array_equal(out[1:-1, 1:-1], rgb8[1:-1, 1:-1])


def test_sharpening_flat_image_is_identity():
    flat = _flat((120, 60, 30))
    assert np.array_equal(grade(flat, DEFAULT_PARAMS.with_changes(sharpness=2.0, clarity=1.0)), flat)


def test_denoise_pulls_toward_neighbourhood():
    arr = _flat((100, 100, 100), size=(5, 5))
    arr[2, 2] = 200
    out = grade(arr, DEFAULT_PARAMS.with_changes(denoise=1.0))
    assert 100 < out[2, 2, 0] < 200


def test_needs_spatial():
    assert not needs_spatial(DEFAULT_PARAMS)
    assert needs_spatial(DEFAULT_PARAMS.with_changes(clarity=-0.2))
    assert needs_spatial(DEFAULT_PARAMS.with_changes(denoise_chroma=0.5))


def test_chromatic_aberration_shifts_only_red_and_blue(rgb8):
    src = rgb8.astype(np.float32)
    out = apply_chromatic_aberration(src, 2.0)
    assert np.array_equal(out[..., 1], src[..., 1])
    assert not np.array_equal(out[..., 0], src[..., 0])
    # Centre pixel has no offset.
    h, w = src.shape[:2]
    assert np.array_equal(out[h // 2, w // 2], src[h // 2, w // 2])


def _px(arr: np.ndarray, y: int = 0, x: int = 0) -> tuple[int, int, int]:
    return tuple(int(c) for c in arr[y, x, :3])


def _spread(px: tuple[int, int, int]) -> int:
    return max(px) - min(px)


def _close(a, b, tol: int = 1) -> bool:
    return all(abs(int(x) - int(y)) <= tol for x, y in zip(a, b))


def test_log_wheels_act_per_channel():
    p = DEFAULT_PARAMS.with_changes(lift_r=0.1, gain_r=1.2, gamma_r=2.0, offset_r=0.02)
    out = grade(_flat((102, 102, 102)), p)
    # ((0.4 * 0.9 + 0.1 + 0.02) * 1.2) ** 0.5
    assert _close(_px(out), (194, 102, 102))


def test_log_wheel_gain_doubles_channel():
    out = grade(_flat((50, 50, 50)), DEFAULT_PARAMS.with_changes(gain_g=2.0))
    assert _close(_px(out), (50, 100, 50))


def test_log_wheel_power_skips_non_positive_values():
    rgb = np.array([[[0.2, 0.5, 0.5]]], dtype=np.float32)
    out = apply_log_wheels(rgb, DEFAULT_PARAMS.with_changes(offset_r=-0.5, gamma_r=2.0))
    assert np.isfinite(out).all()
    assert out[0, 0, 0] == pytest.approx(-0.3, abs=1e-6)
    assert out[0, 0, 1] == pytest.approx(0.5, abs=1e-6)


def test_vibrance_favours_muted_pixels():
    p = DEFAULT_PARAMS.with_changes(vibrance=2.0)
    muted = _px(grade(_flat((140, 120, 120)), p))
    vivid = _px(grade(_flat((250, 10, 10)), p))
    assert _spread(muted) > 30
    assert _spread(vivid) < 240


def test_vibrance_leaves_gray_alone():
    gray = _flat((90, 90, 90))
    assert np.array_equal(grade(gray, DEFAULT_PARAMS.with_changes(vibrance=2.0)), gray)


def test_hue_vector_saturation_targets_one_axis():
    p = DEFAULT_PARAMS.with_changes(sat_red=-1.0)
    assert _close(_px(grade(_flat((200, 50, 50)), p)), (125, 125, 125))
    blue = _flat((50, 50, 200))
    assert np.array_equal(grade(blue, p), blue)

    boosted = _px(grade(_flat((200, 50, 50)), DEFAULT_PARAMS.with_changes(sat_red=0.5)))
    assert _spread(boosted) > 150


def test_red_axis_wraps_past_magenta():
    weights = hue_axis_weights(np.array([0.97, 0.03, 0.5], dtype=np.float32))
    assert weights["red"][0] > 0
    assert weights["red"][1] > 0
    assert weights["red"][2] == 0

    # Hue ~0.967 sits just below 1.0 and still counts as red.
    out = _px(grade(_flat((200, 50, 80)), DEFAULT_PARAMS.with_changes(sat_red=-1.0)))
    assert _spread(out) < 100


def test_hue_vector_shift_only_moves_its_axis():
    p = DEFAULT_PARAMS.with_changes(hue_green=30.0)
    green = _flat((50, 200, 50))
    assert not np.array_equal(grade(green, p), green)
    red = _flat((200, 50, 50))
    assert np.array_equal(grade(red, p), red)


def test_hue_vectors_skip_gray_pixels():
    gray = _flat((128, 128, 128))
    p = DEFAULT_PARAMS.with_changes(sat_red=1.0, hue_red=30.0, sat_blue=-1.0, hue_blue=-30.0)
    assert np.array_equal(grade(gray, p), gray)


def test_selective_target_sat_boosts_kept_hue():
    base = dict(selective_hue=0.0, selective_threshold=30.0, selective_mix=1.0)
    red = _flat((200, 100, 100))
    assert _close(_px(grade(red, DEFAULT_PARAMS.with_changes(**base))), (200, 100, 100))
    boosted = grade(red, DEFAULT_PARAMS.with_changes(selective_target_sat=1.0, **base))
    assert _close(_px(boosted), (250, 50, 50))


def _spot(bg: tuple[int, int, int], centre: tuple[int, int, int]) -> np.ndarray:
    arr = _flat(bg, size=(5, 5))
    arr[2, 2] = centre
    return arr


def test_skin_smooth_blends_skin_toward_neighbours():
    out = grade(_spot((200, 130, 90), (240, 150, 110)), DEFAULT_PARAMS.with_changes(skin_smooth=1.0))
    # avg (208, 134, 94) mixed in at 0.6
    assert _close(_px(out, 2, 2), (221, 140, 100))


def test_skin_smooth_ignores_non_skin_pixels():
    arr = _spot((200, 130, 90), (60, 60, 200))
    out = grade(arr, DEFAULT_PARAMS.with_changes(skin_smooth=1.0))
    assert _px(out, 2, 2) == (60, 60, 200)


def test_teeth_whitening_lifts_bright_warm_pixels():
    arr = _flat((230, 220, 190), size=(3, 3))
    out = grade(arr, DEFAULT_PARAMS.with_changes(teeth_whitening=1.0))
    assert _close(_px(out, 1, 1), (232, 224, 223))
    # Border ring is copied through.
    assert _px(out, 0, 0) == (230, 220, 190)


def test_teeth_whitening_skips_dark_or_saturated_pixels():
    p = DEFAULT_PARAMS.with_changes(teeth_whitening=1.0)
    for colour in ((60, 55, 40), (230, 120, 20)):
        arr = _flat(colour, size=(3, 3))
        assert np.array_equal(grade(arr, p), arr)


def test_eye_clarity_only_sharpens_bright_band():
    p = DEFAULT_PARAMS.with_changes(eye_clarity=1.0)
    bright = grade(_spot((200, 200, 200), (210, 210, 210)), p)
    assert _close(_px(bright, 2, 2), (242, 242, 242))
    dark = _spot((40, 40, 40), (50, 50, 50))
    assert _px(grade(dark, p), 2, 2) == (50, 50, 50)


@pytest.mark.parametrize("field, expected", [("structure", 122), ("feature_pop", 126), ("sharpness", 134)])
def test_detail_boost_weights(field, expected):
    # hp = 110 - 102 = 8, scaled by 1.5 / 2 / 3
    out = grade(_spot((100, 100, 100), (110, 110, 110)), DEFAULT_PARAMS.with_changes(**{field: 1.0}))
    assert abs(int(out[2, 2, 0]) - expected) <= 1


def test_dehaze_subtracts_scaled_minimum():
    out = grade(_flat((170, 90, 50)), DEFAULT_PARAMS.with_changes(dehaze=1.0))
    assert _close(_px(out), (200, 100, 50))

    rgb = np.array([[[0.6, 0.4, 0.2]]], dtype=np.float32)
    assert np.allclose(apply_dehaze(rgb, 0.5), (rgb - 0.2 * 0.1) / 0.9)


def test_color_grain_differs_per_channel():
    gray = _flat((128, 128, 128), size=(32, 32))
    p = DEFAULT_PARAMS.with_changes(grain=1.0)
    mono = grade(gray, p, rng=np.random.default_rng(3))
    assert np.array_equal(mono[..., 0], mono[..., 1])
    assert np.array_equal(mono[..., 1], mono[..., 2])

    colour = grade(gray, p.with_changes(grain_color=True), rng=np.random.default_rng(3))
    assert not np.array_equal(colour[..., 0], colour[..., 1])


def test_hue_rotate_is_baked_into_kernel_output():
    red = _flat((200, 50, 50))
    p = DEFAULT_PARAMS.with_changes(hue_rotate=120.0)
    out = grade(red, p)
    r, g, b = _px(out)
    assert r < max(g, b)
    assert "hue-rotate(120deg)" in p.css_filter_string

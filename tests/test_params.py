from __future__ import annotations

import math

import numpy as np
import pytest

from cine_grade.params import DEFAULT_PARAMS, EPS, GradingParameters, field_names, filter_description


def test_defaults_are_identity():
    p = GradingParameters()
    assert p.is_identity()
    assert p.preset_name == "NEUTRAL"
    assert p.css_filter_string == "none"
    assert np.array_equal(p.mixer_matrix(), np.eye(3, dtype=np.float32))


def test_with_changes_returns_new_record():
    p = DEFAULT_PARAMS.with_changes(contrast=1.4)
    assert p.contrast == 1.4
    assert DEFAULT_PARAMS.contrast == 1.0
    assert not p.is_identity()


def test_with_changes_rejects_unknown_fields():
    with pytest.raises(TypeError, match="bogus"):
        DEFAULT_PARAMS.with_changes(bogus=1.0)


def test_preset_name_alone_keeps_identity():
    assert DEFAULT_PARAMS.with_changes(preset_name="Mine").is_identity()


def test_css_filter_string_tracks_fields():
    p = DEFAULT_PARAMS.with_changes(brightness=1.1, contrast=1.2, hue_rotate=-5.0, blur=2.0)
    assert p.css_filter_string == "brightness(1.1) contrast(1.2) blur(2px) hue-rotate(-5deg)"
    assert filter_description(DEFAULT_PARAMS) == "none"


def test_css_filter_string_is_not_part_of_equality():
    a = DEFAULT_PARAMS.with_changes(sepia=0.5)
    b = DEFAULT_PARAMS.with_changes(sepia=0.5)
    assert a == b
    assert hash(a) == hash(b)


def test_sanitized_clamps_out_of_domain_values():
    p = DEFAULT_PARAMS.with_changes(
        gamma=-2.0,
        gamma_g=0.0,
        pan_x=3.0,
        pan_y=-0.9,
        bloom_radius=-5.0,
        vignette_feather=-1.0,
        grain_size=0.2,
        selective_threshold=0.0,
        dehaze=10.0,
    ).sanitized()
    assert p.gamma == EPS
    assert p.gamma_g == EPS
    assert p.pan_x == 0.5
    assert p.pan_y == -0.5
    assert p.bloom_radius == 0.0
    assert p.vignette_feather == 0.0
    assert p.grain_size == 1.0
    assert p.selective_threshold == 0.5
    assert p.dehaze == 4.75


def test_sanitized_replaces_non_finite_values_with_defaults():
    p = DEFAULT_PARAMS.with_changes(exposure=math.nan, contrast=math.inf).sanitized()
    assert p.exposure == 0.0
    assert p.contrast == 1.0


def test_sanitized_is_a_no_op_for_defaults():
    assert DEFAULT_PARAMS.sanitized() is DEFAULT_PARAMS


def test_from_dict_partial_mapping_keeps_defaults():
    p = GradingParameters.from_dict({"contrast": "1.25", "grain_color": 1, "preset_name": "X"})
    assert p.contrast == 1.25
    assert p.grain_color is True
    assert p.preset_name == "X"
    assert p.saturation == 1.0


def test_from_dict_accepts_legacy_alias_and_ignores_unknown(caplog):
    p = GradingParameters.from_dict({"hueRotate": 12, "notAField": 3, "css_filter_string": "blur(3px)"})
    assert p.hue_rotate == 12.0
    assert p.blur == 0.0
    assert "notAField" in caplog.text


def test_from_dict_rejects_unparseable_values():
    with pytest.raises(ValueError, match="contrast"):
        GradingParameters.from_dict({"contrast": "high"})


def test_to_dict_covers_every_field():
    d = DEFAULT_PARAMS.to_dict()
    assert set(field_names()) <= set(d)
    assert GradingParameters.from_dict(d) == DEFAULT_PARAMS


@pytest.mark.parametrize("text, expected", [("false", False), ("False", False), ("0", False), ("true", True), ("yes", True)])
def test_from_dict_parses_boolean_strings(text, expected):
    assert GradingParameters.from_dict({"grain_color": text}).grain_color is expected


def test_from_dict_rejects_ambiguous_booleans():
    with pytest.raises(ValueError, match="grain_color"):
        GradingParameters.from_dict({"grain_color": "maybe"})
    with pytest.raises(ValueError, match="grain_color"):
        GradingParameters.from_dict({"grain_color": [1]})
    assert GradingParameters.from_dict({"grain_color": 1}).grain_color is True

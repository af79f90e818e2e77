from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

from .params import DEFAULT_PARAMS, GradingParameters, coerce_fields


log = logging.getLogger(__name__)


class PresetFormatError(ValueError):
    pass


@dataclass(frozen=True)
class FilterPreset:
    """A named partial overlay of grading fields."""

    name: str
    overrides: Mapping[str, Any] = field(default_factory=dict)
    category: str = "User"
    source_path: str | None = None

    def __post_init__(self) -> None:
        try:
            clean = coerce_fields(self.overrides)
        except ValueError as e:
            raise PresetFormatError(f"Preset {self.name!r}: {e}") from e
        dropped = set(self.overrides) - set(clean) - {"hueRotate", "css_filter_string"}
        if dropped:
            raise PresetFormatError(f"Preset {self.name!r} has unknown field(s): {', '.join(sorted(dropped))}")
        clean.pop("preset_name", None)
        object.__setattr__(self, "overrides", MappingProxyType(clean))


def apply_preset(params: GradingParameters, preset: FilterPreset, reset: bool = False) -> GradingParameters:
    # Fields the preset does not name are left as they are.
    base = DEFAULT_PARAMS if reset else params
    return base.with_changes(**preset.overrides, preset_name=preset.name)


def _lgg(lift: tuple[float, float, float], gamma: tuple[float, float, float], gain: tuple[float, float, float],
         offset: tuple[float, float, float] = (0.0, 0.0, 0.0)) -> dict[str, float]:
    out = {}
    for i, ch in enumerate("rgb"):
        out[f"lift_{ch}"] = lift[i]
        out[f"gamma_{ch}"] = gamma[i]
        out[f"gain_{ch}"] = gain[i]
        out[f"offset_{ch}"] = offset[i]
    return out


def _even(lift: float, gamma: float, gain: float) -> dict[str, float]:
    return _lgg((lift,) * 3, (gamma,) * 3, (gain,) * 3)


def presets() -> list[FilterPreset]:
    """Built-in film stocks and looks, newest list on every call."""
    return [
        FilterPreset("None", {}, category="General"),
        # Film stocks
        FilterPreset(
            "KODAK_5219",
            dict(contrast=1.1, saturation=1.1, hue_rotate=-5.0, brightness=1.02, sepia=0.05,
                 bloom=0.1, halation=0.1, **_even(0.02, 1.1, 1.05)),
            category="Film Stock",
        ),
        FilterPreset(
            "FUJI_3513",
            dict(contrast=1.3, saturation=0.9, hue_rotate=5.0, brightness=0.95,
                 bloom=0.05, halation=0.05, **_even(-0.05, 0.9, 1.1)),
            category="Film Stock",
        ),
        FilterPreset(
            "AGFA_VISTA",
            dict(saturation=1.4, contrast=1.1, brightness=1.05,
                 bloom=0.15, halation=0.08, **_even(0.01, 1.2, 1.0)),
            category="Film Stock",
        ),
        FilterPreset(
            "EKTACHROME",
            dict(contrast=1.5, saturation=1.3, brightness=1.1, hue_rotate=-2.0,
                 **_even(-0.08, 0.85, 1.2)),
            category="Film Stock",
        ),
        FilterPreset(
            "CINESTILL_800T",
            dict(exposure=0.15, temperature=-12.0, halation=0.35, halation_radius=6.0,
                 grain=0.25, split_shadow_hue=200.0, split_shadow_sat=0.3,
                 split_highlight_hue=25.0, split_highlight_sat=0.2),
            category="Film Stock",
        ),
        # Looks
        FilterPreset(
            "Teal & Orange",
            dict(contrast=1.15, saturation=1.1,
                 **_lgg((0.0, 0.02, 0.05), (1.0, 0.98, 0.95), (1.05, 0.98, 0.90))),
            category="Look",
        ),
        FilterPreset(
            "Bleach Bypass",
            dict(contrast=1.3, saturation=0.5, **_even(0.02, 0.95, 1.1)),
            category="Look",
        ),
        FilterPreset(
            "Cross Process",
            dict(contrast=1.2, saturation=1.2,
                 **_lgg((0.05, -0.02, 0.08), (0.95, 1.05, 0.9), (1.1, 0.95, 1.15))),
            category="Look",
        ),
        FilterPreset(
            "Film Noir",
            dict(contrast=1.4, saturation=0.0, grain=0.3, vignette=0.5, **_even(-0.02, 0.9, 1.2)),
            category="Look",
        ),
        FilterPreset(
            "Vintage Film",
            dict(contrast=0.9, saturation=0.85, grain=0.2,
                 **_lgg((0.03, 0.02, 0.0), (1.05, 1.0, 0.92), (1.0, 0.98, 0.88), (0.02, 0.01, -0.02))),
            category="Look",
        ),
        FilterPreset(
            "Golden Hour",
            dict(contrast=1.1, saturation=1.15, temperature=10.0,
                 **_lgg((0.02, 0.01, -0.02), (0.98, 1.0, 1.05), (1.1, 1.02, 0.88))),
            category="Look",
        ),
        FilterPreset(
            "Cool Blue Hour",
            dict(contrast=1.05, saturation=0.9,
                 **_lgg((0.0, 0.01, 0.04), (0.98, 1.0, 1.05), (0.95, 1.0, 1.1))),
            category="Look",
        ),
        FilterPreset(
            "Sin City Red",
            dict(contrast=1.35, selective_hue=0.0, selective_threshold=25.0,
                 selective_mix=1.0, selective_target_sat=0.4),
            category="Look",
        ),
    ]


def preset_to_dict(preset: FilterPreset) -> dict[str, Any]:
    payload: dict[str, Any] = {"name": preset.name, "category": preset.category}
    payload.update(preset.overrides)
    return payload


def preset_from_params(name: str, params: GradingParameters, category: str = "User") -> FilterPreset:
    """Snapshot every non-default field of ``params`` as a preset."""
    base = DEFAULT_PARAMS.to_dict()
    overrides = {
        k: v
        for k, v in params.to_dict().items()
        if k not in ("preset_name", "css_filter_string") and v != base[k]
    }
    return FilterPreset(name=name, overrides=overrides, category=category)


def preset_from_dict(payload: Any, fallback_name: str = "Untitled", source_path: str | None = None) -> FilterPreset:
    # Supports a flat {name, <fields>...} record and a nested {name, params}.
    if not isinstance(payload, Mapping):
        raise PresetFormatError("Preset payload must be a JSON object")
    name = str(payload.get("name") or payload.get("preset_name") or fallback_name)
    category = str(payload.get("category") or "User")
    if "params" in payload:
        body = payload["params"]
        if not isinstance(body, Mapping):
            raise PresetFormatError("Preset 'params' must be a JSON object")
    else:
        body = {k: v for k, v in payload.items() if k not in ("name", "category")}
    return FilterPreset(name=name, overrides=dict(body), category=category, source_path=source_path)


def save_preset(path: str | Path, preset: FilterPreset) -> None:
    Path(path).write_text(json.dumps(preset_to_dict(preset), indent=2, sort_keys=True), encoding="utf-8")


def load_preset(path: str | Path) -> FilterPreset:
    path = Path(path)
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise PresetFormatError(f"{path.name}: {e}") from e
    return preset_from_dict(payload, fallback_name=path.stem, source_path=str(path))


class PresetLibrary:
    """User presets stored as one JSON file each in a folder."""

    def __init__(self, folder: str | Path) -> None:
        self.folder = Path(folder)
        self._presets: dict[str, FilterPreset] = {}

    def reload(self) -> list[FilterPreset]:
        self._presets.clear()
        if not self.folder.is_dir():
            return []
        for path in sorted(self.folder.glob("*.json")):
            try:
                preset = load_preset(path)
            except (OSError, PresetFormatError) as e:
                log.warning("Skipping preset %s: %s", path, e)
                continue
            self._presets[preset.name] = preset
        return list(self._presets.values())

    def names(self) -> list[str]:
        return list(self._presets)

    def get(self, name: str) -> FilterPreset | None:
        return self._presets.get(name)

    def _path_for(self, name: str) -> Path:
        safe = "".join(c if c.isalnum() or c in "-_ " else "_" for c in name).strip() or "preset"
        return self.folder / f"{safe}.json"

    def save(self, preset: FilterPreset) -> Path:
        self.folder.mkdir(parents=True, exist_ok=True)
        existing = self._presets.get(preset.name)
        path = Path(existing.source_path) if existing and existing.source_path else self._path_for(preset.name)
        save_preset(path, preset)
        self._presets[preset.name] = FilterPreset(
            preset.name, preset.overrides, category=preset.category, source_path=str(path)
        )
        return path

    def remove(self, name: str) -> bool:
        preset = self._presets.pop(name, None)
        if preset is None:
            return False
        if preset.source_path:
            Path(preset.source_path).unlink(missing_ok=True)
        return True

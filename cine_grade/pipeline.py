from __future__ import annotations

import io
import logging
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterable

import numpy as np
from PIL import Image, ImageEnhance, ImageFilter

from .compositing import composite
from .geometry import warp
from .image_ops import _to_float01, _to_uint8, apply_hue_shift, blend, grade
from .params import GradingParameters


log = logging.getLogger(__name__)

PREVIEW_MAX_SIDE = 1400
MAX_SURFACE_SIDE = 16384

# CSS sepia() at full strength.
_SEPIA_MATRIX = (
    0.393, 0.769, 0.189, 0,
    0.349, 0.686, 0.168, 0,
    0.272, 0.534, 0.131, 0,
)
_FILTER_RE = re.compile(r"([a-z-]+)\(\s*(-?[0-9.]+(?:e[-+]?[0-9]+)?)\s*(?:px|deg)?\s*\)")


class GradingError(Exception):
    pass


class ImageLoadFailure(GradingError):
    pass


class SurfaceUnavailable(GradingError):
    pass


def load_image(source: str | Path | bytes | BinaryIO) -> Image.Image:
    """Decode ``source`` into an RGBA image or raise :class:`ImageLoadFailure`."""
    name = str(source) if isinstance(source, (str, Path)) else "<stream>"
    fp = io.BytesIO(source) if isinstance(source, (bytes, bytearray)) else source
    try:
        with Image.open(fp) as img:
            img.load()
            return img.convert("RGBA")
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        raise ImageLoadFailure(f"Cannot decode image {name}: {e}") from e


def _check_surface(size: tuple[int, int]) -> None:
    w, h = size
    if w <= 0 or h <= 0 or w > MAX_SURFACE_SIDE or h > MAX_SURFACE_SIDE:
        raise SurfaceUnavailable(f"Cannot allocate a {w}x{h} surface")


def finish(image: Image.Image, positioned: Image.Image, params: GradingParameters) -> Image.Image:
    """Invert and opacity: the last steps, mixing back toward the positioned source."""
    if not params.invert and params.opacity >= 1.0:
        return image

    arr = np.asarray(image.convert("RGBA"))
    rgb = _to_float01(arr[..., :3])
    if params.invert:
        a = float(np.clip(params.invert, 0.0, 1.0))
        rgb = rgb * (1.0 - a) + (1.0 - rgb) * a
    if params.opacity < 1.0:
        base = _to_float01(np.asarray(positioned.convert("RGBA"))[..., :3])
        rgb = blend(base, rgb, params.opacity)

    out = arr.copy()
    out[..., :3] = _to_uint8(rgb)
    return Image.fromarray(out)


def bake(
    source: Image.Image,
    params: GradingParameters,
    size: tuple[int, int] | None = None,
    seed: int | None = None,
    radius_scale: float = 1.0,
) -> Image.Image:
    """Produce the final graded RGBA image.

    Geometry, then the colour/detail kernel, then the compositing passes.
    Neither ``source`` nor ``params`` is modified. ``seed`` only matters
    when grain is enabled.
    """
    p = params.sanitized()
    size = size or source.size
    _check_surface(size)

    t0 = time.perf_counter()
    try:
        positioned = warp(source, p, size)
        graded = grade(np.asarray(positioned), p, rng=np.random.default_rng(seed))
        out = composite(Image.fromarray(graded), p, radius_scale)
        out = finish(out, positioned, p)
    except MemoryError as e:
        raise SurfaceUnavailable(f"Out of memory for a {size[0]}x{size[1]} bake") from e
    log.debug("Baked %dx%d preset=%s in %.3fs", size[0], size[1], p.preset_name, time.perf_counter() - t0)
    return out


def preview_source(source: Image.Image, max_side: int = PREVIEW_MAX_SIDE) -> tuple[Image.Image, float]:
    """Downscaled RGBA copy of ``source`` and the factor it was shrunk by."""
    small = source.convert("RGBA")
    if max(small.size) <= max_side:
        return small, 1.0
    small.thumbnail((max_side, max_side), Image.Resampling.LANCZOS)
    return small, small.width / float(source.width)


def preview(
    source: Image.Image,
    params: GradingParameters,
    max_side: int = PREVIEW_MAX_SIDE,
    seed: int | None = None,
) -> Image.Image:
    """Same algorithm as :func:`bake`, at most ``max_side`` pixels on the long edge.

    Blur radii shrink with the image so glows keep their relative size.
    """
    small, scale = preview_source(source, max_side)
    return bake(small, params, seed=seed, radius_scale=scale)


def parse_filter_description(desc: str) -> list[tuple[str, float]]:
    if not desc or desc == "none":
        return []
    return [(name, float(value)) for name, value in _FILTER_RE.findall(desc)]


def quick_look(source: Image.Image, params: GradingParameters) -> Image.Image:
    """Cheap approximate preview driven by ``params.css_filter_string`` alone."""
    img = source.convert("RGBA")
    alpha = img.getchannel("A")
    rgb = img.convert("RGB")

    for name, value in parse_filter_description(params.css_filter_string):
        if name == "brightness":
            rgb = ImageEnhance.Brightness(rgb).enhance(value)
        elif name == "contrast":
            rgb = ImageEnhance.Contrast(rgb).enhance(value)
        elif name == "saturate":
            rgb = ImageEnhance.Color(rgb).enhance(value)
        elif name == "blur" and value > 0:
            rgb = rgb.filter(ImageFilter.GaussianBlur(radius=value))
        elif name == "sepia":
            rgb = Image.blend(rgb, rgb.convert("RGB", _SEPIA_MATRIX), min(max(value, 0.0), 1.0))
        elif name == "hue-rotate":
            arr = apply_hue_shift(_to_float01(np.asarray(rgb)), value)
            rgb = Image.fromarray(_to_uint8(arr))
        elif name == "grayscale":
            rgb = Image.blend(rgb, rgb.convert("L").convert("RGB"), min(max(value, 0.0), 1.0))
        else:
            log.debug("Quick look ignores filter %s(%s)", name, value)

    out = rgb.convert("RGBA")
    out.putalpha(alpha)
    return out


def save_image(image: Image.Image, path: str | Path) -> Path:
    path = Path(path)
    if path.suffix.lower() in (".jpg", ".jpeg", ".bmp"):
        image = image.convert("RGB")
    image.save(path)
    return path


def bake_file(src: str | Path, dst: str | Path, params: GradingParameters, seed: int | None = None) -> Path:
    img = load_image(src)
    return save_image(bake(img, params, seed=seed), dst)


@dataclass(frozen=True)
class BatchResult:
    path: Path
    output: Path | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def bake_batch(
    paths: Iterable[str | Path],
    params: GradingParameters,
    out_dir: str | Path,
    suffix: str = "_graded",
    seed: int | None = None,
) -> list[BatchResult]:
    """Bake every image in ``paths`` into ``out_dir``; one result per input."""
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    results = []
    for src in paths:
        src = Path(src)
        dst = out_dir / f"{src.stem}{suffix}.png"
        try:
            bake_file(src, dst, params, seed=seed)
        except (GradingError, OSError) as e:
            log.exception("Batch bake failed for %s", src)
            results.append(BatchResult(path=src, error=str(e)))
            continue
        results.append(BatchResult(path=src, output=dst))
    ok = sum(1 for r in results if r.ok)
    log.info("Batch baked %d/%d images with preset %s", ok, len(results), params.preset_name)
    return results

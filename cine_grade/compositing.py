"""
Whole-image blend passes drawn on top of the graded buffer.

Each pass blurs a copy of the current accumulator, optionally brightens or
tints it, and blends it back with one of the raster blend modes. Order
matters: every pass sees the result of the previous one.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from PIL import Image, ImageChops, ImageDraw, ImageEnhance, ImageFilter

from .params import GradingParameters


log = logging.getLogger(__name__)

DIFFUSION_RADIUS = 20.0
HALATION_TINT = (255, 0, 0)

_BLEND_MODES: dict[str, Callable[[Image.Image, Image.Image], Image.Image]] = {
    "lighten": ImageChops.lighter,
    "screen": ImageChops.screen,
    "multiply": ImageChops.multiply,
}


@dataclass(frozen=True)
class CompositeOp:
    name: str
    blur_radius: float
    blend_mode: str
    opacity: float
    brightness: float = 1.0
    tint: tuple[int, int, int] | None = None
    tint_strength: float = 0.0


def composite_ops(params: GradingParameters, radius_scale: float = 1.0) -> list[CompositeOp]:
    """Ordered glow passes for ``params``; passes with a zero amount are left out."""
    p = params
    ops: list[CompositeOp] = []
    if p.halation > 0:
        ops.append(
            CompositeOp(
                "halation",
                blur_radius=(4.0 + p.halation_radius) * radius_scale,
                blend_mode="lighten",
                opacity=p.halation,
                tint=HALATION_TINT,
                tint_strength=0.1,
            )
        )
    if p.bloom > 0:
        ops.append(
            CompositeOp(
                "bloom",
                blur_radius=(10.0 + p.bloom_radius * 20.0) * radius_scale,
                blend_mode="screen",
                opacity=p.bloom * 0.5,
                brightness=1.0 + p.bloom,
            )
        )
    if p.diffusion > 0:
        ops.append(
            CompositeOp(
                "diffusion",
                blur_radius=DIFFUSION_RADIUS * radius_scale,
                blend_mode="lighten",
                opacity=p.diffusion * 0.3,
            )
        )
    return ops


def apply_op(acc: Image.Image, op: CompositeOp) -> Image.Image:
    layer = acc
    if op.blur_radius > 0:
        layer = layer.filter(ImageFilter.GaussianBlur(radius=op.blur_radius))
    if op.brightness != 1.0:
        layer = ImageEnhance.Brightness(layer).enhance(op.brightness)
    if op.tint is not None and op.tint_strength > 0:
        layer = Image.blend(layer, Image.new("RGB", layer.size, op.tint), op.tint_strength)

    mixed = _BLEND_MODES[op.blend_mode](acc, layer)
    return Image.blend(acc, mixed, min(max(op.opacity, 0.0), 1.0))


def vignette_mask(size: tuple[int, int], params: GradingParameters, radius_scale: float = 1.0) -> Image.Image:
    """Darkening mask ("L"): ``vignette`` opacity outside a clear centre hole.

    The hole is an ellipse for positive roundness and a rounded rectangle
    otherwise, its corner radius shrinking to square at roundness -1.
    """
    w, h = size
    p = params
    amount = int(round(min(max(p.vignette, 0.0), 1.0) * 255))
    mask = Image.new("L", size, amount)
    draw = ImageDraw.Draw(mask)

    cx = w / 2.0 + p.vignette_center_x * w / 2.0
    cy = h / 2.0 + p.vignette_center_y * h / 2.0
    spread = 0.5 + (1.0 - abs(p.vignette_roundness)) * 0.4
    rx = w / 2.0 * spread
    ry = h / 2.0 * spread
    box = (cx - rx, cy - ry, cx + rx, cy + ry)

    if p.vignette_roundness > 0:
        draw.ellipse(box, fill=0)
    else:
        corner = max(0.0, min(rx, ry) * (1.0 + p.vignette_roundness))
        draw.rounded_rectangle(box, radius=int(corner), fill=0)

    feather = max(p.vignette_feather, 0.0) * 100.0 * radius_scale
    if feather > 0:
        mask = mask.filter(ImageFilter.GaussianBlur(radius=feather))
    return mask


def apply_vignette(acc: Image.Image, params: GradingParameters, radius_scale: float = 1.0) -> Image.Image:
    mask = vignette_mask(acc.size, params, radius_scale)
    shade = ImageChops.invert(mask)
    return ImageChops.multiply(acc, Image.merge("RGB", (shade, shade, shade)))


def composite(image: Image.Image, params: GradingParameters, radius_scale: float = 1.0) -> Image.Image:
    """Run halation, bloom, diffusion and vignette over ``image``.

    With every amount at zero the input comes back untouched. Alpha is kept.
    """
    ops = composite_ops(params, radius_scale)
    if not ops and params.vignette <= 0:
        return image.copy()

    alpha = image.getchannel("A") if image.mode == "RGBA" else None
    acc = image.convert("RGB")
    for op in ops:
        log.debug("Compositing %s (radius=%.1f, opacity=%.2f)", op.name, op.blur_radius, op.opacity)
        acc = apply_op(acc, op)
    if params.vignette > 0:
        acc = apply_vignette(acc, params, radius_scale)

    if alpha is not None:
        acc = acc.convert("RGBA")
        acc.putalpha(alpha)
    return acc

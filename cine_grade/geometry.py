"""
Geometric stage: pan, rotate, anamorphic scale, crop zoom and lens
compensation, applied as one affine resample before any pixel math.
"""
from __future__ import annotations

import logging
import math

import numpy as np
from PIL import Image

from .params import GradingParameters


log = logging.getLogger(__name__)


def _translate(tx: float, ty: float) -> np.ndarray:
    return np.array([[1.0, 0.0, tx], [0.0, 1.0, ty], [0.0, 0.0, 1.0]])


def _scale(sx: float, sy: float) -> np.ndarray:
    return np.array([[sx, 0.0, 0.0], [0.0, sy, 0.0], [0.0, 0.0, 1.0]])


def _rotate(degrees: float) -> np.ndarray:
    t = math.radians(degrees)
    c, s = math.cos(t), math.sin(t)
    return np.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]])


def warp_matrix(
    params: GradingParameters,
    size: tuple[int, int],
    source_size: tuple[int, int] | None = None,
) -> np.ndarray:
    """Forward 3x3 matrix mapping source pixel coordinates to destination ones.

    The source centre lands on the destination centre before pan is applied.
    """
    w, h = size
    sw, sh = source_size or size
    p = params
    cx, cy = w / 2.0, h / 2.0

    pan_x = float(np.clip(p.pan_x, -0.5, 0.5))
    pan_y = float(np.clip(p.pan_y, -0.5, 0.5))
    lens_x = p.lens_center_x * w * 0.1
    lens_y = p.lens_center_y * h * 0.1

    m = _translate(cx + lens_x + pan_x * w, cy + lens_y + pan_y * h)
    if p.rotate:
        m = m @ _rotate(p.rotate)
    m = m @ _scale(p.anamorphic_squeeze * (1.0 + p.crop_zoom), p.geometry_y * (1.0 + p.crop_zoom))
    # Barrel/pincushion shrink the frame; zoom in to hide the edges.
    zoom = 1.0 + abs(p.lens_distortion * 0.3)
    m = m @ _scale(zoom, zoom)
    if p.face_warp:
        # Face slim approximated as a horizontal squeeze toward centre.
        m = m @ _scale(1.0 - p.face_warp * 0.15, 1.0)
    return m @ _translate(-sw / 2.0, -sh / 2.0)


def warp(image: Image.Image, params: GradingParameters, size: tuple[int, int] | None = None) -> Image.Image:
    """Resample ``image`` into a ``size`` surface (default: the source size).

    Areas that fall outside the source come out fully transparent.
    """
    src = image.convert("RGBA")
    size = size or src.size
    m = warp_matrix(params, size, src.size)

    if size == src.size and np.allclose(m, np.eye(3)):
        return src.copy()

    try:
        inv = np.linalg.inv(m)
    except np.linalg.LinAlgError:
        # Degenerate scale (e.g. zero stretch): nothing of the source is visible.
        log.debug("Singular warp matrix; returning empty surface")
        return Image.new("RGBA", size, (0, 0, 0, 0))

    coeffs = tuple(float(v) for v in inv[:2].ravel())
    return src.transform(
        size,
        Image.Transform.AFFINE,
        coeffs,
        resample=Image.Resampling.BICUBIC,
        fillcolor=(0, 0, 0, 0),
    )

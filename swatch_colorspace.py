# -*- coding: utf-8 -*-
"""
Swatch: Perceptual palette extraction from sampled pixels
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Colour Space Library
====================
Exact transforms between 8-bit sRGB samples and the six working spaces used
for clustering, plus the CIE76 and CIEDE2000 colour differences.

Every transform exists in two forms:
1. A Numba kernel operating on contiguous (N, 3) float64 batches.
2. A shape-safe public wrapper accepting a single triplet (3,) or a batch
   (N, 3), courtesy of ``handle_shapes``.

Conventions:
    - RGB:    channels as floats on the 0..255 scale.
    - HSL/HSV: hue in degrees [0, 360), S/L/V in [0, 1].
    - YUV:    BT.601 full range on the 0..255 scale, U/V offset by 128.
    - CIELAB / CIELUV: D65 reference white, L* in [0, 100].

Every inverse transform clamps its final RGB write into [0, 255] and rounds
to the nearest integer.

References:
    - IEC 61966-2-1:1999 (sRGB Standard)
    - CIE 15:2004 "Colorimetry"
    - ITU-R BT.601
    - Sharma, G., Wu, W., & Dalal, E. N. (2005). "The CIEDE2000 color-difference formula".
"""

import functools
from enum import Enum
from typing import Any, Callable, Dict, Final, TypeAlias, Union

import numpy as np
import numpy.typing as npt
from numba import float64, njit, prange

__all__ = [
    # --- Type Aliases ---
    "ArrayFloat",

    # --- Constants ---
    "REF_WHITE_D65",
    "LAB_EPSILON",
    "LAB_KAPPA",
    "M_SRGB_TO_XYZ",
    "M_XYZ_TO_SRGB",

    # --- Enums & Errors ---
    "ColorSpaceKind",
    "DeltaMetric",
    "ColorSpaceError",

    # --- Decorators ---
    "handle_shapes",

    # --- Channel transforms ---
    "srgb_to_linear",
    "linear_to_srgb",
    "rgb8_to_xyz",
    "xyz_to_rgb8",
    "rgb8_to_lab",
    "lab_to_rgb8",
    "rgb8_to_luv",
    "luv_to_rgb8",
    "rgb8_to_yuv",
    "yuv_to_rgb8",
    "rgb8_to_hsl",
    "hsl_to_rgb8",
    "rgb8_to_hsv",
    "hsv_to_rgb8",

    # --- Dispatch ---
    "forward_batch",
    "inverse_batch",
    "transform_forward",
    "transform_inverse",

    # --- Metrics ---
    "delta_e_76",
    "delta_e_2000",
    "delta_e_matrix",
    "color_distance",
]

# --- Type Aliases ---
ArrayFloat: TypeAlias = npt.NDArray[np.floating]

# --- Constants ---

# D65 reference white (Y = 1.0)
REF_WHITE_D65: Final[ArrayFloat] = np.array([0.95047, 1.00000, 1.08883], dtype=np.float64)
_WHITE_X: Final[float] = 0.95047
_WHITE_Y: Final[float] = 1.00000
_WHITE_Z: Final[float] = 1.08883

# sRGB primaries, IEC 61966-2-1.
M_SRGB_TO_XYZ: Final[ArrayFloat] = np.array([
    [0.4124564, 0.3575761, 0.1804375],
    [0.2126729, 0.7151522, 0.0721750],
    [0.0193339, 0.1191920, 0.9503041]
], dtype=np.float64)
M_SRGB_TO_XYZ.setflags(write=False)

M_XYZ_TO_SRGB: Final[ArrayFloat] = np.array([
    [ 3.2404542, -1.5371385, -0.4985314],
    [-0.9692660,  1.8760108,  0.0415560],
    [ 0.0556434, -0.2040259,  1.0572252]
], dtype=np.float64)
M_XYZ_TO_SRGB.setflags(write=False)
REF_WHITE_D65.setflags(write=False)

# --- Exact Rational Math Constants ---
# delta = 6/29 is the threshold where the Lab function switches from cubic to linear.
_LAB_DELTA: Final[float] = 6.0 / 29.0
LAB_EPSILON: Final[float] = _LAB_DELTA * _LAB_DELTA * _LAB_DELTA  # ~0.008856
LAB_KAPPA: Final[float]   = (116.0 * 29.0 * 29.0) / (3.0 * 6.0 * 6.0) # ~903.296

# u'n, v'n of the D65 white
_WHITE_DENOM: Final[float] = _WHITE_X + 15.0 * _WHITE_Y + 3.0 * _WHITE_Z
_U_PRIME_N: Final[float] = 4.0 * _WHITE_X / _WHITE_DENOM
_V_PRIME_N: Final[float] = 9.0 * _WHITE_Y / _WHITE_DENOM

_TINY: Final[float] = 1e-6
C25_7: Final[float] = 25.0**7
DEG2RAD: Final[float] = np.pi / 180.0


class ColorSpaceError(ValueError):
    """Raised for an unrecognised colour space or metric name."""


class ColorSpaceKind(Enum):
    """Working spaces a sample set can be clustered in."""
    RGB = "RGB"
    HSL = "HSL"
    HSV = "HSV"
    YUV = "YUV"
    CIELAB = "CIELAB"
    CIELUV = "CIELUV"

    @classmethod
    def parse(cls, name: Union[str, "ColorSpaceKind"]) -> "ColorSpaceKind":
        """
        Resolves a user-supplied colour space name.

        Matching is case-insensitive; ``LAB`` and ``LUV`` are accepted as
        aliases of ``CIELAB`` and ``CIELUV``.

        Raises:
            ColorSpaceError: If the name does not denote a supported space.
        """
        if isinstance(name, cls):
            return name
        if not isinstance(name, str):
            raise ColorSpaceError(f"Color space name must be a string, got {type(name).__name__}")
        key = name.strip().upper()
        key = _SPACE_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise ColorSpaceError(f"Unsupported color space '{name}'") from None


_SPACE_ALIASES: Final[Dict[str, str]] = {"LAB": "CIELAB", "LUV": "CIELUV"}


class DeltaMetric(Enum):
    """Perceptual distance used when comparing CIELAB colours."""
    CIE76 = "DE76"
    CIEDE2000 = "DE2000"

    @classmethod
    def parse(cls, name: Union[str, "DeltaMetric"]) -> "DeltaMetric":
        if isinstance(name, cls):
            return name
        key = str(name).strip().lower()
        if key in ("de76", "deltae76", "cie76"):
            return cls.CIE76
        if key in ("de2000", "deltae2000", "ciede2000"):
            return cls.CIEDE2000
        raise ColorSpaceError(f"Unsupported delta metric '{name}' (use de76|de2000)")


# =============================================================================
# 1. ROBUST DECORATORS
# =============================================================================

def handle_shapes(func: Callable[..., np.ndarray]) -> Callable[..., np.ndarray]:
    """
    Decorator to normalize inputs to contiguous (N, 3) float64 batches.

    Single triplets of shape (3,) are promoted to a one-row batch and the
    result is unwrapped again, so kernels only ever see 2D data.
    """
    @functools.wraps(func)
    def wrapper(arr: Any, *args: Any, **kwargs: Any) -> np.ndarray:
        arr = np.asarray(arr)
        arr_in = np.ascontiguousarray(np.atleast_2d(arr), dtype=np.float64)

        if arr_in.ndim != 2 or arr_in.shape[-1] != 3:
            raise ValueError(f"Expected last dimension size 3, got shape {arr.shape}")

        res = func(arr_in, *args, **kwargs)

        if arr.ndim == 1:
            return res[0]
        return res
    return wrapper


# =============================================================================
# 2. LOW-LEVEL MATH KERNELS (Numba Optimized)
# =============================================================================

@njit(cache=True, inline='always')
def _decode_channel(c: float) -> float:
    """sRGB EOTF for a unit-scale channel."""
    if c <= 0.04045:
        return c / 12.92
    return ((c + 0.055) / 1.055) ** 2.4

@njit(cache=True, inline='always')
def _encode_channel(c: float) -> float:
    """sRGB OETF for a unit-scale linear channel."""
    if c <= 0.0031308:
        return 12.92 * c
    return 1.055 * (c ** (1.0 / 2.4)) - 0.055

@njit(cache=True, inline='always')
def _lab_f(t: float) -> float:
    if t > LAB_EPSILON:
        return t ** (1.0 / 3.0)
    return (LAB_KAPPA * t + 16.0) / 116.0

@njit(cache=True, inline='always')
def _lab_f_inv(t: float) -> float:
    # (116*t - 16)/kappa keeps the division error low near the threshold
    if t > _LAB_DELTA:
        return t * t * t
    return (116.0 * t - 16.0) / LAB_KAPPA

@njit(cache=True, inline='always')
def _clamp01(v: float) -> float:
    if v < 0.0:
        return 0.0
    if v > 1.0:
        return 1.0
    return v

@njit(cache=True, inline='always')
def _unit_to_u8(v: float) -> np.uint8:
    return np.uint8(np.floor(_clamp01(v) * 255.0 + 0.5))

@njit(cache=True, inline='always')
def _byte_to_u8(v: float) -> np.uint8:
    if v < 0.0:
        v = 0.0
    elif v > 255.0:
        v = 255.0
    return np.uint8(np.floor(v + 0.5))

@njit(cache=True, inline='always')
def _linear_xyz_to_rgb8(x: float, y: float, z: float, out: np.ndarray, i: int) -> None:
    """XYZ -> clamped linear RGB -> encoded 8-bit, written into out[i]."""
    for ch in range(3):
        lin = M_XYZ_TO_SRGB[ch, 0] * x + M_XYZ_TO_SRGB[ch, 1] * y + M_XYZ_TO_SRGB[ch, 2] * z
        out[i, ch] = _unit_to_u8(_encode_channel(_clamp01(lin)))

@njit(cache=True, fastmath=True)
def _srgb_to_linear_kernel(srgb: ArrayFloat) -> ArrayFloat:
    out = np.empty_like(srgb)
    src = srgb.ravel()
    dst = out.ravel()
    for i in range(srgb.size):
        dst[i] = _decode_channel(src[i])
    return out

@njit(cache=True, fastmath=True)
def _linear_to_srgb_kernel(linear: ArrayFloat) -> ArrayFloat:
    out = np.empty_like(linear)
    src = linear.ravel()
    dst = out.ravel()
    for i in range(linear.size):
        dst[i] = _encode_channel(src[i])
    return out

@njit(cache=True, fastmath=True)
def _rgb8_to_xyz_kernel(rgb: ArrayFloat) -> ArrayFloat:
    n = rgb.shape[0]
    out = np.empty((n, 3), dtype=np.float64)
    for i in range(n):
        r = _decode_channel(rgb[i, 0] / 255.0)
        g = _decode_channel(rgb[i, 1] / 255.0)
        b = _decode_channel(rgb[i, 2] / 255.0)
        for ch in range(3):
            out[i, ch] = M_SRGB_TO_XYZ[ch, 0] * r + M_SRGB_TO_XYZ[ch, 1] * g + M_SRGB_TO_XYZ[ch, 2] * b
    return out

@njit(cache=True, fastmath=True)
def _xyz_to_rgb8_kernel(xyz: ArrayFloat) -> np.ndarray:
    n = xyz.shape[0]
    out = np.empty((n, 3), dtype=np.uint8)
    for i in range(n):
        _linear_xyz_to_rgb8(xyz[i, 0], xyz[i, 1], xyz[i, 2], out, i)
    return out

@njit(cache=True, fastmath=True)
def _rgb8_to_lab_kernel(rgb: ArrayFloat) -> ArrayFloat:
    xyz = _rgb8_to_xyz_kernel(rgb)
    n = xyz.shape[0]
    out = np.empty((n, 3), dtype=np.float64)
    for i in range(n):
        fx = _lab_f(xyz[i, 0] / _WHITE_X)
        fy = _lab_f(xyz[i, 1] / _WHITE_Y)
        fz = _lab_f(xyz[i, 2] / _WHITE_Z)
        out[i, 0] = 116.0 * fy - 16.0
        out[i, 1] = 500.0 * (fx - fy)
        out[i, 2] = 200.0 * (fy - fz)
    return out

@njit(cache=True, fastmath=True)
def _lab_to_rgb8_kernel(lab: ArrayFloat) -> np.ndarray:
    n = lab.shape[0]
    out = np.empty((n, 3), dtype=np.uint8)
    for i in range(n):
        fy = (lab[i, 0] + 16.0) / 116.0
        fx = fy + lab[i, 1] / 500.0
        fz = fy - lab[i, 2] / 200.0
        x = _lab_f_inv(fx) * _WHITE_X
        y = _lab_f_inv(fy) * _WHITE_Y
        z = _lab_f_inv(fz) * _WHITE_Z
        _linear_xyz_to_rgb8(x, y, z, out, i)
    return out

@njit(cache=True, fastmath=True)
def _rgb8_to_luv_kernel(rgb: ArrayFloat) -> ArrayFloat:
    xyz = _rgb8_to_xyz_kernel(rgb)
    n = xyz.shape[0]
    out = np.empty((n, 3), dtype=np.float64)
    for i in range(n):
        X, Y, Z = xyz[i, 0], xyz[i, 1], xyz[i, 2]
        denom = X + 15.0 * Y + 3.0 * Z
        # Black returns u' = v' = 0; L is zero there anyway
        u_p = 0.0
        v_p = 0.0
        if abs(denom) >= _TINY:
            u_p = 4.0 * X / denom
            v_p = 9.0 * Y / denom
        L = 116.0 * _lab_f(Y / _WHITE_Y) - 16.0
        out[i, 0] = L
        out[i, 1] = 13.0 * L * (u_p - _U_PRIME_N)
        out[i, 2] = 13.0 * L * (v_p - _V_PRIME_N)
    return out

@njit(cache=True, fastmath=True)
def _luv_to_rgb8_kernel(luv: ArrayFloat) -> np.ndarray:
    n = luv.shape[0]
    out = np.zeros((n, 3), dtype=np.uint8)
    for i in range(n):
        L, u, v = luv[i, 0], luv[i, 1], luv[i, 2]
        if abs(L) < _TINY:
            continue
        inv_13L = 1.0 / (13.0 * L)
        u_p = u * inv_13L + _U_PRIME_N
        v_p = v * inv_13L + _V_PRIME_N
        if L > 8.0:
            f = (L + 16.0) / 116.0
            Y = f * f * f * _WHITE_Y
        else:
            Y = L / LAB_KAPPA * _WHITE_Y
        denom = 4.0 * v_p
        X = 0.0
        Z = 0.0
        if abs(denom) >= _TINY:
            X = 9.0 * Y * u_p / denom
            Z = Y * (12.0 - 3.0 * u_p - 20.0 * v_p) / denom
        _linear_xyz_to_rgb8(X, Y, Z, out, i)
    return out

@njit(cache=True, fastmath=True)
def _rgb8_to_yuv_kernel(rgb: ArrayFloat) -> ArrayFloat:
    n = rgb.shape[0]
    out = np.empty((n, 3), dtype=np.float64)
    for i in range(n):
        r, g, b = rgb[i, 0], rgb[i, 1], rgb[i, 2]
        out[i, 0] = 0.299 * r + 0.587 * g + 0.114 * b
        out[i, 1] = -0.168736 * r - 0.331264 * g + 0.5 * b + 128.0
        out[i, 2] = 0.5 * r - 0.418688 * g - 0.081312 * b + 128.0
    return out

@njit(cache=True, fastmath=True)
def _yuv_to_rgb8_kernel(yuv: ArrayFloat) -> np.ndarray:
    n = yuv.shape[0]
    out = np.empty((n, 3), dtype=np.uint8)
    for i in range(n):
        y = yuv[i, 0]
        u = yuv[i, 1] - 128.0
        v = yuv[i, 2] - 128.0
        out[i, 0] = _byte_to_u8(y + 1.402 * v)
        out[i, 1] = _byte_to_u8(y - 0.344136 * u - 0.714136 * v)
        out[i, 2] = _byte_to_u8(y + 1.772 * u)
    return out

@njit(cache=True, inline='always')
def _hue_sector(r: float, g: float, b: float, mx: float, delta: float) -> float:
    """Hexagonal hue in degrees, wrapped into [0, 360)."""
    if delta < _TINY:
        return 0.0
    if mx == r:
        h = 60.0 * (((g - b) / delta) % 6.0)
    elif mx == g:
        h = 60.0 * (((b - r) / delta) + 2.0)
    else:
        h = 60.0 * (((r - g) / delta) + 4.0)
    if h < 0.0:
        h += 360.0
    if h >= 360.0:
        h -= 360.0
    return h

@njit(cache=True, inline='always')
def _sector_to_rgb8(h: float, c: float, m: float, out: np.ndarray, i: int) -> None:
    x = c * (1.0 - abs((h / 60.0) % 2.0 - 1.0))
    if h < 60.0:
        r1, g1, b1 = c, x, 0.0
    elif h < 120.0:
        r1, g1, b1 = x, c, 0.0
    elif h < 180.0:
        r1, g1, b1 = 0.0, c, x
    elif h < 240.0:
        r1, g1, b1 = 0.0, x, c
    elif h < 300.0:
        r1, g1, b1 = x, 0.0, c
    else:
        r1, g1, b1 = c, 0.0, x
    out[i, 0] = _unit_to_u8(r1 + m)
    out[i, 1] = _unit_to_u8(g1 + m)
    out[i, 2] = _unit_to_u8(b1 + m)

@njit(cache=True, fastmath=True)
def _rgb8_to_hsl_kernel(rgb: ArrayFloat) -> ArrayFloat:
    n = rgb.shape[0]
    out = np.empty((n, 3), dtype=np.float64)
    for i in range(n):
        r = rgb[i, 0] / 255.0
        g = rgb[i, 1] / 255.0
        b = rgb[i, 2] / 255.0
        mx = max(r, max(g, b))
        mn = min(r, min(g, b))
        delta = mx - mn
        L = (mx + mn) * 0.5
        s = 0.0
        if delta >= _TINY:
            s = delta / (1.0 - abs(2.0 * L - 1.0))
        out[i, 0] = _hue_sector(r, g, b, mx, delta)
        out[i, 1] = s
        out[i, 2] = L
    return out

@njit(cache=True, fastmath=True)
def _hsl_to_rgb8_kernel(hsl: ArrayFloat) -> np.ndarray:
    n = hsl.shape[0]
    out = np.empty((n, 3), dtype=np.uint8)
    for i in range(n):
        h = hsl[i, 0] % 360.0
        s = _clamp01(hsl[i, 1])
        L = _clamp01(hsl[i, 2])
        c = (1.0 - abs(2.0 * L - 1.0)) * s
        _sector_to_rgb8(h, c, L - c * 0.5, out, i)
    return out

@njit(cache=True, fastmath=True)
def _rgb8_to_hsv_kernel(rgb: ArrayFloat) -> ArrayFloat:
    n = rgb.shape[0]
    out = np.empty((n, 3), dtype=np.float64)
    for i in range(n):
        r = rgb[i, 0] / 255.0
        g = rgb[i, 1] / 255.0
        b = rgb[i, 2] / 255.0
        mx = max(r, max(g, b))
        mn = min(r, min(g, b))
        delta = mx - mn
        s = 0.0
        if mx >= _TINY:
            s = delta / mx
        out[i, 0] = _hue_sector(r, g, b, mx, delta)
        out[i, 1] = s
        out[i, 2] = mx
    return out

@njit(cache=True, fastmath=True)
def _hsv_to_rgb8_kernel(hsv: ArrayFloat) -> np.ndarray:
    n = hsv.shape[0]
    out = np.empty((n, 3), dtype=np.uint8)
    for i in range(n):
        h = hsv[i, 0] % 360.0
        s = _clamp01(hsv[i, 1])
        v = _clamp01(hsv[i, 2])
        c = v * s
        _sector_to_rgb8(h, c, v - c, out, i)
    return out

@njit(cache=True, fastmath=True)
def _rgb_identity_kernel(rgb: ArrayFloat) -> ArrayFloat:
    return rgb.copy()

@njit(cache=True, fastmath=True)
def _rgb_round_kernel(values: ArrayFloat) -> np.ndarray:
    n = values.shape[0]
    out = np.empty((n, 3), dtype=np.uint8)
    for i in range(n):
        for ch in range(3):
            out[i, ch] = _byte_to_u8(values[i, ch])
    return out


# =============================================================================
# 3. PUBLIC TRANSFORMS
# =============================================================================

@handle_shapes
def srgb_to_linear(srgb: ArrayFloat) -> ArrayFloat:
    """Decodes unit-scale sRGB channels to linear light."""
    return _srgb_to_linear_kernel(srgb)

@handle_shapes
def linear_to_srgb(linear: ArrayFloat) -> ArrayFloat:
    """Encodes unit-scale linear channels with the sRGB OETF."""
    return _linear_to_srgb_kernel(linear)

@handle_shapes
def rgb8_to_xyz(rgb: ArrayFloat) -> ArrayFloat:
    """8-bit sRGB -> CIE XYZ (D65, Y of white = 1)."""
    return _rgb8_to_xyz_kernel(rgb)

@handle_shapes
def xyz_to_rgb8(xyz: ArrayFloat) -> np.ndarray:
    """CIE XYZ (D65) -> 8-bit sRGB, clamped in linear light."""
    return _xyz_to_rgb8_kernel(xyz)

@handle_shapes
def rgb8_to_lab(rgb: ArrayFloat) -> ArrayFloat:
    """
    8-bit sRGB -> CIELAB (D65).

    Pure red (255, 0, 0) maps to roughly (53.24, 80.09, 67.20).
    """
    return _rgb8_to_lab_kernel(rgb)

@handle_shapes
def lab_to_rgb8(lab: ArrayFloat) -> np.ndarray:
    """CIELAB (D65) -> 8-bit sRGB."""
    return _lab_to_rgb8_kernel(lab)

@handle_shapes
def rgb8_to_luv(rgb: ArrayFloat) -> ArrayFloat:
    """8-bit sRGB -> CIELUV (D65)."""
    return _rgb8_to_luv_kernel(rgb)

@handle_shapes
def luv_to_rgb8(luv: ArrayFloat) -> np.ndarray:
    """CIELUV (D65) -> 8-bit sRGB. L* ~ 0 maps to black."""
    return _luv_to_rgb8_kernel(luv)

@handle_shapes
def rgb8_to_yuv(rgb: ArrayFloat) -> ArrayFloat:
    """8-bit sRGB -> full-range BT.601 YUV with U/V centred on 128."""
    return _rgb8_to_yuv_kernel(rgb)

@handle_shapes
def yuv_to_rgb8(yuv: ArrayFloat) -> np.ndarray:
    return _yuv_to_rgb8_kernel(yuv)

@handle_shapes
def rgb8_to_hsl(rgb: ArrayFloat) -> ArrayFloat:
    return _rgb8_to_hsl_kernel(rgb)

@handle_shapes
def hsl_to_rgb8(hsl: ArrayFloat) -> np.ndarray:
    return _hsl_to_rgb8_kernel(hsl)

@handle_shapes
def rgb8_to_hsv(rgb: ArrayFloat) -> ArrayFloat:
    return _rgb8_to_hsv_kernel(rgb)

@handle_shapes
def hsv_to_rgb8(hsv: ArrayFloat) -> np.ndarray:
    return _hsv_to_rgb8_kernel(hsv)


_FORWARD_KERNELS: Final[Dict[ColorSpaceKind, Callable[[ArrayFloat], ArrayFloat]]] = {
    ColorSpaceKind.RGB: _rgb_identity_kernel,
    ColorSpaceKind.HSL: _rgb8_to_hsl_kernel,
    ColorSpaceKind.HSV: _rgb8_to_hsv_kernel,
    ColorSpaceKind.YUV: _rgb8_to_yuv_kernel,
    ColorSpaceKind.CIELAB: _rgb8_to_lab_kernel,
    ColorSpaceKind.CIELUV: _rgb8_to_luv_kernel,
}

_INVERSE_KERNELS: Final[Dict[ColorSpaceKind, Callable[[ArrayFloat], np.ndarray]]] = {
    ColorSpaceKind.RGB: _rgb_round_kernel,
    ColorSpaceKind.HSL: _hsl_to_rgb8_kernel,
    ColorSpaceKind.HSV: _hsv_to_rgb8_kernel,
    ColorSpaceKind.YUV: _yuv_to_rgb8_kernel,
    ColorSpaceKind.CIELAB: _lab_to_rgb8_kernel,
    ColorSpaceKind.CIELUV: _luv_to_rgb8_kernel,
}


@handle_shapes
def _apply_kernel(arr: ArrayFloat, kernel: Callable[[ArrayFloat], np.ndarray]) -> np.ndarray:
    return kernel(arr)


def forward_batch(kind: Union[str, ColorSpaceKind], samples: Any) -> np.ndarray:
    """
    Converts 8-bit RGB samples into points of the given working space.

    Args:
        kind: Target space (enum member or name).
        samples: RGB samples, shape (N, 3) or (3,), values 0..255.

    Returns:
        float32 points with the same leading shape as ``samples``.
    """
    kind = ColorSpaceKind.parse(kind)
    kernel = _FORWARD_KERNELS[kind]
    return _apply_kernel(samples, kernel).astype(np.float32)


def inverse_batch(kind: Union[str, ColorSpaceKind], points: Any) -> np.ndarray:
    """Converts working-space points back to clamped, rounded 8-bit RGB."""
    kind = ColorSpaceKind.parse(kind)
    kernel = _INVERSE_KERNELS[kind]
    return _apply_kernel(points, kernel)


def transform_forward(kind: Union[str, ColorSpaceKind], rgb: Any) -> np.ndarray:
    """Single sample RGB -> working space, returned as float32[3]."""
    vec = np.asarray(rgb)
    if vec.shape != (3,):
        raise ValueError(f"Expected a single RGB triplet, got shape {vec.shape}")
    return forward_batch(kind, vec)


def transform_inverse(kind: Union[str, ColorSpaceKind], vec: Any) -> np.ndarray:
    """Single working-space point -> RGB, returned as uint8[3]."""
    arr = np.asarray(vec)
    if arr.shape != (3,):
        raise ValueError(f"Expected a single 3-vector, got shape {arr.shape}")
    return inverse_batch(kind, arr)


# =============================================================================
# 4. METRICS
# =============================================================================

@njit(float64(float64, float64, float64, float64, float64, float64, float64, float64, float64), cache=True, fastmath=True)
def _delta_e_2000_single(L1: float, a1: float, b1: float, L2: float, a2: float, b2: float, k_L: float, k_C: float, k_H: float) -> float:
    """Single-pair CIEDE2000 with parametric factors."""
    C1 = np.hypot(a1, b1)
    C2 = np.hypot(a2, b2)
    C_bar = (C1 + C2) * 0.5
    C_bar_7 = C_bar**7
    G = 0.5 * (1.0 - np.sqrt(C_bar_7 / (C_bar_7 + C25_7)))
    scale = 1.0 + G
    a1_p = scale * a1
    a2_p = scale * a2
    C1_p = np.hypot(a1_p, b1)
    C2_p = np.hypot(a2_p, b2)
    h1_p = 0.0
    if C1_p > 0.0:
        h1_p = np.degrees(np.arctan2(b1, a1_p)) % 360.0
    h2_p = 0.0
    if C2_p > 0.0:
        h2_p = np.degrees(np.arctan2(b2, a2_p)) % 360.0
    dL_p = L2 - L1
    dC_p = C2_p - C1_p

    # Shortest-arc hue difference; undefined (0) when either chroma vanishes
    dh_p = 0.0
    chroma_product = C1_p * C2_p
    if chroma_product > 0.0:
        diff = h2_p - h1_p
        if abs(diff) <= 180.0:
            dh_p = diff
        elif diff > 180.0:
            dh_p = diff - 360.0
        else:
            dh_p = diff + 360.0
    dH_p = 2.0 * np.sqrt(chroma_product) * np.sin((dh_p * DEG2RAD) * 0.5)

    L_bar_p = (L1 + L2) * 0.5
    C_bar_p = (C1_p + C2_p) * 0.5
    h_bar_p = h1_p + h2_p
    if chroma_product > 0.0:
        if abs(h1_p - h2_p) <= 180.0:
            h_bar_p *= 0.5
        elif h_bar_p < 360.0:
            h_bar_p = (h_bar_p + 360.0) * 0.5
        else:
            h_bar_p = (h_bar_p - 360.0) * 0.5

    T = 1.0 - 0.17 * np.cos((h_bar_p - 30.0) * DEG2RAD) + \
        0.24 * np.cos((2.0 * h_bar_p) * DEG2RAD) + \
        0.32 * np.cos((3.0 * h_bar_p + 6.0) * DEG2RAD) - \
        0.20 * np.cos((4.0 * h_bar_p - 63.0) * DEG2RAD)
    d_theta = 30.0 * np.exp(-((h_bar_p - 275.0) / 25.0)**2)
    C_bar_p_7 = C_bar_p**7
    RC = 2.0 * np.sqrt(C_bar_p_7 / (C_bar_p_7 + C25_7))
    RT = -np.sin((2.0 * d_theta) * DEG2RAD) * RC
    L_term = (L_bar_p - 50.0)**2
    SL = 1.0 + (0.015 * L_term) / np.sqrt(20.0 + L_term)
    SC = 1.0 + 0.045 * C_bar_p
    SH = 1.0 + 0.015 * C_bar_p * T

    tL = dL_p / (k_L * SL)
    tC = dC_p / (k_C * SC)
    tH = dH_p / (k_H * SH)
    total = tL * tL + tC * tC + tH * tH + RT * tC * tH
    if total <= 0.0:
        return 0.0
    return np.sqrt(total)

@njit(cache=True, fastmath=True, parallel=True)
def _batch_delta_e_2000(lab1: ArrayFloat, lab2: ArrayFloat, k_L: float, k_C: float, k_H: float) -> ArrayFloat:
    n = len(lab1)
    res = np.empty(n, dtype=np.float64)
    for i in prange(n):
        res[i] = _delta_e_2000_single(lab1[i, 0], lab1[i, 1], lab1[i, 2], lab2[i, 0], lab2[i, 1], lab2[i, 2], k_L, k_C, k_H)
    return res

@njit(cache=True, fastmath=True, parallel=True)
def _batch_delta_e_76(lab1: ArrayFloat, lab2: ArrayFloat) -> ArrayFloat:
    n = len(lab1)
    res = np.empty(n, dtype=np.float64)
    for i in prange(n):
        dL = lab1[i, 0] - lab2[i, 0]
        da = lab1[i, 1] - lab2[i, 1]
        db = lab1[i, 2] - lab2[i, 2]
        res[i] = np.sqrt(dL*dL + da*da + db*db)
    return res

@njit(cache=True, fastmath=True, parallel=True)
def _delta_e_matrix_kernel(lab_a: ArrayFloat, lab_b: ArrayFloat, use_2000: bool) -> ArrayFloat:
    n = lab_a.shape[0]
    m = lab_b.shape[0]
    out = np.empty((n, m), dtype=np.float64)
    for i in prange(n):
        for j in range(m):
            if use_2000:
                out[i, j] = _delta_e_2000_single(lab_a[i, 0], lab_a[i, 1], lab_a[i, 2],
                                                 lab_b[j, 0], lab_b[j, 1], lab_b[j, 2], 1.0, 1.0, 1.0)
            else:
                dL = lab_a[i, 0] - lab_b[j, 0]
                da = lab_a[i, 1] - lab_b[j, 1]
                db = lab_a[i, 2] - lab_b[j, 2]
                out[i, j] = np.sqrt(dL*dL + da*da + db*db)
    return out


def _prepare_pair(lab1: Any, lab2: Any) -> tuple:
    """
    Broadcasting helper.

    Single colours are broadcast against batches and materialised as dense
    C-contiguous arrays before reaching the ``prange`` kernels.
    """
    l1 = np.ascontiguousarray(np.atleast_2d(lab1), dtype=np.float64)
    l2 = np.ascontiguousarray(np.atleast_2d(lab2), dtype=np.float64)

    if l1.shape[-1] != 3 or l2.shape[-1] != 3:
        raise ValueError(f"Inputs must have shape (N, 3), got {l1.shape} and {l2.shape}")

    if l1.shape[0] != l2.shape[0]:
        if l1.shape[0] == 1: l1 = np.ascontiguousarray(np.broadcast_to(l1, l2.shape))
        elif l2.shape[0] == 1: l2 = np.ascontiguousarray(np.broadcast_to(l2, l1.shape))
        else: raise ValueError(f"Shapes {l1.shape} and {l2.shape} are not broadcastable.")
    return l1, l2


def delta_e_76(lab1: Any, lab2: Any) -> Union[float, ArrayFloat]:
    """CIE 1976 colour difference (Euclidean distance in CIELAB)."""
    l1, l2 = _prepare_pair(lab1, lab2)
    res = _batch_delta_e_76(l1, l2)
    if np.ndim(lab1) == 1 and np.ndim(lab2) == 1:
        return float(res[0])
    return res


def delta_e_2000(lab1: Any, lab2: Any,
                 k_L: float = 1.0, k_C: float = 1.0, k_H: float = 1.0) -> Union[float, ArrayFloat]:
    """
    CIEDE2000 colour difference.

    Args:
        lab1: Reference colours, shape (N, 3) or (3,).
        lab2: Sample colours, shape (N, 3) or (3,).
        k_L: Parametric lightness weight (default 1.0).
        k_C: Parametric chroma weight (default 1.0).
        k_H: Parametric hue weight (default 1.0).

    Returns:
        Non-negative differences; a float when both inputs are single colours.
        The metric is symmetric and zero for identical inputs.
    """
    l1, l2 = _prepare_pair(lab1, lab2)
    res = _batch_delta_e_2000(l1, l2, k_L, k_C, k_H)
    if np.ndim(lab1) == 1 and np.ndim(lab2) == 1:
        return float(res[0])
    return res


def color_distance(metric: Union[str, DeltaMetric], lab_a: Any, lab_b: Any) -> float:
    """Perceptual distance between two CIELAB colours under ``metric``."""
    metric = DeltaMetric.parse(metric)
    if metric is DeltaMetric.CIEDE2000:
        return float(delta_e_2000(np.asarray(lab_a, dtype=np.float64), np.asarray(lab_b, dtype=np.float64)))
    return float(delta_e_76(np.asarray(lab_a, dtype=np.float64), np.asarray(lab_b, dtype=np.float64)))


def delta_e_matrix(metric: Union[str, DeltaMetric], lab_a: Any, lab_b: Any) -> ArrayFloat:
    """Pairwise (n, m) distance matrix between two sets of CIELAB colours."""
    metric = DeltaMetric.parse(metric)
    a = np.ascontiguousarray(np.asarray(lab_a, dtype=np.float64).reshape(-1, 3))
    b = np.ascontiguousarray(np.asarray(lab_b, dtype=np.float64).reshape(-1, 3))
    if a.shape[0] == 0 or b.shape[0] == 0:
        return np.zeros((a.shape[0], b.shape[0]), dtype=np.float64)
    return _delta_e_matrix_kernel(a, b, metric is DeltaMetric.CIEDE2000)

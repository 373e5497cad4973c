"""
Core filtering algorithms: Laplace kernels, border policies, border-aware convolution.
"""
import numpy as np
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union
import logging

logger = logging.getLogger(__name__)

# ROIs up to this many pixels use the explicit per-pixel loop when no method is given
SPATIAL_MAX_PIXELS = 32 * 32

LAPLACE_3X3 = np.array([[-1, -1, -1],
                        [-1,  8, -1],
                        [-1, -1, -1]], dtype=np.int32)

LAPLACE_5X5 = np.array([[-1, -3, -4, -3, -1],
                        [-3,  0,  6,  0, -3],
                        [-4,  6, 20,  6, -4],
                        [-3,  0,  6,  0, -3],
                        [-1, -3, -4, -3, -1]], dtype=np.int32)


def laplace_kernel(mask_size: int = 5) -> np.ndarray:
    """
    Return the Laplace mask for the given size.

    Args:
        mask_size: 3 or 5

    Returns:
        Signed integer kernel (a fresh copy)
    """
    if mask_size == 3:
        return LAPLACE_3X3.copy()
    if mask_size == 5:
        return LAPLACE_5X5.copy()
    raise ValueError(f"Unsupported Laplace mask size: {mask_size} (expected 3 or 5)")


def kernel_anchor(kernel: np.ndarray) -> Tuple[int, int]:
    """Kernel center as (anchor_x, anchor_y)."""
    k_h, k_w = kernel.shape
    return k_w // 2, k_h // 2


def _check_kernel(kernel: np.ndarray, anchor: Optional[Tuple[int, int]]) -> Tuple[int, int]:
    if kernel.ndim != 2:
        raise ValueError(f"Kernel must be 2D, got shape {kernel.shape}")
    k_h, k_w = kernel.shape
    if k_h == 0 or k_w == 0:
        raise ValueError("Kernel must not be empty")
    if k_h % 2 == 0 or k_w % 2 == 0:
        raise ValueError(f"Kernel dimensions must be odd, got {k_w}x{k_h}")
    if anchor is None:
        return kernel_anchor(kernel)
    anchor_x, anchor_y = anchor
    if not (0 <= anchor_x < k_w and 0 <= anchor_y < k_h):
        raise ValueError(f"Anchor {anchor} lies outside the {k_w}x{k_h} kernel")
    return anchor_x, anchor_y


def _check_image(image: np.ndarray):
    if image.ndim != 2:
        raise ValueError(f"Expected a single-channel 2D image, got shape {image.shape}")
    if image.shape[0] == 0 or image.shape[1] == 0:
        raise ValueError("Image dimensions must be non-zero")
    if image.dtype != np.uint8:
        raise ValueError(f"Expected an 8-bit image, got dtype {image.dtype}")


@dataclass(frozen=True)
class Roi:
    """Region of interest: offset (x, y) and size (width, height) in source pixels."""
    x: int
    y: int
    width: int
    height: int

    @classmethod
    def full(cls, image: np.ndarray) -> 'Roi':
        return cls(0, 0, image.shape[1], image.shape[0])

    @property
    def shape(self) -> Tuple[int, int]:
        return self.height, self.width

    def validate(self, image: np.ndarray):
        """Raise ValueError unless the ROI is non-empty and inside the image."""
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"ROI must have non-zero size, got {self.width}x{self.height}")
        img_h, img_w = image.shape[:2]
        if (self.x < 0 or self.y < 0 or
                self.x + self.width > img_w or self.y + self.height > img_h):
            raise ValueError(f"ROI {self} lies outside the {img_w}x{img_h} image")

    def split_rows(self, parts: int) -> List['Roi']:
        """Split into at most `parts` horizontal bands covering the ROI exactly."""
        parts = max(1, min(parts, self.height))
        bounds = np.linspace(0, self.height, parts + 1).astype(int)
        return [Roi(self.x, self.y + int(top), self.width, int(bottom - top))
                for top, bottom in zip(bounds[:-1], bounds[1:])]


class BorderPolicy:
    """
    Strategy producing virtual samples outside the image bounds.

    Subclasses implement `map_index`, which maps a (possibly out-of-range)
    coordinate along an axis of length `size` to a valid index. Array
    coordinates are accepted as well, which is what `extend` relies on.
    """
    name = ''
    # Fill for coordinates mapped to -1; only policies without a source sample set it
    value = None

    def map_index(self, coord, size: int):
        raise NotImplementedError

    def extend(self, image: np.ndarray, top: int, bottom: int,
               left: int, right: int) -> np.ndarray:
        """
        Return the image grown by the given margins using this policy.
        Margins may be negative, which crops instead.
        """
        h, w = image.shape
        rows = self.map_index(np.arange(-top, h + bottom), h)
        cols = self.map_index(np.arange(-left, w + right), w)
        return image[np.ix_(rows, cols)]

    def __repr__(self):
        return f"{type(self).__name__}()"


class ReplicateBorder(BorderPolicy):
    """Clamp to the nearest edge sample."""
    name = 'replicate'

    def map_index(self, coord, size: int):
        return np.clip(coord, 0, size - 1)


class WrapBorder(BorderPolicy):
    """Periodic extension."""
    name = 'wrap'

    def map_index(self, coord, size: int):
        return np.mod(coord, size)


class MirrorBorder(BorderPolicy):
    """Reflect about the edge sample without repeating it (dcb|abcd|cba)."""
    name = 'mirror'

    def map_index(self, coord, size: int):
        if size == 1:
            return np.zeros_like(coord)
        period = 2 * (size - 1)
        coord = np.mod(coord, period)
        return np.where(coord < size, coord, period - coord)


class ConstantBorder(BorderPolicy):
    """Every sample outside the image takes a fixed value."""
    name = 'constant'

    def __init__(self, value: int = 0):
        if not 0 <= value <= 255:
            raise ValueError(f"Border value must be in [0, 255], got {value}")
        self.value = int(value)

    def map_index(self, coord, size: int):
        # -1 marks a coordinate with no source sample
        return np.where((coord >= 0) & (coord < size), coord, -1)

    def extend(self, image: np.ndarray, top: int, bottom: int,
               left: int, right: int) -> np.ndarray:
        h, w = image.shape
        rows = np.arange(-top, h + bottom)
        cols = np.arange(-left, w + right)
        inside_rows = (rows >= 0) & (rows < h)
        inside_cols = (cols >= 0) & (cols < w)
        extended = np.full((len(rows), len(cols)), self.value, dtype=image.dtype)
        extended[np.ix_(inside_rows, inside_cols)] = image[np.ix_(rows[inside_rows], cols[inside_cols])]
        return extended

    def __repr__(self):
        return f"ConstantBorder(value={self.value})"


BORDER_POLICIES = {
    'replicate': ReplicateBorder,
    'constant': ConstantBorder,
    'wrap': WrapBorder,
    'mirror': MirrorBorder,
}


def get_border_policy(border: Union[str, BorderPolicy], value: int = 0) -> BorderPolicy:
    """Resolve a policy name (or pass through a policy instance)."""
    if isinstance(border, BorderPolicy):
        return border
    try:
        policy_cls = BORDER_POLICIES[border.lower()]
    except (KeyError, AttributeError):
        raise ValueError(f"Unknown border policy: {border!r} "
                         f"(expected one of {sorted(BORDER_POLICIES)})") from None
    if policy_cls is ConstantBorder:
        return ConstantBorder(value)
    return policy_cls()


def saturate_uint8(acc: np.ndarray) -> np.ndarray:
    """Saturating cast of a signed accumulator to uint8."""
    return np.clip(acc, 0, 255).astype(np.uint8)


def convolve_border(image: np.ndarray, kernel: np.ndarray,
                    anchor: Optional[Tuple[int, int]] = None,
                    roi: Optional[Roi] = None,
                    border: Union[str, BorderPolicy] = 'replicate',
                    border_value: int = 0,
                    method: Optional[str] = None,
                    workers: int = 1,
                    out: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Apply an integer kernel to an 8-bit image with border extension.

    Each output pixel (x, y) of the ROI is the saturated sum of
    kernel[j, i] * source[y + roi.y + j - anchor_y, x + roi.x + i - anchor_x],
    with out-of-range source coordinates resolved by the border policy.

    Args:
        image: 2D uint8 source image (any strides)
        kernel: Odd-sized 2D integer kernel
        anchor: (x, y) kernel cell aligned with the output pixel, default center
        roi: Region of the source to filter, default the full image
        border: Border policy instance or name
        border_value: Fill value for the 'constant' policy
        method: 'spatial', 'vectorized' or None to select by ROI size
        workers: Number of row bands filtered concurrently
        out: Optional uint8 destination of ROI shape

    Returns:
        uint8 image with the ROI's dimensions
    """
    _check_image(image)
    kernel = np.asarray(kernel)
    anchor = _check_kernel(kernel, anchor)
    if not np.issubdtype(kernel.dtype, np.integer):
        raise ValueError(f"Kernel weights must be integers, got dtype {kernel.dtype}")
    roi = roi if roi is not None else Roi.full(image)
    roi.validate(image)
    policy = get_border_policy(border, border_value)

    if out is None:
        out = np.empty(roi.shape, dtype=np.uint8)
    elif out.shape != roi.shape or out.dtype != np.uint8:
        raise ValueError(f"Destination must be uint8 with shape {roi.shape}, "
                         f"got {out.dtype} {out.shape}")

    if method is None:
        method = 'spatial' if roi.width * roi.height <= SPATIAL_MAX_PIXELS else 'vectorized'
    if method == 'spatial':
        run = _convolve_spatial
    elif method == 'vectorized':
        run = _convolve_vectorized
    else:
        raise ValueError(f"Unknown convolution method: {method}")

    logger.debug(f"Convolving {image.shape[1]}x{image.shape[0]} image, ROI {roi}, "
                 f"kernel {kernel.shape}, anchor {anchor}, {policy!r}, method={method}, workers={workers}")

    kernel = kernel.astype(np.int64)
    if workers <= 1 or roi.height == 1:
        run(image, kernel, anchor, roi, policy, out)
        return out

    bands = roi.split_rows(workers)
    logger.debug(f"Filtering {len(bands)} row bands in parallel")

    def run_band(band: Roi):
        top = band.y - roi.y
        run(image, kernel, anchor, band, policy, out[top:top + band.height])

    with ThreadPoolExecutor(max_workers=len(bands)) as executor:
        # list() propagates the first exception raised by a band
        list(executor.map(run_band, bands))
    return out


def _convolve_spatial(image: np.ndarray, kernel: np.ndarray, anchor: Tuple[int, int],
                      roi: Roi, policy: BorderPolicy, out: np.ndarray):
    """Reference implementation: explicit loop over output pixels and kernel cells."""
    k_h, k_w = kernel.shape
    anchor_x, anchor_y = anchor
    img_h, img_w = image.shape
    weights = kernel.tolist()

    # Border mapping is resolved once per axis; the loop only indexes lists
    rows = policy.map_index(np.arange(roi.y - anchor_y, roi.y + roi.height + k_h - 1 - anchor_y),
                            img_h).tolist()
    cols = policy.map_index(np.arange(roi.x - anchor_x, roi.x + roi.width + k_w - 1 - anchor_x),
                            img_w).tolist()
    pixels = {sy: image[sy].tolist() for sy in set(rows) if sy >= 0}
    fill = policy.value

    for y in range(roi.height):
        for x in range(roi.width):
            acc = 0
            for j in range(k_h):
                sy = rows[y + j]
                src_row = pixels[sy] if sy >= 0 else None
                for i in range(k_w):
                    sx = cols[x + i]
                    sample = fill if src_row is None or sx < 0 else src_row[sx]
                    acc += weights[j][i] * sample
            out[y, x] = min(max(acc, 0), 255)


def _convolve_vectorized(image: np.ndarray, kernel: np.ndarray, anchor: Tuple[int, int],
                         roi: Roi, policy: BorderPolicy, out: np.ndarray):
    """Accumulate one shifted window of the extended source per kernel cell."""
    k_h, k_w = kernel.shape
    anchor_x, anchor_y = anchor
    img_h, img_w = image.shape

    # Margins needed around the ROI, expressed relative to the full image edges
    top = anchor_y - roi.y
    left = anchor_x - roi.x
    bottom = (roi.y + roi.height + k_h - 1 - anchor_y) - img_h
    right = (roi.x + roi.width + k_w - 1 - anchor_x) - img_w
    extended = policy.extend(image, top, bottom, left, right).astype(np.int64)

    acc = np.zeros(roi.shape, dtype=np.int64)
    for j in range(k_h):
        for i in range(k_w):
            weight = int(kernel[j, i])
            if weight:
                acc += weight * extended[j:j + roi.height, i:i + roi.width]

    out[...] = saturate_uint8(acc)


def filter_laplace_border(image: np.ndarray, mask_size: int = 5,
                          roi: Optional[Roi] = None,
                          border: Union[str, BorderPolicy] = 'replicate',
                          border_value: int = 0,
                          method: Optional[str] = None,
                          workers: int = 1) -> np.ndarray:
    """
    Laplace edge filter with border handling (replicate by default).

    Args:
        image: 2D uint8 source image
        mask_size: 3 or 5
        roi: Region to filter, default the full image
        border: Border policy instance or name
        border_value: Fill value for the 'constant' policy
        method: 'spatial', 'vectorized' or None
        workers: Number of row bands filtered concurrently

    Returns:
        Filtered uint8 image of ROI size
    """
    kernel = laplace_kernel(mask_size)
    result = convolve_border(image, kernel, roi=roi, border=border,
                             border_value=border_value, method=method, workers=workers)
    logger.debug(f"Laplace output range: [{int(result.min())}, {int(result.max())}]")
    return result

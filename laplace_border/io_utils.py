"""
Image I/O utilities: PGM codec, regular images via PIL, raster bands via rasterio.
All images are handled as 2D uint8 arrays.
"""
import numpy as np
from PIL import Image, UnidentifiedImageError
from typing import Any, Dict
import os
import tempfile
import rasterio
from rasterio.errors import RasterioIOError
import logging

logger = logging.getLogger(__name__)

PGM_EXTENSIONS = ('.pgm', '.pnm')
GEOSPATIAL_EXTENSIONS = ('.tif', '.tiff', '.jp2', '.img')


class ImageDecodeError(ValueError):
    """Malformed image header or truncated pixel data."""


def load_image(file_path: str, band: int = 1) -> np.ndarray:
    """
    Load an image as a 2D uint8 array.

    Args:
        file_path: Path to image file
        band: 1-based band index for raster formats

    Returns:
        Grayscale image, shape (height, width), dtype uint8
    """
    if not os.path.isfile(file_path):
        raise FileNotFoundError(f"Image file not found: {file_path}")

    file_ext = os.path.splitext(file_path)[1].lower()

    if file_ext in PGM_EXTENSIONS and _is_graymap(file_path):
        image = read_pgm(file_path)
    elif file_ext in GEOSPATIAL_EXTENSIONS:
        image = load_geospatial_band(file_path, band)
    else:
        image = load_regular_image(file_path)

    logger.info(f"Loaded {file_path}: {image.shape[1]}x{image.shape[0]}")
    return image


def _is_graymap(file_path: str) -> bool:
    """True for P2/P5 files; other netpbm variants (P1, P3, P4, P6) are left to PIL."""
    with open(file_path, 'rb') as f:
        magic = f.read(2)
    return magic not in (b'P1', b'P3', b'P4', b'P6')


def _read_header_token(f) -> bytes:
    """Next whitespace-delimited header token, skipping '#' comments."""
    token = b''
    while True:
        ch = f.read(1)
        if not ch:
            if token:
                return token
            raise ImageDecodeError("Unexpected end of file in PGM header")
        if ch == b'#':
            f.readline()
            if token:
                return token
            continue
        if ch.isspace():
            if token:
                return token
            continue
        token += ch


def _read_header_int(f, field: str, file_path: str) -> int:
    token = _read_header_token(f)
    try:
        return int(token)
    except ValueError:
        raise ImageDecodeError(f"Malformed PGM {field} {token!r} in {file_path}") from None


def read_pgm(file_path: str) -> np.ndarray:
    """Read a binary (P5) or ASCII (P2) PGM file."""
    with open(file_path, 'rb') as f:
        magic = f.read(2)
        if magic not in (b'P2', b'P5'):
            raise ImageDecodeError(f"Unsupported PGM format {magic!r} in {file_path} (must be P2 or P5)")

        width = _read_header_int(f, 'width', file_path)
        height = _read_header_int(f, 'height', file_path)
        maxval = _read_header_int(f, 'maxval', file_path)

        if width <= 0 or height <= 0:
            raise ImageDecodeError(f"Invalid PGM dimensions {width}x{height} in {file_path}")
        if not 0 < maxval < 65536:
            raise ImageDecodeError(f"Invalid PGM maxval {maxval} in {file_path}")

        count = width * height
        if magic == b'P5':
            # A single whitespace byte separating header and raster was consumed by the tokenizer
            dtype = np.dtype(np.uint8) if maxval < 256 else np.dtype('>u2')
            data = f.read(count * dtype.itemsize)
            if len(data) < count * dtype.itemsize:
                raise ImageDecodeError(f"Truncated PGM pixel data in {file_path}: "
                                       f"expected {count * dtype.itemsize} bytes, got {len(data)}")
            img = np.frombuffer(data, dtype=dtype).astype(np.int64)
        else:
            try:
                img = np.array(f.read().split(), dtype=np.int64)
            except ValueError as e:
                raise ImageDecodeError(f"Non-numeric sample in {file_path}") from e
            if img.size < count:
                raise ImageDecodeError(f"Truncated PGM pixel data in {file_path}: "
                                       f"expected {count} samples, got {img.size}")
            img = img[:count]

    if img.max() > maxval:
        raise ImageDecodeError(f"Sample value exceeds maxval {maxval} in {file_path}")

    if maxval != 255:
        img = (img * 255 + maxval // 2) // maxval

    return img.astype(np.uint8).reshape((height, width))


def write_pgm(file_path: str, image: np.ndarray):
    """Write a binary (P5) PGM file with maxval 255."""
    height, width = image.shape
    with open(file_path, 'wb') as f:
        f.write(b'P5\n')
        f.write(f"{width} {height}\n".encode())
        f.write(b'255\n')
        f.write(np.ascontiguousarray(image, dtype=np.uint8).tobytes())


def load_regular_image(file_path: str) -> np.ndarray:
    """Load regular image formats using PIL, converted to 8-bit grayscale."""
    try:
        with Image.open(file_path) as pil_image:
            if pil_image.mode != 'L':
                logger.debug(f"Converting {pil_image.mode} image to grayscale")
                pil_image = pil_image.convert('L')
            return np.array(pil_image, dtype=np.uint8)
    except (UnidentifiedImageError, OSError) as e:
        raise ImageDecodeError(f"Could not decode {file_path}: {e}") from e


def load_geospatial_band(file_path: str, band: int = 1) -> np.ndarray:
    """Load one band of a raster format using rasterio, scaled to 8 bits."""
    try:
        with rasterio.open(file_path) as src:
            logger.debug(f"Raster {src.width}x{src.height}, {src.count} bands, dtype: {src.dtypes[0]}")
            if not 1 <= band <= src.count:
                raise ValueError(f"Band {band} not available in {file_path} ({src.count} bands)")
            data = src.read(band)
            nodata = src.nodata
    except RasterioIOError as e:
        raise ImageDecodeError(f"Could not decode {file_path}: {e}") from e

    if data.dtype == np.uint8:
        return data

    data = data.astype(np.float64)
    valid = np.ones(data.shape, dtype=bool) if nodata is None else data != nodata
    if not np.any(valid):
        return np.zeros(data.shape, dtype=np.uint8)

    # Stretch the valid range onto [0, 255]; NoData maps to 0
    low, high = data[valid].min(), data[valid].max()
    scaled = np.zeros(data.shape, dtype=np.float64)
    if high > low:
        scaled[valid] = (data[valid] - low) / (high - low) * 255.0
    return np.round(scaled).astype(np.uint8)


def from_pitched_buffer(buffer, width: int, height: int, pitch: int) -> np.ndarray:
    """
    View a row-padded 8-bit buffer as a (height, width) image without copying.

    Args:
        buffer: Any object exposing the buffer protocol
        width: Image width in pixels
        height: Image height in pixels
        pitch: Bytes per row, at least `width`

    Returns:
        Read-only strided uint8 view
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"Image dimensions must be non-zero, got {width}x{height}")
    if pitch < width:
        raise ValueError(f"Pitch {pitch} is smaller than width {width}")
    flat = np.frombuffer(buffer, dtype=np.uint8)
    needed = pitch * (height - 1) + width
    if flat.size < needed:
        raise ValueError(f"Buffer of {flat.size} bytes too small for {width}x{height} with pitch {pitch}")
    view = np.lib.stride_tricks.as_strided(flat, shape=(height, width), strides=(pitch, 1),
                                           writeable=False)
    return view


def _current_umask() -> int:
    umask = os.umask(0)
    os.umask(umask)
    return umask


def save_image(image: np.ndarray, file_path: str):
    """
    Save a 2D uint8 image. The file is written to a temporary name in the
    target directory and renamed into place, so a failed save leaves no
    partial output behind.

    Args:
        image: Image array (uint8)
        file_path: Output file path
    """
    if image.ndim != 2 or image.dtype != np.uint8:
        raise ValueError(f"Expected a 2D uint8 image, got {image.dtype} {image.shape}")

    directory = os.path.dirname(os.path.abspath(file_path))
    os.makedirs(directory, exist_ok=True)

    file_ext = os.path.splitext(file_path)[1].lower()
    fd, tmp_path = tempfile.mkstemp(suffix=file_ext, dir=directory)
    os.close(fd)
    try:
        if file_ext in PGM_EXTENSIONS or not file_ext:
            write_pgm(tmp_path, image)
        else:
            Image.fromarray(image, 'L').save(tmp_path)
        # mkstemp creates the file owner-only; give the output the mode a plain open() would
        os.chmod(tmp_path, 0o666 & ~_current_umask())
        os.replace(tmp_path, file_path)
    except Exception as e:
        logger.error(f"Error saving {file_path}: {str(e)}")
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise

    logger.debug(f"Successfully saved: {file_path} (shape: {image.shape})")


def get_image_info(image: np.ndarray) -> Dict[str, Any]:
    """
    Get information about image array.

    Args:
        image: Image array

    Returns:
        Dictionary with image information
    """
    return {
        'width': int(image.shape[1]),
        'height': int(image.shape[0]),
        'pitch': int(image.strides[0]),
        'dtype': str(image.dtype),
        'min_value': int(np.min(image)),
        'max_value': int(np.max(image)),
        'mean_value': float(np.mean(image)),
    }

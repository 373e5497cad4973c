"""
Command-line interface: load a grayscale image, apply the Laplace border filter, save the result.
"""
import argparse
import logging
import os
import platform
import sys
from importlib import metadata
from typing import Any, Dict, List, Optional

import matplotlib
import matplotlib.pyplot as plt
import numpy as np
import PIL
import rasterio
import scipy

from laplace_border.io_utils import load_image, save_image, get_image_info
from laplace_border.processing import BORDER_POLICIES, Roi, filter_laplace_border
from laplace_border.metrics import compare_images
from laplace_border.viz import plot_filter_results

logger = logging.getLogger(__name__)

DEFAULT_INPUT = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'data', 'sample.pgm')
OUTPUT_SUFFIX = '_filterLaplaceBorder.pgm'


def default_output_path(input_path: str) -> str:
    """Input path with its extension replaced by the filter suffix."""
    return os.path.splitext(input_path)[0] + OUTPUT_SUFFIX


def parse_roi(text: str) -> Roi:
    """Parse 'X,Y,WIDTH,HEIGHT'."""
    parts = text.split(',')
    if len(parts) != 4:
        raise argparse.ArgumentTypeError(f"ROI must be X,Y,WIDTH,HEIGHT, got {text!r}")
    try:
        x, y, width, height = (int(p) for p in parts)
    except ValueError:
        raise argparse.ArgumentTypeError(f"ROI values must be integers, got {text!r}") from None
    return Roi(x, y, width, height)


def runtime_info() -> Dict[str, Any]:
    """Versions of the libraries doing the work, plus the available CPU count."""
    try:
        version = metadata.version('laplace-border')
    except metadata.PackageNotFoundError:
        version = 'unknown'
    return {
        'laplace_border': version,
        'python': platform.python_version(),
        'numpy': np.__version__,
        'pillow': PIL.__version__,
        'scipy': scipy.__version__,
        'rasterio': rasterio.__version__,
        'matplotlib': matplotlib.__version__,
        'cpu_count': os.cpu_count(),
    }


def print_runtime_info():
    info = runtime_info()
    print(f"laplace-border Version {info['laplace_border']}")
    print(f"Python Version: {info['python']}")
    print(f"NumPy Version: {info['numpy']}")
    print(f"Pillow Version: {info['pillow']}")
    print(f"SciPy Version: {info['scipy']}")
    print(f"rasterio Version: {info['rasterio']}")
    print(f"matplotlib Version: {info['matplotlib']}")
    print(f"CPUs available: {info['cpu_count']}")


def process_image(input_path: str, output_path: str, mask_size: int = 5,
                  border: str = 'replicate', border_value: int = 0,
                  roi: Optional[Roi] = None, method: Optional[str] = None,
                  workers: int = 1) -> Dict[str, Any]:
    """
    Load, filter and save a single image.

    Returns:
        Dictionary with the source image, the filtered image and their info
    """
    image = load_image(input_path)
    logger.debug(f"Input info: {get_image_info(image)}")

    filtered = filter_laplace_border(image, mask_size=mask_size, roi=roi, border=border,
                                     border_value=border_value, method=method, workers=workers)

    save_image(filtered, output_path)

    return {
        'input_file': input_path,
        'output_file': output_path,
        'source': image,
        'filtered': filtered,
        'output_info': get_image_info(filtered),
    }


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='laplace-border',
                                     description='Laplace edge filter with border handling')

    parser.add_argument('--input', default=None,
                        help='Input grayscale image (default: bundled sample.pgm)')
    parser.add_argument('--output', default=None,
                        help=f'Output image (default: <input base name>{OUTPUT_SUFFIX})')

    # Filter parameters
    parser.add_argument('--mask-size', type=int, choices=[3, 5], default=5,
                        help='Laplace mask size (default: 5)')
    parser.add_argument('--border', choices=sorted(BORDER_POLICIES), default='replicate',
                        help='Border policy (default: replicate)')
    parser.add_argument('--border-value', type=int, default=0,
                        help='Fill value for the constant border policy (default: 0)')
    parser.add_argument('--roi', type=parse_roi, default=None,
                        help='Region of interest X,Y,WIDTH,HEIGHT (default: full image)')
    parser.add_argument('--method', choices=['auto', 'spatial', 'vectorized'], default='auto',
                        help='Convolution method (default: auto)')
    parser.add_argument('--workers', type=int, default=1,
                        help='Row bands filtered in parallel (default: 1)')

    # Diagnostics
    parser.add_argument('--reference', default=None,
                        help='Reference output to compare against')
    parser.add_argument('--show', action='store_true',
                        help='Display input and output images')
    parser.add_argument('--no-info', action='store_true',
                        help='Do not print library and runtime versions')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Enable debug logging')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point. Returns the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.workers < 1:
        parser.error("Workers must be >= 1")
    if not 0 <= args.border_value <= 255:
        parser.error("Border value must be between 0 and 255")

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    print(f"{parser.prog} Starting...\n")

    try:
        if not args.no_info:
            print_runtime_info()

        input_path = args.input if args.input is not None else DEFAULT_INPUT
        if os.path.isfile(input_path):
            print(f"Successfully opened: <{input_path}>")
        else:
            print(f"Unable to open: <{input_path}>", file=sys.stderr)
            return 1

        output_path = args.output if args.output is not None else default_output_path(input_path)
        method = None if args.method == 'auto' else args.method

        results = process_image(input_path, output_path, args.mask_size, args.border,
                                args.border_value, args.roi, method, args.workers)
        print(f"Saved image: {output_path}")

        reference = None
        if args.reference is not None:
            reference = load_image(args.reference)
            metrics = compare_images(results['filtered'], reference)
            print(f"Comparison with <{args.reference}>:")
            for name, value in metrics.items():
                print(f"  {name}: {value}")

        if args.show:
            plot_filter_results(results['source'], results['filtered'], reference)
            plt.show()

    except (OSError, ValueError) as e:
        print(f"Error occurred: {e}", file=sys.stderr)
        return 1
    except Exception:
        logger.debug("Unexpected failure", exc_info=True)
        print("An unknown error occurred. Aborting.", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())

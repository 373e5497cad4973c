import numpy as np
from PIL import Image
import os

from laplace_border.io_utils import write_pgm


def generate_sample_images(output_dir: str = 'sample_data'):
    """Generate grayscale test images for the Laplace filter."""
    os.makedirs(output_dir, exist_ok=True)

    # 1. Uniform image: the Laplace response is zero everywhere, borders included
    uniform_array = np.full((128, 128), 127, dtype=np.uint8)
    write_pgm(os.path.join(output_dir, 'uniform_image.pgm'), uniform_array)

    # 2. Vertical step edge
    step_array = np.zeros((128, 128), dtype=np.uint8)
    step_array[:, 64:] = 255
    write_pgm(os.path.join(output_dir, 'step_edge.pgm'), step_array)

    # 3. Checkerboard with 8 pixel cells
    yy, xx = np.mgrid[0:128, 0:128]
    checker_array = (((yy // 8) + (xx // 8)) % 2 * 255).astype(np.uint8)
    write_pgm(os.path.join(output_dir, 'checkerboard.pgm'), checker_array)

    # 4. Smooth radial gradient, also as PNG to exercise the PIL path
    radius = np.hypot(yy - 64, xx - 64)
    radial_array = np.clip(255 - radius * 3, 0, 255).astype(np.uint8)
    write_pgm(os.path.join(output_dir, 'radial_gradient.pgm'), radial_array)
    Image.fromarray(radial_array).save(os.path.join(output_dir, 'radial_gradient.png'))

    # 5. Noisy image (salt & pepper)
    rng = np.random.default_rng(42)
    noisy_array = rng.integers(0, 256, (128, 128), dtype=np.uint8)
    salt_pepper = rng.random((128, 128))
    noisy_array[salt_pepper < 0.05] = 0    # pepper
    noisy_array[salt_pepper > 0.95] = 255  # salt
    write_pgm(os.path.join(output_dir, 'noisy_image.pgm'), noisy_array)

    print(f"Sample images generated in {output_dir}/ folder")


if __name__ == "__main__":
    generate_sample_images()

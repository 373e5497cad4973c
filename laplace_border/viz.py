"""
Visualization of filter input and output.
"""
import numpy as np
from typing import Optional
import matplotlib.pyplot as plt


def plot_filter_results(original: np.ndarray, filtered: np.ndarray,
                        reference: Optional[np.ndarray] = None) -> plt.Figure:
    """
    Create a matplotlib figure with the input, the Laplace output and an optional reference.

    Args:
        original: Source image
        filtered: Filtered image
        reference: Reference output to show alongside

    Returns:
        Matplotlib figure
    """
    images = [original, filtered]
    titles = ['Input', 'Laplace (border)']
    if reference is not None:
        images.append(reference)
        titles.append('Reference')

    fig, axes = plt.subplots(1, len(images), figsize=(5 * len(images), 5))

    for ax, img, title in zip(axes, images, titles):
        ax.imshow(img, cmap='gray', vmin=0, vmax=255)
        ax.set_title(title)
        ax.axis('off')

    plt.tight_layout()
    return fig

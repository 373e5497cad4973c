"""
Metrics for comparing a filtered image against a reference output.
"""
import numpy as np
from typing import Any, Dict, Optional
import math
import logging
from scipy.spatial import cKDTree  # For efficient distance calculations

logger = logging.getLogger(__name__)


def compare_images(result: np.ndarray, reference: np.ndarray,
                   edge_threshold: int = 1) -> Dict[str, Any]:
    """
    Compare a filtered image with a reference image of the same size.

    Args:
        result: Filtered uint8 image
        reference: Reference uint8 image (e.g. output of another Laplace implementation)
        edge_threshold: Pixels at or above this value count as edges

    Returns:
        Dictionary of pixel and edge-map metrics
    """
    if result.shape != reference.shape:
        raise ValueError(f"Cannot compare images of shape {result.shape} and {reference.shape}")

    diff = np.abs(result.astype(np.int32) - reference.astype(np.int32))
    mismatched = int(np.count_nonzero(diff))
    mse = float(np.mean(diff.astype(np.float64) ** 2))
    psnr = math.inf if mse == 0 else 10.0 * math.log10(255.0 ** 2 / mse)

    logger.debug(f"Pixel comparison: {mismatched} / {diff.size} mismatched, max diff {int(diff.max())}")

    metrics = {
        'identical': mismatched == 0,
        'mismatched_pixels': mismatched,
        'max_abs_diff': int(diff.max()),
        'mean_abs_diff': float(diff.mean()),
        'mse': mse,
        'psnr': psnr,
    }
    metrics.update(compare_edge_maps(result >= edge_threshold, reference >= edge_threshold))
    return metrics


def compare_edge_maps(edges1: np.ndarray, edges2: np.ndarray,
                      max_samples: int = 10000) -> Dict[str, float]:
    """
    Compare two binary edge maps.

    Args:
        edges1: First binary edge map (result)
        edges2: Second binary edge map (reference)
        max_samples: Maximum number of samples for Hausdorff distance

    Returns:
        Dictionary of comparison metrics
    """
    edges1_bin = edges1 > 0
    edges2_bin = edges2 > 0

    tp = int(np.sum(edges1_bin & edges2_bin))
    fp = int(np.sum(edges1_bin & ~edges2_bin))
    fn = int(np.sum(~edges1_bin & edges2_bin))

    precision = tp / (tp + fp) if (tp + fp) > 0 else 1.0
    recall = tp / (tp + fn) if (tp + fn) > 0 else 1.0
    f1 = 2 * precision * recall / (precision + recall) if (precision + recall) > 0 else 0.0
    iou = tp / (tp + fp + fn) if (tp + fp + fn) > 0 else 1.0

    return {
        'edge_precision': precision,
        'edge_recall': recall,
        'edge_f1_score': f1,
        'edge_iou': iou,
        'hausdorff_distance': approximate_hausdorff_distance(edges1_bin, edges2_bin, max_samples),
    }


def approximate_hausdorff_distance(edges1: np.ndarray, edges2: np.ndarray,
                                   max_samples: int = 10000,
                                   max_distance: Optional[float] = None) -> float:
    """
    Largest distance, in pixels, from an edge pixel of one map to the nearest
    edge pixel of the other. A filter that matches the reference except for
    a one-pixel shift of the Laplace response scores about 1.0 here while its
    pixel metrics look poor.

    Args:
        edges1: Edge map of the filtered image
        edges2: Edge map of the reference image
        max_samples: Edge pixels per map beyond which a fixed-seed subset is used
        max_distance: Value returned when only one map has edges (default: inf)

    Returns:
        Distance in pixels; 0.0 when neither map has edges
    """
    points1 = _edge_points(edges1, max_samples)
    points2 = _edge_points(edges2, max_samples)

    if len(points1) == 0 and len(points2) == 0:
        return 0.0
    if len(points1) == 0 or len(points2) == 0:
        return max_distance if max_distance is not None else math.inf

    to_reference, _ = cKDTree(points2).query(points1, workers=-1)
    to_result, _ = cKDTree(points1).query(points2, workers=-1)
    return float(max(to_reference.max(), to_result.max()))


def _edge_points(edges: np.ndarray, max_samples: int) -> np.ndarray:
    points = np.argwhere(edges > 0)
    if len(points) > max_samples:
        # Fixed seed keeps repeated comparisons of the same pair reproducible
        points = points[np.random.default_rng(0).choice(len(points), max_samples, replace=False)]
    return points

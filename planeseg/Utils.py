import logging
import math

import numpy as np


def setup_logger(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='[%(levelname)s] %(message)s'
    )


def time_cost_hms(seconds: float) -> str:
    h = int(seconds // 3600)
    m = int((seconds % 3600) // 60)
    s = seconds % 60
    return f"{h} h {m} min {s:.2f} sec"


def normalize_rows(v: np.ndarray, eps: float = 1e-12) -> np.ndarray:
    n = np.linalg.norm(v, axis=1, keepdims=True)
    n = np.maximum(n, eps)
    return v / n


def deg2rad(deg: float) -> float:
    return deg * math.pi / 180.0


def chunk_ranges(n: int, parts: int):
    """Split range(n) into at most `parts` contiguous (start, end) pairs of near equal length."""
    parts = max(1, min(parts, n))
    bounds = np.linspace(0, n, parts + 1).astype(np.int64)
    return [(int(s), int(e)) for s, e in zip(bounds[:-1], bounds[1:]) if e > s]

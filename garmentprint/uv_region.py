"""
UV region analysis.

Derives the per-boundary geometry constants used by artwork placement:
the usable width/height ratio (from the boundary mesh and its flattened
tech-pack twin), the clip polygon in UV space, and the framing normals.
"""
import logging
import math
from collections import defaultdict
from typing import Dict, List, Optional, Tuple

import numpy as np
from scipy.spatial import ConvexHull, QhullError

from garmentprint.types import GeometryConstants, GeometryError, HullConfig, Mesh

logger = logging.getLogger(__name__)


def bounding_box(points: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Return (min_corner, max_corner) of a point set."""
    points = np.asarray(points, dtype=np.float64)
    if points.size == 0:
        raise GeometryError("Cannot compute bounding box of an empty point set")
    return points.min(axis=0), points.max(axis=0)


def bounding_box_center(points: np.ndarray) -> np.ndarray:
    lo, hi = bounding_box(points)
    return (lo + hi) / 2.0


def _normalize(vector: np.ndarray, fallback: np.ndarray) -> np.ndarray:
    norm = np.linalg.norm(vector)
    if norm < 1e-12:
        return fallback.copy()
    return vector / norm


def compute_aspect_ratio(boundary: Mesh, techpack: Mesh) -> Tuple[float, float, float]:
    """
    Width/height ratio of the usable region.

    The boundary mesh only decides which axis dominates; the physical
    proportions come from the two largest extents of the flattened mesh.

    Args:
        boundary: Visible 3D boundary mesh
        techpack: Flattened tech-pack twin

    Returns:
        Tuple of (aspect_ratio, bigger_side, smaller_side)

    Raises:
        GeometryError: If the tech-pack mesh is flat in both in-plane axes
    """
    lo, hi = bounding_box(boundary.positions)
    size = hi - lo
    estimate = math.inf if size[1] == 0 else size[0] / size[1]

    t_lo, t_hi = bounding_box(techpack.positions)
    extents = np.sort(t_hi - t_lo)[::-1]
    bigger, smaller = float(extents[0]), float(extents[1])
    if smaller <= 0:
        raise GeometryError(f"Tech-pack mesh {techpack.name!r} has a degenerate bounding box")

    if estimate > 1:
        width, height = bigger, smaller
    else:
        width, height = smaller, bigger
    return width / height, bigger, smaller


def _cos_at(vertex: np.ndarray, other: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Cosine of the angle at `vertex` between (other - vertex) and (points - vertex)."""
    edge = other - vertex
    rays = points - vertex
    denom = np.linalg.norm(edge) * np.linalg.norm(rays, axis=1)
    with np.errstate(invalid="ignore", divide="ignore"):
        cos = rays @ edge / denom
    return np.nan_to_num(cos, nan=-1.0)


def _orientation(a, b, c) -> float:
    return (b[0] - a[0]) * (c[1] - a[1]) - (b[1] - a[1]) * (c[0] - a[0])


def _segments_cross(p1, p2, q1, q2) -> bool:
    """Proper intersection test; touching at shared endpoints does not count."""
    d1 = _orientation(q1, q2, p1)
    d2 = _orientation(q1, q2, p2)
    d3 = _orientation(p1, p2, q1)
    d4 = _orientation(p1, p2, q2)
    return (d1 * d2 < 0) and (d3 * d4 < 0)


def _crosses_polygon(a: np.ndarray, b: np.ndarray, polygon: List[np.ndarray]) -> bool:
    n = len(polygon)
    for i in range(n):
        q1 = polygon[i]
        q2 = polygon[(i + 1) % n]
        if np.array_equal(q1, a) or np.array_equal(q1, b) or np.array_equal(q2, a) or np.array_equal(q2, b):
            continue
        if _segments_cross(a, b, q1, q2):
            return True
    return False


def refine_concave(hull: np.ndarray, points: np.ndarray, concavity: float) -> np.ndarray:
    """
    Dig a convex hull towards the point cloud.

    Every edge whose length exceeds `concavity` is split at the inner point
    that sees the edge under the widest angles (both base angles acute),
    provided the two new edges are shorter than the original and do not
    cross the polygon. Repeats until no edge can be split.

    Args:
        hull: (P, 2) convex polygon vertices in order
        points: (N, 2) full point cloud (hull vertices included)
        concavity: Edge length above which an edge is a split candidate

    Returns:
        (Q, 2) polygon with Q >= P
    """
    if not math.isfinite(concavity):
        return hull

    polygon = [np.asarray(p, dtype=np.float64) for p in hull]
    on_hull = {tuple(p) for p in hull}
    inner = np.array([p for p in points if tuple(p) not in on_hull], dtype=np.float64).reshape(-1, 2)
    max_sq = concavity * concavity
    skip = set()

    inserted = True
    while inserted and len(inner) > 0:
        inserted = False
        i = 0
        while i < len(polygon) and len(inner) > 0:
            a = polygon[i]
            b = polygon[(i + 1) % len(polygon)]
            key = (tuple(a), tuple(b))
            sq_len = float(np.sum((b - a) ** 2))
            if sq_len < max_sq or key in skip:
                i += 1
                continue

            cos_a = _cos_at(a, b, inner)
            cos_b = _cos_at(b, a, inner)
            da = np.sum((inner - a) ** 2, axis=1)
            db = np.sum((inner - b) ** 2, axis=1)
            eligible = (cos_a > 0) & (cos_b > 0) & (da < sq_len) & (db < sq_len)
            split = None
            if np.any(eligible):
                score = np.where(eligible, np.minimum(cos_a, cos_b), -np.inf)
                for idx in np.argsort(-score, kind="stable"):
                    if not eligible[idx]:
                        break
                    candidate = inner[idx]
                    if not _crosses_polygon(a, candidate, polygon) and not _crosses_polygon(candidate, b, polygon):
                        split = idx
                        break

            if split is None:
                skip.add(key)
                i += 1
                continue

            polygon.insert(i + 1, inner[split].copy())
            inner = np.delete(inner, split, axis=0)
            inserted = True

    return np.array(polygon)


def compute_hull_polygon(uvs: np.ndarray, config: Optional[HullConfig] = None) -> np.ndarray:
    """
    Clip polygon of a UV point set.

    Points are scaled (x1000 by default) before hulling so the concavity
    threshold is expressed in stable integer-like units, then scaled back.

    Args:
        uvs: (N, 2) UV coordinates
        config: Hull configuration

    Returns:
        (P, 2) polygon in UV space, counter-clockwise

    Raises:
        GeometryError: If fewer than 3 distinct points exist or all are collinear
    """
    config = config or HullConfig()
    uvs = np.asarray(uvs, dtype=np.float64).reshape(-1, 2)
    scaled = np.unique(uvs * config.scale, axis=0)
    if len(scaled) < 3:
        raise GeometryError(f"UV hull needs at least 3 distinct points, got {len(scaled)}")
    try:
        hull = ConvexHull(scaled)
    except QhullError as e:
        raise GeometryError(f"Degenerate UV set (collinear points): {e}") from e
    if hull.volume <= 0:
        raise GeometryError("Degenerate UV set: hull has zero area")

    polygon = refine_concave(scaled[hull.vertices], scaled, config.concavity)
    logger.debug(f"UV hull: {len(hull.vertices)} convex vertices, {len(polygon)} after refinement")
    return polygon / config.scale


def boundary_loop(mesh: Mesh) -> Optional[np.ndarray]:
    """
    Ordered UV coordinates of the mesh's longest open edge loop.

    Open edges are those used by exactly one triangle. Returns None when the
    mesh has no faces or no open edges.
    """
    if mesh.faces is None or len(mesh.faces) == 0:
        return None

    counts: Dict[Tuple[int, int], int] = defaultdict(int)
    for face in mesh.faces:
        for j in range(3):
            u, v = int(face[j]), int(face[(j + 1) % 3])
            counts[(min(u, v), max(u, v))] += 1

    neighbours: Dict[int, List[int]] = defaultdict(list)
    for (u, v), count in counts.items():
        if count == 1:
            neighbours[u].append(v)
            neighbours[v].append(u)
    if not neighbours:
        return None

    visited = set()
    best: List[int] = []
    for start in neighbours:
        if start in visited:
            continue
        loop = [start]
        visited.add(start)
        prev, current = None, start
        while True:
            options = [n for n in neighbours[current] if n != prev and n not in visited]
            if not options:
                break
            prev, current = current, options[0]
            visited.add(current)
            loop.append(current)
        if len(loop) > len(best):
            best = loop

    if len(best) < 3:
        return None
    return mesh.uvs[best]


def analyze(
    boundary: Mesh,
    techpack: Optional[Mesh],
    config: Optional[HullConfig] = None,
) -> GeometryConstants:
    """
    Derive all geometry constants of one boundary.

    Args:
        boundary: Visible 3D boundary mesh
        techpack: Flattened twin, required
        config: Hull configuration

    Returns:
        GeometryConstants for the boundary

    Raises:
        GeometryError: If the tech-pack mesh is missing or the UVs are degenerate
    """
    if techpack is None:
        raise GeometryError(f"could not find flat version of {boundary.name}")
    config = config or HullConfig()

    aspect_ratio, bigger, smaller = compute_aspect_ratio(boundary, techpack)

    polygon = None
    if config.method == "loop":
        polygon = boundary_loop(boundary)
        if polygon is None:
            logger.debug(f"{boundary.name}: no open UV loop, using hull")
    if polygon is None:
        polygon = compute_hull_polygon(boundary.uvs, config)

    surface_normal = _normalize(bounding_box_center(boundary.positions), np.array([0.0, 0.0, 1.0]))
    uv_normal = _normalize(bounding_box_center(boundary.uvs), np.array([1.0, 1.0]) / math.sqrt(2))

    logger.info(f"Boundary {boundary.name}: aspect ratio {aspect_ratio:.3f}, {len(polygon)} clip vertices")
    return GeometryConstants(
        aspect_ratio=aspect_ratio,
        hull_polygon_uv=np.asarray(polygon, dtype=np.float64),
        uv_center=bounding_box_center(boundary.positions),
        surface_normal=surface_normal,
        uv_normal=uv_normal,
        bigger_side=bigger,
        smaller_side=smaller,
    )

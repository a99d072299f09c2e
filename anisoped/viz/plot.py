"""Matplotlib rendering of cell densities and travel-time distributions.

Requires the ``viz`` extra (matplotlib).
"""

from __future__ import annotations

import math
from typing import Any

import numpy as np

from ..core.engine import SimulationEngine
from ..core.fundamental_diagram import FundamentalDiagram


def cell_densities(engine: SimulationEngine) -> np.ndarray:
    """People per m^2 in every cell; gates (infinite area) give 0."""
    area = engine.net.cell_area
    acc = engine.get_cell_accumulations()
    dens = np.zeros_like(acc)
    finite = np.isfinite(area)
    dens[finite] = acc[finite] / area[finite]
    return dens


def plot_cells(
    engine: SimulationEngine,
    ax: Any = None,
    cmap: str = "viridis",
    vmax: float | None = None,
    annotate: bool = False,
) -> Any:
    """Draw cell polygons coloured by density.

    Cells without a polygon are skipped.  Returns the matplotlib axes.
    """
    import matplotlib.pyplot as plt
    from matplotlib.collections import PatchCollection
    from matplotlib.patches import Polygon

    if ax is None:
        _, ax = plt.subplots(figsize=(6, 6))

    net = engine.net
    dens = cell_densities(engine)
    patches, values = [], []
    for i, poly in enumerate(net.cell_polygon):
        if len(poly) < 3:
            continue
        patches.append(Polygon(np.asarray(poly), closed=True))
        values.append(dens[i])
        if annotate:
            cx, cy = np.asarray(poly).mean(axis=0)
            ax.text(cx, cy, net.cell_names[i], ha="center", va="center", fontsize=7)

    coll = PatchCollection(patches, cmap=cmap, edgecolor="black", linewidth=0.5)
    coll.set_array(np.asarray(values, dtype=float))
    coll.set_clim(0.0, vmax if vmax is not None else max(values + [1e-9]))
    ax.add_collection(coll)
    ax.autoscale_view()
    ax.set_aspect("equal")
    ax.set_title(f"t = {engine.time:.1f} s")
    plt.colorbar(coll, ax=ax, label="density [1/m$^2$]")
    return ax


def plot_fundamental_diagram(
    fd: FundamentalDiagram, max_density: float = 6.0, n: int = 200, ax: Any = None
) -> Any:
    """Speed and flow of a single stream against density."""
    import matplotlib.pyplot as plt

    if ax is None:
        _, ax = plt.subplots(figsize=(6, 4))
    area = fd.area if math.isfinite(fd.area) else 1.0
    dens = np.linspace(1e-3, max_density, n)
    acc = np.zeros(max(fd.n_streams, 1))
    vel = np.empty(n)
    for j, k in enumerate(dens):
        acc[0] = k * area
        vel[j] = fd.velocity(acc)[0]
    ax.plot(dens, vel, label="velocity")
    ax.plot(dens, dens * vel, label="flow (non-dimensional)")
    k_crit, v_crit = fd.critical_values()
    if math.isfinite(k_crit):
        ax.axvline(k_crit, color="grey", linestyle="--", label="critical density")
    ax.set_xlabel("density [1/m$^2$]")
    ax.legend()
    return ax


def plot_travel_times(engine: SimulationEngine, route: str | None = None, ax: Any = None) -> Any:
    """Histogram of simulated vs observed travel times."""
    import matplotlib.pyplot as plt

    if ax is None:
        _, ax = plt.subplots(figsize=(6, 4))
    delta_t = engine.delta_t
    sim: dict[float, float] = {}
    for g in engine.groups:
        if route is not None and g.route != route:
            continue
        for tt, people in g.distribution(delta_t):
            sim[tt] = sim.get(tt, 0.0) + people
    if sim:
        tts = sorted(sim)
        ax.bar(tts, [sim[t] for t in tts], width=delta_t, alpha=0.6, label="simulated")
    obs = [p.travel_time for p in engine.pedestrians
           if route is None or p.route == route]
    if obs:
        bins = np.arange(0.0, max(obs) + 2 * delta_t, delta_t)
        ax.hist(obs, bins=bins, alpha=0.6, label="observed")
    ax.set_xlabel("travel time [s]")
    ax.set_ylabel("people")
    ax.legend()
    return ax

#!/usr/bin/env python3
r"""
Drift-chamber road finding runner.

Loads a detector configuration, reads raw TDC hits and tree-search pattern
nodes, and for every event decodes the hits, builds and fits Roads in each
projection, and writes a per-Road summary table.

CLI overview
------------
See :func:`build_parser` for all options. Typical usage:

.. code-block:: bash

   treesearch-roads -c detector.json --hits run42.csv --patterns run42_patterns.json \
       --out roads.csv -n 100
"""

from __future__ import annotations

import argparse
import logging
import os
import time
from pathlib import Path
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

import treesearch.data as ts_data
from treesearch.config import load_config
from treesearch.detector import Detector


def build_parser() -> argparse.ArgumentParser:
    r"""
    Construct the command-line interface.

    Returns
    -------
    argparse.ArgumentParser
        Parser with options for configuration, input files, event selection,
        output and plotting.
    """
    p = argparse.ArgumentParser(description="Build and fit drift-chamber roads from tree-search patterns.")
    p.add_argument("-c", "--config", type=str, default="detector.json",
                   help="Path to JSON detector configuration (default: detector.json).")
    p.add_argument("--hits", type=str, required=True,
                   help="Raw TDC hits (.csv or .parquet) with columns event, plane, wire, tdc.")
    p.add_argument("--patterns", type=str, required=True,
                   help="Tree-search pattern records (JSON).")
    p.add_argument("-n", "--n-events", type=int, default=None,
                   help="Process at most this many events (default: all).")
    p.add_argument("-o", "--out", type=str, default=None,
                   help="If set, write the per-road summary CSV to this path.")
    p.add_argument("--all-roads", action="store_true", default=False,
                   help="Include voided roads in the summary (default: good roads only).")
    p.add_argument("--plot", action="store_true", default=False,
                   help="Show road plots for the first event (default: False).")
    p.add_argument("-v", "--verbose", action="store_true",
                   help="Enable verbose logging.")
    return p


def setup_logging(verbose: bool = False) -> None:
    r"""
    Configure process-wide logging.

    Parameters
    ----------
    verbose : bool, optional
        If ``True``, set level to ``DEBUG``; otherwise ``INFO``.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(message)s",
        datefmt="%H:%M:%S",
    )


def apply_plotting_guard(enable_plots: bool) -> None:
    r"""
    Force a non-interactive Matplotlib backend when plotting is disabled.

    Must be called **before** importing :mod:`treesearch.plotting`.
    """
    if enable_plots:
        return
    os.environ.setdefault("MPLBACKEND", "Agg")
    import matplotlib
    matplotlib.use("Agg", force=True)


def run(
    detector: Detector,
    raw: pd.DataFrame,
    patterns: dict,
    *,
    n_events: Optional[int] = None,
    all_roads: bool = False,
    plot: bool = False,
) -> pd.DataFrame:
    r"""
    Process events one at a time: **clear → decode → patterns → roads → summary**.

    Parameters
    ----------
    detector : Detector
        Configured detector.
    raw : pandas.DataFrame
        Raw hits of all events (``event`` column).
    patterns : dict
        Event number → pattern records (see :func:`treesearch.data.load_patterns`).
    n_events : int, optional
        Stop after this many events.
    all_roads : bool, optional
        Report voided Roads as well.
    plot : bool, optional
        Plot every projection of the first event.

    Returns
    -------
    pandas.DataFrame
        One row per reported Road with an ``event`` column.
    """
    events = sorted(set(raw["event"].unique()) | set(patterns))
    if n_events is not None:
        events = events[: max(0, int(n_events))]

    frames: List[pd.DataFrame] = []
    n_good_all: List[int] = []
    for idx, ev in enumerate(events, start=1):
        t0 = time.time()
        detector.clear()
        n_hits = detector.decode(raw[raw["event"] == ev])
        nodes = ts_data.build_patterns(detector, patterns.get(int(ev), ()))
        good = detector.find_roads(nodes)

        n_good = sum(len(v) for v in good.values())
        n_good_all.append(n_good)
        logging.info(
            "Event %d (%d/%d): %d hit(s), %d pattern(s), %d good road(s) in %.1f ms",
            ev, idx, len(events), n_hits, sum(len(v) for v in nodes.values()),
            n_good, 1e3 * (time.time() - t0),
        )

        for name, proj in detector.projections.items():
            roads = proj.roads if all_roads else good[name]
            if roads:
                frames.append(ts_data.roads_to_frame(roads, event=int(ev)))
            if idx == 1 and plot:
                import treesearch.plotting as ts_plot  # noqa: WPS433
                ts_plot.plot_roads(proj, title=f"Event {ev}, projection {name}")

    if n_good_all:
        logging.info(
            "=== %d event(s): mean %.2f good road(s) per event ===",
            len(n_good_all), float(np.mean(n_good_all)),
        )
    if not frames:
        return pd.DataFrame(columns=["event"])
    return pd.concat(frames, ignore_index=True)


def main(argv: Optional[Sequence[str]] = None) -> None:
    r"""
    End-to-end runner: **config → detector → events → roads → CSV**.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)
    apply_plotting_guard(args.plot)

    cfg_path = Path(args.config)
    logging.info("Reading config from %s", cfg_path)
    detector = Detector.from_config(load_config(cfg_path))

    raw = ts_data.load_raw_hits(args.hits)
    patterns = ts_data.load_patterns(args.patterns)

    table = run(
        detector, raw, patterns,
        n_events=args.n_events, all_roads=args.all_roads, plot=args.plot,
    )
    if args.out:
        table.to_csv(args.out, index=False)
        logging.info("Wrote %d road(s) to %s", len(table), args.out)


if __name__ == "__main__":
    main()

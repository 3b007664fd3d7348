from __future__ import annotations

import logging
from collections import defaultdict
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Union

import numpy as np
import orjson
import pandas as pd

from treesearch.detector import Detector
from treesearch.hit import Hit
from treesearch.pattern import PatternNode
from treesearch.road import Road

logger = logging.getLogger(__name__)

RAW_COLUMNS = ("plane", "wire", "tdc")


def load_raw_hits(path: Union[str, Path]) -> pd.DataFrame:
    r"""
    Read a raw TDC hit table from CSV or Parquet.

    Parameters
    ----------
    path : str or pathlib.Path
        ``.csv`` (any other suffix is also read as CSV) or ``.parquet``.

    Returns
    -------
    pandas.DataFrame
        At least ``plane`` (str), ``wire`` (int64), ``tdc`` (int64); an
        ``event`` column (int64) is added with value ``0`` if absent.

    Raises
    ------
    KeyError
        If a required column is missing.
    """
    p = Path(path)
    if p.suffix.lower() in (".parquet", ".pq"):
        df = pd.read_parquet(p)
    else:
        df = pd.read_csv(p)
    missing = [c for c in RAW_COLUMNS if c not in df.columns]
    if missing:
        raise KeyError(f"Missing required column(s) in {p.name}: {', '.join(missing)}")
    if "event" not in df.columns:
        df = df.assign(event=0)
    df = df.astype({"plane": str, "wire": np.int64, "tdc": np.int64, "event": np.int64})
    logger.info(
        "Loaded %d raw hit(s) in %d event(s) from %s", len(df), df["event"].nunique(), p.name
    )
    return df


def load_patterns(path: Union[str, Path]) -> Dict[int, List[Mapping[str, Any]]]:
    r"""
    Read tree-search pattern records (JSON) grouped by event.

    The file holds a list of records::

        [{"event": 0, "projection": "x", "zl": 0.0, "zu": 0.3,
          "xll": 0.9, "xlr": 1.1, "xul": 1.2, "xur": 1.4,
          "hits": [["x1", 12], ["x2", 13]]}, ...]

    ``event`` defaults to ``0``.

    Returns
    -------
    dict
        Event number → list of records.
    """
    raw = orjson.loads(Path(path).read_bytes())
    if isinstance(raw, Mapping):
        raw = raw.get("patterns", [])
    out: Dict[int, List[Mapping[str, Any]]] = defaultdict(list)
    for rec in raw:
        out[int(rec.get("event", 0))].append(rec)
    return dict(out)


def build_patterns(detector: Detector, records: Iterable[Mapping[str, Any]]) -> Dict[str, List[PatternNode]]:
    r"""
    Turn pattern records into :class:`PatternNode` objects bound to decoded hits.

    Each ``[plane, wire]`` entry resolves to **every** hit currently stored on
    that wire of that plane (multi-hit wires contribute all their hits).
    Entries for wires without hits in this event are ignored.

    Parameters
    ----------
    detector : Detector
        Detector whose planes already hold this event's hits.
    records : iterable of mapping
        Records as returned by :func:`load_patterns`.

    Returns
    -------
    dict
        Projection name → list of nodes, in record order.

    Raises
    ------
    KeyError
        If a record names an unknown plane or lacks a bin coordinate.
    """
    by_wire: Dict[str, Dict[int, List[Hit]]] = {}
    for name, plane in detector.planes.items():
        idx: Dict[int, List[Hit]] = defaultdict(list)
        for h in plane.hits:
            idx[h.wire_num].append(h)
        by_wire[name] = idx

    out: Dict[str, List[PatternNode]] = defaultdict(list)
    for rec in records:
        hits: List[Hit] = []
        for plane_name, wire in rec.get("hits", ()):
            if plane_name not in by_wire:
                raise KeyError(f"Pattern refers to unknown plane {plane_name!r}")
            hits.extend(by_wire[plane_name].get(int(wire), ()))
        node = PatternNode(
            float(rec["zl"]), float(rec["zu"]),
            float(rec["xll"]), float(rec["xlr"]),
            float(rec["xul"]), float(rec["xur"]),
            frozenset(hits),
        )
        out[str(rec["projection"])].append(node)
    return dict(out)


def roads_to_frame(roads: Sequence[Road], **extra: Any) -> pd.DataFrame:
    """
    One row per Road from :meth:`Road.summary`, with constant ``extra`` columns prepended.
    """
    rows = [{**extra, **r.summary()} for r in roads]
    if not rows:
        return pd.DataFrame(columns=list(extra))
    return pd.DataFrame(rows)


__all__ = ["load_raw_hits", "load_patterns", "build_patterns", "roads_to_frame", "RAW_COLUMNS"]

"""Hierarchy structure definition for hierarchical time series.

Nodes live in a single arena ordered breadth-first (total first, leaves
last). Parent/child links are arena indices, and the summation matrix is
derived once from the arena and kept read-only.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Union

import numpy as np
import pandas as pd

from tshierkit.core.errors import EContractViolation, EInvalidStructure, EOutOfRange

logger = logging.getLogger(__name__)

GroupingSpec = Sequence[Union[int, Sequence[int]]]
NodeRef = Union[int, str, "Node"]

ROOT_LABEL = "Total"

# Observations per cycle -> pandas period alias
_FREQ_ALIASES: dict[int, str] = {
    1: "Y",
    4: "Q",
    12: "M",
    52: "W",
    7: "D",
    24: "h",
}


@dataclass(frozen=True)
class Node:
    """One series of the hierarchy.

    Attributes:
        index: Position in the arena (row of the summation matrix)
        label: Display name
        level: Depth (0 = total)
        parent: Arena index of the parent, None for the root
        children: Arena indices of the children, empty for leaves
    """

    index: int
    label: str
    level: int
    parent: int | None = None
    children: tuple[int, ...] = ()

    @property
    def is_leaf(self) -> bool:
        return not self.children


def _letters(i: int) -> str:
    """0 -> A, 25 -> Z, 26 -> AA."""
    out = ""
    i += 1
    while i > 0:
        i, rem = divmod(i - 1, 26)
        out = chr(ord("A") + rem) + out
    return out


def _avoid_leaf_labels(
    labels: list[str], depths: list[int], leaf_depth: int, bottom_labels: Sequence[str]
) -> None:
    """Suffix generated aggregate labels that collide with a leaf name.

    Renaming happens after generation so child labels keep the plain
    parent prefix (``A`` -> ``A_`` still has children ``AA``, ``AB``).
    """
    taken = set(bottom_labels)
    for i, depth in enumerate(depths):
        if depth == leaf_depth:
            continue
        while labels[i] in taken:
            labels[i] += "_"
        taken.add(labels[i])


def _is_count(value: Any) -> bool:
    return isinstance(value, (int, np.integer)) and not isinstance(value, bool)


def normalize_grouping(grouping: GroupingSpec) -> list[tuple[int, ...]]:
    """Validate a grouping spec and return one tuple of child counts per level.

    ``[2, (2, 6)]`` means the root has 2 children, which have 2 and 6
    children respectively.

    Raises:
        EInvalidStructure: If a level's entry count differs from the number
            of nodes one level up, or a count is not a positive integer
    """
    levels: list[tuple[int, ...]] = []
    n_parents = 1
    for depth, entry in enumerate(grouping, start=1):
        counts = (entry,) if _is_count(entry) else tuple(entry)
        if len(counts) != n_parents:
            raise EInvalidStructure(
                f"Grouping level {depth} lists {len(counts)} nodes but level "
                f"{depth - 1} has {n_parents}",
                context={"level": depth, "entry": list(counts)},
            )
        if not all(_is_count(c) and c > 0 for c in counts):
            raise EInvalidStructure(
                f"Grouping level {depth} must contain positive integers",
                context={"level": depth, "entry": list(counts)},
            )
        counts = tuple(int(c) for c in counts)
        levels.append(counts)
        n_parents = sum(counts)
    return levels


@dataclass(frozen=True)
class HierarchyStructure:
    """Aggregation structure of a hierarchy.

    Example structure for ``[2, (2, 6)]``:
        Total
        ├── A (2 leaves)
        └── B (6 leaves)

    Attributes:
        nodes: Arena of nodes, breadth-first
        s_matrix: Summation matrix (n_total x n_bottom), S[i, j] = 1 if
            bottom node j contributes to node i. Read-only.
    """

    nodes: tuple[Node, ...]
    s_matrix: np.ndarray = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.nodes:
            raise EInvalidStructure("A hierarchy needs at least one node")
        labels = [n.label for n in self.nodes]
        if len(set(labels)) != len(labels):
            dupes = sorted({lbl for lbl in labels if labels.count(lbl) > 1})
            raise EInvalidStructure(
                "Node labels must be unique",
                context={"duplicates": dupes},
            )
        for i, node in enumerate(self.nodes):
            if node.index != i:
                raise EInvalidStructure(f"Node '{node.label}' is stored at {i} but indexed {node.index}")

        object.__setattr__(self, "_label_to_idx", {n.label: n.index for n in self.nodes})
        object.__setattr__(self, "s_matrix", self._build_summation_matrix())

    def _build_summation_matrix(self) -> np.ndarray:
        bottom = self.bottom_indices
        s_matrix = np.zeros((len(self.nodes), len(bottom)), dtype=float)
        for j, leaf in enumerate(bottom):
            current: int | None = leaf
            # Walk up to the root marking every ancestor
            while current is not None:
                s_matrix[current, j] = 1.0
                current = self.nodes[current].parent
        s_matrix.setflags(write=False)
        return s_matrix

    @classmethod
    def from_grouping(
        cls,
        grouping: GroupingSpec,
        bottom_labels: Sequence[str] | None = None,
        n_bottom: int | None = None,
    ) -> HierarchyStructure:
        """Build a structure from per-level branching factors.

        An empty grouping yields a degenerate leaves-only hierarchy with no
        total (``S`` is the identity); ``n_bottom`` or ``bottom_labels``
        then gives the number of leaves.

        Args:
            grouping: Branching factors per level, e.g. ``[2, (2, 6)]``
            bottom_labels: Names for the leaves, in column order
            n_bottom: Expected number of leaves

        Raises:
            EInvalidStructure: If the grouping is malformed or does not
                partition the bottom series
        """
        levels = normalize_grouping(grouping)
        if bottom_labels is not None:
            bottom_labels = [str(lbl) for lbl in bottom_labels]
            if n_bottom is None:
                n_bottom = len(bottom_labels)
            elif len(bottom_labels) != n_bottom:
                raise EInvalidStructure(
                    f"Got {len(bottom_labels)} bottom labels for {n_bottom} bottom series"
                )

        if not levels:
            if n_bottom is None or n_bottom <= 0:
                raise EInvalidStructure("A leaves-only hierarchy needs n_bottom or bottom_labels")
            names = bottom_labels or [_letters(i) for i in range(n_bottom)]
            return cls(nodes=tuple(Node(index=i, label=name, level=0) for i, name in enumerate(names)))

        leaf_count = sum(levels[-1])
        if n_bottom is not None and leaf_count != n_bottom:
            raise EInvalidStructure(
                f"Grouping has {leaf_count} leaves but the data has {n_bottom} bottom series",
                context={"grouping_leaves": leaf_count, "bottom_series": n_bottom},
            )

        labels: list[str] = [ROOT_LABEL]
        depths: list[int] = [0]
        parents: list[int | None] = [None]
        children: list[list[int]] = [[]]
        previous = [0]
        for depth, counts in enumerate(levels, start=1):
            current: list[int] = []
            position = 0
            for parent, count in zip(previous, counts):
                for k in range(count):
                    idx = len(labels)
                    if depth == len(levels) and bottom_labels is not None:
                        label = bottom_labels[position]
                    elif parent == 0:
                        label = _letters(k)
                    else:
                        label = labels[parent] + _letters(k)
                    labels.append(label)
                    depths.append(depth)
                    parents.append(parent)
                    children.append([])
                    children[parent].append(idx)
                    current.append(idx)
                    position += 1
            previous = current

        if bottom_labels is not None:
            _avoid_leaf_labels(labels, depths, len(levels), bottom_labels)

        nodes = tuple(
            Node(
                index=i,
                label=labels[i],
                level=depths[i],
                parent=parents[i],
                children=tuple(children[i]),
            )
            for i in range(len(labels))
        )
        return cls(nodes=nodes)

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    @property
    def labels(self) -> list[str]:
        return [n.label for n in self.nodes]

    @property
    def bottom_indices(self) -> list[int]:
        return [n.index for n in self.nodes if n.is_leaf]

    @property
    def bottom_labels(self) -> list[str]:
        return [self.nodes[i].label for i in self.bottom_indices]

    @property
    def root(self) -> Node | None:
        """The single level-0 node, or None for a leaves-only hierarchy."""
        top = self.nodes_at_level(0)
        return self.nodes[top[0]] if len(top) == 1 and not self.nodes[top[0]].is_leaf else None

    def node_count(self) -> int:
        return len(self.nodes)

    def bottom_count(self) -> int:
        return self.s_matrix.shape[1]

    @property
    def num_levels(self) -> int:
        return max(n.level for n in self.nodes) + 1

    def node(self, ref: NodeRef) -> Node:
        """Resolve a node by arena index, label or Node.

        Raises:
            EContractViolation: If the node is not part of this hierarchy
        """
        if isinstance(ref, Node):
            idx = ref.index
        elif _is_count(ref):
            idx = int(ref)
        else:
            idx = self._label_to_idx.get(str(ref), -1)  # type: ignore[attr-defined]
        if not 0 <= idx < len(self.nodes):
            raise EContractViolation(f"Node '{ref}' not in hierarchy")
        return self.nodes[idx]

    def index_of(self, ref: NodeRef) -> int:
        return self.node(ref).index

    def level_of(self, ref: NodeRef) -> int:
        return self.node(ref).level

    def get_parent(self, ref: NodeRef) -> Node | None:
        parent = self.node(ref).parent
        return None if parent is None else self.nodes[parent]

    def get_children(self, ref: NodeRef) -> list[Node]:
        return [self.nodes[i] for i in self.node(ref).children]

    def is_leaf(self, ref: NodeRef) -> bool:
        return self.node(ref).is_leaf

    def nodes_at_level(self, level: int) -> list[int]:
        """Arena indices of all nodes at a depth."""
        return [n.index for n in self.nodes if n.level == level]

    def aggregates(self) -> list[Node]:
        """Nodes with children, in arena order."""
        return [n for n in self.nodes if not n.is_leaf]


def _period_alias(frequency: int) -> str | None:
    return _FREQ_ALIASES.get(int(frequency))


def to_period(start: Any, frequency: int) -> pd.Period:
    """Convert a start period given as Period, string or (year, cycle)."""
    alias = _period_alias(frequency)
    if alias is None:
        raise EContractViolation(
            f"No calendar period for frequency {frequency}",
            context={"supported": sorted(_FREQ_ALIASES)},
            fix_hint="Omit start_period to use a positional index",
        )
    if isinstance(start, pd.Period):
        return start.asfreq(alias, how="start")
    if isinstance(start, tuple) and len(start) == 2:
        year, cycle = (int(v) for v in start)
        return pd.Period(year=year, freq="Y").asfreq(alias, how="start") + (cycle - 1)
    return pd.Period(str(start), freq=alias)


def build_index(n_periods: int, frequency: int, start_period: Any = None) -> pd.Index:
    """Period index for the data, or a positional index without a start."""
    if start_period is None:
        return pd.RangeIndex(n_periods)
    start = to_period(start_period, frequency)
    return pd.period_range(start=start, periods=n_periods, freq=start.freq)


@dataclass(frozen=True, eq=False)
class Hierarchy:
    """Hierarchy structure plus the bottom-level observations.

    Every aggregate value is derived from the bottom series through the
    summation matrix, so the summing invariant holds by construction.

    Attributes:
        structure: Node arena and summation matrix
        bottom: Bottom series, periods x leaves (columns in leaf order)
        frequency: Observations per seasonal cycle
    """

    structure: HierarchyStructure
    bottom: pd.DataFrame = field(repr=False)
    frequency: int = 1

    def __post_init__(self) -> None:
        n_bottom = self.structure.bottom_count()
        if self.bottom.ndim != 2 or self.bottom.shape[1] != n_bottom:
            raise EInvalidStructure(
                f"Bottom data has {self.bottom.shape[-1]} columns, structure expects {n_bottom}",
            )
        if list(self.bottom.columns) != self.structure.bottom_labels:
            raise EInvalidStructure("Bottom columns must follow the structure's leaf order")

    @classmethod
    def build(
        cls,
        bottom_series: np.ndarray | pd.DataFrame,
        grouping: GroupingSpec,
        frequency: int = 1,
        start_period: Any = None,
    ) -> Hierarchy:
        """Build a hierarchy from bottom series and a grouping spec.

        Args:
            bottom_series: T x m matrix or DataFrame of bottom series
            grouping: Branching factors per level
            frequency: Observations per seasonal cycle
            start_period: First period (Period, string or (year, cycle))

        Raises:
            EInvalidStructure: If the grouping does not partition the columns
            EContractViolation: If the data is not a finite numeric matrix
        """
        if isinstance(bottom_series, pd.DataFrame):
            labels = [str(c) for c in bottom_series.columns]
            values = bottom_series.to_numpy()
            given_index = bottom_series.index
        else:
            values = np.asarray(bottom_series)
            labels = None
            given_index = None

        if values.ndim != 2:
            raise EInvalidStructure(
                f"Bottom series must be a 2-D (periods x series) matrix, got {values.ndim}-D"
            )
        try:
            values = values.astype(float)
        except (TypeError, ValueError) as exc:
            raise EContractViolation("Bottom series must be numeric") from exc
        if not np.all(np.isfinite(values)):
            raise EContractViolation(
                "Bottom series contain missing or infinite values",
                fix_hint="Impute missing observations before building the hierarchy",
            )

        structure = HierarchyStructure.from_grouping(
            grouping, bottom_labels=labels, n_bottom=values.shape[1]
        )
        if start_period is None and isinstance(given_index, pd.PeriodIndex):
            index: pd.Index = given_index
        else:
            index = build_index(values.shape[0], frequency, start_period)
        bottom = pd.DataFrame(values, index=index, columns=structure.bottom_labels)
        logger.debug(
            "Built hierarchy with %d nodes, %d bottom series, %d periods",
            structure.node_count(),
            structure.bottom_count(),
            len(index),
        )
        return cls(structure=structure, bottom=bottom, frequency=int(frequency))

    @classmethod
    def from_dataframe(
        cls,
        df: pd.DataFrame,
        grouping: GroupingSpec,
        frequency: int = 1,
        start_period: Any = None,
        time_col: str | None = None,
    ) -> Hierarchy:
        """Build from a rectangular table of bottom columns.

        ``time_col`` (if given) is dropped from the data; when no start
        period is supplied its first value is used as the start.
        """
        data = df
        if time_col is not None:
            if time_col not in df.columns:
                raise EContractViolation(f"Time column '{time_col}' not found")
            if start_period is None and len(df):
                start_period = df[time_col].iloc[0]
            data = df.drop(columns=[time_col])
        non_numeric = [c for c in data.columns if not pd.api.types.is_numeric_dtype(data[c])]
        if non_numeric:
            raise EContractViolation(
                "Bottom columns must be numeric",
                context={"columns": non_numeric},
            )
        return cls.build(
            data.reset_index(drop=True),
            grouping,
            frequency=frequency,
            start_period=start_period,
        )

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def periods(self) -> pd.Index:
        return self.bottom.index

    @property
    def n_periods(self) -> int:
        return len(self.bottom)

    @property
    def season_length(self) -> int:
        return self.frequency

    @property
    def start_period(self) -> Any:
        return self.periods[0] if self.n_periods else None

    @property
    def s_matrix(self) -> np.ndarray:
        return self.structure.s_matrix

    def node_count(self) -> int:
        return self.structure.node_count()

    def bottom_count(self) -> int:
        return self.structure.bottom_count()

    def level_of(self, node: NodeRef) -> int:
        return self.structure.level_of(node)

    def aggregate_matrix(self) -> np.ndarray:
        """All node series as an (n_total x T) array."""
        return self.s_matrix @ self.bottom.to_numpy().T

    def aggregate(self) -> pd.DataFrame:
        """All node series as a periods x node-label DataFrame."""
        return pd.DataFrame(
            self.aggregate_matrix().T,
            index=self.periods,
            columns=self.structure.labels,
        )

    def series(self, node: NodeRef) -> pd.Series:
        """Aggregated series of one node."""
        target = self.structure.node(node)
        values = self.bottom.to_numpy() @ self.s_matrix[target.index]
        return pd.Series(values, index=self.periods, name=target.label)

    def future_periods(self, horizon: int) -> pd.Index:
        """Index of the ``horizon`` periods following the data."""
        if isinstance(self.periods, pd.PeriodIndex) and self.n_periods:
            return pd.period_range(start=self.periods[-1] + 1, periods=horizon, freq=self.periods.freq)
        first = int(self.periods[-1]) + 1 if self.n_periods else 0
        return pd.RangeIndex(first, first + horizon)

    def _position(self, ref: Any, name: str) -> int:
        if _is_count(ref):
            return int(ref)
        try:
            if isinstance(self.periods, pd.PeriodIndex):
                ref = pd.Period(ref, freq=self.periods.freq)
            loc = self.periods.get_loc(ref)
        except (KeyError, ValueError, TypeError) as exc:
            raise EOutOfRange(
                f"Window {name} '{ref}' is not a period of this hierarchy",
                context={"first": str(self.start_period), "n_periods": self.n_periods},
            ) from exc
        if not _is_count(loc):
            raise EOutOfRange(f"Window {name} '{ref}' does not identify a single period")
        return int(loc)

    def window(self, start: Any, end: Any) -> Hierarchy:
        """Restrict to periods ``start..end`` (inclusive), sharing the structure.

        Args:
            start: First position (0-based int) or period label
            end: Last position (0-based int) or period label

        Raises:
            EOutOfRange: If end precedes start or the range exceeds the data
        """
        first = self._position(start, "start")
        last = self._position(end, "end")
        if last < first or first < 0 or last >= self.n_periods:
            raise EOutOfRange(
                f"Invalid window [{first}, {last}] for {self.n_periods} periods",
                context={"start": first, "end": last, "n_periods": self.n_periods},
            )
        return Hierarchy(
            structure=self.structure,
            bottom=self.bottom.iloc[first : last + 1].copy(),
            frequency=self.frequency,
        )


__all__ = [
    "GroupingSpec",
    "Hierarchy",
    "HierarchyStructure",
    "Node",
    "ROOT_LABEL",
    "build_index",
    "normalize_grouping",
    "to_period",
]

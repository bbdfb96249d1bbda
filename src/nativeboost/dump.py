"""Text model dumps.

A model dump is one text block per tree. Each line of a block is a node:

    0:[f1<0.5] yes=1,no=2,missing=1,gain=12.5,cover=100
        1:leaf=0.1,cover=60
        2:leaf=-0.1,cover=40

Leading tabs give the node depth. Split lines carry the feature between ``[``
and ``<`` (or ``]`` for indicator splits); leaf lines have no ``[``.

Functions:
    - split_feature: Feature identifier of a node line
    - feature_score: Split counts per feature over a whole dump
    - write_model_dump: Write a dump to a text file
    - parse_tree: Parse a tree block into node models
"""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Iterable, Sequence
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

from nativeboost.types import PathType

# -----------------------------------------------------------------------------
# Feature scores
# -----------------------------------------------------------------------------


def split_feature(line: str) -> str | None:
    """Return the split feature named on a node line, or None for leaves.

    The feature is the text after the first ``[``, cut at the next ``[``,
    then at the first ``]``, then at the first ``<``. Feature names that
    contain ``<`` or ``]`` are therefore truncated.
    """
    _, sep, rest = line.partition("[")
    if not sep:
        return None
    return rest.split("[", 1)[0].split("]", 1)[0].split("<", 1)[0]


def feature_score(trees: Iterable[str]) -> dict[str, int]:
    """Count how many splits use each feature.

    Args:
        trees: Tree blocks of a model dump.

    Returns:
        Mapping of feature identifier to split count, in order of first use.
    """
    counts: Counter[str] = Counter()
    for tree in trees:
        for line in tree.split("\n"):
            fid = split_feature(line)
            if fid is not None:
                counts[fid] += 1
    return dict(counts)


def write_model_dump(path: PathType, trees: Sequence[str]) -> None:
    """Write tree blocks to a UTF-8 text file, each under a ``booster [i]:`` header.

    Raises:
        OSError: If the file cannot be opened or written.
    """
    with open(path, "w", encoding="utf-8") as f:
        for i, tree in enumerate(trees):
            f.write(f"booster [{i}]:\n")
            f.write(tree)


# -----------------------------------------------------------------------------
# Tree grammar
# -----------------------------------------------------------------------------


class SplitNode(BaseModel):
    """Internal node of a dumped tree.

    Attributes:
    ----------
    node_id
        Node index within the tree.
    depth
        Number of leading tabs on the line.
    feature
        Split feature identifier (index name or feature-map name).
    threshold
        Split threshold, or None for indicator splits.
    yes, no, missing
        Child node indices.
    gain, cover
        Split statistics, present when dumped with stats.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["split"] = "split"
    node_id: int
    depth: int
    feature: str
    threshold: float | None = None
    yes: int
    no: int
    missing: int | None = None
    gain: float | None = None
    cover: float | None = None


class LeafNode(BaseModel):
    """Leaf of a dumped tree."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["leaf"] = "leaf"
    node_id: int
    depth: int
    value: float
    cover: float | None = None


DumpNode = Annotated[SplitNode | LeafNode, Field(discriminator="kind")]

_SPLIT_RE = re.compile(r"^(?P<indent>\t*)(?P<id>\d+):\[(?P<cond>[^\]]*)\]\s+(?P<attrs>\S.*)$")
_LEAF_RE = re.compile(r"^(?P<indent>\t*)(?P<id>\d+):leaf=(?P<value>[^,]+)(?:,(?P<attrs>.*))?$")


def _parse_attrs(text: str, line: str) -> dict[str, str]:
    attrs: dict[str, str] = {}
    for item in text.split(","):
        key, sep, value = item.strip().partition("=")
        if not sep:
            raise ValueError(f"malformed node attribute {item!r} in dump line {line!r}")
        attrs[key] = value
    return attrs


def _parse_condition(cond: str) -> tuple[str, float | None]:
    feature, sep, threshold = cond.rpartition("<")
    if not sep:
        return cond, None
    try:
        return feature, float(threshold)
    except ValueError:
        return cond, None


def parse_node(line: str) -> DumpNode:
    """Parse a single node line.

    Raises:
        ValueError: If the line is neither a split nor a leaf.
    """
    stripped = line.rstrip("\r\n ")
    if m := _LEAF_RE.match(stripped):
        attrs = _parse_attrs(m["attrs"], line) if m["attrs"] else {}
        return LeafNode(
            node_id=int(m["id"]),
            depth=len(m["indent"]),
            value=float(m["value"]),
            cover=float(attrs["cover"]) if "cover" in attrs else None,
        )

    if m := _SPLIT_RE.match(stripped):
        attrs = _parse_attrs(m["attrs"], line)
        if "yes" not in attrs or "no" not in attrs:
            raise ValueError(f"split without children in dump line {line!r}")
        feature, threshold = _parse_condition(m["cond"])
        return SplitNode(
            node_id=int(m["id"]),
            depth=len(m["indent"]),
            feature=feature,
            threshold=threshold,
            yes=int(attrs["yes"]),
            no=int(attrs["no"]),
            missing=int(attrs["missing"]) if "missing" in attrs else None,
            gain=float(attrs["gain"]) if "gain" in attrs else None,
            cover=float(attrs["cover"]) if "cover" in attrs else None,
        )

    raise ValueError(f"unrecognized dump line: {line!r}")


def parse_tree(text: str) -> list[DumpNode]:
    """Parse a tree block into nodes, in dump order. Blank lines are skipped."""
    return [parse_node(line) for line in text.split("\n") if line.strip()]


__all__: list[str] = [
    "DumpNode",
    "LeafNode",
    "SplitNode",
    "feature_score",
    "parse_node",
    "parse_tree",
    "split_feature",
    "write_model_dump",
]

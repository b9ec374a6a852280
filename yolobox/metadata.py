from __future__ import annotations

from pathlib import Path
from typing import Dict, Tuple, Union

from .decode import LabelTree

PathLike = Union[str, Path]


def _read_yaml_names(lines) -> Dict[int, str]:
    names: Dict[int, str] = {}
    in_names = False
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line == "names:":
            in_names = True
            continue
        if not in_names:
            continue

        # Parse "id: label"
        if ":" not in line:
            continue
        left, right = line.split(":", 1)
        left = left.strip()
        right = right.strip().strip("'").strip('"')
        if not left.isdigit():
            continue
        names[int(left)] = right
    return names


def load_class_names(path: PathLike) -> Tuple[str, ...]:
    """
    Load category names, index-addressed.

    Two formats are understood:

    - Darknet `.names`: one label per line, line number is the class index.
    - A lightweight `metadata.yaml` mapping:

        names:
          0: person
          1: bicycle

    Gaps in a mapping are filled with the decimal index.
    """

    with open(path, "r", encoding="utf-8") as f:
        lines = f.read().splitlines()

    if any(line.strip() == "names:" for line in lines):
        mapping = _read_yaml_names(lines)
        if not mapping:
            return ()
        return tuple(mapping.get(i, str(i)) for i in range(max(mapping) + 1))

    while lines and not lines[-1].strip():
        lines.pop()
    return tuple(line.strip() for line in lines)


def load_label_tree(path: PathLike) -> LabelTree:
    """
    Load a Darknet `.tree` file: one "<label> <parent_index>" per line,
    parent -1 for top-level labels.
    """

    names = []
    parents = []
    with open(path, "r", encoding="utf-8") as f:
        for lineno, raw in enumerate(f, start=1):
            line = raw.strip()
            if not line:
                continue
            parts = line.split()
            if len(parts) != 2:
                raise ValueError(f"{path}:{lineno}: expected '<label> <parent>', got {line!r}")
            try:
                parent = int(parts[1])
            except ValueError as exc:
                raise ValueError(f"{path}:{lineno}: parent must be an integer, got {parts[1]!r}") from exc
            names.append(parts[0])
            parents.append(parent)

    return LabelTree(parent=tuple(parents), names=tuple(names))

from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, Tuple, Union

DEFAULT_DETECTOR_CLASSES: Tuple[str, ...] = ("tomato_leaf",)

DEFAULT_DISEASE_CLASSES: Tuple[str, ...] = (
    "Tomato_Bacterial_spot",
    "Tomato_Early_blight",
    "Tomato_healthy",
    "Tomato_Late_blight",
    "Tomato_Leaf_Mold",
    "Tomato_mosaic_virus",
    "Tomato_Septoria_leaf_spot",
    "Tomato_Spider_mites Two-spotted_spider_mite",
    "Tomato_Target_Spot",
    "Tomato_Yellow_Leaf_Curl_Virus",
)


def load_class_names(metadata_path: Union[str, Path]) -> Dict[int, str]:
    """
    Load class names from the lightweight `metadata.yaml` format:

        names:
          0: tomato_leaf
          1: ...

    Parsed line by line, so PyYAML is not needed.
    """

    names: Dict[int, str] = {}
    in_names = False

    with open(metadata_path, "r", encoding="utf-8") as f:
        for raw in f:
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            if line == "names:":
                in_names = True
                continue
            if not in_names:
                continue

            if ":" not in line:
                continue
            left, right = line.split(":", 1)
            left = left.strip()
            right = right.strip().strip("'").strip('"')
            if not left.isdigit():
                continue
            names[int(left)] = right

    return names


class ClassNameTable:
    """
    Ordered class-name table indexed by class id.

    Out-of-range ids never fail; they resolve to a synthetic label.
    """

    def __init__(self, names: Iterable[str]):
        self._names: Tuple[str, ...] = tuple(str(n) for n in names)

    @classmethod
    def from_mapping(cls, mapping: Dict[int, str]) -> "ClassNameTable":
        if not mapping:
            return cls(())
        size = max(mapping) + 1
        return cls(mapping.get(i, unknown_label(i)) for i in range(size))

    @classmethod
    def from_file(cls, metadata_path: Union[str, Path]) -> "ClassNameTable":
        return cls.from_mapping(load_class_names(metadata_path))

    @property
    def names(self) -> Tuple[str, ...]:
        return self._names

    def resolve(self, index: int) -> str:
        if 0 <= index < len(self._names):
            return self._names[index]
        return unknown_label(index)

    def __len__(self) -> int:
        return len(self._names)

    def __repr__(self) -> str:
        return f"ClassNameTable({list(self._names)!r})"


def unknown_label(index: int) -> str:
    return f"unknown class #{int(index)}"

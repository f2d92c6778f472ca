"""
Detect tomato leaves in one or more images, classify each leaf's disease and
write annotated images plus JSON/CSV reports.

Example:
    python Scripts/analyze_leaves.py --image samples/leaf_01.jpg samples/leaf_02.jpg --out-dir output
    python Scripts/analyze_leaves.py --config configs/analysis.json --no-classify
    python Scripts/analyze_leaves.py --image samples/leaf_01.jpg --center-color
"""

from __future__ import annotations

from leaf_analysis.runner import main

if __name__ == "__main__":
    raise SystemExit(main())

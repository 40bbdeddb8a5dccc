from __future__ import annotations

from pathlib import Path

CUH2_CON = """\
Random Number Seed
Time
15.345600 21.702000 100.000000
90.000000 90.000000 90.000000
0 0
218 0 1
2
2 2
63.546000 1.007930
Cu
Coordinates of Component 1
0.639400 0.904500 6.975300 1 0
3.192800 0.904500 6.975300 1 1
H
Coordinates of Component 2
8.682300 9.947000 11.733000 0 2
7.942000 9.947000 11.733000 0 3
"""

CUH2_CONVEL = CUH2_CON + """\

Cu
Velocities of Component 1
0.001234 0.002345 0.003456 1 0
0.000000 0.000000 0.000000 1 1
H
Velocities of Component 2
-0.010000 0.020000 -0.030000 0 2
0.040000 -0.050000 0.060000 0 3
"""

SECOND_FRAME = CUH2_CON.replace("Random Number Seed", "Frame 2").replace("8.682300", "8.700000")


def write_con_text(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path

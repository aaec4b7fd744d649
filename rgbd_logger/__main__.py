"""Allow ``python -m rgbd_logger`` to launch the recorder CLI."""

from __future__ import annotations

import sys


def main() -> None:
    from rgbd_logger import run
    raise SystemExit(run(sys.argv[1:]))


if __name__ == "__main__":
    main()

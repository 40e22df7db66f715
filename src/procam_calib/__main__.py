"""Entry point for procam_calib."""

from __future__ import annotations

from procam_calib.cli import main


if __name__ == "__main__":
    raise SystemExit(main())

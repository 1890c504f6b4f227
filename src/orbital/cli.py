"""Console entrypoint; the implementation lives in `orbital.main`."""

from __future__ import annotations

from orbital.main import main

__all__ = ["main"]


if __name__ == "__main__":
    raise SystemExit(main())

from __future__ import annotations

from codexcron.cli import main


if __name__ == "__main__":
    raise SystemExit(main())

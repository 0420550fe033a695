from __future__ import annotations

import pytest

from codexcron.observability import configure_logging


@pytest.fixture(autouse=True)
def _quiet_codexcron_logger() -> None:
    # Handlers bound to a previous test's captured stderr must not leak forward.
    configure_logging(verbose=False)

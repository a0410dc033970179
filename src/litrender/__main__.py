"""Package entry point.

Preferred invocation is via the installed console script:

    litrender ...

For convenience we also support:

    python -m litrender ...
"""

from __future__ import annotations

from .cli import app


def main() -> None:
    """Entry point used by `python -m litrender`."""

    app()


if __name__ == "__main__":
    main()

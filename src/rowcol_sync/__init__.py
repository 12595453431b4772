"""Row-store to columnar-store change replication for PostgreSQL."""


def main() -> None:
    """Entrypoint proxy that defers importing the CLI until needed."""

    import sys

    from .cli import main as _cli_main

    sys.exit(_cli_main())


__all__ = ["main"]

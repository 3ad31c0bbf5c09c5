"""Entry point for ``python -m harness``."""

from __future__ import annotations


def main() -> None:
    from harness.main import cli
    cli()


if __name__ == "__main__":
    main()

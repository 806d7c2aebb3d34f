"""Punto de entrada de la CLI."""

from __future__ import annotations

from nekolog.cli import main

if __name__ == "__main__":
    raise SystemExit(main())

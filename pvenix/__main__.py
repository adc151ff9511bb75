"""Module entrypoint: ``python -m pvenix``."""

from pvenix.cli import main

raise SystemExit(main())

"""Entry point for ``python -m inspector_rpc``."""

from .cli import main

if __name__ == "__main__":
    main()

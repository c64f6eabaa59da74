"""Allow ``python -m heightforge``."""

from .cli import main

if __name__ == "__main__":
    main()

"""Allow running as ``python -m toolmount.cli``."""

from toolmount.cli import main

if __name__ == "__main__":
    main()

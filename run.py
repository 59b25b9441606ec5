"""Run the gox service."""

from gox.__main__ import main

if __name__ == "__main__":
    main()

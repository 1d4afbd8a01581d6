#!/usr/bin/env python3

from bluepim.cli import main


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""
Script entry point.
Runs the master server query CLI from a source checkout.
"""

import sys


def main():
    from masterquery.main import main as cli_main

    return cli_main()


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""
Main entry point for the crawler.
"""

import sys

from depthcrawl.cli import main


if __name__ == '__main__':
    sys.exit(main())

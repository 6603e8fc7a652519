#!/usr/bin/env python3
"""Run backrotate from a source checkout"""
from backrotate.cli import main

if __name__ == '__main__':
    main()

#!/usr/bin/env python3

"""
Command-line interface for S3 lock fsck
"""

from s3fsck.cli import main

if __name__ == '__main__':
    main()

"""Test suite for spriteforge.

- unit/art/: cache, queue, events, post-processing, providers and the service
- unit/config/: configuration loading
- unit/utils/: logging setup
- unit/cli/: command line entry point
"""

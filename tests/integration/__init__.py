# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Integration tests for codebase indexing.

This package contains end-to-end tests that run the scanner, parsers,
optimizer and serializers together over a real directory tree.
"""

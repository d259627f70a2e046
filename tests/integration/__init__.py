# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Integration tests for the skeleton, store and service components working together."""

"""
Directory Sync - Reconcile organizational groups and users with a directory service.

This package computes the additions, updates and deletions needed to make a
directory match a desired state and applies them one at a time, recording
the actions that fail instead of aborting.
"""

__version__ = "1.0.0"
__author__ = "Directory Sync Team"

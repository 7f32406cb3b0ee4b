"""Wrappers around external tools: git, tmux, shell scripts, file copies.

The lifecycle core consumes these through small protocols so tests can swap
in in-memory fakes.
"""

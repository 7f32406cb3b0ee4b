"""Workspace lifecycle and state-consistency core."""

"""Lifecycle execution for workspaces.

- **compensation**: ordered steps with compensating actions (best-effort rollback)
- **environment**: workspace environment variables for scripts and sessions
- **resolver**: local (current directory) and global (registry) workspace lookup
- **coordinator**: create / archive / rename orchestration
"""

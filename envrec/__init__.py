"""Local development-environment reconciler (envrec).

Brings a machine in an unknown state to a known-good one on every run:
 - pinned node / yarn versions
 - .env files (with local defaults for missing credentials)
 - docker network and backing services (postgres, redis)
 - dependency install, skipped while the lockfile fingerprint is unchanged
 - inotify limits for hot reload

Each resource is probed, changed only when needed, and confirmed by a fresh
probe rather than by the exit status of the command that changed it.
"""

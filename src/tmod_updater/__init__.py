"""
tModLoader server updater.

Checks whether a newer tModLoader release is available and upgrades a
dedicated server installation in place: backup, move aside, download,
extract and redeploy of the operator's start files.
"""

__version__ = "0.3.0"

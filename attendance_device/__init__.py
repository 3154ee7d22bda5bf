"""
Attendance Device - Identity Resolution and Offline Sync

A modular Python service for a biometric attendance terminal.
Resolves sensor slots to user identities, queues attendance while offline
and keeps the local mapping in step with the backend API.
"""

__version__ = "1.0.0"
__author__ = "Attendance Device Team"

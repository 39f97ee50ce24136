"""
contactsync - multi-source contact synchronization and recipient autocomplete.

Pulls contacts from CardDAV servers, the Google People API and the Microsoft
Graph API into a local SQLite index and ranks them together with locally
learned send history.
"""

__version__ = "0.1.0"

"""
File Transfer Domain

Uploads files from a watched directory to blob storage:
- Folder watcher → ingest queue (one entry per changed file)
- Single worker → size router → whole-object or block uploader
- Completed transfers → in-memory history ledger
"""

__all__ = ["pipeline", "uploaders", "watcher"]

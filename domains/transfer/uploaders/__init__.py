"""
Uploaders

- small_file: one whole-object request for files up to the threshold
- large_file: staged fixed-size blocks plus an ordered commit
"""

from domains.transfer.uploaders.large_file import LargeFileUploader, plan_blocks
from domains.transfer.uploaders.small_file import SmallFileUploader

__all__ = ["LargeFileUploader", "SmallFileUploader", "plan_blocks"]

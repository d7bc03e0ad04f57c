"""Shared utilities: dead-letter ledger and resource tracking.

``annotation_service.utils.worker_pool`` depends on the pipeline package and
is imported by its full path, so importing this package stays cycle-free.
"""

from annotation_service.utils.dead_letter_queue import DeadLetterQueue
from annotation_service.utils.resource_tracker import ResourceTracker, ResourceUsage

__all__ = [
    'DeadLetterQueue',
    'ResourceTracker',
    'ResourceUsage',
]

from datetime import datetime
from typing import Optional

from .models import CrawlItem

class ChangeDetector:
    """New-or-modified test against the watermark of the last successful run.

    A reference of None stands for "no previous run": everything is changed.
    """

    def is_changed(self, item: CrawlItem, reference: Optional[datetime]) -> bool:
        if reference is None:
            return True
        if item.last_modified is not None and item.last_modified > reference:
            return True
        return item.created_at is not None and item.created_at > reference

import time
import logging

from .size_formatter import format_size

logger = logging.getLogger(__name__)

class WorkflowStats:
    """Class to track crawl run statistics"""
    
    def __init__(self):
        """Initialize workflow stats"""
        self.start_time = time.time()
        self.files_seen = 0
        self.total_dirs = 0
        self.files_indexed = 0
        self.folders_indexed = 0
        self.files_deleted = 0
        self.folders_deleted = 0
        self.files_skipped = 0
        self.total_size = 0
        self.errors = []
        
    def update_stats(self, seen: int = 0, indexed: int = 0, size: int = 0,
                    dirs: int = 0, folders: int = 0, skipped: int = 0):
        """Update workflow statistics"""
        self.files_seen += seen
        self.total_dirs += dirs
        self.files_indexed += indexed
        self.folders_indexed += folders
        self.files_skipped += skipped
        self.total_size += size
        
    def add_deleted(self, files: int = 0, folders: int = 0):
        self.files_deleted += files
        self.folders_deleted += folders
            
    def add_error(self, error: str):
        """Add an error message to stats"""
        self.errors.append(error)
        
    def log_summary(self, job_name: str = None):
        """Log run summary with statistics."""
        elapsed_time = time.time() - self.start_time
        processing_rate = self.files_seen / elapsed_time if elapsed_time > 0 else 0
        
        logger.info("=" * 80)
        logger.info(f"Crawler Summary{f' [{job_name}]' if job_name else ''}:")
        logger.info(f"Time Elapsed:     {elapsed_time:.2f} seconds")
        logger.info(f"Processing Rate:  {processing_rate:.1f} files/second")
        logger.info(f"Indexed Size:     {format_size(self.total_size)}")
        logger.info(f"Files Seen:       {self.files_seen:,}")
        logger.info(f"Dirs Visited:     {self.total_dirs:,}")
        logger.info(f"Files Indexed:    {self.files_indexed:,}")
        logger.info(f"Folders Indexed:  {self.folders_indexed:,}")
        logger.info(f"Files Skipped:    {self.files_skipped:,}")
        logger.info(f"Files Deleted:    {self.files_deleted:,}")
        logger.info(f"Folders Deleted:  {self.folders_deleted:,}")
        logger.info(f"Total Errors:     {len(self.errors):,}")
        logger.info("=" * 80)
        
        if self.errors:
            logger.info("Errors encountered:")
            for error in self.errors:
                logger.error(error)

import os
import logging
import logging.handlers
from typing import Dict, Any

def configure_logging(config: Dict[str, Any]):
    """Configure logging with both file and console handlers."""
    log_config = config.get('logging', {})
    log_level = getattr(logging, str(log_config.get('level', 'INFO')).upper())
    log_file = log_config.get('file', 'logs/fs-crawler.log')
    if isinstance(log_file, dict):
        log_file = log_file.get('path', 'logs/fs-crawler.log')
    max_size_mb = log_config.get('max_size_mb', 10)
    backup_count = log_config.get('backup_count', 5)
    console_enabled = log_config.get('console', True)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = []

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count
        )
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))
        root_logger.addHandler(file_handler)

    if console_enabled:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(logging.Formatter(
            '%(levelname)s - %(message)s'
        ))
        root_logger.addHandler(console_handler)

    # The client logs every request at INFO
    logging.getLogger('elastic_transport').setLevel(max(log_level, logging.WARNING))

    return root_logger

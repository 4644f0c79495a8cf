"""DuckDB connection handling for the crawler state database."""

import logging
import os
import json
from typing import Dict, Any
import duckdb

logger = logging.getLogger(__name__)

# Global connection registry to track open connections
_connections = {}

DEFAULT_CONFIG = {
    'threads': 2,
    'memory_limit': '1GB',
}

def get_db_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """Get standardized database configuration.
    
    Args:
        config: User configuration dictionary
        
    Returns:
        Dict[str, Any]: Standardized database configuration
    """
    db_config = DEFAULT_CONFIG.copy()
    user_config = config.get('database', {})
    for key in ['threads', 'memory_limit']:
        if user_config.get(key) is not None:
            db_config[key] = user_config[key]
    
    logger.debug(f"Database config: {json.dumps(db_config, indent=2)}")
    return db_config

def _close_existing_connection(db_path: str) -> None:
    """Close any existing connection to the database."""
    existing_conn = _connections.pop(db_path, None)
    if existing_conn is None:
        return
    try:
        existing_conn.execute("CHECKPOINT")
    except duckdb.Error as e:
        if "Connection already closed" not in str(e):
            logger.warning(f"Error during checkpoint: {e}")
    try:
        existing_conn.close()
    except duckdb.Error as e:
        if "Connection already closed" not in str(e):
            logger.warning(f"Error closing connection: {e}")
    logger.debug(f"Closed existing connection to {db_path}")

def init_database(db_path: str, config: Dict[str, Any]) -> duckdb.DuckDBPyConnection:
    """Open the state database, creating its directory if needed."""
    db_path = db_path.replace('duckdb:///', '')
    logger.debug(f"Initializing database connection to {db_path}")
    
    _close_existing_connection(db_path)
    db_config = get_db_config(config)

    db_dir = os.path.dirname(db_path)
    if db_dir and db_path != ':memory:':
        os.makedirs(db_dir, exist_ok=True)

    conn = duckdb.connect(db_path)
    _connections[db_path] = conn
    conn.execute(f"SET threads={int(db_config['threads'])}")
    conn.execute(f"SET memory_limit='{db_config['memory_limit']}'")
    conn.execute("SET TimeZone='UTC'")

    logger.debug(f"Successfully connected to {db_path}")
    return conn

def close_database(conn: duckdb.DuckDBPyConnection) -> None:
    """Checkpoint and close a connection opened with init_database."""
    for path, registered in list(_connections.items()):
        if registered is conn:
            _close_existing_connection(path)
            return
    try:
        conn.close()
    except duckdb.Error as e:
        logger.warning(f"Error closing connection: {e}")

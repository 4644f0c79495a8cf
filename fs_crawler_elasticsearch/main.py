#!/usr/bin/env python3

import sys
import logging
import signal
import argparse
import json

from .config.config import load_config, get_index_names
from .config.logging import configure_logging
from .crawler.engine import CrawlEngine
from .database.db_duckdb import init_database, close_database
from .database.checkpoint_store import CheckpointStore
from .database.job_store import JobStore
from .elasticsearch.elasticsearch_integration import ElasticsearchClient
from .exceptions import ConfigurationError, SourceError
from .sources import build_source

# Initialize basic logging
logger = logging.getLogger(__name__)

def job_status(job_name, checkpoint_store, job_store):
    """Stored state of a job, as printed by --status."""
    checkpoint = checkpoint_store.read(job_name)
    job = job_store.read(job_name)
    return {
        'name': job_name,
        'last_run': job.last_run.isoformat() if job and job.last_run else None,
        'next_check': job.next_check.isoformat() if job and job.next_check else None,
        'files_indexed': job.files_indexed if job else 0,
        'files_deleted': job.files_deleted if job else 0,
        'checkpoint': checkpoint.to_dict() if checkpoint else None,
    }

def main() -> int:
    """Main entry point for the crawler."""
    parser = argparse.ArgumentParser(
        description='Incremental filesystem crawler for Elasticsearch',
        prog='fs-crawler',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Crawl forever, rescanning every fs.update_rate
  %(prog)s --config config/crawler-config.yaml

  # Run a single scan and exit
  %(prog)s --config config/crawler-config.yaml --loop 1

  # Forget the previous scans of the job and start over
  %(prog)s --config config/crawler-config.yaml --restart

  # Show the checkpoint and watermark of the job without crawling
  %(prog)s --config config/crawler-config.yaml --status
""")
    parser.add_argument('--config', type=str, default=None,
                        help='Path to configuration file (default: config/crawler-config.yaml)')
    parser.add_argument('--loop', type=int, default=0, metavar='N',
                        help='Number of scans to run before exiting, 0 to run forever (default: %(default)s)')
    parser.add_argument('--restart', action='store_true',
                        help='Clear the checkpoint and watermark of the job before starting')
    parser.add_argument('--status', action='store_true',
                        help='Print the stored checkpoint and watermark of the job as JSON and exit')
    args = parser.parse_args()

    try:
        config = load_config(args.config)
    except (FileNotFoundError, ConfigurationError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    configure_logging(config)
    job_name = config['name']
    index_name, folder_index_name = get_index_names(config)
    logger.info(f"Starting crawler [{job_name}] on {config['fs']['url']}")

    conn = None
    source = None
    es_client = None
    engine = None
    try:
        conn = init_database(config['database']['path'], config)
        checkpoint_store = CheckpointStore(conn)
        job_store = JobStore(conn)
        if args.restart:
            logger.info(f"Restarting [{job_name}] from scratch")
            checkpoint_store.clean(job_name)
            job_store.clean(job_name)

        if args.status:
            print(json.dumps(job_status(job_name, checkpoint_store, job_store), indent=2))
            return 0

        source = build_source(config)
        source.open()
        if not source.exists(config['fs']['url']):
            raise ConfigurationError(f"Root directory {config['fs']['url']} does not exist or is not readable")

        es_client = ElasticsearchClient.from_config(config, index_name, folder_index_name)
        es_client.ensure_indices()

        engine = CrawlEngine(config, source, es_client, checkpoint_store, job_store, loop=args.loop)

        def signal_handler(signum, frame):
            logger.info(f"Received signal {signum}, initiating graceful shutdown...")
            engine.close()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        engine.start()
        while engine.is_alive():
            engine.join(0.5)
        return 1 if engine.fatal_error else 0

    except (ConfigurationError, SourceError) as e:
        logger.error(f"Crawler [{job_name}] cannot start: {e}")
        return 1
    finally:
        if engine is not None:
            engine.close()
        if es_client is not None:
            es_client.close()
        if source is not None:
            source.close()
        if conn is not None:
            close_database(conn)

if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""
Node Specific Sizing - Entry Point

A mutating admission webhook that resizes the requests and limits of pods
pinned to a node, proportionally to that node's capacity.

Usage:
    python run.py [--port PORT] [--in-cluster] [--dry-run] [--fail-closed]
"""

import argparse
import logging
import os
import sys

import uvicorn
from kubernetes import client, config

from node_sizing.config import (
    CAPACITY_SOURCES,
    DEFAULT_CAPACITY_SOURCE,
    TLS_CERT_FILE,
    TLS_KEY_FILE,
    WEBHOOK_PORT,
)
from node_sizing.node_cache import NodeCache, NodeWatcher
from node_sizing.sizer import PodSizer
from node_sizing.webhook import create_app

# Configure logging
logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Node Specific Sizing - Size pod resources after the node they are pinned to"
    )
    parser.add_argument(
        "--port", "-p",
        type=int,
        default=WEBHOOK_PORT,
        help=f"Webhook server port (default: {WEBHOOK_PORT})"
    )
    parser.add_argument(
        "--tls-cert-file",
        default=TLS_CERT_FILE,
        help="x509 certificate file"
    )
    parser.add_argument(
        "--tls-key-file",
        default=TLS_KEY_FILE,
        help="x509 private key file"
    )
    parser.add_argument(
        "--capacity-source",
        choices=CAPACITY_SOURCES,
        default=DEFAULT_CAPACITY_SOURCE,
        help="Node status field used as the node capacity"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Compute patches and log them without applying them"
    )
    parser.add_argument(
        "--fail-closed",
        action="store_true",
        help="Reject pods that cannot be sized instead of admitting them unchanged"
    )
    parser.add_argument(
        "--in-cluster",
        action="store_true",
        help="Use in-cluster config (for running inside Kubernetes)"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose/debug logging"
    )
    return parser.parse_args(argv)


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)

    # Set log level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    # Load Kubernetes configuration
    try:
        if args.in_cluster:
            config.load_incluster_config()
            logger.info("Loaded in-cluster configuration")
        else:
            config.load_kube_config()
            logger.info("Loaded kubeconfig from default location")
    except Exception as e:
        logger.error(f"Failed to load Kubernetes config: {e}")
        sys.exit(1)

    node_cache = NodeCache()
    watcher = NodeWatcher(client.CoreV1Api(), node_cache)
    watcher.start()

    sizer = PodSizer(node_cache, capacity_source=args.capacity_source)
    app = create_app(
        sizer,
        fail_open=not args.fail_closed,
        dry_run=args.dry_run,
        node_cache=node_cache
    )

    logger.info(f"Starting webhook server on port {args.port}")
    logger.info(f"Dry run: {args.dry_run}, fail closed: {args.fail_closed}")
    try:
        uvicorn.run(
            app,
            host="0.0.0.0",
            port=args.port,
            ssl_certfile=args.tls_cert_file,
            ssl_keyfile=args.tls_key_file,
            log_level="debug" if args.verbose else "info"
        )
    except Exception as e:
        logger.error(f"Webhook server error: {e}")
        sys.exit(1)
    finally:
        watcher.stop()
        logger.info("Webhook server stopped")


if __name__ == "__main__":
    main()

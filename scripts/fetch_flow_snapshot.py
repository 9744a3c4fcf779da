#!/usr/bin/env python3
"""CLI utility that fetches one flow snapshot and prints the origin summary."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from backend.app.config import ConfigError, load_config
from backend.app.flow import FlowDiagramService, FlowStatus
from backend.app.telemetry import NerdGraphFlowRepository, PeerBy


def parse_args() -> argparse.Namespace:
    """Parse command line arguments for the snapshot utility.

    Returns:
        argparse.Namespace: Parsed command line arguments.
    """
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--account-id", type=int, default=None, help="Account to query")
    parser.add_argument(
        "--peer-by",
        choices=[mode.value for mode in PeerBy],
        default=None,
        help="Origin grouping (default: value from config.yaml)",
    )
    parser.add_argument("--config", type=Path, default=None, help="Path to config.yaml")
    return parser.parse_args()


def main() -> int:
    """Entry point for the snapshot utility.

    Returns:
        int: Exit status code where ``0`` indicates success.
    """
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
    args = parse_args()

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        print(f"Unable to load configuration: {exc}", file=sys.stderr)
        return 2

    repository = NerdGraphFlowRepository(config.telemetry)
    try:
        service = FlowDiagramService(repository, sankey=config.sankey, telemetry=config.telemetry)
        if args.peer_by:
            service.set_peer_by(PeerBy(args.peer_by))
        state = service.refresh(args.account_id)
        view = service.current_view()
    finally:
        repository.close()

    if state.status is FlowStatus.ERROR:
        print(f"Flow query failed: {state.error}", file=sys.stderr)
        return 1
    if not view.has_data:
        print("No data found")
        return 0

    print(f"nodes={view.node_count} links={view.link_count} peer_by={view.peer_by.value}")
    for entry in view.summary:
        print(f"{entry.color}  {entry.name:<40} {entry.throughput}")
    return 0


if __name__ == "__main__":
    sys.exit(main())

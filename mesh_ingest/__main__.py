"""CLI entry point for the mesh ingest bridge.

Usage::

    mesh-ingest run --config bridge.yaml
    mesh-ingest run --dry-run
    mesh-ingest ingest mesh/kpi/node7 "temp=21;humidity=58" --dry-run
    mesh-ingest classify mesh/status/node7
    mesh-ingest list-sinks
    mesh-ingest init-config --output bridge.yaml
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import textwrap

from mesh_ingest.config import BridgeConfig, load_config
from mesh_ingest.sinks.base import BootstrapError

# ---------------------------------------------------------------------------
# Sample YAML config template for init-config
# ---------------------------------------------------------------------------
_SAMPLE_CONFIG = """\
# Mesh ingest bridge configuration
# Every value can be overridden by the environment variable noted beside it.

broker:
  host: localhost                     # MQTT_BROKER
  port: 1883                          # MQTT_PORT
  # username: bridge                  # MQTT_USERNAME
  # password: secret                  # MQTT_PASSWORD
  client_id: mqtt-orchestrator

topics:                               # literal prefixes, subscribed as <prefix>#
  data: mesh/data/                    # MQTT_TOPIC
  kpi: mesh/kpi/                      # MQTT_KPI_TOPIC
  status: mesh/status/                # MQTT_MESH_STATUS_TOPIC

encryption:
  enabled: false                      # ENCRYPTION=true
  # api_url: http://cipher:8080       # ENCRYPT_API_URL (POST <api_url>/encrypt)
  timeout_s: 5.0

store:
  host: localhost                     # MONGO_HOST
  port: 27017                         # MONGO_PORT
  # username: mesh                    # MONGO_USER
  # password: secret                  # MONGO_PASS
  database: mesh                      # MONGO_DATABASE
  data_collection: data               # MONGO_COLLECTION
  # uri: mongodb://...                # MONGO_URI, replaces host/port/credentials

sink:
  type: mongo                         # mongo or console

log_level: INFO                       # LOG_LEVEL
"""


# ======================================================================
# Main entry point
# ======================================================================


def main(argv: list[str] | None = None) -> None:
    epilog = textwrap.dedent("""\
        examples:
          mesh-ingest run --config bridge.yaml
          mesh-ingest run --dry-run
          mesh-ingest ingest mesh/kpi/node7 "temp=21;humidity=58" --dry-run
          mesh-ingest classify mesh/status/node7
          mesh-ingest list-sinks
          mesh-ingest init-config --output bridge.yaml
    """)

    parser = argparse.ArgumentParser(
        prog="mesh-ingest",
        description="Classify MQTT messages by topic and persist them to MongoDB.",
        epilog=epilog,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", title="commands")

    # -- run ---------------------------------------------------------------
    run_parser = subparsers.add_parser(
        "run",
        help="Subscribe to the broker and persist messages until stopped.",
    )
    _add_common_args(run_parser)

    # -- ingest ------------------------------------------------------------
    ingest_parser = subparsers.add_parser(
        "ingest",
        help="Push a single message through the pipeline.",
    )
    ingest_parser.add_argument("topic", type=str, help="Topic the message is published on.")
    ingest_parser.add_argument("payload", type=str, help="Message payload (UTF-8 text).")
    _add_common_args(ingest_parser)

    # -- classify ----------------------------------------------------------
    classify_parser = subparsers.add_parser(
        "classify",
        help="Show which handling path a topic would take.",
    )
    classify_parser.add_argument("topic", type=str, help="Topic to classify.")
    classify_parser.add_argument("--config", "-c", type=str, default=None, help="Path to YAML config file.")

    # -- list-sinks --------------------------------------------------------
    subparsers.add_parser(
        "list-sinks",
        help="List all registered sink types.",
    )

    # -- init-config -------------------------------------------------------
    init_parser = subparsers.add_parser(
        "init-config",
        help="Generate a sample YAML configuration file.",
    )
    init_parser.add_argument(
        "--output",
        "-o",
        type=str,
        default=None,
        help="Write config to this file instead of stdout.",
    )

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return

    # -- Dispatch ----------------------------------------------------------
    try:
        if args.command == "run":
            _cmd_run(args)
        elif args.command == "ingest":
            _cmd_ingest(args)
        elif args.command == "classify":
            _cmd_classify(args.topic, args.config)
        elif args.command == "list-sinks":
            _cmd_list_sinks()
        elif args.command == "init-config":
            _cmd_init_config(args.output)
        else:
            parser.print_help()
    except BootstrapError as exc:
        logging.getLogger("mesh_ingest").critical("Start-up failed: %s", exc)
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)


def _add_common_args(sub: argparse.ArgumentParser) -> None:
    sub.add_argument(
        "--config",
        "-c",
        type=str,
        default=None,
        help="Path to YAML config file (environment variables override it).",
    )
    sub.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: from config, INFO).",
    )
    sub.add_argument(
        "--dry-run",
        action="store_true",
        help="Print documents to stdout instead of writing to MongoDB.",
    )


# ======================================================================
# Command implementations
# ======================================================================


def _prepare(args: argparse.Namespace) -> BridgeConfig:
    """Load config, apply CLI overrides and configure logging."""
    cfg = load_config(args.config)
    if args.dry_run:
        cfg = cfg.model_copy(update={"sink": {"type": "console"}})

    level = args.log_level or cfg.log_level.upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(name)-30s %(levelname)-7s %(message)s",
        datefmt="%H:%M:%S",
    )
    return cfg


def _cmd_run(args: argparse.Namespace) -> None:
    """Run the bridge until interrupted."""
    from mesh_ingest.bridge import Bridge

    cfg = _prepare(args)
    Bridge(cfg).run()


def _cmd_ingest(args: argparse.Namespace) -> None:
    from mesh_ingest.bridge import Bridge

    cfg = _prepare(args)
    outcome = asyncio.run(Bridge(cfg).ingest_once(args.topic, args.payload.encode("utf-8")))

    if outcome.persisted:
        print(f"{outcome.category.value}: persisted")
    else:
        print(f"{outcome.category.value}: dropped ({outcome.reason})")
        sys.exit(1)


def _cmd_classify(topic: str, config_path: str | None) -> None:
    from mesh_ingest.dispatcher import TopicClassifier
    from mesh_ingest.models import device_id_from_topic

    cfg = load_config(config_path)
    classifier = TopicClassifier(kpi_prefix=cfg.topics.kpi, status_prefix=cfg.topics.status)
    print(f"category:  {classifier.classify(topic).value}")
    print(f"device_id: {device_id_from_topic(topic)}")


# -- list-sinks ------------------------------------------------------------


def _cmd_list_sinks() -> None:
    from mesh_ingest.sinks.factory import _SINK_REGISTRY

    print(f"\n{'Sink Type':<14} {'Class':<20} {'Module'}")
    print("-" * 62)
    for name, (module_path, class_name) in _SINK_REGISTRY.items():
        print(f"{name:<14} {class_name:<20} {module_path}")
    print()


# -- init-config ------------------------------------------------------------


def _cmd_init_config(output_path: str | None) -> None:
    if output_path:
        from pathlib import Path

        Path(output_path).parent.mkdir(parents=True, exist_ok=True)
        Path(output_path).write_text(_SAMPLE_CONFIG)
        print(f"Sample config written to {output_path}")
    else:
        print(_SAMPLE_CONFIG)


# ======================================================================
if __name__ == "__main__":
    main()

"""
ChatGuard command line interface.

Usage:
    chatguard [--config PATH] [--log-level LEVEL] COMMAND

Commands:
    run                 poll sources until interrupted
    once                run a single polling cycle
    classify TEXT       classify one message with the configured providers
    genkey              print a fresh base64 master key
    provision OWNER_ID  create the data key of a tenant
    status              show providers, conversations and incident counts
"""

import argparse
import json
import signal
import sys
import threading
from typing import Any, Dict, List, Optional

from .__version__ import __version__
from .core.context import RequestContext
from .core.crypto import KeyManager, generate_master_key
from .core.exceptions import ChatGuardError, ConfigError
from .core.failover import FailoverClient
from .core.notifier import LoggingNotifier
from .core.pipeline import IngestionPipeline, provision_tenant_key
from .core.poller import SourcePoller
from .sources.http_collector import HttpCollectorClient
from .storage.models import IncidentStatus
from .storage.sqlite_store import SQLiteStore
from .utils.config import load_config
from .utils.logger import logger, set_level

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CONFIG = 2


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def _build_pipeline(cfg: Dict[str, Any]) -> IngestionPipeline:
    key_manager = KeyManager.from_env(cfg["master_key_env"])
    classifier = FailoverClient.from_config(cfg)
    store = SQLiteStore(cfg["database"]["path"])
    collector = HttpCollectorClient.from_config(cfg)
    pipeline = IngestionPipeline.from_config(
        cfg, store, collector, classifier, key_manager, LoggingNotifier()
    )
    pipeline.ensure_tenant_key(pipeline.default_owner_id)
    return pipeline


def _close_pipeline(pipeline: IngestionPipeline) -> None:
    pipeline.classifier.close()
    pipeline.collector.close()
    pipeline.store.close()


def cmd_run(cfg: Dict[str, Any], args: argparse.Namespace) -> int:
    pipeline = _build_pipeline(cfg)
    poller = SourcePoller(pipeline, interval=float(cfg["poll_interval"]))
    stop_event = threading.Event()

    def _stop(signum, frame):
        logger.info(f"Received signal {signum}, stopping")
        stop_event.set()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)
    try:
        poller.run(stop_event)
    finally:
        _close_pipeline(pipeline)
    return EXIT_OK


def cmd_once(cfg: Dict[str, Any], args: argparse.Namespace) -> int:
    pipeline = _build_pipeline(cfg)
    try:
        report = SourcePoller(pipeline, interval=float(cfg["poll_interval"])).run_once()
    finally:
        _close_pipeline(pipeline)
    _print_json(report.to_dict())
    return EXIT_OK if report.errors == 0 else EXIT_ERROR


def cmd_classify(cfg: Dict[str, Any], args: argparse.Namespace) -> int:
    client = FailoverClient.from_config(cfg)
    try:
        result = client.classify(
            RequestContext(timeout=float(cfg["classification_timeout"])), args.text
        )
    finally:
        client.close()
    _print_json(result.to_dict())
    return EXIT_OK


def cmd_genkey(cfg: Dict[str, Any], args: argparse.Namespace) -> int:
    print(generate_master_key())
    return EXIT_OK


def cmd_provision(cfg: Dict[str, Any], args: argparse.Namespace) -> int:
    key_manager = KeyManager.from_env(cfg["master_key_env"])
    store = SQLiteStore(cfg["database"]["path"])
    try:
        existed = store.get_tenant_key(args.owner_id) is not None
        material = provision_tenant_key(store, key_manager, args.owner_id)
    finally:
        store.close()
    state = "already provisioned" if existed else "provisioned"
    print(f"Owner {material.owner_id}: data key {state}")
    return EXIT_OK


def cmd_status(cfg: Dict[str, Any], args: argparse.Namespace) -> int:
    store = SQLiteStore(cfg["database"]["path"])
    try:
        conversations = store.list_conversations()
        status: Dict[str, Any] = {
            "version": __version__,
            "providers": [
                {"type": p.get("type"), "model": p.get("model", "")}
                for p in cfg.get("providers", [])
            ],
            "conversations": [
                {
                    "id": c.id,
                    "source": c.source.value,
                    "name": c.name,
                    "active": c.monitoring_active,
                    "cursor": c.cursor,
                }
                for c in conversations
            ],
            "incidents": {
                s.value: len(store.list_incidents(s)) for s in IncidentStatus
            },
            "dataset": store.dataset_stats(),
        }
    finally:
        store.close()
    _print_json(status)
    return EXIT_OK


COMMANDS = {
    "run": cmd_run,
    "once": cmd_once,
    "classify": cmd_classify,
    "genkey": cmd_genkey,
    "provision": cmd_provision,
    "status": cmd_status,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chatguard",
        description="Chat ingestion with envelope encryption and threat classification",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", default=None, help="Path to config.json")
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override the configured log level",
    )
    sub = parser.add_subparsers(dest="cmd", required=True)

    sub.add_parser("run", help="Poll sources until interrupted")
    sub.add_parser("once", help="Run a single polling cycle")
    p_classify = sub.add_parser("classify", help="Classify one message")
    p_classify.add_argument("text", help="Message text")
    sub.add_parser("genkey", help="Print a new base64 master key")
    p_provision = sub.add_parser("provision", help="Create a tenant data key")
    p_provision.add_argument("owner_id", type=int, help="Tenant/owner id")
    sub.add_parser("status", help="Show providers, conversations and incidents")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.cmd == "genkey":
        return cmd_genkey({}, args)

    try:
        cfg = load_config(args.config)
        set_level(args.log_level or cfg.get("log_level", "INFO"))
        return COMMANDS[args.cmd](cfg, args)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG
    except ChatGuardError as e:
        logger.error(f"{args.cmd} failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())

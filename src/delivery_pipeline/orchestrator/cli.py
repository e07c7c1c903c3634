"""Command-line interface for the delivery pipeline."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any

import yaml

from delivery_pipeline.cluster.kubectl import KubectlClusterClient
from delivery_pipeline.core.audit import CompositeAuditSink, FileAuditSink, LoggingAuditSink
from delivery_pipeline.core.audit.sinks import AuditSink
from delivery_pipeline.core.config.loader import load_from_file
from delivery_pipeline.core.config.pipeline import PipelineConfig
from delivery_pipeline.core.errors import PipelineError
from delivery_pipeline.core.manifest import ManifestSet
from delivery_pipeline.orchestrator.execution import ExecutionState
from delivery_pipeline.orchestrator.orchestrator import PipelineOrchestrator
from delivery_pipeline.orchestrator.retrying import RetryingTrigger
from delivery_pipeline.stages.bootstrap import AwsAuthBindingStore, PermissionBootstrapper
from delivery_pipeline.stages.build import BuildCoordinator

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dpo",
        description="Build, publish and roll out a source revision.",
    )
    parser.add_argument(
        "--config",
        "-c",
        default="pipeline.conf",
        help="Path to the HOCON pipeline configuration file (default: pipeline.conf).",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Set the logging level (default: hooks.logging.level from the config).",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    trigger = commands.add_parser("trigger", help="Build and deploy a revision.")
    trigger.add_argument("revision", help="Source revision to deploy.")
    trigger.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Stop waiting after this many seconds (default: wait for completion).",
    )
    trigger.add_argument(
        "--no-retry",
        action="store_true",
        default=False,
        help="Ignore trigger_retry and run a single execution.",
    )

    commands.add_parser("bootstrap", help="Grant the configured identity its cluster privileges.")

    render = commands.add_parser("render", help="Print the manifest a revision would be applied with.")
    render.add_argument("revision", help="Source revision to render for.")
    return parser


def _audit_sink(config: PipelineConfig) -> AuditSink:
    sink: AuditSink = LoggingAuditSink()
    if config.hooks.audit is not None and config.hooks.audit.audit_trail_path:
        sink = CompositeAuditSink(sink, FileAuditSink(config.hooks.audit.audit_trail_path))
    return sink


def _print_json(data: dict[str, Any]) -> None:
    print(json.dumps(data, indent=2))


def _trigger(config: PipelineConfig, args: argparse.Namespace) -> int:
    with PipelineOrchestrator.from_config(config) as orchestrator:
        if config.trigger_retry is not None and not args.no_retry:
            execution = RetryingTrigger(orchestrator, config.trigger_retry).run(args.revision, args.timeout)
        else:
            execution = orchestrator.trigger(args.revision)
            execution = orchestrator.wait(execution.id, args.timeout)
        _print_json(execution.to_dict())
        if not execution.done:
            orchestrator.cancel(execution.id)
            logger.error("Execution %s still %s after %ss", execution.id, execution.state.value, args.timeout)
            return EXIT_FAILURE
    return EXIT_SUCCESS if execution.state is ExecutionState.SUCCEEDED else EXIT_FAILURE


def _bootstrap(config: PipelineConfig) -> int:
    if config.binding is None:
        logger.error("No binding section in the configuration")
        return EXIT_CONFIG_ERROR
    store = AwsAuthBindingStore(KubectlClusterClient(config.cluster))
    bootstrapper = PermissionBootstrapper(store, audit_sink=_audit_sink(config), actor=config.name)
    binding = bootstrapper.ensure_binding(
        config.binding.identity,
        config.binding.privileges,
        username=config.binding.username,
    )
    _print_json(binding.to_map_role())
    return EXIT_SUCCESS


def _render(config: PipelineConfig, revision: str) -> int:
    manifest_set = ManifestSet.from_file(config.deploy.manifest_path, namespace=config.deploy.namespace)
    artifact = BuildCoordinator(config.registry, config.build).describe(revision)
    documents = manifest_set.render(artifact.image_definitions(config.deploy.container_name))
    print(yaml.safe_dump_all(documents, sort_keys=False), end="")
    return EXIT_SUCCESS


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint.

    Args:
        argv: Command-line arguments. Defaults to ``sys.argv[1:]``.

    Returns:
        Exit code: 0 for success, 1 for a failed execution or command,
        2 for an invalid configuration.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level or "INFO"),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        config = load_from_file(args.config, PipelineConfig)
    except Exception as exc:
        logger.error("Failed to load configuration %s: %s", args.config, exc)
        return EXIT_CONFIG_ERROR

    if args.log_level is None:
        logging.getLogger().setLevel(config.hooks.logging.level.value)

    try:
        if args.command == "trigger":
            return _trigger(config, args)
        if args.command == "bootstrap":
            return _bootstrap(config)
        return _render(config, args.revision)
    except PipelineError as exc:
        logger.error("%s failed [%s]: %s", args.command, exc.kind.value, exc)
        return EXIT_FAILURE
    except ValueError as exc:
        logger.error("Invalid revision: %s", exc)
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())

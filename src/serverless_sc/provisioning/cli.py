"""CLI for compiling Service Catalog provisioned products into a template."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from .artifacts import build_artifact_store
from .config import ServiceConfigError, load_service, resolve_endpoint_url, resolve_region
from .digest import digest_stream
from .errors import ProvisioningError
from .logging_utils import configure_logging, resolve_level
from .reconciler import Reconciler
from .stack import CloudFormationStackInspector, NullStackInspector, StackInspector, StackStateProbe
from .template import load_template

logger = logging.getLogger("serverless_sc.provisioning.cli")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    base = argparse.ArgumentParser(add_help=False)
    base.add_argument("--config", required=True, help="Path to serverless service YAML")
    base.add_argument("--stage", default=None)
    base.add_argument("--region", default=None)
    base.add_argument("--endpoint-url", default=None)
    base.add_argument("--offline", action="store_true", help="Skip stack inspection (assume first deploy)")

    parser = argparse.ArgumentParser(description="Service Catalog provisioned-product compiler")
    parser.add_argument("--log-path", default=None)
    parser.add_argument("--verbose", action="store_true")
    subparsers = parser.add_subparsers(dest="command", required=True)

    compile_parser = subparsers.add_parser("compile", parents=[base], help="Compile functions into the template")
    compile_parser.add_argument("--template-in", default=None, help="Existing compiled template JSON")
    compile_parser.add_argument("--template-out", required=True)

    subparsers.add_parser("probe", parents=[base], help="Show the deployed version-hash state")

    digest_parser = subparsers.add_parser("digest", help="Print the content digest of an artifact")
    digest_parser.add_argument("--artifact", required=True)
    digest_parser.add_argument("--region", default=None)
    digest_parser.add_argument("--endpoint-url", default=None)

    return parser.parse_args(argv)


def _build_inspector(args: argparse.Namespace, region: str | None) -> StackInspector:
    if args.offline:
        return NullStackInspector()
    return CloudFormationStackInspector(region=region, endpoint_url=resolve_endpoint_url(args.endpoint_url))


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(level=resolve_level(args.verbose), log_path=args.log_path)

    if args.command == "digest":
        store = build_artifact_store(
            region=resolve_region(args.region),
            endpoint_url=resolve_endpoint_url(args.endpoint_url),
        )
        try:
            print(digest_stream(store.open_stream(args.artifact), source=args.artifact))
        except ProvisioningError as exc:
            logger.error("SC: %s", exc)
            return 1
        return 0

    try:
        service = load_service(Path(args.config))
    except ServiceConfigError as exc:
        logger.error("SC: %s", exc)
        return 2
    region = resolve_region(args.region or service.provider.region)
    probe = StackStateProbe(_build_inspector(args, region))
    stage = service.resolve_stage(args.stage)

    if args.command == "probe":
        state = probe.probe(service.stack_name(stage))
        print(json.dumps(state.as_dict(), sort_keys=True))
        return 0

    try:
        sink = load_template(Path(args.template_in) if args.template_in else None)
    except (OSError, ValueError) as exc:
        logger.error("SC: template not loadable: %s", exc)
        return 2
    if not service.service_catalog_enabled:
        logger.info("SC: provider.scProductId not set; template left unchanged")
        sink.write(Path(args.template_out))
        return 0

    reconciler = Reconciler(
        service,
        probe=probe,
        artifact_store=build_artifact_store(region=region, endpoint_url=resolve_endpoint_url(args.endpoint_url)),
        stage=stage,
    )
    report = reconciler.reconcile_all(sink)
    sink.write(Path(args.template_out))
    print(json.dumps(report.as_dict(), sort_keys=True))
    return 0 if report.ok else 1


if __name__ == "__main__":
    raise SystemExit(main())

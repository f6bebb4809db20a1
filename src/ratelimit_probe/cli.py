"""Command line entry point for measuring a target's rate limit.

Usage:
    ratelimit-probe --resource URL --tenant-id ID --client-id ID [options]
    ratelimit-probe --resource URL --token TOKEN [options]

Options:
    --resource URL       REST resource for which the rate limit is measured
    --tenant-id ID       Azure AD tenant ID (env: RATELIMIT_PROBE_TENANT_ID)
    --client-id ID       Azure AD client ID (env: RATELIMIT_PROBE_CLIENT_ID)
    --token TOKEN        Pre-issued bearer token, skips the device flow
                         (env: RATELIMIT_PROBE_TOKEN)
    --num-tokens N       Number of tokens, one concurrent run each (default: 1)
    --parallel-reqs C    Parallel requests per run (default: 8)
    --timeout S          Per-request timeout upper bound in seconds (default: 600)
    --output FILE        Write a JSON report to FILE
    --json-logs          Log run results as structured JSON
    --verbose, -v        Verbose output

Press Ctrl-C to abort: in-flight probes complete, then the process exits.
"""

from __future__ import annotations

import argparse
import contextlib
import json
import logging
import os
import signal
import sys
import threading
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path

from ratelimit_probe.auth import (
    AzureDeviceCodeTokenProvider,
    StaticTokenProvider,
    TokenProvider,
    TokenProviderError,
    resource_for_url,
)
from ratelimit_probe.coordinator import RunCoordinator, fetch_tokens
from ratelimit_probe.engine import (
    MeasurementResult,
    ProbeConfig,
    RequestsProbeExecutor,
    TerminationReason,
)

logger = logging.getLogger("ratelimit_probe.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ratelimit-probe",
        description="Measure the request rate an HTTP endpoint sustains before throttling",
    )
    parser.add_argument(
        "--resource",
        required=True,
        help="REST resource for which the rate limit measurement is executed",
    )
    parser.add_argument(
        "--tenant-id",
        default=os.getenv("RATELIMIT_PROBE_TENANT_ID", ""),
        help="tenant ID",
    )
    parser.add_argument(
        "--client-id",
        default=os.getenv("RATELIMIT_PROBE_CLIENT_ID", ""),
        help="client ID",
    )
    parser.add_argument(
        "--token",
        default=os.getenv("RATELIMIT_PROBE_TOKEN", ""),
        help="pre-issued bearer token (skips the device code flow)",
    )
    parser.add_argument(
        "--num-tokens",
        type=int,
        default=1,
        help="number of tokens requested for a user (default: 1)",
    )
    parser.add_argument(
        "--parallel-reqs",
        type=int,
        default=8,
        help="number of parallel requests (default: 8)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="per-request timeout upper bound in seconds (default: 600)",
    )
    parser.add_argument("--output", type=str, help="write a JSON report to this file")
    parser.add_argument(
        "--json-logs", action="store_true", help="log run results as structured JSON"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    return parser


def validate_args(parser: argparse.ArgumentParser, args: argparse.Namespace) -> ProbeConfig:
    """Reject configuration errors before anything runs (exits with status 2).

    Returns the probe configuration, combining --timeout with the
    RATELIMIT_PROBE_* environment defaults.
    """
    try:
        resource_for_url(args.resource)
    except ValueError:
        parser.error(f"failed to parse the resource URL: {args.resource!r}")
    if not args.resource.lower().startswith(("http://", "https://")):
        parser.error("the resource URL must use http or https")
    if args.num_tokens < 1:
        parser.error("number of tokens requested for a user must be at least 1")
    if args.parallel_reqs < 1:
        parser.error("number of parallel requests must be at least 1")
    if args.timeout is not None and args.timeout <= 0:
        parser.error("timeout must be positive")
    if not args.token and not (args.tenant_id and args.client_id):
        parser.error("either --token or both --tenant-id and --client-id are required")
    try:
        return ProbeConfig() if args.timeout is None else ProbeConfig(timeout=args.timeout)
    except ValueError as e:
        parser.error(f"invalid probe configuration: {e}")


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_token_provider(args: argparse.Namespace) -> TokenProvider:
    if args.token:
        return StaticTokenProvider([args.token])
    return AzureDeviceCodeTokenProvider(
        args.tenant_id, args.client_id, resource_for_url(args.resource)
    )


@contextlib.contextmanager
def abort_on_interrupt(abort: threading.Event) -> Iterator[threading.Event]:
    """Turn SIGINT into setting abort for the duration of the block.

    Signal handlers can only be installed from the main thread; elsewhere the
    block runs without one.
    """
    if threading.current_thread() is not threading.main_thread():
        yield abort
        return

    def _handler(signum: int, frame: object) -> None:
        if not abort.is_set():
            logger.info("Waiting for rate limit probes to complete...")
        abort.set()

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield abort
    finally:
        signal.signal(signal.SIGINT, previous)


def format_result(index: int, result: MeasurementResult) -> str:
    prefix = f"Run {index}:"
    if result.reason is TerminationReason.LIMIT_REACHED:
        return (
            f"{prefix} rate limit reached at {result.throughput:.2f} request/sec "
            f"({result.success_count} requests in {result.elapsed_seconds:.2f}s)"
        )
    if result.reason is TerminationReason.ABORTED:
        return f"{prefix} aborted before reaching the rate limit"
    return f"{prefix} failed: {result.error}"


def build_report(
    resource: str, parallel_requests: int, results: list[MeasurementResult]
) -> dict:
    return {
        "timestamp": datetime.now(UTC).isoformat(),
        "resource": resource,
        "parallel_requests": parallel_requests,
        "runs": [result.to_dict() for result in results],
    }


def print_summary(results: list[MeasurementResult]) -> None:
    print("=" * 50)
    print("RATE LIMIT RESULTS")
    print("=" * 50)
    for index, result in enumerate(results, start=1):
        print(format_result(index, result))
    print("=" * 50)


def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Returns:
        Exit code (0 for success, 1 for credential or probe errors,
        130 if interrupted while acquiring tokens).
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    config = validate_args(parser, args)
    configure_logging(args.verbose)

    try:
        provider = build_token_provider(args)
        tokens = fetch_tokens(provider, args.num_tokens)
    except TokenProviderError as e:
        logger.error("failed to acquire %d tokens: %s", args.num_tokens, e)
        return 1
    except KeyboardInterrupt:
        logger.error("Interrupted while acquiring tokens")
        return 130

    abort = threading.Event()
    executor = RequestsProbeExecutor(timeout=config.timeout)
    coordinator = RunCoordinator(
        executor,
        concurrency=args.parallel_reqs,
        config=config,
        structured_logging=args.json_logs,
    )

    with abort_on_interrupt(abort), executor:
        results = coordinator.run(args.resource, tokens, abort)

    print_summary(results)

    if args.output:
        output_path = Path(args.output)
        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(build_report(args.resource, args.parallel_reqs, results), f, indent=2)
        print(f"Results saved to: {output_path}")

    if any(result.reason is TerminationReason.ERROR for result in results):
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

"""CLI entry point for the Azure DevOps pipeline runner.

Provides ``main()`` as the console-script entry point registered in
``pyproject.toml`` as ``azdo-runner = "azdo_runner.cli:main"``. Parses
the four positional inputs, loads an optional config YAML file, and
delegates to ``run_pipeline()`` from ``azdo_runner.runner``.

Exit codes: 0 when the run succeeded, 1 for everything else.
"""

from __future__ import annotations

import argparse
import json
from pathlib import Path
import sys
from typing import Any

import yaml

from azdo_runner.errors import PipelineFileNotFoundError, RunnerError, UsageError
from azdo_runner.execution import CommandError
from azdo_runner.models import RunnerConfig, RunOutcome, RunRequest
from azdo_runner.runner import apply_env_overrides, configure_logging, run_pipeline

_DESCRIPTION = (
    "Run a local pipeline file in Azure DevOps, set up the environment, "
    "wait for completion and return the result."
)

_POSITIONALS = ("prefix", "pipeline", "flavor", "version")


def _build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser.

    The positionals are optional at the argparse level so that missing
    ones are reported with exit code 1 rather than argparse's 2.

    Returns:
        Configured ``ArgumentParser``.
    """
    parser = argparse.ArgumentParser(prog="azdo-runner", description=_DESCRIPTION)
    parser.add_argument("prefix", nargs="?", default="", help="Project name prefix.")
    parser.add_argument(
        "pipeline", nargs="?", default="", help="Pipeline identifier (YAML file stem)."
    )
    parser.add_argument("flavor", nargs="?", default="", help="Build flavor.")
    parser.add_argument("version", nargs="?", default="", help="Version string.")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to an optional RunnerConfig YAML file.",
    )
    parser.add_argument("--pool", default=None, help="Agent pool name.")
    parser.add_argument(
        "--timeout", type=int, default=None, help="Run timeout in seconds."
    )
    parser.add_argument(
        "--interval", type=int, default=None, help="Poll interval in seconds."
    )
    parser.add_argument("--log-level", default=None, help="Logging level.")
    return parser


def _load_yaml(path: str, label: str) -> dict[str, Any]:
    """Load and validate a YAML file as a dict.

    Args:
        path: File path to the YAML file.
        label: Human-readable label for error messages.

    Returns:
        The parsed YAML content as a dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file does not parse to a dict.
    """
    file_path = Path(path)
    if not file_path.exists():
        msg = f"{label} file not found: {path}"
        raise FileNotFoundError(msg)

    with open(file_path, encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if not isinstance(data, dict):
        msg = f"{label} file must contain a YAML mapping, got {type(data).__name__}"
        raise ValueError(msg)

    return data


def _resolve_config(args: argparse.Namespace) -> RunnerConfig:
    """Merge config file, ``AZDO_RUNNER_*`` env vars and CLI flags, in that order."""
    config = RunnerConfig()
    if args.config is not None:
        config = RunnerConfig(**_load_yaml(args.config, "config"))
    config = apply_env_overrides(config)

    flags = {
        "pool_name": args.pool,
        "timeout_seconds": args.timeout,
        "poll_interval_seconds": args.interval,
        "log_level": args.log_level,
    }
    updates = {key: value for key, value in flags.items() if value is not None}
    if not updates:
        return config
    return RunnerConfig(**{**config.model_dump(), **updates})


def _print_usage(parser: argparse.ArgumentParser) -> None:
    print(_DESCRIPTION, file=sys.stderr)
    print(
        f"Usage: {parser.prog} " + " ".join(f"<{name}>" for name in _POSITIONALS),
        file=sys.stderr,
    )


def _print_startup_summary(request: RunRequest, config: RunnerConfig) -> None:
    sep = "=" * 60
    print(sep)
    print("Azure DevOps pipeline run")
    print(sep)
    print(f"  Project:      {request.project_name}")
    print(f"  Pipeline:     {request.pipeline_path(config.pipeline_dir)}")
    print(f"  Flavor:       {request.flavor}")
    print(f"  Version:      {request.version}")
    print(f"  Agent pool:   {config.pool_name}")
    print(f"  Timeout:      {config.timeout_seconds}s")
    print(sep)


def _print_outcome(outcome: RunOutcome) -> None:
    """Print the validation results and the verdict of a completed run."""
    print("Validation results:")
    print(json.dumps(outcome.validation_results, indent=2))
    if outcome.succeeded:
        print(f"✅ Pipeline run {outcome.run_id} succeeded")
    else:
        print(f"❌ Pipeline run {outcome.run_id} failed ({outcome.result})")
    if outcome.results_url:
        print(f"🔗 {outcome.results_url}")


def main(argv: list[str] | None = None) -> int:
    """Entry point for the azdo-runner CLI application.

    Args:
        argv: Argument list, ``sys.argv[1:]`` when ``None``.

    Returns:
        Exit code: 0 on success, 1 on error.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    request = RunRequest(
        prefix=args.prefix,
        pipeline=args.pipeline,
        flavor=args.flavor,
        version=args.version,
    )
    if request.missing_fields():
        _print_usage(parser)
        return 1

    try:
        config = _resolve_config(args)
        configure_logging(config)
        _print_startup_summary(request, config)

        outcome = run_pipeline(request, config)
        _print_outcome(outcome)

    except PipelineFileNotFoundError as exc:
        print(str(exc), file=sys.stderr)
        print("Available pipelines:", file=sys.stderr)
        for name in exc.diagnostics.get("available", []):
            print(f"  {name}", file=sys.stderr)
        return 1
    except UsageError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        _print_usage(parser)
        return 1
    except RunnerError as exc:
        print(f"Runner error: {exc}", file=sys.stderr)
        print(f"Diagnostics: {exc.diagnostics}", file=sys.stderr)
        return 1
    except CommandError as exc:
        print(f"Command failed: {exc}", file=sys.stderr)
        return 1
    except Exception as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    return 0 if outcome.succeeded else 1


if __name__ == "__main__":
    sys.exit(main())

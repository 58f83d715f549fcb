from __future__ import annotations
import argparse, logging, sys
from pathlib import Path
from .config import DEFAULT_STEPS_ENV, load_config, merge_settings, steps_from_config, steps_from_env
from .errors import CacheIOError, ConfigError, FingerprintError, StepDefinitionError
from .executor import ShellExecutor
from .hashing import hash_path
from .runner import Orchestrator
from .store import CacheStore

EXIT_OK = 0
EXIT_BUILD_FAILED = 1
EXIT_CONFIG = 2
EXIT_CACHE_IO = 3

logger = logging.getLogger("stepcache")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="stepcache", description="Incremental, cached step runner")
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--cache-dir", default=None, help="Cache root (default: $STEPCACHE_CACHE_DIR, else ~/.cache/stepcache)")
    common.add_argument("--workspace", default=None, help="Directory input/output paths are relative to (default: .)")
    common.add_argument("-v", "--verbose", action="count", default=0, help="-v for INFO, -vv for DEBUG")
    steps_src = argparse.ArgumentParser(add_help=False)
    steps_src.add_argument("-c", "--config", default=None, help="TOML/JSON file with [[steps]] and optional [settings]")
    steps_src.add_argument("--steps-env", default=None, metavar="NAME",
                           help=f"Read a JSON step list from env var NAME (default when no --config: {DEFAULT_STEPS_ENV})")
    steps_src.add_argument("--timeout", type=float, default=None, help="Per-step command timeout in seconds")

    sub = parser.add_subparsers(dest="cmd", required=True)
    sub.add_parser("run", parents=[common, steps_src], help="Run the pipeline, restoring cached steps")
    sub.add_parser("plan", parents=[common, steps_src], help="Show which steps would be restored or rebuilt")
    p_hash = sub.add_parser("hash", parents=[common], help="Print the digest of input specs")
    p_hash.add_argument("specs", nargs="+", help="File, directory or glob pattern")
    p_inv = sub.add_parser("invalidate", parents=[common], help="Drop cache entries")
    p_inv.add_argument("names", nargs="+")
    sub.add_parser("list", parents=[common], help="List cached step names")
    return parser

def _configure_logging(level: str, verbose: int) -> None:
    if verbose >= 2:
        level = "DEBUG"
    elif verbose == 1:
        level = "INFO"
    logging.basicConfig(level=level.upper(), stream=sys.stderr, format="%(levelname)s %(name)s: %(message)s")

def _load_steps(args, config: dict):
    if args.config and not args.steps_env:
        return steps_from_config(config)
    return steps_from_env(args.steps_env or DEFAULT_STEPS_ENV)

def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = load_config(getattr(args, "config", None))
        settings, prov = merge_settings(config, {"cache_dir": args.cache_dir, "workspace": args.workspace})
        _configure_logging(str(settings["log_level"]), args.verbose)
        logger.debug("Settings: %s (from %s)", settings, prov)
        store = CacheStore(settings["cache_dir"])
        workspace = Path(settings["workspace"])

        if args.cmd in ("run", "plan"):
            steps = _load_steps(args, config)
            orch = Orchestrator(store, ShellExecutor(timeout=args.timeout), workspace)
            if args.cmd == "plan":
                for entry in orch.plan(steps):
                    print(f"{entry.name}\t{'hit' if entry.hit else 'miss'}\t{entry.fingerprint}")
                return EXIT_OK
            result = orch.run(steps)
            if not result.ok:
                if result.output:
                    print(result.output, file=sys.stderr, end="" if result.output.endswith("\n") else "\n")
                print(f"Build failed at step {result.failed_step}: {result.reason}", file=sys.stderr)
                return EXIT_BUILD_FAILED
            for r in result.reports:
                print(f"{r.name}\t{r.action}")

        elif args.cmd == "hash":
            for spec in args.specs:
                d = hash_path(spec, workspace.resolve())
                print(f"{d.digest}\t{d.kind}\t{spec}")

        elif args.cmd == "invalidate":
            for name in args.names:
                if not store.invalidate(name):
                    logger.warning("No cache entry for %s", name)

        elif args.cmd == "list":
            for name in store.entries():
                print(f"{name}\t{store.get_fingerprint(name)}")

    except (ConfigError, StepDefinitionError) as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_CONFIG
    except (CacheIOError, FingerprintError) as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_CACHE_IO
    return EXIT_OK

if __name__ == "__main__":
    sys.exit(main())

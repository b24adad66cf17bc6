"""CLI entrypoint for bundle plan generation."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
import sys
from typing import Any

from bundleplan import GenerationAborted, GenerationConfig, Generator
from bundleplan.config import URL_KEYS, load_config_payload, parse_name_list


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Generate a RequireJS bundling plan by visiting storefront pages.",
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to JSON/YAML generation config. Flags override its values.",
    )

    parser.add_argument("--cms-url", type=str, default=None, help="CMS page URL.")
    parser.add_argument("--category-url", type=str, default=None, help="Category page URL.")
    parser.add_argument("--product-url", type=str, default=None, help="Product page URL.")
    parser.add_argument("--search-url", type=str, default=None, help="Catalog search results URL.")

    parser.add_argument("-u", "--auth-username", type=str, default=None, help="Basic auth username.")
    parser.add_argument("-p", "--auth-password", type=str, default=None, help="Basic auth password.")

    parser.add_argument(
        "-d",
        "--debug",
        action="store_true",
        help="Show the browser window and log at DEBUG level.",
    )
    parser.add_argument(
        "-s",
        "--screenshot",
        action="store_true",
        help="Save a screenshot of every visited page.",
    )
    parser.add_argument("--screenshot-path", type=str, default=None)
    parser.add_argument(
        "-e",
        "--excluded-modules",
        type=str,
        default=None,
        help="Comma separated list of modules to leave out of every bundle.",
    )
    parser.add_argument(
        "-t",
        "--timeout",
        type=int,
        default=None,
        help="Per-collector timeout in milliseconds; the whole run gets five times this.",
    )

    parser.add_argument(
        "--skip-checkout",
        action="store_true",
        help="Do not collect the cart and checkout bundle.",
    )
    parser.add_argument(
        "--skip-collector",
        action="append",
        default=[],
        help="Collector name to skip (repeatable).",
    )

    parser.add_argument("--output", type=str, default=None, help="Plan file path.")
    parser.add_argument("--max-tabs", type=int, default=None)
    parser.add_argument("--memory-limit", type=int, default=None, help="Memory ceiling in MiB.")
    parser.add_argument("--user-agent", type=str, default=None)

    parser.add_argument("--log-file", type=Path, default=None, help="Also write logs to this file.")
    parser.add_argument(
        "--print-stats-json",
        action="store_true",
        help="Print full stats JSON in stdout after run.",
    )

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> GenerationConfig:
    if args.config is not None:
        payload: dict[str, Any] = load_config_payload(args.config)
    else:
        payload = {}

    for key in ("cms_url", "category_url", "product_url", "search_url", "auth_username", "auth_password"):
        value = getattr(args, key)
        if value is not None:
            payload[key] = value

    if args.debug:
        payload["debug"] = True
    if args.screenshot:
        payload["screenshot"] = True
    if args.screenshot_path is not None:
        payload["screenshot_path"] = args.screenshot_path
    if args.excluded_modules is not None:
        payload["excluded_modules"] = list(parse_name_list(args.excluded_modules))
    if args.timeout is not None:
        payload["timeout_ms"] = args.timeout

    if args.skip_checkout:
        payload["skip_checkout"] = True
    if args.skip_collector:
        payload["skip_collectors"] = list(parse_name_list(args.skip_collector))

    if args.output is not None:
        payload["output_path"] = args.output
    if args.max_tabs is not None:
        payload["max_tabs"] = args.max_tabs
    if args.memory_limit is not None:
        payload["memory_limit_mib"] = args.memory_limit
    if args.user_agent is not None:
        payload["user_agent"] = args.user_agent

    config = GenerationConfig.from_dict(payload)
    if not any(getattr(config, key) for key in URL_KEYS):
        raise ValueError("No page URLs provided. Use --config or at least one --*-url flag.")
    return config


def setup_logging(debug: bool, log_file: Path | None = None) -> None:
    log_level = logging.DEBUG if debug else logging.INFO

    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(log_level)

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setLevel(log_level)
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    # Every WebDriver command is logged at DEBUG by these.
    logging.getLogger("selenium").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def print_summary(result: dict[str, Any], *, print_stats_json: bool) -> None:
    stats = result.get("stats", {})

    print("\n=== Generation Complete ===")
    print(f"output: {result.get('output_path')}")

    print("\n--- Bundles ---")
    for bundle in result.get("bundles", []):
        print(f"{bundle['name']}: {len(bundle['modules'])} modules")

    print("\n--- Collectors ---")
    for record in stats.get("collectors", []):
        print(f"{record['name']}: {record['status']} in {record['elapsed_ms']}ms")

    print("\n--- Core Stats ---")
    for key in ["modules_collected", "peak_rss_mib", "duration_seconds"]:
        if key in stats:
            print(f"{key}: {stats[key]}")

    if print_stats_json:
        print("\n--- Full Stats JSON ---")
        print(json.dumps(stats, indent=2, sort_keys=True))


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.debug, args.log_file)

    try:
        config = build_config(args)
    except Exception as exc:
        logging.error("Failed to build config: %s", exc)
        return 2

    logging.info(
        "Starting generation: output=%s, timeout_ms=%s, skip_checkout=%s",
        config.output_path,
        config.timeout_ms,
        config.skip_checkout,
    )

    try:
        result = Generator(config).run()
    except GenerationAborted as exc:
        logging.error("%s", exc)
        return 1
    except KeyboardInterrupt:
        logging.error("Interrupted by user")
        return 130
    except Exception:
        logging.exception("Generation failed")
        return 1

    print_summary(result, print_stats_json=args.print_stats_json)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

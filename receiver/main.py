from __future__ import annotations

import argparse

from webmention_receiver.config import load_settings
from webmention_receiver.server import serve


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Receive and verify webmentions")
    parser.add_argument("mentions_file", nargs="?", help="verified webmentions store (JSON)")
    parser.add_argument("failures_file", nargs="?", help="per-source failure counts (JSON)")
    parser.add_argument("allowed_targets_file", nargs="?", help='allow-list of target prefixes, {"urls": [...]}')
    args = parser.parse_args(argv)

    settings = load_settings(
        mentions_file=args.mentions_file,
        failures_file=args.failures_file,
        allowed_targets_file=args.allowed_targets_file,
    )
    serve(settings)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

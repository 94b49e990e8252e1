#!/usr/bin/env python3
"""
Build a signed ruleset release.

Usage:
    python build_ruleset_release.py --db ./rulesets.sqlite --version 1.0.0.3 \
        --source https://rulesets.example.org/rulesets.sqlite --sign ./keys/update_signing_key.pem
"""

import argparse
import sys

from rulekeeper.updates.errors import RulesetUpdateError
from rulekeeper.updates.release import ReleaseBuilder


def main():
    parser = argparse.ArgumentParser(description="Build RuleKeeper ruleset release")
    
    parser.add_argument(
        "--db",
        required=True,
        help="Path to ruleset database file",
    )
    parser.add_argument(
        "--version",
        "-v",
        required=True,
        help="Ruleset version: <extension version>.<ruleset number>",
    )
    parser.add_argument(
        "--branch",
        "-b",
        help="Release branch",
        default="stable",
    )
    parser.add_argument(
        "--source",
        "-s",
        required=True,
        help="https URL the database will be served from",
    )
    parser.add_argument(
        "--hashfn",
        help="Digest algorithm for the database file",
        default="sha256",
    )
    parser.add_argument(
        "--output",
        "-o",
        help="Output directory",
        default="./release",
    )
    parser.add_argument(
        "--sign",
        help="Path to private key for signing",
        default=None,
    )
    
    args = parser.parse_args()
    
    try:
        builder = ReleaseBuilder(hashfn=args.hashfn)
        written = builder.write_release(
            output_dir=args.output,
            db_path=args.db,
            version=args.version,
            branch=args.branch,
            source=args.source,
            private_key_path=args.sign,
        )
    except (RulesetUpdateError, OSError, ValueError) as e:
        print(f"Error creating release: {e}")
        sys.exit(1)
    
    print(f"\n✓ Manifest written: {written['manifest']}")
    print(f"✓ Database copied: {written['database']}")
    if "signature" in written:
        print(f"✓ Manifest signed: {written['signature']}")
    else:
        print("Warning: release is unsigned, clients will reject it")


if __name__ == "__main__":
    main()

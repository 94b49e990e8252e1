#!/usr/bin/env python3

import argparse
import sys
from pathlib import Path

from rulekeeper.updates.release import generate_keypair

def main():
    parser = argparse.ArgumentParser(description="Generate update manifest signing keypair")
    parser.add_argument(
        "output_dir",
        nargs="?",
        default="./keys",
        help="Output directory for keys (default: ./keys)",
    )
    parser.add_argument(
        "--type",
        choices=["ed25519", "rsa"],
        default="ed25519",
        help="Key type (default: ed25519)",
    )
    
    args = parser.parse_args()
    
    try:
        paths = generate_keypair(args.output_dir, key_type=args.type)
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)
    
    print(f"Private key saved: {paths['private_key']}")
    print("⚠️  Keep this file secure! Do not commit to version control.")
    print(f"Public key saved: {paths['public_key']}")
    print("Embed this key as RULESET_UPDATE_KEY in rulekeeper/updates/verifier.py.")
    
    print("\n--- Public Key (for embedding) ---")
    print(Path(paths["public_key"]).read_text())

if __name__ == "__main__":
    main()

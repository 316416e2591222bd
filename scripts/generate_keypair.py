#!/usr/bin/env python3
"""
Generate a fee payer keypair for the relayer.

This script generates:
- Keypair file (keypair.json, 64-byte array as used by the ledger CLI)
- key_info.json with the public address
"""

import argparse
import json
from pathlib import Path

from solders.keypair import Keypair


def generate_keypair(output_dir: str = "./keys") -> dict:
    """
    Generate a new keypair.

    Args:
        output_dir: Directory to save keys

    Returns:
        Dictionary with key info
    """
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    keypair = Keypair()

    keypair_path = output_path / "keypair.json"
    keypair_path.write_text(json.dumps(list(bytes(keypair))))

    info = {
        "keypair_path": str(keypair_path),
        "address": str(keypair.pubkey()),
    }

    info_path = output_path / "key_info.json"
    with open(info_path, "w") as f:
        json.dump(info, f, indent=2)

    return info


def main():
    parser = argparse.ArgumentParser(description="Generate a relayer fee payer keypair")
    parser.add_argument(
        "--output-dir", "-o",
        default="./keys",
        help="Output directory for keys (default: ./keys)"
    )
    parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Overwrite an existing keypair"
    )

    args = parser.parse_args()

    output_path = Path(args.output_dir)
    keypair_path = output_path / "keypair.json"

    if keypair_path.exists() and not args.force:
        print(f"Keypair already exists at {args.output_dir}")
        print("   Use --force to overwrite")

        info_path = output_path / "key_info.json"
        if info_path.exists():
            with open(info_path) as f:
                info = json.load(f)
            print(f"\nAddress: {info['address']}")
        return

    print("Generating new keypair...")
    info = generate_keypair(args.output_dir)

    print(f"\nKeypair saved to: {info['keypair_path']} (KEEP SECRET!)")
    print(f"Address: {info['address']}")

    print("\nTo fund on devnet:")
    print(f"   solana airdrop 1 {info['address']} --url devnet")
    print(f"\nThen: RELAY_KEYPAIR_PATH={info['keypair_path']} relayer send --destination <addr> --message hello")


if __name__ == "__main__":
    main()

"""
Generate the RS256 key pair used to sign session tokens.
Run once per environment: python scripts/generate_keys.py [output_dir]

Writes private.pem and public.pem (default: backend/keys/). Point
JWT_PRIVATE_KEY_PATH / JWT_PUBLIC_KEY_PATH at them, or paste their contents
into JWT_PRIVATE_KEY / JWT_PUBLIC_KEY. Never commit private.pem.
"""

import os
import sys
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

DEFAULT_DIR = Path(__file__).resolve().parent.parent / "keys"


def generate_key_pair(key_size: int = 2048):
    """Return (private_pem, public_pem) as bytes"""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return private_pem, public_pem


def main():
    out_dir = Path(sys.argv[1]) if len(sys.argv) > 1 else DEFAULT_DIR
    out_dir.mkdir(parents=True, exist_ok=True)

    private_path = out_dir / "private.pem"
    public_path = out_dir / "public.pem"
    if private_path.exists():
        print(f"{private_path} already exists. Remove it first to rotate keys.")
        sys.exit(1)

    private_pem, public_pem = generate_key_pair()
    private_path.write_bytes(private_pem)
    os.chmod(private_path, 0o600)
    public_path.write_bytes(public_pem)

    print(f"Private key: {private_path}")
    print(f"Public key:  {public_path}")
    print("\nConfigure the API with:")
    print(f"  JWT_PRIVATE_KEY_PATH={private_path}")
    print(f"  JWT_PUBLIC_KEY_PATH={public_path}")


if __name__ == "__main__":
    main()

"""Human-enterable device pairing codes."""

import secrets

# 32 symbols: uppercase letters and digits minus O/0 and I/1.
DEVICE_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


def generate_device_code(length: int = 8) -> str:
    """
    Generate a pairing code using the OS CSPRNG.

    Args:
        length: Number of characters

    Returns:
        str: Code drawn uniformly from DEVICE_CODE_ALPHABET
    """
    if length <= 0:
        raise ValueError("Device code length must be positive")
    return "".join(secrets.choice(DEVICE_CODE_ALPHABET) for _ in range(length))

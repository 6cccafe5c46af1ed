"""
Print a fresh VAPID key pair as environment variable assignments.
"""

from __future__ import annotations

import base64

from cryptography.hazmat.primitives import serialization
from py_vapid import Vapid


def _b64(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("utf-8")


def main() -> int:
    vapid = Vapid()
    vapid.generate_keys()

    raw_private_key = vapid.private_key.private_numbers().private_value.to_bytes(
        32, "big"
    )
    raw_public_key = vapid.public_key.public_bytes(
        encoding=serialization.Encoding.X962,
        format=serialization.PublicFormat.UncompressedPoint,
    )

    print(f"VAPID_PRIVATE_KEY={_b64(raw_private_key)}")
    print(f"VAPID_PUBLIC_KEY={_b64(raw_public_key)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

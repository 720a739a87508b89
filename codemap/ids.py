from __future__ import annotations

import hashlib
import secrets
from collections.abc import Callable
from typing import Any

import base58

TOKEN_RANDOM_BYTES = 8
GROUP_HASH_NAME = "sha1"

TokenGenerator = Callable[[], str]


def new_token() -> str:
    raw = secrets.token_bytes(TOKEN_RANDOM_BYTES)
    return base58.b58encode(raw).decode("ascii")


def new_group_hasher() -> Any:
    return hashlib.new(GROUP_HASH_NAME)


def group_content_hash(lines: list[bytes]) -> str:
    h = new_group_hasher()
    for line in lines:
        h.update(line)
    return h.hexdigest()

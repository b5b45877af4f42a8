"""
Apt keyring — collect the GPG keys named by apt repositories into one
binary keyring file.

Keys are fetched over HTTP (armored or binary), split into transferable
public keys, deduplicated by fingerprint and concatenated. Only the
OpenPGP packet framing is parsed; key material is copied verbatim.
"""

from __future__ import annotations

import base64
import binascii
import logging
import urllib.request
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from cryptography.hazmat.primitives import hashes

from hostpolicy.core.errors import HostPolicyError
from hostpolicy.core.persistence.files import write_if_changed

logger = logging.getLogger(__name__)

MAX_KEY_SIZE = 1024 * 1024

_TAG_PUBLIC_KEY = 6
_ARMOR_BEGIN = b"-----BEGIN PGP"

Opener = Callable[..., Any]


class KeyringError(HostPolicyError):
    """A GPG key could not be fetched or parsed."""


@dataclass(frozen=True)
class PublicKey:
    """One transferable public key: the primary key packet plus the
    packets that follow it (user ids, signatures, subkeys)."""

    fingerprint: str
    data: bytes


# ── Packet framing ──────────────────────────────────────────────


def dearmor(data: bytes) -> bytes:
    """Strip ASCII armor and return the binary packets.

    Raises:
        KeyringError: Malformed armor.
    """
    lines = data.decode("ascii", errors="replace").splitlines()
    body: list[str] = []
    in_block = in_headers = False
    for line in lines:
        line = line.strip()
        if line.startswith("-----BEGIN PGP"):
            in_block = in_headers = True
            continue
        if line.startswith("-----END PGP"):
            break
        if not in_block:
            continue
        if in_headers:
            if not line:
                in_headers = False
            elif ":" not in line:
                # no armor headers at all
                in_headers = False
                body.append(line)
            continue
        if line.startswith("=") and len(line) == 5:
            continue  # CRC24
        body.append(line)
    if not body:
        raise KeyringError("armored key has no body")
    try:
        return base64.b64decode("".join(body), validate=True)
    except (binascii.Error, ValueError) as e:
        raise KeyringError(f"invalid armored key: {e}") from e


def iter_packets(data: bytes) -> Iterable[tuple[int, bytes, bytes]]:
    """Yield ``(tag, body, raw)`` for each OpenPGP packet.

    Raises:
        KeyringError: Truncated data or an unsupported length encoding.
    """
    pos = 0
    size = len(data)
    while pos < size:
        start = pos
        header = data[pos]
        if not header & 0x80:
            raise KeyringError(f"invalid packet header at offset {pos}")
        pos += 1
        if header & 0x40:
            tag = header & 0x3F
            if pos >= size:
                raise KeyringError("truncated packet length")
            first = data[pos]
            if first < 192:
                length, pos = first, pos + 1
            elif first < 224:
                if pos + 1 >= size:
                    raise KeyringError("truncated packet length")
                length = ((first - 192) << 8) + data[pos + 1] + 192
                pos += 2
            elif first == 255:
                length = int.from_bytes(data[pos + 1 : pos + 5], "big")
                pos += 5
            else:
                raise KeyringError("partial body lengths are not valid in keys")
        else:
            tag = (header >> 2) & 0x0F
            length_type = header & 0x03
            if length_type == 3:
                length = size - pos
            else:
                width = 1 << length_type
                length = int.from_bytes(data[pos : pos + width], "big")
                pos += width
        end = pos + length
        if end > size:
            raise KeyringError("truncated packet body")
        yield tag, data[pos:end], data[start:end]
        pos = end


def fingerprint(key_body: bytes) -> str:
    """Upper-case hex fingerprint of a public key packet body.

    v4 keys use SHA-1 over ``0x99 || len16 || body``; other versions are
    identified by a SHA-256 of the body, which is enough to deduplicate.
    """
    if key_body[:1] == b"\x04":
        digest = hashes.Hash(hashes.SHA1())
        digest.update(b"\x99" + len(key_body).to_bytes(2, "big") + key_body)
    else:
        digest = hashes.Hash(hashes.SHA256())
        digest.update(key_body)
    return digest.finalize().hex().upper()


def split_public_keys(data: bytes) -> list[PublicKey]:
    """Split a keyring (armored or binary) into transferable public keys.

    Raises:
        KeyringError: Unparsable data, or no public key in it.
    """
    if data.lstrip().startswith(_ARMOR_BEGIN):
        data = dearmor(data)

    keys: list[PublicKey] = []
    current_fp: str | None = None
    current: list[bytes] = []
    for tag, body, raw in iter_packets(data):
        if tag == _TAG_PUBLIC_KEY:
            if current_fp is not None:
                keys.append(PublicKey(fingerprint=current_fp, data=b"".join(current)))
            current_fp = fingerprint(body)
            current = [raw]
        elif current_fp is not None:
            current.append(raw)
    if current_fp is not None:
        keys.append(PublicKey(fingerprint=current_fp, data=b"".join(current)))
    if not keys:
        raise KeyringError("no public key found")
    return keys


# ── Fetch + write ───────────────────────────────────────────────


def fetch_key(url: str, *, opener: Opener = urllib.request.urlopen, timeout: float = 30) -> bytes:
    """GET a key, refusing anything over 1 MiB.

    Raises:
        KeyringError: Network failure or oversized response.
    """
    try:
        with opener(url, timeout=timeout) as resp:
            declared = resp.headers.get("Content-Length") if resp.headers else None
            if declared and declared.isdigit() and int(declared) > MAX_KEY_SIZE:
                raise KeyringError(f"key size of {declared} too large")
            data = resp.read(MAX_KEY_SIZE + 1)
    except KeyringError:
        raise
    except Exception as e:
        raise KeyringError(f"cannot fetch key {url}: {e}") from e
    if len(data) > MAX_KEY_SIZE:
        raise KeyringError(f"key {url} larger than {MAX_KEY_SIZE} bytes")
    return data


def collect_keys(
    urls: Iterable[str], *, opener: Opener = urllib.request.urlopen
) -> list[PublicKey]:
    """Fetch every key URL (sorted, deduplicated). Failures are logged
    and skipped."""
    seen: set[str] = set()
    keys: list[PublicKey] = []
    for url in sorted(set(u for u in urls if u)):
        try:
            found = split_public_keys(fetch_key(url, opener=opener))
        except KeyringError as e:
            logger.error("Error fetching gpg key %r: %s", url, e)
            continue
        for key in found:
            if key.fingerprint not in seen:
                seen.add(key.fingerprint)
                keys.append(key)
    return keys


def sync_keyring(
    urls: Iterable[str], path: str, *, opener: Opener = urllib.request.urlopen
) -> bool:
    """Write the keyring for ``urls`` to ``path`` if it changed.

    Nothing is written when no key could be collected.
    """
    keys = collect_keys(urls, opener=opener)
    if not keys:
        return False
    logger.debug("Keyring %s: %s", path, [k.fingerprint for k in keys])
    return write_if_changed(b"".join(k.data for k in keys), path)

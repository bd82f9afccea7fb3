"""Private key loading for sshtail."""

from __future__ import annotations

import getpass
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

import asyncssh

from .config import SpecData
from .errors import KeyLoadError

logger = logging.getLogger(__name__)

# Type alias for passphrase prompt
PassphrasePrompt = Callable[[str], str]  # (prompt) -> passphrase


@dataclass(frozen=True)
class Credential:
    """A decrypted private key bound to one host."""

    host_tag: str
    key_path: Path
    key: asyncssh.SSHKey


def _needs_passphrase(exc: asyncssh.KeyImportError) -> bool:
    return "passphrase" in str(exc).lower()


def load_private_key(
    key_path: str | Path, prompt: PassphrasePrompt = getpass.getpass
) -> asyncssh.SSHKey:
    """Read a private key, prompting for a passphrase if it is encrypted."""
    key_path = Path(key_path).expanduser()

    try:
        data = key_path.read_bytes()
    except OSError as e:
        raise KeyLoadError(str(key_path), e.strerror or str(e)) from e

    try:
        return asyncssh.import_private_key(data)
    except asyncssh.KeyImportError as e:
        if not _needs_passphrase(e):
            raise KeyLoadError(str(key_path), str(e)) from e

    print(f"Key {key_path} requires a passphrase")
    try:
        passphrase = prompt("Enter passphrase: ")
    except (EOFError, KeyboardInterrupt) as e:
        raise KeyLoadError(str(key_path), "Failed to read passphrase") from e

    try:
        key = asyncssh.import_private_key(data, passphrase)
    except ValueError as e:
        # KeyImportError or KeyEncryptionError, depending on the key format
        raise KeyLoadError(str(key_path), "Failed to decrypt key") from e
    finally:
        del passphrase

    print("Key decrypted")
    return key


def resolve_credentials(
    spec: SpecData,
    default_key: Path | None = None,
    prompt: PassphrasePrompt = getpass.getpass,
) -> dict[str, Credential]:
    """Load one credential per host. Each key file is read (and prompted for) once."""
    loaded: dict[Path, asyncssh.SSHKey] = {}
    credentials = {}

    for endpoint in spec.hosts:
        key_path = spec.key_path_for(endpoint.host_tag, default_key)
        if key_path not in loaded:
            logger.debug("Loading key %s for %s", key_path, endpoint.host_tag)
            try:
                loaded[key_path] = load_private_key(key_path, prompt)
            except KeyLoadError as e:
                raise KeyLoadError(e.path, e.reason, host_tag=endpoint.host_tag) from e
        credentials[endpoint.host_tag] = Credential(
            host_tag=endpoint.host_tag,
            key_path=key_path,
            key=loaded[key_path],
        )

    return credentials

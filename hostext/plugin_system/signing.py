"""Plugin signing keys, detached signatures and per-plugin trust stores.

Keys and signatures travel as ASCII armor: base64 between ``-----BEGIN
PLUGIN PUBLIC KEY-----`` / ``-----BEGIN PLUGIN SIGNATURE-----`` markers, with
``Name: value`` headers. A key is identified by the low 64 bits of the SHA-256
fingerprint of its DER encoded SubjectPublicKeyInfo.

RSA keys sign with PSS/MGF1 over a SHA-256 digest, Ed25519 keys sign the
SHA-256 digest itself, so payloads of any size are hashed as a stream.
"""

from __future__ import annotations

import base64
import binascii
import datetime
import hashlib
import json
import logging
import os
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Callable, Iterable, List, Optional, Tuple, Union

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ed25519, padding, rsa, utils

from hostext.utils.exceptions import SigningError, TrustStoreError, TrustStoreInitError

KEY_LABEL = "PLUGIN PUBLIC KEY"
SIGNATURE_LABEL = "PLUGIN SIGNATURE"
SIGNATURE_SUFFIX = ".asc"

ALGORITHM_RSA = "rsa-pss-sha256"
ALGORITHM_ED25519 = "ed25519"

_CHUNK_SIZE = 8192

PublicKey = Union[rsa.RSAPublicKey, ed25519.Ed25519PublicKey]
PrivateKey = Union[rsa.RSAPrivateKey, ed25519.Ed25519PrivateKey]


@dataclass
class ArmorBlock:
    """One decoded armor block.

    Attributes:
        label: Text between ``BEGIN`` and the closing dashes
        headers: Header pairs in file order (names may repeat)
        data: Decoded body
    """

    label: str
    headers: List[Tuple[str, str]] = field(default_factory=list)
    data: bytes = b""

    def header(self, name: str) -> Optional[str]:
        for key, value in self.headers:
            if key.lower() == name.lower():
                return value
        return None

    def header_values(self, name: str) -> List[str]:
        return [value for key, value in self.headers if key.lower() == name.lower()]


def armor(label: str, data: bytes, headers: Iterable[Tuple[str, str]] = ()) -> str:
    """Encode bytes as an armor block."""
    lines = [f"-----BEGIN {label}-----"]
    for name, value in headers:
        lines.append(f"{name}: {value}")
    lines.append("")
    encoded = base64.b64encode(data).decode("ascii")
    lines.extend(encoded[i:i + 64] for i in range(0, len(encoded), 64))
    lines.append(f"-----END {label}-----")
    return "\n".join(lines) + "\n"


def dearmor(text: str) -> List[ArmorBlock]:
    """Decode every armor block in ``text``; text outside blocks is ignored.

    Raises:
        ValueError: If a block is unterminated or its body is not base64
    """
    blocks: List[ArmorBlock] = []
    current: Optional[ArmorBlock] = None
    in_headers = False
    body: List[str] = []

    for raw in text.splitlines():
        line = raw.strip()
        if current is None:
            if line.startswith("-----BEGIN ") and line.endswith("-----"):
                current = ArmorBlock(label=line[len("-----BEGIN "):-5])
                in_headers = True
                body = []
            continue

        if line == f"-----END {current.label}-----":
            try:
                current.data = base64.b64decode("".join(body), validate=True)
            except (binascii.Error, ValueError) as e:
                raise ValueError(f"Invalid base64 in {current.label} block: {e}") from e
            blocks.append(current)
            current = None
            continue

        if in_headers:
            if not line:
                in_headers = False
                continue
            if ":" in line:
                name, _, value = line.partition(":")
                current.headers.append((name.strip(), value.strip()))
                continue
            in_headers = False
        if line:
            body.append(line)

    if current is not None:
        raise ValueError(f"Unterminated {current.label} block")
    return blocks


def format_key_id(key_id: int) -> str:
    return f"0X{key_id:X}"


def parse_key_id(text: str) -> int:
    """Parse a key id written as ``0X1A2B...`` (prefix optional)."""
    text = text.strip()
    if text[:2].lower() == "0x":
        text = text[2:]
    return int(text, 16)


def _public_der(public_key: PublicKey) -> bytes:
    return public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def _algorithm_of(public_key: PublicKey) -> str:
    if isinstance(public_key, rsa.RSAPublicKey):
        return ALGORITHM_RSA
    if isinstance(public_key, ed25519.Ed25519PublicKey):
        return ALGORITHM_ED25519
    raise UnsupportedAlgorithm(f"Unsupported key type {type(public_key).__name__}")


def digest_stream(stream: BinaryIO) -> bytes:
    """SHA-256 of everything remaining in a binary stream.

    Raises:
        OSError: If the stream cannot be read
    """
    digest = hashlib.sha256()
    while True:
        chunk = stream.read(_CHUNK_SIZE)
        if not chunk:
            break
        digest.update(chunk)
    return digest.digest()


@dataclass(frozen=True)
class TrustedKey:
    """A public signing key together with the user ids it was published under."""

    public_key: PublicKey
    user_ids: Tuple[str, ...] = ()

    @property
    def der(self) -> bytes:
        return _public_der(self.public_key)

    @property
    def fingerprint(self) -> str:
        return hashlib.sha256(self.der).hexdigest().upper()

    @property
    def key_id(self) -> int:
        return int.from_bytes(hashlib.sha256(self.der).digest()[-8:], "big")

    @property
    def algorithm(self) -> str:
        return _algorithm_of(self.public_key)

    def describe(self) -> str:
        """Human readable summary shown before a key is trusted."""
        lines = [
            f"Signature:\t{format_key_id(self.key_id)}",
            f"FingerPrint:\t{self.fingerprint}",
        ]
        for user_id in self.user_ids:
            lines.append(f"Username:\t{user_id}")
        return "\n".join(lines)

    def verify_digest(self, signature: bytes, digest: bytes) -> bool:
        try:
            if isinstance(self.public_key, rsa.RSAPublicKey):
                self.public_key.verify(
                    signature,
                    digest,
                    padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=padding.PSS.MAX_LENGTH),
                    utils.Prehashed(hashes.SHA256()),
                )
            else:
                self.public_key.verify(signature, digest)
        except InvalidSignature:
            return False
        return True

    def to_armor(self) -> str:
        headers = [("Algorithm", self.algorithm)]
        headers.extend(("User-Id", user_id) for user_id in self.user_ids)
        comment = self.user_ids[0] if self.user_ids else "(no user id)"
        return f"# {comment} {format_key_id(self.key_id)}\n" + armor(KEY_LABEL, self.der, headers)

    @classmethod
    def from_block(cls, block: ArmorBlock) -> TrustedKey:
        """Build a key from a decoded armor block.

        Raises:
            ValueError: If the body is not a supported public key
        """
        try:
            public_key = serialization.load_der_public_key(block.data)
        except (ValueError, UnsupportedAlgorithm) as e:
            raise ValueError(f"Undecodable public key: {e}") from e
        if not isinstance(public_key, (rsa.RSAPublicKey, ed25519.Ed25519PublicKey)):
            raise ValueError(f"Unsupported public key type {type(public_key).__name__}")
        return cls(public_key=public_key, user_ids=tuple(block.header_values("User-Id")))


def read_key_ring(text: str) -> List[TrustedKey]:
    """Decode every public key block in an armored key ring.

    Raises:
        ValueError: If the text contains a malformed block
    """
    return [TrustedKey.from_block(block) for block in dearmor(text) if block.label == KEY_LABEL]


def write_key_ring(keys: Iterable[TrustedKey]) -> str:
    return "\n".join(key.to_armor() for key in keys)


class Signature:
    """A detached signature and the key id it claims to be made by.

    Instances are immutable once constructed.
    """

    __slots__ = ("_key_id", "_algorithm", "_data")

    def __init__(self, key_id: int, algorithm: str, data: bytes) -> None:
        object.__setattr__(self, "_key_id", key_id)
        object.__setattr__(self, "_algorithm", algorithm)
        object.__setattr__(self, "_data", bytes(data))

    def __setattr__(self, name: str, value: object) -> None:
        raise AttributeError("Signature is immutable")

    @property
    def key_id(self) -> int:
        return self._key_id

    @property
    def algorithm(self) -> str:
        return self._algorithm

    @property
    def data(self) -> bytes:
        return self._data

    def to_armor(self) -> str:
        return armor(
            SIGNATURE_LABEL,
            self._data,
            [("Key-Id", format_key_id(self._key_id)), ("Algorithm", self._algorithm), ("Hash", "SHA256")],
        )

    @classmethod
    def from_text(cls, text: str) -> Signature:
        """Decode the first signature block in ``text``.

        Raises:
            ValueError: If there is no well formed signature block
        """
        for block in dearmor(text):
            if block.label != SIGNATURE_LABEL:
                continue
            key_id = block.header("Key-Id")
            algorithm = block.header("Algorithm")
            if key_id is None or algorithm is None:
                raise ValueError("Signature block lacks Key-Id or Algorithm header")
            hash_name = block.header("Hash") or "SHA256"
            if hash_name.upper() != "SHA256":
                raise ValueError(f"Unsupported signature hash {hash_name}")
            return cls(parse_key_id(key_id), algorithm, block.data)
        raise ValueError("No signature block found")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Signature):
            return NotImplemented
        return (self._key_id, self._algorithm, self._data) == (other._key_id, other._algorithm, other._data)

    def __hash__(self) -> int:
        return hash((self._key_id, self._algorithm, self._data))

    def __repr__(self) -> str:
        return f"Signature(key_id={format_key_id(self._key_id)}, algorithm={self._algorithm})"

    def __str__(self) -> str:
        return format_key_id(self._key_id)


class TrustStore:
    """Persistent keyring of trusted signing keys for one plugin.

    The ring lives at ``<home>/credentials/<plugin_id>/truststore.asc`` unless
    an explicit store file is supplied. A single backup generation is kept
    next to it and refreshed before every save.
    """

    STORE_NAME = "truststore.asc"

    def __init__(
            self,
            plugin_id: str,
            home: Optional[Union[str, Path]] = None,
            explicit_store: Optional[Union[str, Path]] = None,
            logger: Optional[logging.Logger] = None
    ) -> None:
        """Initialize a trust store.

        Args:
            plugin_id: Plugin the keyring belongs to
            home: Host installation root, used to derive the default location
            explicit_store: Keyring file that overrides the default location
            logger: Logger to use
        """
        if home is None and explicit_store is None:
            raise TrustStoreInitError(
                "Either a host home or an explicit trust store must be supplied",
                plugin_id=plugin_id,
            )
        self.plugin_id = plugin_id
        self._home = Path(home) if home is not None else None
        self._explicit_store = Path(explicit_store) if explicit_store is not None else None
        self._logger = logger or logging.getLogger("trust_store")
        self._keys: List[TrustedKey] = []
        self._initialized = False

        if self._explicit_store is not None:
            self.store_path = self._explicit_store
        else:
            self.store_path = self._home / "credentials" / plugin_id / self.STORE_NAME
        self.backup_path = self.store_path.with_name(self.store_path.name + ".backup")

    @property
    def keys(self) -> List[TrustedKey]:
        return list(self._keys)

    def initialize(self) -> None:
        """Load the keyring, creating an empty one on first use.

        Raises:
            TrustStoreInitError: If the store cannot be created or is corrupt
        """
        if self._initialized:
            return

        if self._explicit_store is not None:
            if not self.store_path.exists():
                raise TrustStoreInitError(
                    f"Trust store {self.store_path} does not exist",
                    plugin_id=self.plugin_id,
                    path=str(self.store_path),
                )
        else:
            try:
                self.store_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise TrustStoreInitError(
                    f"Could not create trust store directory {self.store_path.parent}: {e}",
                    plugin_id=self.plugin_id,
                    path=str(self.store_path.parent),
                ) from e

        if self.store_path.exists():
            try:
                text = self.store_path.read_text(encoding="utf-8")
                self._keys = read_key_ring(text)
            except (OSError, UnicodeDecodeError, ValueError) as e:
                raise TrustStoreInitError(
                    f"Could not load trust store {self.store_path}: {e}",
                    plugin_id=self.plugin_id,
                    path=str(self.store_path),
                ) from e
            self._logger.debug(
                f"Loaded {len(self._keys)} key(s) from {self.store_path}",
                extra={"plugin_id": self.plugin_id, "path": str(self.store_path)},
            )
        else:
            self._logger.info(
                f"Creating empty trust store {self.store_path}",
                extra={"plugin_id": self.plugin_id, "path": str(self.store_path)},
            )
            try:
                self.save_store()
            except TrustStoreError as e:
                raise TrustStoreInitError(e.message, plugin_id=self.plugin_id, path=str(self.store_path)) from e

        self._initialized = True

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            self.initialize()

    def get_key(self, key_id: int) -> Optional[TrustedKey]:
        self._ensure_initialized()
        for key in self._keys:
            if key.key_id == key_id:
                return key
        return None

    def contains(self, signature: Signature) -> bool:
        """Whether a key with the signature's claimed id is trusted.

        Only key presence is checked, not the signature itself.
        """
        return self.get_key(signature.key_id) is not None

    def check_signature(self, stream: BinaryIO, signature: Signature) -> bool:
        """Verify a detached signature over the rest of ``stream``.

        Args:
            stream: Binary stream positioned at the start of the payload
            signature: Signature to check

        Returns:
            True if a trusted key produced the signature; False on mismatch or
            if no trusted key carries the claimed id

        Raises:
            TrustStoreError: If the stream cannot be read
        """
        key = self.get_key(signature.key_id)
        if key is None:
            self._logger.warning(
                f"No trusted key {signature} for plugin {self.plugin_id}",
                extra={"plugin_id": self.plugin_id},
            )
            return False

        if key.algorithm != signature.algorithm:
            self._logger.warning(
                f"Signature algorithm {signature.algorithm} does not match key {signature} ({key.algorithm})",
                extra={"plugin_id": self.plugin_id},
            )
            return False

        try:
            digest = digest_stream(stream)
        except OSError as e:
            raise TrustStoreError(
                f"Could not read signed payload: {e}", plugin_id=self.plugin_id
            ) from e

        if not key.verify_digest(signature.data, digest):
            self._logger.warning(
                f"Signature {signature} did not verify for plugin {self.plugin_id}",
                extra={"plugin_id": self.plugin_id},
            )
            return False
        return True

    def import_key_from_stream(
            self,
            signature: Signature,
            stream: BinaryIO,
            accept: Callable[[str], bool]
    ) -> bool:
        """Offer the key that made ``signature`` from an armored key ring.

        Args:
            signature: Signature whose key id is looked for
            stream: Binary stream holding an armored key ring
            accept: Called with a key description; the key is only added if it
                returns True

        Returns:
            True if a key was added and the store saved

        Raises:
            TrustStoreError: If the key ring cannot be read or decoded, or the
                store cannot be saved
        """
        self._ensure_initialized()
        try:
            text = stream.read().decode("utf-8")
            candidates = read_key_ring(text)
        except (OSError, UnicodeDecodeError, ValueError) as e:
            raise TrustStoreError(
                f"Could not decode supplied key ring: {e}", plugin_id=self.plugin_id
            ) from e

        if self.contains(signature):
            self._logger.debug(f"Key {signature} already trusted", extra={"plugin_id": self.plugin_id})
            return False

        match = next((key for key in candidates if key.key_id == signature.key_id), None)
        if match is None:
            self._logger.warning(
                f"Supplied key ring does not contain key {signature}",
                extra={"plugin_id": self.plugin_id},
            )
            return False

        if not accept(match.describe()):
            self._logger.info(f"Key {signature} not accepted", extra={"plugin_id": self.plugin_id})
            return False

        self._keys.append(match)
        self.save_store()
        self._logger.info(
            f"Imported key {signature} into {self.store_path}",
            extra={"plugin_id": self.plugin_id, "path": str(self.store_path)},
        )
        return True

    def save_store(self) -> None:
        """Persist the ring, backing up the previous file first.

        Raises:
            TrustStoreError: If the backup or the new file cannot be written
        """
        try:
            if self.store_path.exists():
                shutil.copy2(self.store_path, self.backup_path)
            self.store_path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                    mode="w", encoding="utf-8", delete=False, dir=self.store_path.parent, suffix=".tmp"
            ) as tmp:
                tmp.write(f"# Trusted keys for {self.plugin_id}\n")
                tmp.write(write_key_ring(self._keys))
            os.replace(tmp.name, self.store_path)
        except OSError as e:
            raise TrustStoreError(
                f"Could not save trust store {self.store_path}: {e}",
                plugin_id=self.plugin_id,
                path=str(self.store_path),
            ) from e

    @staticmethod
    def signature_of(stream: BinaryIO) -> Signature:
        """Read a detached armored signature.

        Raises:
            TrustStoreError: If the stream cannot be read or decoded
        """
        try:
            return Signature.from_text(stream.read().decode("utf-8"))
        except (OSError, UnicodeDecodeError, ValueError) as e:
            raise TrustStoreError(f"Could not decode signature: {e}") from e


@dataclass
class SigningKey:
    """Private key material used to sign plugin distributions.

    Attributes:
        private_key: The private key
        user_ids: User ids published with the public key
        created_at: When the key was created
    """

    private_key: PrivateKey
    user_ids: Tuple[str, ...]
    created_at: datetime.datetime

    @property
    def trusted_key(self) -> TrustedKey:
        return TrustedKey(public_key=self.private_key.public_key(), user_ids=self.user_ids)


class DistributionSigner:
    """Publisher side tool that signs plugin distributions.

    Attributes:
        key: Signing key in use
    """

    def __init__(self, key: SigningKey) -> None:
        self.key = key

    @staticmethod
    def generate_key(
            user_ids: Iterable[str],
            algorithm: str = ALGORITHM_ED25519,
            key_size: int = 2048
    ) -> SigningKey:
        """Generate a new signing key.

        Args:
            user_ids: User ids published with the key
            algorithm: ``ed25519`` or ``rsa-pss-sha256``
            key_size: RSA modulus size

        Returns:
            Generated signing key

        Raises:
            SigningError: If the algorithm is unknown
        """
        if algorithm == ALGORITHM_ED25519:
            private_key: PrivateKey = ed25519.Ed25519PrivateKey.generate()
        elif algorithm == ALGORITHM_RSA:
            private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
        else:
            raise SigningError(f"Unsupported signing algorithm: {algorithm}")

        return SigningKey(
            private_key=private_key,
            user_ids=tuple(user_ids),
            created_at=datetime.datetime.now(),
        )

    @classmethod
    def load(cls, path: Union[str, Path]) -> DistributionSigner:
        """Load a signer from a key file written by :meth:`save_key`.

        Raises:
            SigningError: If the file is missing or cannot be decoded
        """
        path = Path(path)
        if not path.exists():
            raise SigningError(f"Key file not found: {path}", path=str(path))

        try:
            with open(path, "r", encoding="utf-8") as f:
                key_data = json.load(f)

            private_key = serialization.load_pem_private_key(
                key_data["private_key"].encode("ascii"), password=None
            )
            if not isinstance(private_key, (rsa.RSAPrivateKey, ed25519.Ed25519PrivateKey)):
                raise SigningError(f"Unsupported private key type in {path}", path=str(path))

            return cls(SigningKey(
                private_key=private_key,
                user_ids=tuple(key_data.get("user_ids", [])),
                created_at=datetime.datetime.fromisoformat(key_data["created_at"]),
            ))
        except SigningError:
            raise
        except (OSError, KeyError, ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise SigningError(f"Failed to load signing key: {e}", path=str(path)) from e

    def save_key(self, path: Union[str, Path]) -> None:
        """Save the private key with its user ids.

        Raises:
            SigningError: If the file cannot be written
        """
        path = Path(path)
        key_data = {
            "user_ids": list(self.key.user_ids),
            "created_at": self.key.created_at.isoformat(),
            "fingerprint": self.key.trusted_key.fingerprint,
            "private_key": self.key.private_key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption(),
            ).decode("ascii"),
        }
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                json.dump(key_data, f, indent=2)
        except OSError as e:
            raise SigningError(f"Failed to save signing key: {e}", path=str(path)) from e

    def export_public_keys(self) -> str:
        """Armored key ring suitable for a distribution's ``keys.txt``."""
        return write_key_ring([self.key.trusted_key])

    def sign_stream(self, stream: BinaryIO) -> Signature:
        digest = digest_stream(stream)
        private_key = self.key.private_key
        if isinstance(private_key, rsa.RSAPrivateKey):
            data = private_key.sign(
                digest,
                padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=padding.PSS.MAX_LENGTH),
                utils.Prehashed(hashes.SHA256()),
            )
        else:
            data = private_key.sign(digest)
        trusted = self.key.trusted_key
        return Signature(trusted.key_id, trusted.algorithm, data)

    def sign_file(self, path: Union[str, Path]) -> Path:
        """Write a detached ``<file>.asc`` signature next to ``path``.

        Returns:
            Path of the signature file

        Raises:
            SigningError: If the file cannot be read or the signature written
        """
        path = Path(path)
        signature_path = path.with_name(path.name + SIGNATURE_SUFFIX)
        try:
            with open(path, "rb") as f:
                signature = self.sign_stream(f)
            signature_path.write_text(signature.to_armor(), encoding="utf-8")
        except OSError as e:
            raise SigningError(f"Failed to sign {path}: {e}", path=str(path)) from e
        return signature_path

"""Unit tests for trust keyrings, signatures and the distribution signer."""

from __future__ import annotations

import io
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from hostext.plugin_system.signing import (
    ALGORITHM_ED25519,
    ALGORITHM_RSA,
    DistributionSigner,
    Signature,
    TrustStore,
    armor,
    dearmor,
    format_key_id,
    parse_key_id,
    read_key_ring,
)
from hostext.utils.exceptions import SigningError, TrustStoreError, TrustStoreInitError

PAYLOAD = b"plugin distribution bytes" * 1000


@pytest.fixture
def store(tmp_path: Path) -> TrustStore:
    trust_store = TrustStore("acme-widget", home=tmp_path)
    trust_store.initialize()
    return trust_store


@pytest.fixture
def trusted_store(store: TrustStore, signer: DistributionSigner) -> TrustStore:
    signature = signer.sign_stream(io.BytesIO(PAYLOAD))
    store.import_key_from_stream(signature, io.BytesIO(signer.export_public_keys().encode()), lambda d: True)
    return store


def test_armor_round_trip() -> None:
    """Test that armored blocks decode and surrounding text is ignored."""
    text = "leading text\n" + armor("TEST BLOCK", b"\x00\x01payload", [("Name", "value"), ("Name", "other")])
    text += "trailing text\n"

    blocks = dearmor(text)

    assert len(blocks) == 1
    assert blocks[0].label == "TEST BLOCK"
    assert blocks[0].data == b"\x00\x01payload"
    assert blocks[0].header("name") == "value"
    assert blocks[0].header_values("Name") == ["value", "other"]


def test_dearmor_rejects_unterminated_block() -> None:
    with pytest.raises(ValueError):
        dearmor("-----BEGIN TEST BLOCK-----\n\nAAAA\n")


def test_key_id_formatting() -> None:
    assert format_key_id(0xABCDEF) == "0XABCDEF"
    assert parse_key_id("0XABCDEF") == 0xABCDEF


def test_initialize_creates_empty_store(tmp_path: Path) -> None:
    """Test that a missing default store is created empty."""
    store = TrustStore("acme-widget", home=tmp_path)
    store.initialize()

    assert store.store_path == tmp_path / "credentials" / "acme-widget" / "truststore.asc"
    assert store.store_path.exists()
    assert store.keys == []


def test_initialize_requires_home_or_store() -> None:
    with pytest.raises(TrustStoreInitError):
        TrustStore("acme-widget")


def test_explicit_store_must_exist(tmp_path: Path) -> None:
    store = TrustStore("acme-widget", explicit_store=tmp_path / "missing.asc")
    with pytest.raises(TrustStoreInitError):
        store.initialize()


def test_corrupt_store_fails_to_initialize(tmp_path: Path) -> None:
    path = tmp_path / "credentials" / "acme-widget" / "truststore.asc"
    path.parent.mkdir(parents=True)
    path.write_text("-----BEGIN PLUGIN PUBLIC KEY-----\n\n!!!notbase64\n-----END PLUGIN PUBLIC KEY-----\n")

    with pytest.raises(TrustStoreInitError):
        TrustStore("acme-widget", home=tmp_path).initialize()


def test_import_key_accepted(store: TrustStore, signer: DistributionSigner) -> None:
    """Test importing the key that made a signature."""
    signature = signer.sign_stream(io.BytesIO(PAYLOAD))
    accept = MagicMock(return_value=True)

    assert not store.contains(signature)
    imported = store.import_key_from_stream(signature, io.BytesIO(signer.export_public_keys().encode()), accept)

    assert imported
    assert store.contains(signature)
    description = accept.call_args[0][0]
    assert description.startswith(f"Signature:\t{signature}")
    assert "FingerPrint:\t" in description
    assert "Username:\tAcme Plugins <plugins@acme.example>" in description

    reloaded = TrustStore("acme-widget", home=store.store_path.parents[2])
    reloaded.initialize()
    assert reloaded.contains(signature)


def test_import_key_rejected(store: TrustStore, signer: DistributionSigner) -> None:
    signature = signer.sign_stream(io.BytesIO(PAYLOAD))
    keys = io.BytesIO(signer.export_public_keys().encode())

    assert not store.import_key_from_stream(signature, keys, lambda d: False)
    assert not store.contains(signature)


def test_import_key_not_in_ring(store: TrustStore, signer: DistributionSigner) -> None:
    """Test that a ring without the signing key imports nothing."""
    other = DistributionSigner(DistributionSigner.generate_key(["Someone Else"]))
    signature = signer.sign_stream(io.BytesIO(PAYLOAD))
    accept = MagicMock(return_value=True)

    assert not store.import_key_from_stream(signature, io.BytesIO(other.export_public_keys().encode()), accept)
    accept.assert_not_called()


def test_import_key_already_present(trusted_store: TrustStore, signer: DistributionSigner) -> None:
    signature = signer.sign_stream(io.BytesIO(PAYLOAD))
    keys = io.BytesIO(signer.export_public_keys().encode())

    assert not trusted_store.import_key_from_stream(signature, keys, lambda d: True)
    assert len(trusted_store.keys) == 1


def test_import_key_undecodable_ring(store: TrustStore, signer: DistributionSigner) -> None:
    signature = signer.sign_stream(io.BytesIO(PAYLOAD))
    garbage = io.BytesIO(b"-----BEGIN PLUGIN PUBLIC KEY-----\n\nnot a key\n-----END PLUGIN PUBLIC KEY-----\n")

    with pytest.raises(TrustStoreError):
        store.import_key_from_stream(signature, garbage, lambda d: True)


def test_save_keeps_backup(trusted_store: TrustStore) -> None:
    """Test that saving copies the previous ring to the backup file."""
    before = trusted_store.store_path.read_text(encoding="utf-8")
    trusted_store.save_store()

    assert trusted_store.backup_path.read_text(encoding="utf-8") == before


def test_check_signature(trusted_store: TrustStore, signer: DistributionSigner) -> None:
    signature = signer.sign_stream(io.BytesIO(PAYLOAD))

    assert trusted_store.check_signature(io.BytesIO(PAYLOAD), signature)
    assert not trusted_store.check_signature(io.BytesIO(PAYLOAD + b"tampered"), signature)


def test_check_signature_unknown_key(store: TrustStore, signer: DistributionSigner) -> None:
    signature = signer.sign_stream(io.BytesIO(PAYLOAD))
    assert not store.check_signature(io.BytesIO(PAYLOAD), signature)


def test_check_signature_stream_failure(trusted_store: TrustStore, signer: DistributionSigner) -> None:
    signature = signer.sign_stream(io.BytesIO(PAYLOAD))
    broken = MagicMock()
    broken.read.side_effect = OSError("read failed")

    with pytest.raises(TrustStoreError):
        trusted_store.check_signature(broken, signature)


def test_rsa_signatures(tmp_path: Path) -> None:
    """Test the RSA-PSS signing path end to end."""
    rsa_signer = DistributionSigner(DistributionSigner.generate_key(["RSA Publisher"], algorithm=ALGORITHM_RSA))
    signature = rsa_signer.sign_stream(io.BytesIO(PAYLOAD))
    store = TrustStore("acme-widget", home=tmp_path)
    store.import_key_from_stream(signature, io.BytesIO(rsa_signer.export_public_keys().encode()), lambda d: True)

    assert signature.algorithm == ALGORITHM_RSA
    assert store.check_signature(io.BytesIO(PAYLOAD), signature)
    assert not store.check_signature(io.BytesIO(b"other"), signature)


def test_signature_armor_round_trip(signer: DistributionSigner) -> None:
    signature = signer.sign_stream(io.BytesIO(PAYLOAD))
    decoded = TrustStore.signature_of(io.BytesIO(signature.to_armor().encode()))

    assert decoded == signature
    assert decoded.algorithm == ALGORITHM_ED25519
    assert str(decoded) == format_key_id(signature.key_id)


def test_signature_is_immutable(signer: DistributionSigner) -> None:
    signature = signer.sign_stream(io.BytesIO(PAYLOAD))
    with pytest.raises(AttributeError):
        signature.key_id = 1


def test_signature_of_garbage() -> None:
    with pytest.raises(TrustStoreError):
        TrustStore.signature_of(io.BytesIO(b"not a signature"))


def test_sign_file(tmp_path: Path, signer: DistributionSigner) -> None:
    archive = tmp_path / "acme-widget-2.1.0.tar.gz"
    archive.write_bytes(PAYLOAD)

    signature_path = signer.sign_file(archive)

    assert signature_path == tmp_path / "acme-widget-2.1.0.tar.gz.asc"
    signature = Signature.from_text(signature_path.read_text(encoding="utf-8"))
    assert signature.key_id == signer.key.trusted_key.key_id


def test_key_file_round_trip(tmp_path: Path, signer: DistributionSigner) -> None:
    key_path = tmp_path / "keys" / "acme.key"
    signer.save_key(key_path)

    loaded = DistributionSigner.load(key_path)

    assert loaded.key.user_ids == signer.key.user_ids
    assert loaded.key.trusted_key.fingerprint == signer.key.trusted_key.fingerprint


def test_load_missing_key(tmp_path: Path) -> None:
    with pytest.raises(SigningError):
        DistributionSigner.load(tmp_path / "missing.key")


def test_generate_unknown_algorithm() -> None:
    with pytest.raises(SigningError):
        DistributionSigner.generate_key(["x"], algorithm="dsa")


def test_exported_ring_decodes(signer: DistributionSigner) -> None:
    keys = read_key_ring(signer.export_public_keys())

    assert len(keys) == 1
    assert keys[0].user_ids == ("Acme Plugins <plugins@acme.example>",)
    assert keys[0].key_id == signer.key.trusted_key.key_id

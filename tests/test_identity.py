"""
Courier - Identity key tests.

Tests for RSA identity generation, public key text encoding and
session key wrapping.
"""

import base64

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from courier.constants import PEM_FOOTER, PEM_HEADER, PEM_LINE_LENGTH
from courier.errors import CryptoUnavailable, ErrorCode, MalformedKey, UnwrapFailed
from courier.identity import IdentityKeyManager, _oaep, encode_public_key, import_public_key


def _spki_text(public_key) -> str:
    der = public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return encode_public_key(der)


def test_exported_key_format(alice_identity):
    """Test header, 64-character body lines, footer and no trailing newline."""
    text = alice_identity.export_public_key()
    lines = text.split("\n")

    assert lines[0] == PEM_HEADER
    assert lines[-1] == PEM_FOOTER
    assert not text.endswith("\n")

    body = lines[1:-1]
    assert all(len(line) == PEM_LINE_LENGTH for line in body[:-1])
    assert 0 < len(body[-1]) <= PEM_LINE_LENGTH


def test_exported_key_is_spki(alice_identity):
    """Test the body decodes to a DER SubjectPublicKeyInfo."""
    text = alice_identity.export_public_key()
    der = base64.b64decode("".join(text.split("\n")[1:-1]))
    key = serialization.load_der_public_key(der)

    assert isinstance(key, rsa.RSAPublicKey)
    assert key.key_size == 2048
    assert key.public_numbers().e == 65537


def test_wrap_unwrap_roundtrip(alice_identity, session_key):
    """Test a key wrapped for a peer is recovered by that peer."""
    public = import_public_key(alice_identity.export_public_key())
    wrapped = public.wrap(session_key)

    assert alice_identity.unwrap_session_key(wrapped) == session_key


def test_unwrap_accepts_base64_text(alice_identity, session_key):
    """Test unwrap of the keyExchange content form."""
    public = import_public_key(alice_identity.export_public_key())
    wrapped = base64.b64encode(public.wrap(session_key)).decode()

    assert alice_identity.unwrap_session_key(wrapped) == session_key


def test_wrapping_is_randomized(alice_identity, session_key):
    """Test OAEP gives different ciphertexts for the same key."""
    public = alice_identity.public_key()
    assert public.wrap(session_key) != public.wrap(session_key)


def test_unwrap_with_wrong_identity_fails(alice_identity, bob_identity, session_key):
    """Test that only the addressed identity can unwrap."""
    wrapped = import_public_key(alice_identity.export_public_key()).wrap(session_key)

    with pytest.raises(UnwrapFailed) as exc_info:
        bob_identity.unwrap_session_key(wrapped)

    assert exc_info.value.code == ErrorCode.E104_UNWRAP_FAILED


def test_unwrap_corrupted_fails(alice_identity, session_key):
    """Test corrupted wrapped keys and bad base64 are rejected."""
    wrapped = bytearray(alice_identity.public_key().wrap(session_key))
    wrapped[10] ^= 0xFF

    with pytest.raises(UnwrapFailed):
        alice_identity.unwrap_session_key(bytes(wrapped))

    with pytest.raises(UnwrapFailed):
        alice_identity.unwrap_session_key("%%% not base64 %%%")


def test_unwrap_wrong_length_key_fails(alice_identity):
    """Test a wrapped value that is not a 256-bit key is rejected."""
    public_key = serialization.load_der_public_key(alice_identity.public_key().der())
    wrapped = public_key.encrypt(b"\x00" * 16, _oaep())

    with pytest.raises(UnwrapFailed):
        alice_identity.unwrap_session_key(wrapped)


def test_import_tolerates_whitespace(alice_identity):
    """Test CRLF line endings and surrounding blanks are accepted."""
    text = "\n  " + alice_identity.export_public_key().replace("\n", "\r\n") + "\n\n"
    key = import_public_key(text)
    assert key.der() == alice_identity.public_key().der()


@pytest.mark.parametrize(
    "material",
    [
        "",
        "garbage",
        f"{PEM_HEADER}\n{PEM_FOOTER}",
        f"{PEM_HEADER}\n!!!notbase64!!!\n{PEM_FOOTER}",
        f"{PEM_HEADER}\nQUJDRA==\n{PEM_FOOTER}",
        None,
        12345,
    ],
)
def test_import_malformed_key(material):
    """Test that unusable key text raises MalformedKey."""
    with pytest.raises(MalformedKey) as exc_info:
        import_public_key(material)

    assert exc_info.value.code == ErrorCode.E103_MALFORMED_KEY


def test_import_missing_footer(alice_identity):
    """Test a truncated key is rejected."""
    text = alice_identity.export_public_key()
    with pytest.raises(MalformedKey):
        import_public_key(text[: -len(PEM_FOOTER)])


def test_import_rejects_non_rsa_key():
    """Test an EC key in the right framing is still rejected."""
    ec_key = ec.generate_private_key(ec.SECP256R1()).public_key()

    with pytest.raises(MalformedKey):
        import_public_key(_spki_text(ec_key))


def test_import_rejects_small_rsa_key():
    """Test keys below 2048 bits are rejected."""
    small = rsa.generate_private_key(public_exponent=65537, key_size=1024).public_key()

    with pytest.raises(MalformedKey):
        import_public_key(_spki_text(small))


def test_manager_import_is_static(alice_identity):
    """Test the manager exposes import without needing an identity."""
    key = IdentityKeyManager.import_public_key(alice_identity.export_public_key())
    assert key.key_size == 2048


def test_use_before_generation():
    """Test a manager with no key pair reports the provider unavailable."""
    manager = IdentityKeyManager()

    assert manager.has_identity is False
    with pytest.raises(CryptoUnavailable):
        manager.export_public_key()
    with pytest.raises(CryptoUnavailable):
        manager.unwrap_session_key(b"\x00" * 256)


def test_weak_key_size_refused():
    """Test that identity keys below 2048 bits are refused."""
    with pytest.raises(CryptoUnavailable):
        IdentityKeyManager(key_size=1024)


def test_discard(fresh_identity):
    """Test discard drops the private key."""
    assert fresh_identity.has_identity
    fresh_identity.discard()

    assert not fresh_identity.has_identity
    with pytest.raises(CryptoUnavailable):
        fresh_identity.public_key()


def test_regeneration_changes_key(fresh_identity):
    """Test a new key pair replaces the old one."""
    before = fresh_identity.export_public_key()
    fresh_identity.generate_identity_key_pair()
    assert fresh_identity.export_public_key() != before

import hashlib

from nacl.signing import SigningKey

from moove_money.crypto import LocalAccount, address_from_public_key, verify_signature

SEED = bytes(range(32))


def test_address_is_sha3_of_key_and_scheme():
    key = SigningKey(SEED)
    expected = "0x" + hashlib.sha3_256(bytes(key.verify_key) + b"\x00").hexdigest()
    assert address_from_public_key(bytes(key.verify_key)) == expected
    assert LocalAccount(key).address == expected


def test_private_key_formats_load_the_same_account():
    hex_key = SEED.hex()
    forms = [hex_key, "0x" + hex_key, "ed25519-priv-0x" + hex_key]
    addresses = {LocalAccount.from_private_key(form).address for form in forms}
    assert len(addresses) == 1


def test_sign_and_verify():
    account = LocalAccount.generate()
    signature = account.sign(b"message")
    assert verify_signature(account.public_key_hex, b"message", signature)
    assert not verify_signature(account.public_key_hex, b"tampered", signature)


def test_export_round_trips_through_private_key():
    account = LocalAccount.generate()
    record = account.export()
    assert record.private_key.startswith("ed25519-priv-0x")
    assert LocalAccount.from_private_key(record.private_key).address == account.address == record.address

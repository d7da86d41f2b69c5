"""Tests for deterministic ledger addressing."""

import pytest

from unit09.errors import InvalidKeyError
from unit09.ledger.addressing import (
    KEY_LENGTH,
    Address,
    Namespace,
    derive,
    generate_key,
    is_valid_key,
    key_bytes,
)

KEY = "ab" * KEY_LENGTH


class TestDerive:
    """Tests for derive()."""

    def test_is_deterministic(self):
        assert derive(Namespace.REPO, KEY) == derive(Namespace.REPO, KEY)

    def test_value_is_sha256_hex(self):
        address = derive(Namespace.REPO, KEY)
        assert len(address.value) == 64
        int(address.value, 16)
        assert str(address) == address.value

    def test_namespaces_never_collide_for_same_key(self):
        values = {derive(namespace, KEY).value for namespace in Namespace}
        assert len(values) == len(Namespace)

    def test_different_keys_differ(self):
        assert derive(Namespace.FORK, KEY) != derive(Namespace.FORK, "cd" * KEY_LENGTH)

    def test_bytes_and_hex_keys_are_equivalent(self):
        raw = bytes.fromhex(KEY)
        assert derive(Namespace.MODULE, raw) == derive(Namespace.MODULE, KEY)

    def test_hex_is_case_insensitive(self):
        assert derive(Namespace.MODULE, KEY.upper()) == derive(Namespace.MODULE, KEY)

    def test_singleton_derives_from_namespace_alone(self):
        first = derive(Namespace.METRICS)
        second = derive("metrics")
        assert first == second
        assert first.namespace is Namespace.METRICS
        assert first != derive(Namespace.LIFECYCLE)

    def test_singleton_differs_from_keyed_address(self):
        assert derive(Namespace.LIFECYCLE) != derive(Namespace.LIFECYCLE, KEY)

    def test_address_carries_namespace(self):
        address = derive(Namespace.REPO_METRICS, KEY)
        assert isinstance(address, Address)
        assert address.namespace is Namespace.REPO_METRICS

    def test_unknown_namespace_rejected(self):
        with pytest.raises(ValueError):
            derive("not-a-namespace", KEY)


class TestInvalidKeys:
    """Malformed natural keys raise InvalidKeyError."""

    @pytest.mark.parametrize(
        "key",
        [
            "ab" * 31,
            "ab" * 33,
            "zz" * KEY_LENGTH,
            "",
            b"\x00" * 31,
        ],
    )
    def test_malformed_key(self, key):
        with pytest.raises(InvalidKeyError):
            derive(Namespace.REPO, key)

    def test_unsupported_type(self):
        with pytest.raises(InvalidKeyError) as exc_info:
            key_bytes(12345)
        assert exc_info.value.code == "INVALID_KEY"

    def test_is_valid_key(self):
        assert is_valid_key(KEY)
        assert not is_valid_key("short")


class TestGenerateKey:
    def test_generates_valid_distinct_keys(self):
        first, second = generate_key(), generate_key()
        assert first != second
        assert len(first) == 2 * KEY_LENGTH
        assert is_valid_key(first)

"""Tests for Taproot commitment address derivation and verification."""

import pytest
from bitcoinutils.keys import PublicKey
from bitcoinutils.utils import calculate_tweak, tapleaf_tagged_hash, tweak_taproot_pubkey

from conftest import fixed_randomness
from simple_ctv.errors import ConfigError, DerivationError, VerificationError
from simple_ctv.script import ctv_script, RawScript, ScriptVariant
from simple_ctv.taproot import (
    create_ctv_address,
    derive_unspendable_key,
    LEAF_VERSION_TAPSCRIPT,
    MAX_LEAF_SCRIPT_SIZE,
    parse_control_block,
    tagged_hash,
    verify_commitment,
)

HASH = bytes(range(32))


class TestDeriveUnspendableKey:
    def test_returns_public_key_only(self) -> None:
        key = derive_unspendable_key()
        assert isinstance(key, PublicKey)
        assert len(bytes.fromhex(key.to_x_only_hex())) == 32

    def test_resamples_invalid_scalar(self) -> None:
        draws = iter([b"\x00" * 32, b"\xff" * 32, b"\x07" * 32])

        key = derive_unspendable_key(lambda n: next(draws))

        expected = derive_unspendable_key(fixed_randomness(0x07))
        assert key.to_x_only_hex() == expected.to_x_only_hex()

    def test_fresh_key_each_call(self) -> None:
        assert derive_unspendable_key().to_x_only_hex() != derive_unspendable_key().to_x_only_hex()


class TestCreateCtvAddress:
    def test_regtest_p2tr_address(self) -> None:
        spend_info, address = create_ctv_address(ctv_script(HASH), "regtest")
        assert address.to_string().startswith("bcrt1p")
        assert spend_info.address is address
        assert spend_info.script_pubkey()[:2] == b"\x51\x20"
        assert spend_info.output_key == spend_info.script_pubkey()[2:]

    def test_different_internal_keys_give_different_addresses(self) -> None:
        script = ctv_script(HASH)
        info_a, address_a = create_ctv_address(script, randomness=fixed_randomness(0x01))
        info_b, address_b = create_ctv_address(script, randomness=fixed_randomness(0x02))

        assert address_a.to_string() != address_b.to_string()
        for info in (info_a, info_b):
            control_block = info.control_block(script)
            verify_commitment(control_block.to_bytes(), script.to_bytes(), info.output_key)

    def test_variant_changes_address(self) -> None:
        randomness = fixed_randomness(0x03)
        _, minimal = create_ctv_address(ctv_script(HASH), randomness=randomness)
        _, with_drop = create_ctv_address(ctv_script(HASH, ScriptVariant.WITH_DROP), randomness=randomness)
        assert minimal.to_string() != with_drop.to_string()

    def test_merkle_root_is_leaf_hash(self) -> None:
        script = ctv_script(HASH)
        spend_info, _ = create_ctv_address(script)
        assert spend_info.merkle_root == tapleaf_tagged_hash(script)

    def test_oversize_leaf_rejected(self) -> None:
        with pytest.raises(DerivationError):
            create_ctv_address(RawScript(b"\x00" * (MAX_LEAF_SCRIPT_SIZE + 1)))

    def test_unknown_network_rejected(self) -> None:
        with pytest.raises(ConfigError):
            create_ctv_address(ctv_script(HASH), "testnet4")


class TestControlBlock:
    def test_single_leaf_layout(self) -> None:
        script = ctv_script(HASH)
        spend_info, _ = create_ctv_address(script)
        control_block = spend_info.control_block(script).to_bytes()

        assert len(control_block) == 33
        assert control_block[0] in (LEAF_VERSION_TAPSCRIPT, LEAF_VERSION_TAPSCRIPT | 1)
        assert control_block[1:] == bytes.fromhex(spend_info.internal_key.to_x_only_hex())

    def test_parity_bit_matches_output_key(self) -> None:
        script = ctv_script(HASH)
        spend_info, _ = create_ctv_address(script)
        _, parity, _, path = parse_control_block(spend_info.control_block(script).to_bytes())
        assert parity == int(spend_info.is_odd)
        assert path == []

    def test_mismatched_leaf_raises(self) -> None:
        spend_info, _ = create_ctv_address(ctv_script(HASH))
        with pytest.raises(DerivationError):
            spend_info.control_block(ctv_script(HASH, ScriptVariant.WITH_DROP))
        with pytest.raises(DerivationError):
            spend_info.control_block(ctv_script(b"\x01" * 32))


class TestVerifyCommitment:
    def test_wrong_output_key(self) -> None:
        script = ctv_script(HASH)
        spend_info, _ = create_ctv_address(script, randomness=fixed_randomness(0x01))
        other, _ = create_ctv_address(script, randomness=fixed_randomness(0x02))

        with pytest.raises(VerificationError):
            verify_commitment(spend_info.control_block(script).to_bytes(), script.to_bytes(), other.output_key)

    def test_wrong_script(self) -> None:
        script = ctv_script(HASH)
        spend_info, _ = create_ctv_address(script)
        with pytest.raises(VerificationError):
            verify_commitment(
                spend_info.control_block(script).to_bytes(),
                ctv_script(b"\x01" * 32).to_bytes(),
                spend_info.output_key,
            )

    def test_flipped_parity(self) -> None:
        script = ctv_script(HASH)
        spend_info, _ = create_ctv_address(script)
        control_block = bytearray(spend_info.control_block(script).to_bytes())
        control_block[0] ^= 1
        with pytest.raises(VerificationError):
            verify_commitment(bytes(control_block), script.to_bytes(), spend_info.output_key)

    @pytest.mark.parametrize("size", [0, 32, 34, 33 + 31])
    def test_malformed_control_block(self, size) -> None:
        with pytest.raises(VerificationError):
            parse_control_block(b"\xc0" * size)


def test_tagged_hash_domain_separation() -> None:
    assert tagged_hash("TapLeaf", b"x") != tagged_hash("TapBranch", b"x")
    assert len(tagged_hash("TapTweak", b"")) == 32


class TestLibraryAgreement:
    @pytest.mark.parametrize("seed", [0x01, 0x02, 0x5A, 0xC3])
    def test_output_key_matches_library_tweak(self, seed) -> None:
        script = ctv_script(HASH)
        spend_info, _ = create_ctv_address(script, randomness=fixed_randomness(seed))

        tweak = calculate_tweak(spend_info.internal_key, [[script]])
        tweaked, is_odd = tweak_taproot_pubkey(spend_info.internal_key.to_bytes(), tweak)

        assert tweaked[:32] == spend_info.output_key
        assert is_odd == spend_info.is_odd
        verify_commitment(spend_info.control_block(script).to_bytes(), script.to_bytes(), tweaked[:32])

    def test_signet_address(self) -> None:
        _, address = create_ctv_address(ctv_script(HASH), "signet")
        assert address.to_string().startswith("tb1p")


class TestInternalKeyValidation:
    def test_not_a_field_element(self) -> None:
        with pytest.raises(VerificationError, match="field element"):
            verify_commitment(b"\xc0" + b"\xff" * 32, ctv_script(HASH).to_bytes(), b"\x00" * 32)

    def test_not_on_curve(self) -> None:
        # x = 0 has no point on secp256k1 (7 is not a square mod p)
        with pytest.raises(VerificationError, match="not on the curve"):
            verify_commitment(b"\xc0" + b"\x00" * 32, ctv_script(HASH).to_bytes(), b"\x00" * 32)

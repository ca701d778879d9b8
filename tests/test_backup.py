"""
Tests for encrypted extended-key backups.
"""

import json

import pytest
from pydantic import ValidationError

from walletcore.backup import BackupRecord, decrypt_backup, encrypt_backup
from walletcore.bip32 import master_from_seed
from walletcore.errors import EncodingError
from walletcore.models import Network

# keep the KDF cheap in tests
ITERATIONS = 10


class TestBackupRoundtrip:
    def test_roundtrip(self, vector1_master):
        record = encrypt_backup(vector1_master, "correct horse", iterations=ITERATIONS)
        restored = decrypt_backup(record, "correct horse")
        assert restored.to_string() == vector1_master.to_string()

    def test_json_roundtrip(self, vector1_master):
        record = encrypt_backup(vector1_master, "pw", iterations=ITERATIONS)
        text = record.to_json()
        data = json.loads(text)
        assert data["kdf"]["algorithm"] == "pbkdf2-hmac-sha512"
        assert data["kdf"]["iterations"] == ITERATIONS
        assert len(bytes.fromhex(data["authentication_tag"])) == 16
        assert decrypt_backup(text, "pw").fingerprint == vector1_master.fingerprint

    def test_plaintext_not_in_record(self, vector1_master):
        record = encrypt_backup(vector1_master, "pw", iterations=ITERATIONS)
        assert vector1_master.chain_code.hex() not in record.to_json()

    def test_fresh_salt_and_nonce(self, vector1_master):
        a = encrypt_backup(vector1_master, "pw", iterations=ITERATIONS)
        b = encrypt_backup(vector1_master, "pw", iterations=ITERATIONS)
        assert a.kdf.salt != b.kdf.salt
        assert a.ciphertext != b.ciphertext

    def test_network_preserved(self):
        master = master_from_seed(bytes(range(32)), network=Network.TESTNET)
        record = encrypt_backup(master, "pw", iterations=ITERATIONS)
        assert record.network == Network.TESTNET
        assert decrypt_backup(record, "pw").to_string().startswith("tprv")


class TestBackupFailures:
    def test_wrong_password(self, vector1_master):
        record = encrypt_backup(vector1_master, "right", iterations=ITERATIONS)
        with pytest.raises(EncodingError, match="authentication"):
            decrypt_backup(record, "wrong")

    def test_tampered_ciphertext(self, vector1_master):
        record = encrypt_backup(vector1_master, "pw", iterations=ITERATIONS)
        flipped = format(int(record.ciphertext[:2], 16) ^ 0x01, "02x")
        tampered = record.model_copy(update={"ciphertext": flipped + record.ciphertext[2:]})
        with pytest.raises(EncodingError):
            decrypt_backup(tampered, "pw")

    def test_tampered_tag(self, vector1_master):
        record = encrypt_backup(vector1_master, "pw", iterations=ITERATIONS)
        tampered = record.model_copy(update={"authentication_tag": "00" * 16})
        with pytest.raises(EncodingError):
            decrypt_backup(tampered, "pw")

    def test_public_key_rejected(self, vector1_master):
        with pytest.raises(EncodingError):
            encrypt_backup(vector1_master.neuter(), "pw", iterations=ITERATIONS)

    def test_empty_password_rejected(self, vector1_master):
        with pytest.raises(ValueError):
            encrypt_backup(vector1_master, "", iterations=ITERATIONS)


class TestBackupRecordValidation:
    def _valid(self, vector1_master) -> dict:
        return json.loads(encrypt_backup(vector1_master, "pw", iterations=ITERATIONS).to_json())

    def test_bad_nonce_length(self, vector1_master):
        data = self._valid(vector1_master)
        data["nonce"] = "00" * 12
        with pytest.raises(ValidationError):
            BackupRecord.model_validate(data)

    def test_unknown_version(self, vector1_master):
        data = self._valid(vector1_master)
        data["version"] = 2
        with pytest.raises(ValidationError):
            BackupRecord.model_validate(data)

    def test_unknown_kdf(self, vector1_master):
        data = self._valid(vector1_master)
        data["kdf"]["algorithm"] = "scrypt"
        with pytest.raises(ValidationError):
            BackupRecord.model_validate(data)

    def test_non_hex(self, vector1_master):
        data = self._valid(vector1_master)
        data["ciphertext"] = "zz"
        with pytest.raises(ValidationError):
            BackupRecord.model_validate(data)

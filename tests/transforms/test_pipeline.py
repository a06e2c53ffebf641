"""Compression and encryption pipeline."""

import gzip
import logging

import pytest

from s3_objstore.errors import (
    ConfigurationError,
    DecompressionError,
    DecryptionError,
    TransformError,
)
from s3_objstore.transforms import NONCE_SIZE, TransformPipeline

PAYLOAD = b'{"event": "page_view", "path": "/index.html"}\n' * 40


@pytest.mark.transforms
class TestApply:

    def test_no_transforms(self, pipeline):
        payload = pipeline.apply(PAYLOAD, content_type="application/json")
        assert payload.body == PAYLOAD
        assert payload.applied_transforms == ()
        assert payload.metadata == {}
        assert payload.is_transformed is False

    def test_gzip(self, pipeline):
        payload = pipeline.apply(PAYLOAD, compression="gzip", content_type="application/json")
        assert gzip.decompress(payload.body) == PAYLOAD
        assert len(payload.body) < len(PAYLOAD)
        assert payload.applied_transforms == ("gzip",)
        assert payload.metadata == {
            "compression": "gzip",
            "transforms": "gzip",
            "original-content-type": "application/json",
        }

    def test_gzip_is_deterministic(self, pipeline):
        assert pipeline.apply(PAYLOAD, compression="gzip").body == pipeline.apply(
            PAYLOAD, compression="gzip"
        ).body

    def test_zstd_degrades_to_gzip(self, pipeline, caplog):
        with caplog.at_level(logging.WARNING, logger="s3_objstore.transforms"):
            payload = pipeline.apply(PAYLOAD, compression="zstd")

        assert gzip.decompress(payload.body) == PAYLOAD
        assert payload.applied_transforms == ("gzip",)
        assert payload.metadata["compression"] == "gzip"
        assert payload.metadata["compression-requested"] == "zstd"
        assert "zstd" in caplog.text

    def test_encrypt(self, pipeline):
        payload = pipeline.apply(PAYLOAD, encrypt=True)
        assert PAYLOAD not in payload.body
        assert len(payload.body) == NONCE_SIZE + len(PAYLOAD) + 16
        assert payload.metadata["encryption"] == "aes256"

    def test_encryption_uses_fresh_nonce(self, pipeline):
        first = pipeline.apply(PAYLOAD, encrypt=True).body
        second = pipeline.apply(PAYLOAD, encrypt=True).body
        assert first[:NONCE_SIZE] != second[:NONCE_SIZE]

    def test_compress_before_encrypt(self, pipeline):
        payload = pipeline.apply(PAYLOAD, compression="gzip", encrypt=True)
        assert payload.applied_transforms == ("gzip", "aes256")
        assert payload.metadata["transforms"] == "gzip,aes256"
        assert gzip.decompress(pipeline.decrypt(payload.body)) == PAYLOAD

    @pytest.mark.edge_case
    def test_unknown_compression(self, pipeline):
        with pytest.raises(ValueError):
            pipeline.apply(PAYLOAD, compression="brotli")

    @pytest.mark.edge_case
    def test_encrypt_without_secret(self):
        with pytest.raises(ConfigurationError):
            TransformPipeline().apply(PAYLOAD, encrypt=True)


@pytest.mark.transforms
class TestInvert:

    @pytest.mark.parametrize(
        "compression,encrypt",
        [(None, False), ("gzip", False), ("zstd", False), (None, True), ("gzip", True), ("zstd", True)],
    )
    def test_round_trip(self, pipeline, compression, encrypt):
        payload = pipeline.apply(PAYLOAD, compression=compression, encrypt=encrypt)
        assert pipeline.invert(payload.body, payload.metadata) == PAYLOAD

    @pytest.mark.parametrize("body", [b"", b"\x00", bytes(range(256))])
    def test_round_trip_small_bodies(self, pipeline, body):
        payload = pipeline.apply(body, compression="gzip", encrypt=True)
        assert pipeline.invert(payload.body, payload.metadata) == body

    def test_tags_without_order_fall_back_to_reverse(self, pipeline):
        payload = pipeline.apply(PAYLOAD, compression="gzip", encrypt=True)
        tags = {"compression": "gzip", "encryption": "aes256"}
        assert pipeline.invert(payload.body, tags) == PAYLOAD

    def test_recorded_transforms(self):
        assert TransformPipeline.recorded_transforms({"transforms": "gzip, aes256"}) == ("gzip", "aes256")
        assert TransformPipeline.recorded_transforms({"encryption": "aes256"}) == ("aes256",)
        assert TransformPipeline.recorded_transforms({}) == ()

    def test_other_secret_cannot_decrypt(self, pipeline):
        payload = pipeline.apply(PAYLOAD, encrypt=True)
        with pytest.raises(DecryptionError):
            TransformPipeline(encryption_secret="another").invert(payload.body, payload.metadata)

    @pytest.mark.edge_case
    def test_tampered_ciphertext(self, pipeline):
        body = bytearray(pipeline.apply(PAYLOAD, encrypt=True).body)
        body[-1] ^= 0x01
        with pytest.raises(DecryptionError):
            pipeline.decrypt(bytes(body))

    @pytest.mark.edge_case
    def test_truncated_ciphertext(self, pipeline):
        with pytest.raises(DecryptionError):
            pipeline.decrypt(b"short")

    @pytest.mark.edge_case
    def test_decrypt_without_secret(self, pipeline):
        payload = pipeline.apply(PAYLOAD, encrypt=True)
        with pytest.raises(ConfigurationError):
            TransformPipeline().invert(payload.body, payload.metadata)

    @pytest.mark.edge_case
    @pytest.mark.parametrize("body", [b"plain text", gzip.compress(PAYLOAD)[:20]])
    def test_corrupt_gzip(self, pipeline, body):
        with pytest.raises(DecompressionError):
            pipeline.invert(body, {"compression": "gzip"})

    def test_errors_share_base(self):
        assert issubclass(DecompressionError, TransformError)
        assert issubclass(DecryptionError, TransformError)

    @pytest.mark.edge_case
    def test_unknown_recorded_transform(self, pipeline):
        with pytest.raises(TransformError):
            pipeline.invert(PAYLOAD, {"transforms": "rot13"})

"""Testes da conversao float32 <-> PCM 16-bit."""

from __future__ import annotations

import numpy as np
import pytest

from escuta.audio.pcm import BYTES_PER_SAMPLE, float_to_pcm16, pcm16_to_float


def _decode(raw: bytes) -> list[int]:
    return np.frombuffer(raw, dtype="<i2").tolist()


class TestFloatToPcm16:
    def test_extremes_use_asymmetric_scale(self) -> None:
        raw = float_to_pcm16(np.array([-1.0, 0.0, 1.0], dtype=np.float32))
        assert _decode(raw) == [-32768, 0, 32767]

    def test_out_of_range_values_are_clamped(self) -> None:
        raw = float_to_pcm16(np.array([2.5, -3.0], dtype=np.float32))
        assert _decode(raw) == [32767, -32768]

    def test_half_amplitude(self) -> None:
        raw = float_to_pcm16(np.array([0.5, -0.5], dtype=np.float32))
        assert _decode(raw) == [16383, -16384]

    def test_two_bytes_per_sample(self, sine_block: np.ndarray) -> None:
        raw = float_to_pcm16(sine_block)
        assert len(raw) == sine_block.shape[0] * BYTES_PER_SAMPLE

    def test_little_endian_byte_order(self) -> None:
        raw = float_to_pcm16(np.array([1.0], dtype=np.float32))
        # 32767 = 0x7FFF -> bytes FF 7F
        assert raw == b"\xff\x7f"

    def test_multichannel_uses_first_channel(self) -> None:
        stereo = np.array([[1.0, -1.0], [0.0, 1.0]], dtype=np.float32)
        assert _decode(float_to_pcm16(stereo)) == [32767, 0]

    def test_empty_input(self) -> None:
        assert float_to_pcm16(np.array([], dtype=np.float32)) == b""


class TestPcm16ToFloat:
    def test_roundtrip_is_close(self, sine_block: np.ndarray) -> None:
        restored = pcm16_to_float(float_to_pcm16(sine_block))
        np.testing.assert_allclose(restored, sine_block[:, 0], atol=1e-4)

    def test_odd_length_raises(self) -> None:
        with pytest.raises(ValueError, match="numero par"):
            pcm16_to_float(b"\x00\x01\x02")

    def test_output_range(self) -> None:
        raw = np.array([-32768, 32767], dtype="<i2").tobytes()
        assert pcm16_to_float(raw).tolist() == [-1.0, 1.0]

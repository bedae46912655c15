import os
import struct
import sys
import types
import unittest

import numpy as np


SCRIPTS_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "scripts"))
if SCRIPTS_DIR not in sys.path:
    sys.path.insert(0, SCRIPTS_DIR)

from batchtts.codec import (  # noqa: E402
    WAV_HEADER_BYTES,
    AudioCodec,
    as_int16,
    concat,
    demux,
    downmix_to_mono,
    float_to_int16,
    iter_frames,
    mux,
)
from batchtts.errors import CodecError, EncodingError  # noqa: E402
from batchtts.logging_utils import Logger  # noqa: E402


def _pcm(values):  # noqa: ANN001
    return np.array(values, dtype=np.int16)


def _artifact(values, sample_rate=24000, channels=1):  # noqa: ANN001
    return types.SimpleNamespace(samples=_pcm(values), sample_rate=sample_rate, channels=channels)


class _RecordingBackend:
    name = "recording"

    def __init__(self, payload=b"ID3fake", exc=None):  # noqa: ANN001
        self.payload = payload
        self.exc = exc
        self.calls = []

    def check_dependencies(self) -> None:
        return None

    def encode_mp3(self, samples, *, sample_rate, bitrate_kbps, target_sample_rate, workspace=None):  # noqa: ANN001
        self.calls.append(
            {
                "samples": np.array(samples),
                "sample_rate": sample_rate,
                "bitrate_kbps": bitrate_kbps,
                "target_sample_rate": target_sample_rate,
            }
        )
        if self.exc is not None:
            raise self.exc
        return self.payload


class PcmHelperTests(unittest.TestCase):
    def test_mux_writes_canonical_header(self) -> None:
        data = mux(_pcm([0, 1, -1, 32767]), 24000, 1)
        self.assertEqual(len(data), WAV_HEADER_BYTES + 8)
        fields = struct.unpack("<4sI4s4sIHHIIHH4sI", data[:WAV_HEADER_BYTES])
        self.assertEqual(
            fields,
            (b"RIFF", 44, b"WAVE", b"fmt ", 16, 1, 1, 24000, 48000, 2, 16, b"data", 8),
        )
        self.assertEqual(struct.unpack("<4h", data[WAV_HEADER_BYTES:]), (0, 1, -1, 32767))

    def test_mux_rejects_invalid_layout(self) -> None:
        with self.assertRaises(CodecError):
            mux(_pcm([0]), 0, 1)
        with self.assertRaises(CodecError):
            mux(_pcm([0]), 24000, 0)

    def test_demux_reads_back_stereo_container(self) -> None:
        stream = demux(mux(_pcm([1, 2, 3, 4]), 22050, 2))
        self.assertEqual(stream.sample_rate, 22050)
        self.assertEqual(stream.channels, 2)
        self.assertEqual(stream.frame_count, 2)
        np.testing.assert_array_equal(stream.samples, _pcm([1, 2, 3, 4]))

    def test_demux_rejects_non_wav_and_non_pcm(self) -> None:
        with self.assertRaises(CodecError):
            demux(b"ID3\x04 not a wav")
        data = bytearray(mux(_pcm([1, 2]), 24000, 1))
        struct.pack_into("<H", data, 20, 3)
        with self.assertRaises(CodecError):
            demux(bytes(data))

    def test_float_to_int16_clamps_and_scales(self) -> None:
        out = float_to_int16([2.0, -2.0, 0.5, float("nan"), 0.0])
        np.testing.assert_array_equal(out, _pcm([32767, -32767, 16383, 0, 0]))

    def test_as_int16_refuses_float_input(self) -> None:
        with self.assertRaises(CodecError):
            as_int16(np.array([0.1, 0.2], dtype=np.float32))

    def test_downmix_averages_channels(self) -> None:
        np.testing.assert_array_equal(downmix_to_mono(_pcm([100, 200, -100, -300]), 2), _pcm([150, -200]))
        np.testing.assert_array_equal(downmix_to_mono(_pcm([5, 6]), 1), _pcm([5, 6]))

    def test_iter_frames_yields_fixed_frames_with_short_tail(self) -> None:
        sizes = [len(frame) for frame in iter_frames(np.zeros(2500, dtype=np.int16))]
        self.assertEqual(sizes, [1152, 1152, 196])

    def test_concat_preserves_order(self) -> None:
        stream = concat([_artifact([1, 2]), _artifact([3]), _artifact([4, 5])])
        np.testing.assert_array_equal(stream.samples, _pcm([1, 2, 3, 4, 5]))
        self.assertEqual((stream.sample_rate, stream.channels), (24000, 1))

    def test_concat_downmixes_mixed_layouts(self) -> None:
        stream = concat([_artifact([10, 20]), _artifact([100, 200], channels=2)])
        self.assertEqual(stream.channels, 1)
        np.testing.assert_array_equal(stream.samples, _pcm([10, 20, 150]))

    def test_concat_rejects_empty_and_mixed_rates(self) -> None:
        with self.assertRaises(ValueError):
            concat([])
        with self.assertRaises(ValueError):
            concat([_artifact([1], sample_rate=24000), _artifact([2], sample_rate=22050)])


class AudioCodecTests(unittest.TestCase):
    def setUp(self) -> None:
        self.logger = Logger.quiet()

    def test_wav_target_is_plain_mux(self) -> None:
        codec = AudioCodec(backend=_RecordingBackend(), logger=self.logger)
        samples = _pcm([1, 2, 3, 4])
        self.assertEqual(codec.encode(samples, 24000, 2, "wav", 128), mux(samples, 24000, 2))

    def test_mp3_target_downmixes_and_uses_configured_rate(self) -> None:
        backend = _RecordingBackend()
        codec = AudioCodec(backend=backend, logger=self.logger, mp3_sample_rate=24000)
        samples = _pcm([100, 200, -100, -300])
        data = codec.encode(samples, 48000, 2, "MP3", 64)
        self.assertEqual(data, b"ID3fake")
        call = backend.calls[0]
        np.testing.assert_array_equal(call["samples"], _pcm([150, -200]))
        self.assertEqual(call["sample_rate"], 48000)
        self.assertEqual(call["bitrate_kbps"], 64)
        self.assertEqual(call["target_sample_rate"], 24000)
        np.testing.assert_array_equal(samples, _pcm([100, 200, -100, -300]))

    def test_backend_faults_become_encoding_errors(self) -> None:
        codec = AudioCodec(backend=_RecordingBackend(exc=RuntimeError("lame crashed")), logger=self.logger)
        with self.assertRaises(EncodingError):
            codec.encode(_pcm([1, 2]), 24000, 1, "mp3", 128)
        empty = AudioCodec(backend=_RecordingBackend(payload=b""), logger=self.logger)
        with self.assertRaises(EncodingError):
            empty.encode(_pcm([1, 2]), 24000, 1, "mp3", 128)

    def test_unknown_format_is_codec_error(self) -> None:
        codec = AudioCodec(backend=_RecordingBackend(), logger=self.logger)
        with self.assertRaises(CodecError):
            codec.encode(_pcm([1]), 24000, 1, "ogg", 128)


if __name__ == "__main__":
    unittest.main()

import os
import sys
import tempfile
import unittest
from unittest import mock

import numpy as np


SCRIPTS_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "scripts"))
if SCRIPTS_DIR not in sys.path:
    sys.path.insert(0, SCRIPTS_DIR)

from pydub import AudioSegment  # noqa: E402

from batchtts.codec_backends import (  # noqa: E402
    FfmpegCodecBackend,
    PydubCodecBackend,
    create_codec_backend,
    ffmpeg_encode_command,
)
from batchtts.config import CodecConfig  # noqa: E402
from batchtts.errors import EncodingError  # noqa: E402
from batchtts.logging_utils import Logger  # noqa: E402
from batchtts.temp_files import TempWorkspace  # noqa: E402


def _fake_ffmpeg(writes, *, returncode=0, payload=b"ID3encoded"):  # noqa: ANN001
    def popen(command, **kwargs):  # noqa: ANN001
        if returncode == 0:
            with open(command[-1], "wb") as f:
                f.write(payload)
        proc = mock.MagicMock()
        proc.stdin.write.side_effect = lambda chunk: writes.append(len(chunk))
        proc.wait.return_value = returncode
        return proc

    return popen


class FfmpegCommandTests(unittest.TestCase):
    def test_command_streams_pcm_into_libmp3lame(self) -> None:
        command = ffmpeg_encode_command(
            out_path="/tmp/out.mp3",
            sample_rate=22050,
            bitrate_kbps=64,
            target_sample_rate=24000,
        )
        self.assertEqual(command[0], "ffmpeg")
        self.assertEqual(command[-1], "/tmp/out.mp3")
        self.assertIn("pipe:0", command)
        self.assertEqual(command[command.index("-f") + 1], "s16le")
        self.assertEqual(command[command.index("-acodec") + 1], "libmp3lame")
        self.assertEqual(command[command.index("-b:a") + 1], "64k")
        self.assertEqual(command[-5:-1], ["-ar", "24000", "-ac", "1"])


class FfmpegBackendTests(unittest.TestCase):
    def setUp(self) -> None:
        self.logger = Logger.quiet()

    def test_streams_frames_and_returns_encoded_bytes(self) -> None:
        writes = []
        backend = FfmpegCodecBackend(logger=self.logger)
        with mock.patch("batchtts.codec_backends.subprocess.Popen", side_effect=_fake_ffmpeg(writes)):
            data = backend.encode_mp3(
                np.zeros(2500, dtype=np.int16),
                sample_rate=24000,
                bitrate_kbps=128,
                target_sample_rate=24000,
            )
        self.assertEqual(data, b"ID3encoded")
        self.assertEqual(writes, [1152 * 2, 1152 * 2, 196 * 2])

    def test_nonzero_exit_raises_encoding_error(self) -> None:
        backend = FfmpegCodecBackend(logger=self.logger)
        with mock.patch("batchtts.codec_backends.subprocess.Popen", side_effect=_fake_ffmpeg([], returncode=1)):
            with self.assertRaises(EncodingError):
                backend.encode_mp3(
                    np.zeros(10, dtype=np.int16),
                    sample_rate=24000,
                    bitrate_kbps=128,
                    target_sample_rate=24000,
                )

    def test_missing_binary_raises_encoding_error(self) -> None:
        backend = FfmpegCodecBackend(logger=self.logger)
        with mock.patch("batchtts.codec_backends.subprocess.Popen", side_effect=FileNotFoundError("ffmpeg")):
            with self.assertRaises(EncodingError):
                backend.encode_mp3(
                    np.zeros(10, dtype=np.int16),
                    sample_rate=24000,
                    bitrate_kbps=128,
                    target_sample_rate=24000,
                )

    def test_workspace_output_file_is_released(self) -> None:
        backend = FfmpegCodecBackend(logger=self.logger)
        with tempfile.TemporaryDirectory() as tmp:
            with TempWorkspace(base_dir=tmp, logger=self.logger) as workspace:
                with mock.patch("batchtts.codec_backends.subprocess.Popen", side_effect=_fake_ffmpeg([])):
                    backend.encode_mp3(
                        np.zeros(10, dtype=np.int16),
                        sample_rate=24000,
                        bitrate_kbps=128,
                        target_sample_rate=24000,
                        workspace=workspace,
                    )
                self.assertEqual(workspace.handles, [])
                self.assertEqual(os.listdir(tmp), [])

    def test_check_dependencies_requires_binary(self) -> None:
        backend = FfmpegCodecBackend(logger=self.logger)
        with mock.patch("batchtts.codec_backends.shutil.which", return_value=None):
            with self.assertRaises(RuntimeError):
                backend.check_dependencies()


class PydubBackendTests(unittest.TestCase):
    def test_exports_mp3_with_requested_bitrate(self) -> None:
        captured = {}

        def fake_export(out_f, format=None, bitrate=None, **kwargs):  # noqa: ANN001, A002
            captured["format"] = format
            captured["bitrate"] = bitrate
            out_f.write(b"ID3pydub")
            return out_f

        backend = PydubCodecBackend(logger=Logger.quiet())
        with mock.patch.object(AudioSegment, "export", side_effect=fake_export):
            data = backend.encode_mp3(
                np.arange(100, dtype=np.int16),
                sample_rate=24000,
                bitrate_kbps=64,
                target_sample_rate=24000,
            )
        self.assertEqual(data, b"ID3pydub")
        self.assertEqual(captured, {"format": "mp3", "bitrate": "64k"})


class CodecBackendFactoryTests(unittest.TestCase):
    def test_selects_backend_by_name(self) -> None:
        logger = Logger.quiet()
        base = CodecConfig(backend="ffmpeg", mp3_bitrate_kbps=128, mp3_sample_rate=24000, ffmpeg_loglevel="error")
        ffmpeg = create_codec_backend(config=base, logger=logger)
        self.assertIsInstance(ffmpeg, FfmpegCodecBackend)
        self.assertEqual(ffmpeg.loglevel, "error")
        pydub_cfg = CodecConfig(backend="pydub", mp3_bitrate_kbps=128, mp3_sample_rate=24000, ffmpeg_loglevel="error")
        self.assertIsInstance(create_codec_backend(config=pydub_cfg, logger=logger), PydubCodecBackend)
        bad_cfg = CodecConfig(backend="lame", mp3_bitrate_kbps=128, mp3_sample_rate=24000, ffmpeg_loglevel="error")
        with self.assertRaises(RuntimeError):
            create_codec_backend(config=bad_cfg, logger=logger)


if __name__ == "__main__":
    unittest.main()

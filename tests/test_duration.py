import pytest

from modules.audio.duration import probe_duration_seconds
from tests.conftest import make_wav_bytes


def test_wav_duration():
    assert probe_duration_seconds(make_wav_bytes(1.0)) == pytest.approx(1.0, abs=0.01)


def test_longer_clip():
    assert probe_duration_seconds(make_wav_bytes(2.5, sample_rate=8000)) == pytest.approx(2.5, abs=0.01)


def test_empty_audio():
    assert probe_duration_seconds(b"") == 0.0

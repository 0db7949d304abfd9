import io
import threading
import wave
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from apps.server.main import create_app
from apps.server.pipeline import VoicePipeline
from modules.core.config import load_config
from modules.core.interfaces import AnswerProvider, STTProvider, TTSProvider
from modules.core.ratelimit import RateLimitedCaller
from modules.core.schemas import AnswerResult
from modules.tts.queue import SpeechSynthesisQueue


def make_wav_bytes(duration_s: float = 1.0, sample_rate: int = 16000) -> bytes:
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes(b"\x00\x00" * int(duration_s * sample_rate))
    return buf.getvalue()


class FakeTranscoder:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.inputs: list[bytes] = []

    async def transcode(self, input_path, output_path):
        self.inputs.append(Path(input_path).read_bytes())
        if self.error is not None:
            raise self.error
        Path(output_path).write_bytes(b"normalized")
        return Path(output_path)


class FakeSTT(STTProvider):
    name = "fake_stt"
    model = "fake-whisper"
    language = "en"

    def __init__(self, transcript: str = "", error: Exception | None = None):
        self.transcript = transcript
        self.error = error
        self.calls: list[str] = []

    def transcribe(self, audio_path: str) -> str:
        self.calls.append(audio_path)
        if self.error is not None:
            raise self.error
        return self.transcript


class FakeTTS(TTSProvider):
    name = "fake_tts"

    def __init__(self, duration_s: float = 1.0, fail: bool = False):
        self.audio = make_wav_bytes(duration_s)
        self.fail = fail
        self.texts: list[str] = []

    def synthesize(self, text: str) -> bytes:
        self.texts.append(text)
        if self.fail:
            raise RuntimeError("tts down")
        return self.audio


class FakeAnswer(AnswerProvider):
    name = "fake_answer"

    def __init__(self, text: str = "Thanks for asking. We ship worldwide!", gate: threading.Event | None = None):
        self.text = text
        self.gate = gate
        self.queries: list[str] = []

    def answer(self, query: str) -> AnswerResult:
        self.queries.append(query)
        if self.gate is not None:
            self.gate.wait(timeout=5.0)
        return AnswerResult(text=self.text, metadata={"documentsUsed": 2})


def build_fake_pipeline(
    transcoder: FakeTranscoder | None = None,
    stt: FakeSTT | None = None,
    tts: FakeTTS | None = None,
    answerer: FakeAnswer | None = None,
) -> VoicePipeline:
    return VoicePipeline(
        transcoder=transcoder or FakeTranscoder(),
        stt=stt or FakeSTT(),
        tts_queue=SpeechSynthesisQueue(tts or FakeTTS(), spacing_s=0.0),
        answerer=answerer or FakeAnswer(),
        answer_limiter=RateLimitedCaller(min_spacing_s=0.0, attempts=1, retry_delay_s=0.0),
        stt_retry_attempts=2,
        stt_retry_delay_s=0.0,
    )


@pytest.fixture
def app_config(tmp_path):
    config = load_config(tmp_path / "configs" / "config.yaml")
    config.session.idle_timeout_s = 30.0
    return config


@pytest.fixture
def client_for(app_config):
    clients = []

    def _open(pipeline):
        client = TestClient(create_app(app_config, pipeline))
        client.__enter__()
        clients.append(client)
        return client

    yield _open
    for client in clients:
        client.__exit__(None, None, None)

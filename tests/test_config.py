import pytest

from apps.server.pipeline import _build_answer_provider, _build_stt_provider, _build_tts_provider, build_pipeline
from modules.answer.rag_http.provider import RagServiceProvider
from modules.core.config import load_config
from modules.stt.groq.provider import GroqWhisperProvider
from modules.tts.cartesia.provider import CartesiaTTSProvider


@pytest.fixture
def clean_env(monkeypatch):
    for name in ("GROQ_API_KEY", "CARTESIA_API_KEY", "ANSWER_API_KEY"):
        monkeypatch.delenv(name, raising=False)


def _write(tmp_path, text):
    path = tmp_path / "configs" / "config.yaml"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def test_defaults_without_file(tmp_path, clean_env):
    config = load_config(tmp_path / "configs" / "config.yaml")

    assert config.server.port == 5000
    assert config.providers.stt == "groq"
    assert config.providers.tts == "cartesia"
    assert config.rate_limit.min_spacing_s == 6.5
    assert config.rate_limit.attempts == 3
    assert config.rate_limit.retry_delay_s == 1.2
    assert config.synthesis.spacing_s == 0.2
    assert config.session.idle_timeout_s == 10.0
    assert config.session.heartbeat_transcript == "."
    assert config.groq.api_key == ""
    assert config.project_root == tmp_path.resolve()


def test_yaml_overrides_merge_with_defaults(tmp_path, clean_env):
    path = _write(
        tmp_path,
        "server:\n  port: 8080\nsession:\n  idle_timeout_s: 4\ngroq:\n  model: whisper-large-v3\n",
    )
    config = load_config(path)

    assert config.server.port == 8080
    assert config.server.host == "0.0.0.0"
    assert config.session.idle_timeout_s == 4
    assert config.session.heartbeat_transcript == "."
    assert config.groq.model == "whisper-large-v3"
    assert config.groq.language == "en"


def test_env_fills_blank_api_keys(tmp_path, clean_env, monkeypatch):
    monkeypatch.setenv("GROQ_API_KEY", "gsk_env")
    monkeypatch.setenv("CARTESIA_API_KEY", "sk_env")
    path = _write(tmp_path, "cartesia:\n  api_key: sk_yaml\n")

    config = load_config(path)

    assert config.groq.api_key == "gsk_env"
    assert config.cartesia.api_key == "sk_yaml"


def test_env_keys_do_not_leak_between_loads(tmp_path, clean_env, monkeypatch):
    monkeypatch.setenv("GROQ_API_KEY", "gsk_first")
    load_config(tmp_path / "configs" / "config.yaml")
    monkeypatch.delenv("GROQ_API_KEY")

    assert load_config(tmp_path / "configs" / "config.yaml").groq.api_key == ""


def test_provider_factories(tmp_path, clean_env):
    config = load_config(tmp_path / "configs" / "config.yaml")

    assert isinstance(_build_stt_provider(config), GroqWhisperProvider)
    assert isinstance(_build_tts_provider(config), CartesiaTTSProvider)
    assert isinstance(_build_answer_provider(config), RagServiceProvider)

    pipeline = build_pipeline(config)
    assert pipeline.provider_status() == {"stt": "missing_api_key", "tts": "missing_api_key", "answer": "configured"}
    assert pipeline.output_suffix == ".mp3"


@pytest.mark.parametrize(
    "section,builder",
    [("stt", _build_stt_provider), ("tts", _build_tts_provider), ("answer", _build_answer_provider)],
)
def test_unknown_provider_rejected(tmp_path, clean_env, section, builder):
    config = load_config(_write(tmp_path, f"providers:\n  {section}: nope\n"))
    with pytest.raises(ValueError, match="nope"):
        builder(config)

from __future__ import annotations

import logging
import sys
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from apps.server.http import HTTPApp  # noqa: E402
from apps.server.pipeline import VoicePipeline, build_pipeline  # noqa: E402
from apps.server.ws import WSApp  # noqa: E402
from modules.core.config import AppConfig, ensure_project_dir, load_config  # noqa: E402

logger = logging.getLogger(__name__)


def setup_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    # request bodies from the HTTP client libraries are too chatty at INFO
    for name in ("urllib3", "multipart"):
        logging.getLogger(name).setLevel(logging.WARNING)


def setup_runtime_env(config: AppConfig) -> str:
    temp_dir = ensure_project_dir(config, config.runtime.temp_dir)
    tempfile.tempdir = temp_dir
    logger.info("Runtime dirs: temp_dir=%s", temp_dir)
    return temp_dir


def create_app(config: AppConfig | None = None, pipeline: VoicePipeline | None = None) -> FastAPI:
    setup_logging()
    load_dotenv(ROOT / ".env")
    config = config or load_config(ROOT / "configs" / "config.yaml")
    setup_runtime_env(config)
    pipeline = pipeline or build_pipeline(config)
    logger.info(
        "Server config loaded: providers(stt=%s,tts=%s,answer=%s), rate_limit_s=%s, idle_timeout_s=%s",
        config.providers.stt,
        config.providers.tts,
        config.providers.answer,
        config.rate_limit.min_spacing_s,
        config.session.idle_timeout_s,
    )

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        await pipeline.close()
        logger.info("Voice pipeline stopped")

    app = FastAPI(title="RAG Voice", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.config = config
    app.state.pipeline = pipeline
    app.include_router(WSApp(config=config, pipeline=pipeline).router)
    app.include_router(HTTPApp(config=config, pipeline=pipeline).router)
    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "apps.server.main:app",
        host=app.state.config.server.host,
        port=app.state.config.server.port,
        reload=False,
        log_level="info",
    )

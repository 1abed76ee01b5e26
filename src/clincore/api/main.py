# src/clincore/api/main.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI

from clincore.api.suggest_router import router as remedies_router
from clincore.config import Settings, get_settings
from clincore.core.error_handlers import register_error_handlers
from clincore.core.logging import setup_json_logging
from clincore.core.middleware import RequestIDMiddleware
from clincore.remedy_engine.case_records import CaseRecordStore, SqlCaseRecordStore
from clincore.remedy_engine.narrative import NarrativeGenerator, TemplateNarrativeGenerator
from clincore.remedy_engine.params import load_params
from clincore.remedy_engine.pipeline import RemedySuggestionEngine
from clincore.remedy_engine.reference import ReferenceDataCache, SqliteRepertorySource

log = logging.getLogger("clincore.api")

APP_VERSION = "0.5.0"


def build_engine(settings: Settings) -> RemedySuggestionEngine:
    params = load_params(settings.REMEDY_ENGINE_CONFIG_PATH)
    cache = ReferenceDataCache(
        SqliteRepertorySource(settings.REPERTORY_DB_PATH),
        stop_words=params.stop_words,
        repertory_source=settings.REPERTORY_SOURCE,
    )
    return RemedySuggestionEngine(cache, params)


def create_app(
    settings: Optional[Settings] = None,
    *,
    engine: Optional[RemedySuggestionEngine] = None,
    case_store: Optional[CaseRecordStore] = None,
    narrative: Optional[NarrativeGenerator] = None,
) -> FastAPI:
    settings = settings or get_settings()
    setup_json_logging(settings.LOG_LEVEL)

    app = FastAPI(title=settings.APP_NAME, version=APP_VERSION, debug=settings.DEBUG)
    app.add_middleware(RequestIDMiddleware)
    register_error_handlers(app, expose_validation_detail=settings.ENV.lower() not in {"production", "prod"})

    app.state.engine = engine or build_engine(settings)
    app.state.case_store = case_store if case_store is not None else SqlCaseRecordStore()
    app.state.narrative = narrative or TemplateNarrativeGenerator()
    app.state.persist_case_records = settings.PERSIST_CASE_RECORDS

    app.include_router(remedies_router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/version")
    async def version():
        return {"api_version": APP_VERSION, "engine_version": app.state.engine.params.version}

    log.info(
        "app ready env=%s engine=%s repertory=%s",
        settings.ENV,
        app.state.engine.params.version,
        settings.REPERTORY_SOURCE or "*",
    )
    return app

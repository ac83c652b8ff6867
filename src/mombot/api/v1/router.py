"""V1 API router -- aggregates all endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.mombot.api.v1 import auth, health, transcripts, webhook

router = APIRouter()

router.include_router(health.router)
router.include_router(webhook.router)
router.include_router(transcripts.router)
router.include_router(auth.router)

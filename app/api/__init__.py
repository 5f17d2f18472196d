"""API router for discovery endpoints."""

from fastapi import APIRouter

from app.api import analyze, chat, feedback, health, send_plan

router = APIRouter()

# Discovery conversation and plan generation
router.include_router(chat.router, tags=["chat"])

# Website and financial-document analysis
router.include_router(analyze.router, tags=["analyze"])

# Plan delivery: email and PDF
router.include_router(send_plan.router, tags=["plan"])

router.include_router(feedback.router, tags=["feedback"])

router.include_router(health.router, tags=["health"])

"""Commit message generation from a git diff, using any available chat model."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal

from coding_plans.core.cancellation import CancellationToken
from coding_plans.core.config import Settings, get_settings
from coding_plans.core.errors import (
    LanguageModelError,
    invalid_request,
    model_not_found,
    no_models_available,
    request_failed,
)
from coding_plans.core.logging import LogContext, with_context
from coding_plans.core.metrics import commit_messages_total
from coding_plans.domain.chat import HostMessage
from coding_plans.providers.base import LanguageModel
from coding_plans.providers.registry import ProviderRegistry
from coding_plans.providers.vendors import BUILTIN_PROVIDERS

log = logging.getLogger(__name__)

MAX_DIFF_CHARS = 20000
PLACEHOLDER_MODEL_ID_SUFFIXES = ("__setup_api_key__", "__no_models__", "__unsupported__")
PREFERRED_VENDORS = frozenset(cls.vendor for cls in BUILTIN_PROVIDERS)

CommitLanguage = Literal["en", "zh-cn"]

_LANGUAGE_INSTRUCTIONS = {
    "en": "You MUST write the commit message in English.",
    "zh-cn": "You MUST write the commit message in Chinese (简体中文).",
}


@dataclass(frozen=True)
class CommitMessage:
    message: str
    vendor: str
    model_id: str
    truncated: bool
    diff_chars: int


def language_instruction(language: str) -> str:
    return _LANGUAGE_INSTRUCTIONS.get(language, _LANGUAGE_INSTRUCTIONS["en"])


def build_commit_prompt(diff: str, language: str = "en") -> str:
    return "\n".join(
        [
            "You are a Git commit message generator.",
            language_instruction(language),
            "Based on the following git diff, generate a concise and descriptive commit message.",
            "Follow the Conventional Commits format: <type>(<scope>): <description>",
            "Common types: feat, fix, docs, style, refactor, perf, test, build, ci, chore.",
            "Output ONLY the commit message, no explanation, no markdown fences.",
            "",
            "--- BEGIN DIFF ---",
            diff,
            "--- END DIFF ---",
        ]
    )


def truncate_diff(diff: str, limit: int = MAX_DIFF_CHARS) -> tuple[str, bool]:
    if len(diff) > limit:
        return diff[:limit], True
    return diff, False


def is_placeholder_model_id(model_id: str) -> bool:
    return model_id.endswith(PLACEHOLDER_MODEL_ID_SUFFIXES)


def model_sort_key(model: LanguageModel) -> tuple[int, str, str, str, str]:
    d = model.descriptor
    tier = 0 if d.vendor in PREFERRED_VENDORS else 1
    return (tier, d.vendor, d.family, d.name, d.id)


def candidate_models(models: list[LanguageModel]) -> list[LanguageModel]:
    """Selectable models, built-in vendors first."""
    return sorted((m for m in models if not is_placeholder_model_id(m.id)), key=model_sort_key)


def select_model(
    models: list[LanguageModel],
    vendor: str | None = None,
    model_id: str | None = None,
) -> LanguageModel | None:
    """Pick by vendor and/or id; with neither, the first candidate. None when nothing matches."""
    candidates = candidate_models(models)
    for model in candidates:
        if vendor and model.descriptor.vendor != vendor:
            continue
        if model_id and model.id != model_id:
            continue
        return model
    return None


def first_line(text: str) -> str:
    for line in text.strip().splitlines():
        if line.strip():
            return line.strip()
    return ""


class CommitMessageGenerator:
    def __init__(self, registry: ProviderRegistry, settings: Settings | None = None):
        self.registry = registry
        self.settings = settings or get_settings()

    def resolve_model(self, vendor: str | None = None, model_id: str | None = None) -> LanguageModel:
        models = self.registry.list_models()

        if vendor or model_id:
            model = select_model(models, vendor, model_id)
            if model is None:
                raise model_not_found(model_id or vendor or "")
            return model

        configured_vendor = self.settings.commit_message_model_vendor
        configured_id = self.settings.commit_message_model_id
        if configured_vendor or configured_id:
            model = select_model(models, configured_vendor, configured_id)
            if model is not None:
                return model
            log.warning(
                "commit_message.configured_model_missing",
                extra={"vendor": configured_vendor, "model": configured_id},
            )

        model = select_model(models)
        if model is None:
            raise no_models_available()
        return model

    async def generate(
        self,
        diff: str,
        *,
        vendor: str | None = None,
        model_id: str | None = None,
        language: CommitLanguage | None = None,
        cancellation: CancellationToken | None = None,
    ) -> CommitMessage:
        if not diff.strip():
            raise invalid_request("diff is empty")

        text, truncated = truncate_diff(diff)
        model = self.resolve_model(vendor, model_id)
        logger = with_context(log, LogContext(vendor=model.descriptor.vendor, model=model.id))
        if truncated:
            logger.warning("commit_message.diff_truncated", extra={"diff_chars": len(diff), "limit": MAX_DIFF_CHARS})

        prompt = build_commit_prompt(text, language or self.settings.commit_message_language)
        try:
            response = await model.send_request([HostMessage(role="user", content=prompt)], None, cancellation)
            reply = "".join([chunk async for chunk in response.text])
            message = first_line(reply)
            if not message:
                raise request_failed("model returned an empty commit message")
        except LanguageModelError as e:
            commit_messages_total.labels(vendor=model.descriptor.vendor, outcome=e.kind.value).inc()
            raise

        commit_messages_total.labels(vendor=model.descriptor.vendor, outcome="ok").inc()
        logger.info("commit_message.generated", extra={"truncated": truncated})
        return CommitMessage(
            message=message,
            vendor=model.descriptor.vendor,
            model_id=model.id,
            truncated=truncated,
            diff_chars=len(diff),
        )

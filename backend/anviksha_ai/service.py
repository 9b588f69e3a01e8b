from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Sequence

from anviksha_store.time_utils import utc_now
from anviksha_tools.openfda import OpenFDAClient

from . import builders
from .credentials import CredentialStore
from .errors import ConfigurationError
from .invoker import CredentialStatus, ResilientInvoker
from .models import AnalysisOutcome, BlobPart, Modality, PharmacyResult, TriageInputs, TriageResult
from .parser import normalize_pharmacy, normalize_triage, parse_analysis, parse_structured
from .settings import AISettings

logger = logging.getLogger(__name__)


class CapabilityService:
    """Request builder -> resilient invoker -> response parser, per capability."""

    def __init__(
        self,
        invoker: ResilientInvoker,
        *,
        settings: AISettings,
        credentials: CredentialStore,
        fda: OpenFDAClient | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.invoker = invoker
        self.settings = settings
        self.credentials = credentials
        self.fda = fda
        self._clock = clock

    def is_configured(self) -> bool:
        return self.invoker.is_configured()

    def _require_configured(self) -> None:
        if not self.invoker.is_configured():
            raise ConfigurationError("No AI credentials are configured.")

    async def analyze_image(self, image: BlobPart, modality: Modality) -> AnalysisOutcome:
        self._require_configured()
        now = self._clock()
        request = builders.build_image_analysis(image, modality, settings=self.settings, now=now)
        raw_text = await self.invoker.invoke(request)
        outcome = parse_analysis(raw_text, request.output_schema, modality, model_used=request.model, now=now)
        logger.info("Image analysis (%s) produced %s", modality.value, type(outcome).__name__)
        return outcome

    async def triage(self, inputs: TriageInputs) -> TriageResult:
        self._require_configured()
        request = builders.build_triage(inputs, settings=self.settings, now=self._clock())
        raw_text = await self.invoker.invoke(request)
        return normalize_triage(parse_structured(raw_text, request.output_schema))

    async def pharmacy(self, query: str, *, user_history: str | None = None) -> PharmacyResult:
        self._require_configured()
        labels = []
        if self.fda is not None:
            labels = await self.fda.lookup_labels(query, api_key=self.credentials.fda_key())
        request = builders.build_pharmacy(
            query,
            settings=self.settings,
            user_history=user_history,
            fda_labels=[label.as_prompt_row() for label in labels],
            now=self._clock(),
        )
        raw_text = await self.invoker.invoke(request)
        return normalize_pharmacy(parse_structured(raw_text, request.output_schema))

    async def chat(
        self,
        message: str,
        *,
        history: Sequence[tuple[str, str]] = (),
        image: BlobPart | None = None,
    ) -> str:
        self._require_configured()
        request = builders.build_chat(message, settings=self.settings, history=history, image=image, now=self._clock())
        return (await self.invoker.invoke(request)).strip()

    async def therapy(self, message: str, *, history: Sequence[tuple[str, str]] = ()) -> str:
        self._require_configured()
        request = builders.build_therapy(message, settings=self.settings, history=history, now=self._clock())
        return (await self.invoker.invoke(request)).strip()

    async def transcribe(self, audio: BlobPart, *, language_hint: str | None = None) -> str:
        self._require_configured()
        request = builders.build_transcription(audio, settings=self.settings, language_hint=language_hint)
        return (await self.invoker.invoke(request)).strip()

    async def probe_credential(self, credential: str) -> CredentialStatus:
        return await self.invoker.probe(credential, model=self.settings.chat_model)

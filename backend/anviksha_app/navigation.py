from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from anviksha_ai.errors import AnvikshaError, user_message_for
from anviksha_ai.models import AnalysisOutcome, AnalysisResult, BlobPart, InputRejected, Modality, TriageInputs, TriageResult
from anviksha_ai.service import CapabilityService
from anviksha_store.records import RecordStore

logger = logging.getLogger(__name__)


class Screen(str, Enum):
    WELCOME = "welcome"
    HUB = "hub"
    TRIAGE = "triage"
    TRIAGE_RESULT = "triage-result"
    CAMERA = "camera"
    ANALYSIS = "analysis"
    RESULTS = "results"
    RECORDS = "records"
    DETAILS = "details"
    CHAT = "chat"
    PHARMACY = "pharmacy"
    THERAPY = "therapy"
    PROFILE = "profile"
    SETTINGS = "settings"


class NavigationError(Exception):
    pass


SETUP_REQUIRED_MESSAGE = "Add an AI access key in Settings before starting a scan."


@dataclass
class NavigationState:
    screen: Screen = Screen.WELCOME
    modality: Modality | None = None
    analysis: AnalysisOutcome | None = None
    triage_result: TriageResult | None = None
    selected_record: AnalysisResult | None = None
    error: str | None = None
    busy: bool = False

    def to_payload(self) -> dict[str, Any]:
        return {
            "screen": self.screen.value,
            "modality": self.modality.value if self.modality else None,
            "analysis": self.analysis.to_payload() if self.analysis is not None else None,
            "triageResult": self.triage_result.to_payload() if self.triage_result else None,
            "selectedRecord": self.selected_record.to_payload() if self.selected_record else None,
            "error": self.error,
            "busy": self.busy,
        }


class NavigationController:
    """Screen state machine for one device.

    State only changes on explicit actions. Long-running actions hold a busy
    flag; a submit that arrives while one is in flight is ignored. Analysis
    results are tagged with a generation token so a result that lands after
    ``cancel_analysis()`` is dropped.
    """

    # Screens the UI may jump to directly; the rest are reached through actions.
    _OPENABLE = {
        Screen.WELCOME,
        Screen.HUB,
        Screen.TRIAGE,
        Screen.RECORDS,
        Screen.CHAT,
        Screen.PHARMACY,
        Screen.THERAPY,
        Screen.PROFILE,
        Screen.SETTINGS,
    }
    _BACK_TO_WELCOME = {Screen.PROFILE, Screen.RECORDS, Screen.DETAILS, Screen.SETTINGS, Screen.HUB}

    def __init__(self, service: CapabilityService, records: RecordStore) -> None:
        self.service = service
        self.records = records
        self.state = NavigationState()
        self._generation = 0

    @property
    def screen(self) -> Screen:
        return self.state.screen

    def _go(self, screen: Screen) -> None:
        if screen != self.state.screen:
            logger.debug("Screen %s -> %s", self.state.screen.value, screen.value)
        self.state.screen = screen

    def open(self, screen: Screen) -> NavigationState:
        if screen not in self._OPENABLE:
            raise NavigationError(f"Screen '{screen.value}' is only reachable through its action.")
        self.state.error = None
        self._go(screen)
        return self.state

    def back(self) -> NavigationState:
        if self.state.screen == Screen.ANALYSIS:
            return self.cancel_analysis()
        self.state.error = None
        if self.state.screen == Screen.WELCOME:
            return self.state
        if self.state.screen in self._BACK_TO_WELCOME:
            self.state.selected_record = None
            self._go(Screen.WELCOME)
        else:
            self._go(Screen.HUB)
        return self.state

    def start_service(self, modality: Modality) -> NavigationState:
        if not self.service.is_configured():
            self.state.error = SETUP_REQUIRED_MESSAGE
            self._go(Screen.SETTINGS)
            return self.state
        self.state.modality = modality
        self.state.analysis = None
        self.state.error = None
        self._go(Screen.CAMERA)
        return self.state

    async def start_scan(self, image: BlobPart) -> NavigationState:
        if self.state.busy:
            logger.info("Ignoring scan submit while another call is in flight")
            return self.state
        if self.state.screen != Screen.CAMERA:
            raise NavigationError("Open a scan service before submitting an image.")

        modality = self.state.modality or Modality.GENERAL
        self._generation += 1
        token = self._generation
        self.state.busy = True
        self.state.error = None
        self.state.analysis = None
        self._go(Screen.ANALYSIS)
        try:
            outcome = await self.service.analyze_image(image, modality)
        except AnvikshaError as exc:
            if token != self._generation:
                logger.info("Discarding failed analysis from a cancelled scan")
                return self.state
            logger.warning("Image analysis failed: %s", exc)
            self.state.error = user_message_for(exc)
            self._go(Screen.CAMERA)
            return self.state
        except Exception:
            if token == self._generation:
                self.state.error = user_message_for(Exception())
                self._go(Screen.CAMERA)
            raise
        finally:
            if token == self._generation:
                self.state.busy = False

        if token != self._generation:
            logger.info("Discarding analysis result from a cancelled scan")
            return self.state
        self.state.analysis = outcome
        self._go(Screen.RESULTS)
        return self.state

    def cancel_analysis(self) -> NavigationState:
        self._generation += 1
        self.state.busy = False
        self.state.analysis = None
        self.state.error = None
        self._go(Screen.HUB)
        return self.state

    async def run_triage(self, inputs: TriageInputs) -> NavigationState:
        if self.state.busy:
            logger.info("Ignoring triage submit while another call is in flight")
            return self.state
        self.state.busy = True
        self.state.error = None
        self._go(Screen.TRIAGE)
        try:
            result = await self.service.triage(inputs)
        except AnvikshaError as exc:
            logger.warning("Triage failed: %s", exc)
            self.state.error = user_message_for(exc)
            return self.state
        finally:
            self.state.busy = False
        self.state.triage_result = result
        self._go(Screen.TRIAGE_RESULT)
        return self.state

    def save_record(self) -> bool:
        outcome = self.state.analysis
        if outcome is None:
            raise NavigationError("There is no analysis to save.")
        if isinstance(outcome, InputRejected):
            raise NavigationError("Rejected inputs cannot be saved to records.")
        saved = self.records.save(outcome)
        self._go(Screen.HUB)
        return saved

    def view_record(self, record_id: str) -> NavigationState:
        record = self.records.get(record_id)
        if record is None:
            raise LookupError(f"Record '{record_id}' not found.")
        self.state.selected_record = record
        self.state.error = None
        self._go(Screen.DETAILS)
        return self.state

    def return_to_records(self) -> NavigationState:
        self.state.selected_record = None
        self._go(Screen.RECORDS)
        return self.state

    def new_analysis(self) -> NavigationState:
        """Discard the current result and capture again with the same modality."""
        self.state.analysis = None
        self.state.error = None
        if self.state.modality is None:
            self._go(Screen.HUB)
        else:
            self._go(Screen.CAMERA)
        return self.state

    def delete_record(self, record_id: str) -> bool:
        deleted = self.records.delete(record_id)
        if deleted and self.state.selected_record is not None and self.state.selected_record.id == record_id:
            self.state.selected_record = None
            self._go(Screen.RECORDS)
        return deleted

    def snapshot(self) -> dict[str, Any]:
        return self.state.to_payload()

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from anviksha_ai import (
    AISettings,
    AnvikshaError,
    CapabilityService,
    ConfigurationError,
    CredentialStore,
    GeminiTransport,
    Modality,
    ParseError,
    QuotaExhaustedError,
    ResilientInvoker,
    SynthesisError,
    TriageInputs,
    mask_credential,
    user_message_for,
)
from anviksha_ai.capture import CapturedBlob, CaptureError, UploadCapture, capture_once
from anviksha_ai.errors import CredentialRejectedError
from anviksha_app import ConversationController, NavigationController, NavigationError, Screen
from anviksha_store import (
    CHAT_SESSIONS_KEY,
    THERAPY_SESSIONS_KEY,
    LocalStateDB,
    ProfileStore,
    RecordStore,
    SessionStore,
    UserProfile,
)
from anviksha_tools import OpenFDAClient

_ENV_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _load_local_env_file(path: Path) -> None:
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError:
        return
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if not _ENV_KEY_RE.fullmatch(key):
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
            value = value[1:-1]
        os.environ.setdefault(key, value)


def _bootstrap_local_env() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    candidates = [
        repo_root / ".env",
        repo_root / "backend/.env",
        repo_root / ".env.local",
    ]
    for candidate in candidates:
        if candidate.exists():
            _load_local_env_file(candidate)


_bootstrap_local_env()


class CredentialListPayload(BaseModel):
    keys: list[str] = Field(default_factory=list)


class CredentialPayload(BaseModel):
    key: str


class CredentialTestPayload(BaseModel):
    key: str | None = None


class FDAKeyPayload(BaseModel):
    key: str | None = None


class OpenScreenPayload(BaseModel):
    screen: Screen


class PharmacyPayload(BaseModel):
    query: str
    include_profile: bool = True


class ProfilePayload(BaseModel):
    name: str = "Guest Patient"
    age: int = 0
    sex: str = "unspecified"
    blood_group: str = "Unknown"
    weight_kg: float = 0.0
    chronic_conditions: list[str] = Field(default_factory=list)
    allergies: list[str] = Field(default_factory=list)
    emergency_contact: str = ""


class AnvikshaApp:
    def __init__(self) -> None:
        db_path = os.getenv(
            "ANVIKSHA_DB_PATH",
            str((Path(__file__).resolve().parent / "anviksha.sqlite")),
        )
        self.db = LocalStateDB(db_path)
        self.settings = AISettings.from_env()
        self.credentials = CredentialStore(self.db)
        self.transport = GeminiTransport(
            base_url=self.settings.api_base_url,
            timeout_seconds=self.settings.timeout_seconds,
        )
        self.invoker = ResilientInvoker(
            self.credentials,
            self.transport,
            timeout_seconds=self.settings.timeout_seconds,
        )
        self.fda = OpenFDAClient(base_url=self.settings.openfda_base_url)
        self.service = CapabilityService(
            self.invoker,
            settings=self.settings,
            credentials=self.credentials,
            fda=self.fda,
        )
        self.records = RecordStore(self.db)
        self.profiles = ProfileStore(self.db)
        self._build_controllers()

    def _build_controllers(self) -> None:
        self.navigation = NavigationController(self.service, self.records)
        self.conversations = {
            "chat": ConversationController.for_chat(self.service, SessionStore(self.db, CHAT_SESSIONS_KEY)),
            "therapy": ConversationController.for_therapy(self.service, SessionStore(self.db, THERAPY_SESSIONS_KEY)),
        }

    def conversation(self, kind: str) -> ConversationController:
        controller = self.conversations.get(kind)
        if controller is None:
            raise HTTPException(status_code=404, detail=f"Unknown conversation kind '{kind}'.")
        return controller

    def reset(self) -> int:
        cleared = self.db.purge()
        self._build_controllers()
        return cleared


container = AnvikshaApp()
app = FastAPI(title="Anviksha Backend")

allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in allowed_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_MAX_UPLOAD_BYTES = int(os.getenv("ANVIKSHA_MAX_UPLOAD_BYTES", str(20 * 1024 * 1024)))
_SCAN_MIME_PREFIXES = ("image/", "application/pdf")
_AUDIO_MIME_PREFIXES = ("audio/", "video/webm")

_ERROR_STATUS: dict[type[AnvikshaError], int] = {
    ConfigurationError: 503,
    QuotaExhaustedError: 429,
    CredentialRejectedError: 401,
    SynthesisError: 502,
    ParseError: 502,
}


def _status_for(exc: AnvikshaError) -> int:
    for exc_type in type(exc).__mro__:
        status = _ERROR_STATUS.get(exc_type)  # type: ignore[arg-type]
        if status:
            return status
    return 500


@app.exception_handler(AnvikshaError)
async def anviksha_error_handler(request: Request, exc: AnvikshaError) -> JSONResponse:
    return JSONResponse(
        status_code=_status_for(exc),
        content={"detail": user_message_for(exc), "code": exc.code},
    )


@app.exception_handler(NavigationError)
async def navigation_error_handler(request: Request, exc: NavigationError) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc), "code": "invalid_transition"})


def _select_upload(primary: UploadFile | None, fallback: UploadFile | None, *, field_hint: str) -> UploadFile:
    upload = primary or fallback
    if upload is None:
        raise HTTPException(status_code=400, detail=f"Missing multipart file field '{field_hint}'.")
    return upload


async def _capture_upload(
    upload: UploadFile,
    *,
    allowed_prefixes: tuple[str, ...],
    fallback_name: str,
) -> CapturedBlob:
    device = UploadCapture(
        upload,
        max_bytes=_MAX_UPLOAD_BYTES,
        allowed_prefixes=allowed_prefixes,
        fallback_name=fallback_name,
    )
    try:
        return await capture_once(device)
    except CaptureError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc


def _credential_summary() -> dict[str, Any]:
    return {
        "configured": container.credentials.is_configured(),
        "source": container.credentials.source(),
        "keys": container.credentials.masked(),
        "fda_key_configured": container.credentials.fda_key() is not None,
    }


@app.get("/health")
def health():
    return {"ok": True, "configured": container.service.is_configured()}


@app.get("/settings/credentials")
def get_credentials():
    return _credential_summary()


@app.put("/settings/credentials")
def replace_credentials(payload: CredentialListPayload):
    container.credentials.save_credentials(payload.keys)
    return _credential_summary()


@app.post("/settings/credentials")
def add_credential(payload: CredentialPayload):
    if not payload.key.strip():
        raise HTTPException(status_code=400, detail="Key must not be empty.")
    container.credentials.add_credential(payload.key)
    return _credential_summary()


@app.delete("/settings/credentials/{index}")
def remove_credential(index: int):
    try:
        container.credentials.remove_credential(index)
    except IndexError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _credential_summary()


@app.post("/settings/credentials/test")
async def test_credentials(payload: CredentialTestPayload):
    keys = [payload.key.strip()] if payload.key and payload.key.strip() else container.credentials.resolve_credentials()
    if not keys:
        raise ConfigurationError("No AI credentials are configured.")
    results = []
    for key in keys:
        status = await container.service.probe_credential(key)
        results.append({"key": mask_credential(key), "status": status.value})
    return {"results": results}


@app.put("/settings/fda-key")
def save_fda_key(payload: FDAKeyPayload):
    container.credentials.save_fda_key(payload.key)
    return _credential_summary()


@app.post("/settings/fda-key/test")
async def test_fda_key():
    return {"ok": await container.fda.probe(container.credentials.fda_key())}


@app.post("/settings/reset")
def reset_device():
    return {"cleared": container.reset()}


@app.get("/navigation")
def navigation_state():
    return container.navigation.snapshot()


@app.post("/navigation/open")
def navigation_open(payload: OpenScreenPayload):
    container.navigation.open(payload.screen)
    return container.navigation.snapshot()


@app.post("/navigation/back")
def navigation_back():
    container.navigation.back()
    return container.navigation.snapshot()


@app.post("/navigation/services/{modality}")
def navigation_start_service(modality: Modality):
    container.navigation.start_service(modality)
    return container.navigation.snapshot()


@app.post("/navigation/scan")
async def navigation_scan(
    image: UploadFile | None = File(default=None),
    file: UploadFile | None = File(default=None),
):
    upload = _select_upload(image, file, field_hint="image")
    blob = await _capture_upload(upload, allowed_prefixes=_SCAN_MIME_PREFIXES, fallback_name="scan-capture")
    await container.navigation.start_scan(blob.as_part())
    return container.navigation.snapshot()


@app.post("/navigation/analysis/cancel")
def navigation_cancel_analysis():
    container.navigation.cancel_analysis()
    return container.navigation.snapshot()


@app.post("/navigation/analysis/new")
def navigation_new_analysis():
    container.navigation.new_analysis()
    return container.navigation.snapshot()


@app.post("/navigation/analysis/save")
def navigation_save_record():
    saved = container.navigation.save_record()
    return {"saved": saved, "state": container.navigation.snapshot()}


@app.post("/navigation/triage")
async def navigation_triage(
    cough_duration: str = Form(default="None"),
    fever: bool = Form(default=False),
    chest_pain: bool = Form(default=False),
    breathing_difficulty: bool = Form(default=False),
    sputum: bool = Form(default=False),
    weight_loss: bool = Form(default=False),
    image: UploadFile | None = File(default=None),
):
    observation = None
    if image is not None:
        blob = await _capture_upload(image, allowed_prefixes=("image/",), fallback_name="triage-capture")
        observation = blob.as_part()
    try:
        inputs = TriageInputs(
            cough_duration=cough_duration,
            fever=fever,
            chest_pain=chest_pain,
            breathing_difficulty=breathing_difficulty,
            sputum=sputum,
            weight_loss=weight_loss,
            visual_observation=observation,
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    await container.navigation.run_triage(inputs)
    return container.navigation.snapshot()


@app.get("/records")
def list_records():
    return {"records": [record.to_payload() for record in container.records.list_records()]}


@app.get("/records/{record_id}")
def view_record(record_id: str):
    try:
        container.navigation.view_record(record_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return container.navigation.snapshot()


@app.post("/navigation/records/return")
def return_to_records():
    container.navigation.return_to_records()
    return container.navigation.snapshot()


@app.delete("/records/{record_id}")
def delete_record(record_id: str):
    if not container.navigation.delete_record(record_id):
        raise HTTPException(status_code=404, detail=f"Record '{record_id}' not found.")
    return {"deleted": record_id, "state": container.navigation.snapshot()}


@app.post("/pharmacy")
async def pharmacy_lookup(payload: PharmacyPayload):
    query = payload.query.strip()
    if not query:
        raise HTTPException(status_code=400, detail="Describe your symptoms or a medicine name.")
    user_history = container.profiles.load().history_summary() if payload.include_profile else None
    result = await container.service.pharmacy(query, user_history=user_history)
    return result.to_payload()


def _session_listing(controller: ConversationController) -> dict[str, Any]:
    groups = controller.grouped()
    return {
        "active_id": controller.active_id,
        "groups": {name: [session.to_payload() for session in sessions] for name, sessions in groups.items()},
    }


@app.get("/conversations/{kind}/sessions")
def list_sessions(kind: str):
    return _session_listing(container.conversation(kind))


@app.post("/conversations/{kind}/sessions/resume")
def resume_session(kind: str):
    session = container.conversation(kind).resume()
    return session.to_payload()


@app.post("/conversations/{kind}/sessions")
def start_session(kind: str):
    session = container.conversation(kind).start_new()
    return session.to_payload()


@app.post("/conversations/{kind}/sessions/{session_id}/activate")
def switch_session(kind: str, session_id: str):
    try:
        session = container.conversation(kind).switch(session_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return session.to_payload()


@app.delete("/conversations/{kind}/sessions/{session_id}")
def delete_session(kind: str, session_id: str):
    controller = container.conversation(kind)
    try:
        active = controller.delete(session_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"deleted": session_id, "active": active.to_payload()}


@app.post("/conversations/{kind}/messages")
async def send_message(
    kind: str,
    text: str = Form(default=""),
    session_id: str | None = Form(default=None),
    image: UploadFile | None = File(default=None),
):
    controller = container.conversation(kind)
    blob = None
    if image is not None:
        if kind != "chat":
            raise HTTPException(status_code=400, detail="Images are only accepted in chat.")
        blob = await _capture_upload(image, allowed_prefixes=("image/",), fallback_name="chat-image")
    try:
        outcome = await controller.send(
            text,
            image=blob.as_part() if blob else None,
            image_ref=blob.file_name if blob else None,
            session_id=session_id or None,
        )
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return outcome.to_payload()


@app.post("/voice/transcribe")
async def voice_transcribe(
    audio: UploadFile | None = File(default=None),
    file: UploadFile | None = File(default=None),
    language_hint: str | None = Form(default=None),
):
    upload = _select_upload(audio, file, field_hint="audio")
    blob = await _capture_upload(upload, allowed_prefixes=_AUDIO_MIME_PREFIXES, fallback_name="audio-upload")
    transcript_text = await container.service.transcribe(blob.as_part(), language_hint=language_hint)
    if not transcript_text:
        raise HTTPException(status_code=502, detail="Transcription returned empty text.")
    return {
        "transcript_text": transcript_text,
        "file_name": blob.file_name,
        "editable_transcript": True,
    }


@app.get("/profile")
def get_profile():
    return container.profiles.load().to_payload()


@app.put("/profile")
def save_profile(payload: ProfilePayload):
    try:
        profile = UserProfile(
            name=payload.name.strip() or "Guest Patient",
            age=payload.age,
            sex=payload.sex,
            blood_group=payload.blood_group.strip() or "Unknown",
            weight_kg=payload.weight_kg,
            chronic_conditions=[item.strip() for item in payload.chronic_conditions if item.strip()],
            allergies=[item.strip() for item in payload.allergies if item.strip()],
            emergency_contact=payload.emergency_contact.strip(),
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return container.profiles.save(profile).to_payload()

"""
FastAPI backend: thin REST surface over ContactsManager.
Run with uvicorn: uvicorn api.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from bobcontacts.application import (
    OPERATION_IN_PROGRESS,
    ContactsManager,
    ContactsScanner,
    ContactsSyncEngine,
    RawDeviceContact,
)
from bobcontacts.config import Settings, load_settings
from bobcontacts.domain import InvitationChannel
from bobcontacts.infrastructure import (
    InMemoryContactRepository,
    JsonCollectionStore,
    MemoryCollectionStore,
    StaticTokenProvider,
    StrapiClient,
    UploadedDeviceSource,
)
from bobcontacts.infrastructure.persistence.json_store import contact_to_record

logger = logging.getLogger(__name__)


def build_manager(settings: Settings) -> tuple[ContactsManager, UploadedDeviceSource, StrapiClient]:
    """Wire the engine once for the process."""
    store = JsonCollectionStore(settings.data_dir) if settings.data_dir else MemoryCollectionStore()
    repository = InMemoryContactRepository(store)
    device = UploadedDeviceSource()
    tokens = StaticTokenProvider(settings.api_token)
    client = StrapiClient(settings.api_url, tokens, timeout=settings.http_timeout_seconds)
    engine = ContactsSyncEngine.from_settings(client, repository, settings, token_provider=tokens)
    manager = ContactsManager(repository, ContactsScanner(device), engine)
    return manager, device, client


@asynccontextmanager
async def lifespan(app: FastAPI):
    client = None
    if getattr(app.state, "manager", None) is None:
        settings = load_settings()
        logging.getLogger().setLevel(settings.log_level)
        if not settings.remote_enabled:
            logger.warning("BOB_API_URL is not set: remote sync calls will fail")
        app.state.manager, app.state.device, client = build_manager(settings)
        report = app.state.manager.load()
        if report.error:
            logger.error("Contacts store could not be loaded: %s", report.error)
    try:
        yield
    finally:
        if client is not None:
            await client.aclose()


def _manager(request: Request) -> ContactsManager:
    manager = getattr(request.app.state, "manager", None)
    if manager is None:
        raise HTTPException(status_code=503, detail="Contacts engine not ready")
    return manager


def _busy_guard(errors: list[str]) -> None:
    if OPERATION_IN_PROGRESS in errors:
        raise HTTPException(status_code=409, detail=OPERATION_IN_PROGRESS)


class RawContactBody(BaseModel):
    id: str | None = None
    name: str | None = None
    given_name: str | None = None
    family_name: str | None = None
    phone_numbers: list[str] = Field(default_factory=list)
    emails: list[str] = Field(default_factory=list)
    has_image: bool = False


class DeviceUploadBody(BaseModel):
    contacts: list[RawContactBody]
    permission_granted: bool = True


class ImportBody(BaseModel):
    identifiers: list[str] = Field(default_factory=list)
    all: bool = False
    push: bool = False
    detect: bool = False


class InviteBody(BaseModel):
    channel: InvitationChannel = InvitationChannel.SMS
    message: str | None = None


class PushBody(BaseModel):
    force_sync: bool = False


def create_app(manager: ContactsManager | None = None, device: UploadedDeviceSource | None = None) -> FastAPI:
    app = FastAPI(title="Bob Contacts API", lifespan=lifespan)
    app.state.manager = manager
    app.state.device = device

    # --- REST: health ---
    @app.get("/health")
    def health():
        return {"status": "ok"}

    # --- REST: device ---
    @app.post("/device/contacts")
    async def upload_device_contacts(body: DeviceUploadBody, request: Request):
        manager = _manager(request)
        source = request.app.state.device
        if source is None:
            raise HTTPException(status_code=400, detail="Device uploads are not supported")
        source.upload(
            [RawDeviceContact(**c.model_dump()) for c in body.contacts],
            granted=body.permission_granted,
        )
        result = await manager.scan_device()
        _busy_guard(result.errors)
        return {
            "total": result.total,
            "has_permission": result.has_permission,
            "errors": result.errors,
        }

    # --- REST: contacts ---
    @app.get("/contacts")
    def list_contacts(request: Request, page: int = 1, page_size: int = 50, sort: str = "name"):
        try:
            result = _manager(request).repository.paginate(page, page_size, sort)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {
            "contacts": [contact_to_record(c) for c in result.contacts],
            "total_count": result.total_count,
            "total_pages": result.total_pages,
            "current_page": result.current_page,
            "has_next_page": result.has_next_page,
            "has_prev_page": result.has_prev_page,
        }

    @app.get("/contacts/search")
    def search_contacts(q: str, request: Request):
        return [contact_to_record(c) for c in _manager(request).repository.search(q)]

    @app.get("/contacts/{phone}")
    def get_contact(phone: str, request: Request):
        contact = _manager(request).repository.get_by_phone(phone)
        if contact is None:
            raise HTTPException(status_code=404, detail="Contact not found")
        return contact_to_record(contact)

    @app.post("/contacts/import")
    async def import_contacts(body: ImportBody, request: Request):
        manager = _manager(request)
        if body.all:
            result = await manager.import_all(push=body.push, detect=body.detect)
        else:
            result = await manager.import_contacts(body.identifiers, push=body.push, detect=body.detect)
        _busy_guard(result.errors)
        return result

    @app.delete("/contacts/{identifier}")
    async def delete_contact(identifier: str, request: Request):
        result = await _manager(request).delete_contact(identifier)
        _busy_guard(result.errors)
        if not result.found:
            raise HTTPException(status_code=404, detail="Contact not found")
        return result

    @app.post("/contacts/{identifier}/invitation")
    async def invite_contact(identifier: str, body: InviteBody, request: Request):
        result = await _manager(request).invite(identifier, body.channel, body.message)
        if not result.success:
            raise HTTPException(status_code=400, detail="; ".join(result.errors) or "Invitation failed")
        return {"phone": result.phone, "contact": contact_to_record(result.contact)}

    @app.delete("/contacts/{identifier}/invitation")
    async def cancel_invitation(identifier: str, request: Request):
        result = await _manager(request).cancel_invitation(identifier)
        if not result.success:
            raise HTTPException(status_code=400, detail="; ".join(result.errors) or "Cancellation failed")
        return {"phone": result.phone, "contact": contact_to_record(result.contact)}

    # --- REST: stats ---
    @app.get("/stats")
    def stats(request: Request):
        report = _manager(request).stats_report()
        return {
            "stats": report.stats,
            "quality": report.quality,
            "invitations": report.invitations,
            "summary": report.summary,
        }

    # --- REST: sync ---
    @app.post("/sync/push")
    async def push(request: Request, body: PushBody | None = None):
        result = await _manager(request).push(force_sync=bool(body and body.force_sync))
        _busy_guard(result.errors)
        return result

    @app.post("/sync/detect")
    async def detect(request: Request):
        result = await _manager(request).detect()
        _busy_guard(result.errors)
        return {
            "total_checked": result.total_checked,
            "total_found": result.total_found,
            "registered": result.registered,
            "errors": result.errors,
        }

    @app.post("/sync/block")
    def block_sync(request: Request):
        manager = _manager(request)
        manager.block_sync()
        return {"sync_blocked": manager.sync_blocked}

    @app.post("/sync/unblock")
    def unblock_sync(request: Request):
        manager = _manager(request)
        manager.unblock_sync()
        return {"sync_blocked": manager.sync_blocked}

    @app.post("/remote/wipe")
    async def wipe_remote(request: Request):
        result = await _manager(request).wipe_remote()
        _busy_guard(result.errors)
        return {
            "total": result.total,
            "deleted": result.deleted,
            "failed": result.failed,
            "percentage": result.percentage,
            "purged_local": result.purged_local,
            "errors": result.errors,
        }

    return app


logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=logging.INFO,
)

app = create_app()

"""
Admin panel endpoints: dashboard, users, system settings, legal
documents and jobs.

Every route requires an admin (see dependencies.require_admin).
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from shlink_ui.database.connection import get_db
from shlink_ui.dependencies import (
    get_app_config,
    get_job_service,
    get_legal_documents,
    get_settings_store,
    get_shlink_client,
    require_admin,
)
from shlink_ui.mail.models import MailDeliveryError, MailMessage
from shlink_ui.models.system_setting import CATEGORIES
from shlink_ui.models.user import User
from shlink_ui.schemas.admin import (
    LegalDocumentUpdateRequest,
    SettingsTestRequest,
    SettingsUpdateRequest,
    UserUpdateRequest,
)
from shlink_ui.services import runtime_config
from shlink_ui.services.app_config import AppConfig
from shlink_ui.services.job_service import JobService
from shlink_ui.services.legal_documents import LegalDocuments, UnknownDocumentError
from shlink_ui.services.settings_store import SettingsStore
from shlink_ui.services.shlink_client import ShlinkClient
from shlink_ui.services.system_stats_service import SystemStatsService
from shlink_ui.services.user_management_service import PAGE_SIZE, UserManagementService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.get("/dashboard")
async def dashboard(
    db: Session = Depends(get_db),
    jobs: JobService = Depends(get_job_service),
    shlink: ShlinkClient = Depends(get_shlink_client),
):
    return await SystemStatsService(db, jobs, shlink).call()


@router.get("/users")
async def list_users(
    page: int = 1,
    search: Optional[str] = None,
    role: Optional[str] = None,
    db: Session = Depends(get_db),
):
    service = UserManagementService(db)
    users, total = service.list_users(page=page, search=search, role=role)
    visits = service.visit_counts([user.id for user in users])
    return {
        "users": [service.serialize(user, visits.get(user.id, 0)) for user in users],
        "pagination": {
            "page": max(page, 1),
            "per_page": PAGE_SIZE,
            "total": total,
            "pages": (total + PAGE_SIZE - 1) // PAGE_SIZE,
        },
        "stats": service.role_counts(),
    }


def _user_or_404(service: UserManagementService, user_id: int) -> User:
    user = service.get(user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )
    return user


@router.get("/users/{user_id}")
async def show_user(user_id: int, db: Session = Depends(get_db)):
    service = UserManagementService(db)
    user = _user_or_404(service, user_id)
    return service.statistics(user)


@router.patch("/users/{user_id}")
async def update_user(user_id: int, data: UserUpdateRequest, db: Session = Depends(get_db)):
    service = UserManagementService(db)
    user = _user_or_404(service, user_id)
    try:
        service.update(user, name=data.name, email=data.email, role=data.role)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    return {"success": True, "user": service.serialize(user)}


@router.delete("/users/{user_id}")
async def delete_user(
    user_id: int,
    current: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    service = UserManagementService(db)
    user = _user_or_404(service, user_id)
    if user.id == current.id:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="You cannot delete your own account"
        )
    email = user.email
    service.delete(user)
    return {"success": True, "message": f"Deleted user {email}"}


@router.get("/settings")
async def show_settings(store: SettingsStore = Depends(get_settings_store)):
    return {"categories": list(CATEGORIES), "settings": store.grouped()}


@router.put("/settings")
async def update_settings(
    data: SettingsUpdateRequest,
    store: SettingsStore = Depends(get_settings_store),
    config: AppConfig = Depends(get_app_config),
):
    """
    Write the settings, then re-apply the runtime configuration.

    Reconfiguration problems are reported per subsystem; they never turn
    a successful write into an error response.
    """
    try:
        updated = store.update_many(data.settings)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    applied = await runtime_config.reconfigure(config)
    return {"success": True, "updated": updated, "reconfigured": applied}


@router.get("/settings/{category}")
async def settings_category(category: str, store: SettingsStore = Depends(get_settings_store)):
    if category not in CATEGORIES:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Unknown settings category"
        )
    return store.grouped().get(category, [])


@router.post("/settings/reset")
async def reset_settings(
    category: str,
    store: SettingsStore = Depends(get_settings_store),
    config: AppConfig = Depends(get_app_config),
):
    try:
        created = store.reset(category)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    await runtime_config.reconfigure(config)
    return {"success": True, "message": f"Reset {category} settings to defaults", "created": created}


async def _test_email(config: AppConfig, recipient: Optional[str]):
    adapter = runtime_config.mail_adapter()
    if not adapter.configured():
        return {"success": False, "message": f"The {adapter.name} mail adapter is not configured"}
    if not recipient:
        return {"success": True, "message": f"The {adapter.name} mail adapter is configured"}
    site_name = await config.string("system.site_name", "Shlink UI")
    message = MailMessage(
        to=recipient,
        subject=f"[{site_name}] Test email",
        text_body="This is a test email sent from the admin settings page.",
    )
    try:
        adapter.deliver(message)
    except MailDeliveryError as e:
        return {"success": False, "message": f"Test email failed: {e}"}
    return {"success": True, "message": f"Test email sent to {recipient}"}


async def _test_captcha(config: AppConfig):
    site_key = await config.string("captcha.site_key")
    secret_key = await config.string("captcha.secret_key")
    if not site_key or not secret_key:
        return {"success": False, "message": "CAPTCHA keys are not configured"}
    return {"success": True, "message": "CAPTCHA settings look valid"}


@router.post("/settings/test")
async def test_settings(data: SettingsTestRequest, config: AppConfig = Depends(get_app_config)):
    if data.test_type == "email":
        return await _test_email(config, data.recipient)
    if data.test_type == "captcha":
        return await _test_captcha(config)
    return {"success": False, "message": "Unsupported test type"}


def _document_or_404(legal: LegalDocuments, document: str):
    try:
        legal.config(document)
    except UnknownDocumentError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Unknown legal document"
        )


@router.get("/legal_documents")
async def legal_documents(legal: LegalDocuments = Depends(get_legal_documents)):
    return {"documents": legal.index()}


@router.get("/legal_documents/{document}")
async def show_legal_document(document: str, legal: LegalDocuments = Depends(get_legal_documents)):
    _document_or_404(legal, document)
    return legal.serialize(document, legal.stored(document))


@router.get("/legal_documents/{document}/edit")
async def edit_legal_document(document: str, legal: LegalDocuments = Depends(get_legal_documents)):
    """The saved text, or the template to start from."""
    _document_or_404(legal, document)
    return legal.serialize(document, legal.content(document))


@router.put("/legal_documents/{document}")
async def update_legal_document(
    document: str,
    data: LegalDocumentUpdateRequest,
    legal: LegalDocuments = Depends(get_legal_documents),
):
    _document_or_404(legal, document)
    legal.update(document, data.value)
    title = legal.config(document)["title"]
    return {"success": True, "message": f"Updated {title}", **legal.serialize(document, data.value)}


@router.get("/jobs")
async def jobs_dashboard(jobs: JobService = Depends(get_job_service)):
    return {
        "stats": await jobs.stats(),
        "recent_jobs": [jobs.serialize(job) for job in jobs.recent_jobs()],
        "failed_jobs": [jobs.serialize(job) for job in jobs.failed_jobs()],
    }


@router.get("/jobs/stats")
async def jobs_stats(jobs: JobService = Depends(get_job_service)):
    return await jobs.stats()


@router.post("/jobs/retry_all")
async def retry_all_jobs(jobs: JobService = Depends(get_job_service)):
    retried = await jobs.retry_all()
    return {"success": True, "message": f"Retried {retried} failed jobs", "retried": retried}


@router.delete("/jobs/failed")
async def clear_failed_jobs(jobs: JobService = Depends(get_job_service)):
    cleared = jobs.clear_failed()
    return {"success": True, "message": f"Cleared {cleared} failed jobs", "cleared": cleared}


@router.delete("/jobs/finished")
async def clear_finished_jobs(jobs: JobService = Depends(get_job_service)):
    cleared = jobs.clear_finished()
    return {"success": True, "message": f"Cleared {cleared} finished jobs", "cleared": cleared}


@router.post("/jobs/{job_id}/retry")
async def retry_job(job_id: int, jobs: JobService = Depends(get_job_service)):
    job = await jobs.retry(job_id)
    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Failed job not found"
        )
    return {"success": True, "job": jobs.serialize(job)}


@router.delete("/jobs/{job_id}")
async def discard_job(job_id: int, jobs: JobService = Depends(get_job_service)):
    if not jobs.discard(job_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Failed job not found"
        )
    return {"success": True}

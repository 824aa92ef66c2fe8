from fastapi import APIRouter, Depends, Response, status

from shlink_ui.config import settings
from shlink_ui.dependencies import get_legal_documents
from shlink_ui.services.legal_documents import PRIVACY_POLICY, TERMS_OF_SERVICE, LegalDocuments

router = APIRouter(tags=["pages"])

TEAPOT_MESSAGE = "I'm a teapot, not a coffee maker!"


@router.get("/teapot")
def teapot():
    """RFC 2324."""
    return Response(
        content=TEAPOT_MESSAGE,
        status_code=status.HTTP_418_IM_A_TEAPOT,
        media_type="text/plain",
        headers={"X-Teapot-Message": TEAPOT_MESSAGE},
    )


@router.get("/health")
def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "environment": settings.environment}


@router.get("/legal/terms_of_service")
def terms_of_service(legal: LegalDocuments = Depends(get_legal_documents)):
    return legal.serialize(TERMS_OF_SERVICE, legal.content(TERMS_OF_SERVICE))


@router.get("/legal/privacy_policy")
def privacy_policy(legal: LegalDocuments = Depends(get_legal_documents)):
    return legal.serialize(PRIVACY_POLICY, legal.content(PRIVACY_POLICY))

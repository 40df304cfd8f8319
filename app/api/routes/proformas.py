from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from app.db.session import get_db
from app.dependencies.auth import get_current_user_id
from app.models.invoice import DocumentType
from app.schemas.invoice import ProformaUpdate, serialize_invoice
from app.services import documents

router = APIRouter()


@router.get("/{proforma_id}")
async def get_proforma(
    proforma_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    return serialize_invoice(documents.get_document(db, user_id, proforma_id, DocumentType.PROFORMA.value))


@router.put("/{proforma_id}")
async def update_proforma(
    proforma_id: int,
    body: ProformaUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    """Only a PENDING proforma can be edited."""
    proforma = documents.update_proforma(db, user_id, proforma_id, body.model_dump(exclude_unset=True))
    return serialize_invoice(proforma)


@router.delete("/{proforma_id}")
async def delete_proforma(
    proforma_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    documents.delete_document(db, user_id, proforma_id, DocumentType.PROFORMA.value)
    return {"message": "Proforma supprimée avec succès"}

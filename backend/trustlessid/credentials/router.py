from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from trustlessid.auth.dependencies import get_current_user
from trustlessid.database import get_db
from trustlessid.errors import NotFound
from trustlessid.models import Credential, User

from .schemas import CredentialResponse, IssueCredentialRequest
from .service import get_credential, issue_credential, revoke_credential

router = APIRouter(prefix="/credentials", tags=["credentials"])


@router.post("", response_model=CredentialResponse, status_code=201)
@router.post("/", response_model=CredentialResponse, status_code=201, include_in_schema=False)
async def issue(
    body: IssueCredentialRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await issue_credential(
        db,
        user_id=user.id,
        credential_type=body.type,
        document_id=body.document_id,
        evidence_hash=body.evidence_hash,
    )


@router.get("", response_model=list[CredentialResponse])
@router.get("/", response_model=list[CredentialResponse], include_in_schema=False)
async def list_credentials(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(Credential)
        .where(Credential.user_id == user.id)
        .order_by(Credential.issued_at.desc())
    )
    return result.scalars().all()


@router.get("/{credential_id}", response_model=CredentialResponse)
async def get_one(
    credential_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await _owned_credential(db, credential_id, user)


@router.delete("/{credential_id}", status_code=204)
async def revoke(
    credential_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    cred = await _owned_credential(db, credential_id, user)
    await revoke_credential(db, cred)


async def _owned_credential(db: AsyncSession, credential_id: str, user: User) -> Credential:
    cred = await get_credential(db, credential_id)
    if cred is None or cred.user_id != user.id:
        raise NotFound("Credential not found")
    return cred

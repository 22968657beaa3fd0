from fastapi import APIRouter

from keypool.core.dependencies import Caller, DbSession
from keypool.core.exceptions import SecretDecryptionError
from keypool.credentials import service as cred_service
from keypool.credentials.schemas import CredentialStatus, PoolStats

router = APIRouter(prefix="/pools/{service_name}", tags=["pools"])


@router.get("/stats", response_model=PoolStats)
async def pool_stats(service_name: str, caller: Caller, db: DbSession):
    return await cred_service.get_pool_stats(db, service_name)


@router.get("/credentials", response_model=list[CredentialStatus])
async def credential_statuses(service_name: str, caller: Caller, db: DbSession):
    creds = await cred_service.list_credentials(db, service_name)
    statuses = []
    for cred in creds:
        status = CredentialStatus.model_validate(cred)
        try:
            status.secret_hint = cred_service.mask_secret(cred_service.reveal_secret(cred))
        except SecretDecryptionError:
            status.secret_hint = None
        statuses.append(status)
    return statuses

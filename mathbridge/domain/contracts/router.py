"""Contract router - FastAPI endpoints for contract operations"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...auth import get_current_user, require_roles
from ...database import get_db
from ...models import User
from ..notifications.dispatcher import NotificationDispatcher, get_dispatcher
from ..sessions.schemas import SessionResponse
from ..wallet.schemas import WalletTransactionResponse
from .schemas import ContractCancel, ContractCreate, ContractResponse
from .service import ContractService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/contracts", tags=["Contracts"])


def get_contract_service(
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> ContractService:
    """Dependency injection for ContractService"""
    return ContractService(db, dispatcher)


@router.post("", response_model=ContractResponse, status_code=201)
async def create_contract(
    data: ContractCreate,
    current_user: User = Depends(require_roles("parent")),
    service: ContractService = Depends(get_contract_service),
):
    return ContractResponse.from_model(service.create_contract(current_user, data))


@router.get("/parent", response_model=list[ContractResponse])
async def get_parent_contracts(
    current_user: User = Depends(require_roles("parent")),
    service: ContractService = Depends(get_contract_service),
):
    return [ContractResponse.from_model(c) for c in service.get_contracts_for_parent(current_user)]


@router.get("/tutor", response_model=list[ContractResponse])
async def get_tutor_contracts(
    current_user: User = Depends(require_roles("tutor")),
    service: ContractService = Depends(get_contract_service),
):
    return [ContractResponse.from_model(c) for c in service.get_contracts_for_tutor(current_user)]


@router.get("/{contract_id}", response_model=ContractResponse)
async def get_contract(
    contract_id: int,
    current_user: User = Depends(get_current_user),
    service: ContractService = Depends(get_contract_service),
):
    return ContractResponse.from_model(service.get_contract(current_user, contract_id))


@router.get("/{contract_id}/sessions", response_model=list[SessionResponse])
async def get_contract_sessions(
    contract_id: int,
    current_user: User = Depends(get_current_user),
    service: ContractService = Depends(get_contract_service),
):
    return [SessionResponse.from_model(s) for s in service.get_sessions_for_contract(current_user, contract_id)]


@router.post("/{contract_id}/pay-with-wallet", response_model=WalletTransactionResponse)
async def pay_contract_with_wallet(
    contract_id: int,
    current_user: User = Depends(require_roles("parent")),
    service: ContractService = Depends(get_contract_service),
):
    """Pay an unpaid contract from the wallet balance"""
    payment = await service.pay_with_wallet(current_user, contract_id)
    return WalletTransactionResponse.from_model(payment)


@router.put("/{contract_id}/approve", response_model=ContractResponse)
async def approve_contract(
    contract_id: int,
    current_user: User = Depends(require_roles("staff", "admin")),
    service: ContractService = Depends(get_contract_service),
):
    return ContractResponse.from_model(await service.approve_contract(current_user, contract_id))


@router.put("/{contract_id}/complete", response_model=ContractResponse)
async def complete_contract(
    contract_id: int,
    current_user: User = Depends(require_roles("staff", "admin")),
    service: ContractService = Depends(get_contract_service),
):
    return ContractResponse.from_model(service.complete_contract(current_user, contract_id))


@router.put("/{contract_id}/cancel", response_model=ContractResponse)
async def cancel_contract(
    contract_id: int,
    data: Optional[ContractCancel] = None,
    current_user: User = Depends(get_current_user),
    service: ContractService = Depends(get_contract_service),
):
    reason = data.reason if data else None
    return ContractResponse.from_model(await service.cancel_contract(current_user, contract_id, reason))

# routers/users.py
from typing import List

from fastapi import APIRouter

from errors import NotFoundError
from lifecycle import EngineDep
from models import Account
from schemas import AccountRead, ListingRead
from .auth import CurrentAccountDep

router = APIRouter(tags=["users"])


@router.get("/{user_id}", response_model=AccountRead)
def get_user(user_id: int, engine: EngineDep, current: CurrentAccountDep):
    """
    Get a single account's public profile by ID.
    """
    account = engine.session.get(Account, user_id)
    if account is None:
        raise NotFoundError("User not found")
    return account


@router.get("/{user_id}/listings", response_model=List[ListingRead])
def get_user_listings(user_id: int, engine: EngineDep, current: CurrentAccountDep):
    """
    Listings posted by a donor, newest first.
    """
    now = engine.clock()
    return [
        ListingRead.build(listing, now)
        for listing in engine.listings.list_for_donor(user_id)
    ]

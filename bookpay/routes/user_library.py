from fastapi import APIRouter, Depends, status
from sqlmodel import Session

from bookpay.database import get_session
from bookpay.dependencies.auth import Principal, require_user
from bookpay.schemas.library_schemas import ProgressUpdate
from bookpay.services import library_service

router = APIRouter()


@router.get("")
def my_library(
    principal: Principal = Depends(require_user),
    session: Session = Depends(get_session),
):
    return library_service.list_library(session, principal.user_id)


@router.post("/free/{book_id}", status_code=status.HTTP_201_CREATED)
def add_free_book(
    book_id: int,
    principal: Principal = Depends(require_user),
    session: Session = Depends(get_session),
):
    entry = library_service.add_free_book(session, principal.user_id, book_id)
    return {"message": "Book added to your library", "entry": entry}


@router.patch("/{book_id}/progress")
def update_progress(
    book_id: int,
    data: ProgressUpdate,
    principal: Principal = Depends(require_user),
    session: Session = Depends(get_session),
):
    entry = library_service.update_progress(session, principal.user_id, book_id, data.progress)
    return {"book_id": entry.book_id, "status": entry.status, "progress": entry.progress}

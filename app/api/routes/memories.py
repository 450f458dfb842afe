from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.orm import Session
from app.db.session import get_db
from app.dependencies.entitlement import require_access
from app.models.memory import Memory
from app.models.user import User
from app.schemas.content import MemoryCreate, MemoryResponse, MemoryUpdate

router = APIRouter()


def _memory_payload(memory: Memory) -> dict:
    return {
        "id": memory.id,
        "title": memory.title,
        "content": memory.content,
        "tags": memory.tags or [],
        "emotion": memory.emotion,
        "metadata": memory.memory_metadata,
        "created_at": memory.created_at,
        "updated_at": memory.updated_at,
    }


def _get_owned_memory(db: Session, memory_id: int, user_id: int) -> Memory:
    memory = db.query(Memory).filter(Memory.id == memory_id, Memory.user_id == user_id).first()
    if not memory:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Memory not found"
        )
    return memory


@router.get("", response_model=List[MemoryResponse])
def list_memories(
    emotion: Optional[str] = Query(None),
    tag: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(require_access)
):
    query = db.query(Memory).filter(Memory.user_id == user.id)
    if emotion:
        query = query.filter(Memory.emotion == emotion)
    memories = query.order_by(Memory.created_at.desc()).all()
    if tag:
        # Tags are a JSON list; filter in Python to stay portable across databases
        memories = [m for m in memories if tag in (m.tags or [])]
    return [_memory_payload(m) for m in memories]


@router.post("", response_model=MemoryResponse, status_code=status.HTTP_201_CREATED)
def create_memory(
    memory_data: MemoryCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_access)
):
    memory = Memory(
        user_id=user.id,
        title=memory_data.title,
        content=memory_data.content,
        tags=memory_data.tags,
        emotion=memory_data.emotion,
        memory_metadata=memory_data.metadata,
    )
    db.add(memory)
    db.commit()
    db.refresh(memory)
    return _memory_payload(memory)


@router.get("/{memory_id}", response_model=MemoryResponse)
def get_memory(
    memory_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_access)
):
    return _memory_payload(_get_owned_memory(db, memory_id, user.id))


@router.put("/{memory_id}", response_model=MemoryResponse)
def update_memory(
    memory_id: int,
    memory_data: MemoryUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_access)
):
    memory = _get_owned_memory(db, memory_id, user.id)
    updates = memory_data.model_dump(exclude_unset=True)
    if "metadata" in updates:
        memory.memory_metadata = updates.pop("metadata")
    for field_name, value in updates.items():
        setattr(memory, field_name, value)
    db.commit()
    db.refresh(memory)
    return _memory_payload(memory)


@router.delete("/{memory_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_memory(
    memory_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_access)
):
    memory = _get_owned_memory(db, memory_id, user.id)
    db.delete(memory)
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)

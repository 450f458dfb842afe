from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.orm import Session
from app.db.session import get_db
from app.dependencies.entitlement import require_access
from app.models.task import Task
from app.models.user import User
from app.schemas.content import TaskCreate, TaskResponse, TaskUpdate

router = APIRouter()


def _get_owned_task(db: Session, task_id: int, user_id: int) -> Task:
    task = db.query(Task).filter(Task.id == task_id, Task.user_id == user_id).first()
    if not task:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Task not found"
        )
    return task


@router.get("", response_model=List[TaskResponse])
def list_tasks(
    completed: Optional[bool] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(require_access)
):
    query = db.query(Task).filter(Task.user_id == user.id)
    if completed is not None:
        query = query.filter(Task.completed == completed)
    return query.order_by(Task.completed, Task.due_date, Task.created_at.desc()).all()


@router.post("", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
def create_task(
    task_data: TaskCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_access)
):
    task = Task(user_id=user.id, **task_data.model_dump())
    db.add(task)
    db.commit()
    db.refresh(task)
    return task


@router.put("/{task_id}", response_model=TaskResponse)
def update_task(
    task_id: int,
    task_data: TaskUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_access)
):
    task = _get_owned_task(db, task_id, user.id)
    for field_name, value in task_data.model_dump(exclude_unset=True).items():
        setattr(task, field_name, value)
    db.commit()
    db.refresh(task)
    return task


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_task(
    task_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_access)
):
    task = _get_owned_task(db, task_id, user.id)
    db.delete(task)
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)

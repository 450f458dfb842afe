from app.tasks.data_retention_tasks import run_data_deletion

__all__ = [
    'run_data_deletion'
]

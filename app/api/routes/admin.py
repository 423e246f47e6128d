from fastapi import APIRouter

from app.api.dependencies import require_db
from app.models.schemas import MigrationRunResponse
from app.services import migrations

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/schema", response_model=MigrationRunResponse)
def bootstrap_schema():
    require_db()
    return migrations.run_migrations()

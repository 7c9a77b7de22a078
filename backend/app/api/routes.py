from fastapi import APIRouter

from app.api.config import router as config_router

router = APIRouter()

router.include_router(config_router)


@router.get("/", tags=["root"])
def read_root() -> dict[str, str]:
    return {"message": "Welcome to the Digital Room API"}

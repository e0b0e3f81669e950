from fastapi import APIRouter, Request
from sqlalchemy import text

router = APIRouter(tags=["health"])


@router.get("/health")
def health(request: Request):
	db = request.app.state.db
	with db.session() as s:
		s.execute(text("SELECT 1"))
	return {"status": "ok"}

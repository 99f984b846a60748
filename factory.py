"""
Generic CRUD endpoints.

Every builder takes a repository class and returns a FastAPI endpoint, so a
router wires a resource with one line per verb:

    router.add_api_route("/", factory.get_all(TourRepository), methods=["GET"])

Nested routers pass their parent id through the path (``/tours/{tour_id}/reviews``);
``get_all`` turns known parent parameters into a scope filter.
"""

from typing import Any, Callable, Dict, Type

from fastapi import Body, Depends, Request, Response
from pymongo.database import Database

from database import get_db
from repositories import Repository

# path parameter -> document field
PARENT_SCOPES = {"tour_id": "tour_id", "user_id": "user_id"}


def envelope(data: Any, **extra) -> Dict:
    return {"status": "success", **extra, "data": {"data": data}}


def parent_scope(request: Request) -> Dict:
    return {field: request.path_params[param] for param, field in PARENT_SCOPES.items() if param in request.path_params}


def get_all(repo_cls: Type[Repository]) -> Callable:
    def handler(request: Request, db: Database = Depends(get_db)):
        docs = repo_cls(db).find_all(request.query_params.multi_items(), scope=parent_scope(request))
        return envelope(docs, results=len(docs))

    handler.__name__ = f"get_all_{repo_cls.entity}s"
    return handler


def get_one(repo_cls: Type[Repository], populate: bool = False) -> Callable:
    def handler(id: str, db: Database = Depends(get_db)):
        return envelope(repo_cls(db).find_by_id(id, detail=populate))

    handler.__name__ = f"get_{repo_cls.entity}"
    return handler


def create_one(repo_cls: Type[Repository]) -> Callable:
    def handler(payload: Dict[str, Any] = Body(...), db: Database = Depends(get_db)):
        return envelope(repo_cls(db).create(payload))

    handler.__name__ = f"create_{repo_cls.entity}"
    return handler


def update_one(repo_cls: Type[Repository]) -> Callable:
    def handler(id: str, payload: Dict[str, Any] = Body(...), db: Database = Depends(get_db)):
        return envelope(repo_cls(db).update(id, payload))

    handler.__name__ = f"update_{repo_cls.entity}"
    return handler


def delete_one(repo_cls: Type[Repository]) -> Callable:
    def handler(id: str, db: Database = Depends(get_db)):
        repo_cls(db).delete(id)
        return Response(status_code=204)

    handler.__name__ = f"delete_{repo_cls.entity}"
    return handler

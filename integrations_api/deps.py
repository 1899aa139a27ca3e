from fastapi import Request

from .context import ServiceContext

def get_context(request: Request) -> ServiceContext:
    return request.app.state.context

def get_session(request: Request):
    db = get_context(request).open_session()
    try:
        yield db
    finally:
        db.close()

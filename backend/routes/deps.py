from fastapi import Request

from world_tavern.session import SessionEngine


def get_engine(request: Request) -> SessionEngine:
    return request.app.state.engine

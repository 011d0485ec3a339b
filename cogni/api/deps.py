from fastapi import Request

from cogni.services.hub import ChatHub


def get_hub(request: Request) -> ChatHub:
    return request.app.state.hub

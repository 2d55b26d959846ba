from fastapi import Request

from thinkloop.application.container import Container


def get_container(request: Request) -> Container:
    return request.app.state.container

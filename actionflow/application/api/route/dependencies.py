from fastapi import Request

from actionflow.application.container import ActionFlowContainer


def get_container(request: Request) -> ActionFlowContainer:
    return request.app.state.container

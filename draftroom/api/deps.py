from fastapi import Request

from draftroom.services.draft_gateway import DraftGateway


def get_gateway(request: Request) -> DraftGateway:
    return request.app.state.gateway

from __future__ import annotations

from fastapi.routing import APIRoute
from starlette.requests import Request

from cohort_admin.request_context import current_endpoint


class EndpointNameRoute(APIRoute):
    """Tags every request with `METHOD /path` so slow-query logs name the endpoint."""

    def get_route_handler(self):
        original_handler = super().get_route_handler()

        async def custom_handler(request: Request):
            token = current_endpoint.set(f'{request.method} {self.path}')
            try:
                return await original_handler(request)
            finally:
                current_endpoint.reset(token)

        return custom_handler

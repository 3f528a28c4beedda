# barbershop/deps.py

from fastapi import Request

from barbershop.service import BarbershopService


def get_service(request: Request) -> BarbershopService:
    return request.app.state.service

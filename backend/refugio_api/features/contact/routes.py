from fastapi import APIRouter, Depends, Request, Response

from refugio_api.features.contact.schemas import ContactResponse, ErrorResponse
from refugio_api.features.contact.services import ContactHandler
from refugio_api.platform.errors import PayloadTooLargeError

router = APIRouter()


def get_contact_handler(request: Request) -> ContactHandler:
    return request.app.state.contact_handler


def client_address(request: Request, *, trust_forwarded_for: bool = True) -> str:
    if trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for", "")
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client and request.client.host:
        return request.client.host
    return ""


async def read_body(request: Request, *, limit: int) -> bytes:
    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > limit:
            raise PayloadTooLargeError(f"Request body exceeds {limit} bytes")
    return bytes(body)


@router.post(
    "/contact",
    response_model=ContactResponse,
    responses={400: {"model": ErrorResponse}, 429: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def contact(
    request: Request,
    response: Response,
    handler: ContactHandler = Depends(get_contact_handler),
) -> ContactResponse:
    trust_forwarded_for = request.app.state.settings.trust_forwarded_for
    body = await read_body(request, limit=request.app.state.settings.max_body_bytes)
    receipt = await handler.handle(
        body,
        client_ip=client_address(request, trust_forwarded_for=trust_forwarded_for),
    )
    response.headers.update(receipt.rate_limit.headers())
    return ContactResponse(ok=True)

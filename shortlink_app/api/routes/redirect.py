from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from fastapi.responses import JSONResponse, RedirectResponse

from shortlink_app.config import settings
from shortlink_app.dependencies import get_redirect_resolver
from shortlink_app.queue.models import ClickObservation
from shortlink_app.services.redirect_resolver import RedirectResolver, RedirectState

router = APIRouter(tags=["redirect"])


def client_ip(request: Request):
    """
    Address of the visitor.

    X-Forwarded-For is client-controlled, so its first hop is only used when
    ``trust_forwarded_for`` says a proxy in front of us sets it.
    """
    if settings.trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


@router.get("/{short_code}")
async def redirect_to_original_url(
    short_code: str,
    request: Request,
    background_tasks: BackgroundTasks,
    resolver: RedirectResolver = Depends(get_redirect_resolver)
):
    """
    Redirect to the original URL.

    Flow:
    1. Resolve the code (cache first, then storage)
    2. Answer 301 immediately
    3. After the response is sent, hand the click to the pipeline

    Click recording never delays or fails the redirect.
    """
    outcome = await resolver.resolve(short_code)

    if outcome.state is RedirectState.NOT_FOUND:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"message": "Short URL not found"}
        )
    if outcome.state is RedirectState.ERROR:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"message": "Redirect failed"}
        )

    observation = ClickObservation(
        link_id=outcome.link.id,
        short_code=short_code,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
        referrer=request.headers.get("referer"),
    )
    background_tasks.add_task(resolver.dispatch_click, outcome, observation)

    return RedirectResponse(url=outcome.link.original_url, status_code=status.HTTP_301_MOVED_PERMANENTLY)

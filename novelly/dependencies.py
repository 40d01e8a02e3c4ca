from fastapi import HTTPException, Request, status

from novelly.container import ServiceContainer


def get_container(request: Request) -> ServiceContainer:
    """FastAPI dependency: the service container built at startup."""
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Services are not initialized",
        )
    return container

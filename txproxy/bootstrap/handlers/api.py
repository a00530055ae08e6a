from typing import Any, Mapping

from txproxy.bootstrap.deps import get_api_app, get_endpoint
from txproxy.core.models.message import Message


app = get_api_app()


@app.request("operation")
async def operation(data: Mapping[str, Any]) -> Message:
    endpoint = get_endpoint()
    return await endpoint.handle(data)

"""HTTP webhook backend."""

from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

import httpx

from app.errors import BackendError, ValidationError
from app.models.tools import WebhookConfig
from app.utils.logging import get_logger

logger = get_logger(__name__)

_BODYLESS_METHODS = ("GET", "DELETE")


@dataclass
class WebhookRequest:
    """The outgoing request built from a webhook config and call arguments."""

    method: str
    url: str
    params: dict[str, Any] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    json: dict[str, Any] | None = None


def _format_template(template: str, args: dict[str, Any], what: str) -> str:
    try:
        return template.format_map(args)
    except KeyError as e:
        raise ValidationError(f"Missing argument {e.args[0]!r} required by webhook {what}") from e
    except (IndexError, ValueError) as e:
        raise BackendError(f"Malformed webhook {what} template {template!r}: {e}") from e


def build_request(config: WebhookConfig, args: dict[str, Any]) -> WebhookRequest:
    """Map call arguments onto the URL path, query string, headers and body.

    Raises:
        ValidationError: If a required parameter or template argument is missing
    """
    path_args: dict[str, str] = {}
    params: dict[str, Any] = {}
    headers: dict[str, str] = {}
    body: dict[str, Any] = {}

    if config.parameters:
        for parameter in config.parameters:
            if parameter.name not in args:
                if parameter.required:
                    raise ValidationError(f"Missing required webhook parameter: {parameter.name}")
                continue
            value = args[parameter.name]
            if parameter.location == "path":
                path_args[parameter.name] = quote(str(value), safe="")
            elif parameter.location == "query":
                params[parameter.name] = value
            elif parameter.location == "header":
                headers[parameter.name] = str(value)
            else:
                body[parameter.name] = value
    elif config.method in _BODYLESS_METHODS:
        params = dict(args)
    else:
        body = dict(args)

    # Header values are templates over the call arguments, e.g. "Bearer {token}"
    for name, template in config.headers.items():
        headers[name] = _format_template(template, args, f"header {name}")

    url = config.url
    if "{" in url:
        url = _format_template(url, {**{k: quote(str(v), safe="") for k, v in args.items()}, **path_args}, "url")

    json_body = body if body or config.method not in _BODYLESS_METHODS else None
    return WebhookRequest(method=config.method, url=url, params=params, headers=headers, json=json_body)


async def call_webhook(
    client: httpx.AsyncClient, config: WebhookConfig, args: dict[str, Any], default_timeout: float = 30.0
) -> Any:
    """Issue the webhook request and decode its response.

    Raises:
        ValidationError: If the arguments do not fit the parameter mapping
        BackendError: On transport failure or a non-2xx response
    """
    request = build_request(config, args)
    logger.debug(f"Calling webhook {request.method} {request.url}")

    try:
        response = await client.request(
            request.method,
            request.url,
            params=request.params or None,
            headers=request.headers or None,
            json=request.json,
            timeout=config.timeout or default_timeout,
        )
    except httpx.HTTPError as e:
        raise BackendError(f"Webhook request failed: {e}") from e

    if response.headers.get("content-type", "").startswith("application/json"):
        try:
            payload: Any = response.json()
        except ValueError:
            payload = response.text
    else:
        payload = response.text

    if not response.is_success:
        logger.warning(f"Webhook {request.method} {request.url} returned {response.status_code}")
        raise BackendError(
            f"Webhook returned HTTP {response.status_code}: {response.text[:500]}",
            status_code=response.status_code,
            body=payload,
        )

    return payload

"""Built-in tools."""

import ast
import asyncio
import ipaddress
import logging
import operator
import socket
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from chattree.tools.base import Tool, ToolResult

logger = logging.getLogger(__name__)

_BINARY_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}
_UNARY_OPS = {ast.UAdd: operator.pos, ast.USub: operator.neg}


class CalculatorTool(Tool):
    """Evaluates an arithmetic expression. No names, calls or attributes."""

    name = "calculator"
    description = "Evaluate an arithmetic expression such as '(3 + 4) * 2 ** 3'."
    input_schema = {
        "type": "object",
        "properties": {"expression": {"type": "string"}},
        "required": ["expression"],
    }

    async def call(self, parameters: dict[str, Any]) -> ToolResult:
        expression = str(parameters.get("expression", ""))
        try:
            value = _evaluate(ast.parse(expression, mode="eval").body)
        except (SyntaxError, ValueError, ZeroDivisionError, OverflowError) as e:
            return ToolResult(output=f"Could not evaluate '{expression}': {e}")
        return ToolResult(output=f"{expression} = {value}")


def _evaluate(node: ast.AST) -> float | int:
    if isinstance(node, ast.Constant) and isinstance(node.value, int | float):
        return node.value
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPS:
        left, right = _evaluate(node.left), _evaluate(node.right)
        if isinstance(node.op, ast.Pow) and abs(right) > 100:
            raise ValueError("exponent too large")
        return _BINARY_OPS[type(node.op)](left, right)
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_evaluate(node.operand))
    raise ValueError(f"unsupported expression: {ast.dump(node)}")


Resolver = Callable[[str], Awaitable[list[str]]]


async def resolve_host(host: str) -> list[str]:
    infos = await asyncio.get_running_loop().getaddrinfo(host, None, type=socket.SOCK_STREAM)
    return [info[4][0] for info in infos]


def _is_public(address: str) -> bool:
    ip = ipaddress.ip_address(address.split("%", 1)[0])
    return ip.is_global and not ip.is_multicast


class FetchUrlTool(Tool):
    """Downloads a page, returns its text and keeps the raw body as an attachment.

    Only public addresses are fetched. Redirects are followed by hand so every
    hop is checked the same way.
    """

    name = "fetch_url"
    description = "Fetch a web page and return its text content."
    input_schema = {
        "type": "object",
        "properties": {"url": {"type": "string"}},
        "required": ["url"],
    }

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        max_chars: int = 4000,
        max_redirects: int = 5,
        resolver: Resolver = resolve_host,
    ) -> None:
        self._client = client or httpx.AsyncClient(timeout=10.0)
        self._max_chars = max_chars
        self._max_redirects = max_redirects
        self._resolver = resolver

    async def call(self, parameters: dict[str, Any]) -> ToolResult:
        url = str(parameters.get("url", ""))
        if not url.startswith(("http://", "https://")):
            return ToolResult(output=f"Refusing to fetch non-http URL: {url}")

        try:
            target = httpx.URL(url)
        except httpx.InvalidURL as e:
            return ToolResult(output=f"Refusing to fetch invalid URL {url}: {e}")
        for _ in range(self._max_redirects + 1):
            refusal = await self._check_host(target)
            if refusal is not None:
                logger.warning("fetch_url refused %s: %s", target, refusal)
                return ToolResult(output=f"Refusing to fetch {target}: {refusal}")
            try:
                response = await self._client.get(target, follow_redirects=False)
            except httpx.HTTPError as e:
                logger.warning("fetch_url failed for %s: %s", target, e)
                return ToolResult(output=f"Failed to fetch {url}: {e}")
            if not response.has_redirect_location:
                break
            target = response.url.join(response.headers["location"])
        else:
            return ToolResult(output=f"Failed to fetch {url}: too many redirects")

        try:
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("fetch_url failed for %s: %s", target, e)
            return ToolResult(output=f"Failed to fetch {url}: {e}")

        text = response.text
        if len(text) > self._max_chars:
            text = text[: self._max_chars] + "..."
        return ToolResult(output=text, display=False, files=[response.content])

    async def _check_host(self, url: httpx.URL) -> str | None:
        """Reason to refuse ``url``, or None when every address it resolves to is public."""
        if url.scheme not in ("http", "https"):
            return "not an http URL"
        if not url.host:
            return "no host"
        try:
            addresses = [str(ipaddress.ip_address(url.host))]
        except ValueError:
            try:
                addresses = await self._resolver(url.host)
            except OSError as e:
                return f"cannot resolve {url.host}: {e}"
        if not addresses or not all(_is_public(a) for a in addresses):
            return "not a public address"
        return None

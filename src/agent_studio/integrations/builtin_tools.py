"""
内置工具集
"""
import calendar
import json
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
import logging

import httpx

from ..core.expressions import evaluate, evaluate_math
from .exceptions import ToolExecutionError
from .tool_registry import (
    ToolRegistry, ToolDefinition, ToolParameter, ParameterType, ParameterValidation
)


logger = logging.getLogger(__name__)

DUCKDUCKGO_URL = "https://api.duckduckgo.com/"

_UNIT_SECONDS = {
    "seconds": 1,
    "minutes": 60,
    "hours": 3600,
    "days": 86400,
    "weeks": 7 * 86400,
    "months": 30 * 86400,
    "years": 365 * 86400,
}


async def web_search(params: Dict[str, Any], transport: Optional[httpx.AsyncBaseTransport] = None) -> List[Dict[str, str]]:
    """DuckDuckGo 即时答案搜索，失败时返回占位结果"""
    query = params["query"]
    max_results = int(params.get("maxResults", 5))

    try:
        async with httpx.AsyncClient(transport=transport, timeout=10.0) as client:
            response = await client.get(DUCKDUCKGO_URL, params={
                "q": query,
                "format": "json",
                "no_html": 1,
                "skip_disambig": 1,
            })
            response.raise_for_status()
            data = response.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.warning(f"Web search unavailable for query '{query}': {e}")
        return [{
            "title": "Search Unavailable",
            "url": "",
            "snippet": f'Web search is currently unavailable. Query: "{query}"',
            "source": "System",
        }]

    results = []
    if data.get("Abstract") and data.get("AbstractText"):
        results.append({
            "title": data.get("Heading") or "Result",
            "url": data.get("AbstractURL", ""),
            "snippet": data["AbstractText"],
            "source": data.get("AbstractSource") or "DuckDuckGo",
        })

    for topic in data.get("RelatedTopics", []):
        if len(results) >= max_results:
            break
        text = topic.get("Text")
        url = topic.get("FirstURL")
        if text and url:
            results.append({
                "title": text.split(" - ")[0] or text,
                "url": url,
                "snippet": text,
                "source": "DuckDuckGo",
            })

    return results[:max_results]


async def http_request(params: Dict[str, Any], transport: Optional[httpx.AsyncBaseTransport] = None) -> Dict[str, Any]:
    """发送 HTTP 请求，timeout 单位为毫秒"""
    method = params.get("method", "GET").upper()
    headers = {"Content-Type": "application/json"}
    headers.update(params.get("headers") or {})
    body = params.get("body")
    timeout_ms = params.get("timeout", 30000)

    request_kwargs: Dict[str, Any] = {"headers": headers}
    if body is not None and method in ("POST", "PUT", "PATCH"):
        request_kwargs["json"] = body

    try:
        async with httpx.AsyncClient(transport=transport, timeout=timeout_ms / 1000) as client:
            response = await client.request(method, params["url"], **request_kwargs)
    except httpx.HTTPError as e:
        raise ToolExecutionError("http_request", f"HTTP request failed: {e}", e) from e

    content_type = response.headers.get("content-type", "")
    if "application/json" in content_type:
        data = response.json()
    else:
        data = response.text

    return {
        "status": response.status_code,
        "status_text": response.reason_phrase,
        "headers": dict(response.headers),
        "data": data,
    }


def calculator(params: Dict[str, Any]) -> float:
    return evaluate_math(params["expression"])


def text_transform(params: Dict[str, Any]) -> Any:
    text = params["text"]
    operation = params["operation"]

    if operation == "uppercase":
        return text.upper()
    if operation == "lowercase":
        return text.lower()
    if operation == "titlecase":
        return re.sub(r"\w\S*", lambda m: m.group(0)[0].upper() + m.group(0)[1:].lower(), text)
    if operation == "reverse":
        return text[::-1]
    if operation == "trim":
        return text.strip()
    if operation == "length":
        return len(text)
    if operation == "words":
        return len(text.split())
    raise ToolExecutionError("text_transform", f"Unknown operation: {operation}")


def _extract_path(obj: Any, path: str) -> Any:
    result = obj
    for key in path.split("."):
        if isinstance(result, dict):
            result = result.get(key)
        elif isinstance(result, list) and key.isdigit() and int(key) < len(result):
            result = result[int(key)]
        else:
            return None
        if result is None:
            break
    return result


def json_parser(params: Dict[str, Any]) -> Any:
    raw = params["input"]
    operation = params["operation"]

    def load(value):
        return json.loads(value) if isinstance(value, str) else value

    if operation == "parse":
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise ToolExecutionError("json_parser", "Invalid JSON string", e) from e

    if operation == "stringify":
        return json.dumps(raw, indent=2, ensure_ascii=False)

    if operation == "validate":
        try:
            json.loads(raw)
        except json.JSONDecodeError as e:
            return {"valid": False, "error": str(e)}
        return {"valid": True}

    if operation == "extract":
        path = params.get("path")
        if not path:
            raise ToolExecutionError("json_parser", "Path required for extract operation")
        try:
            return _extract_path(load(raw), path)
        except json.JSONDecodeError as e:
            raise ToolExecutionError("json_parser", "Failed to extract value from path", e) from e

    if operation == "format":
        try:
            return json.dumps(load(raw), indent=2, ensure_ascii=False)
        except json.JSONDecodeError as e:
            raise ToolExecutionError("json_parser", "Failed to format JSON", e) from e

    raise ToolExecutionError("json_parser", f"Unknown operation: {operation}")


def _parse_date(value: Optional[str]) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as e:
        raise ToolExecutionError("date_time", f"Invalid date: {value}", e) from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _add_months(value: datetime, months: int) -> datetime:
    year, month = divmod(value.month - 1 + months, 12)
    year += value.year
    month += 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def date_time(params: Dict[str, Any]) -> str:
    operation = params["operation"]

    if operation == "now":
        return datetime.now(timezone.utc).isoformat()

    if operation == "format":
        moment = _parse_date(params.get("date"))
        fmt = params.get("format", "ISO")
        if fmt == "ISO":
            return moment.isoformat()
        if fmt == "UTC":
            return moment.astimezone(timezone.utc).strftime("%a, %d %b %Y %H:%M:%S GMT")
        if fmt == "locale":
            return moment.strftime("%c")
        return moment.strftime(fmt)

    if operation == "parse":
        return _parse_date(params.get("date")).isoformat()

    if operation in ("add", "subtract"):
        amount = params.get("amount")
        unit = params.get("unit")
        if not amount or not unit:
            raise ToolExecutionError("date_time", "Amount and unit required for add/subtract")
        moment = _parse_date(params.get("date"))
        amount = -amount if operation == "subtract" else amount

        if unit == "months":
            return _add_months(moment, int(amount)).isoformat()
        if unit == "years":
            return _add_months(moment, int(amount) * 12).isoformat()
        return (moment + timedelta(seconds=amount * _UNIT_SECONDS[unit])).isoformat()

    if operation == "diff":
        if not params.get("date"):
            raise ToolExecutionError("date_time", "Date required for diff")
        unit = params.get("unit") or "seconds"
        delta = abs((datetime.now(timezone.utc) - _parse_date(params["date"])).total_seconds())
        return f"{int(delta // _UNIT_SECONDS[unit])} {unit}"

    raise ToolExecutionError("date_time", f"Unknown operation: {operation}")


_REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL}


def text_extraction(params: Dict[str, Any]) -> List[str]:
    flags_text = params.get("flags", "g")
    flags = 0
    for flag in flags_text:
        flags |= _REGEX_FLAGS.get(flag, 0)

    try:
        regex = re.compile(params["pattern"], flags)
    except re.error as e:
        raise ToolExecutionError("text_extraction", f"Invalid regex pattern: {e}", e) from e

    matches = [match.group(0) for match in regex.finditer(params["text"])]
    if "g" not in flags_text:
        return matches[:1]
    return matches


def array_operations(params: Dict[str, Any]) -> Any:
    array = params["array"]
    operation = params["operation"]
    parameter = params.get("parameter")

    if operation == "length":
        return len(array)
    if operation == "unique":
        unique = []
        for item in array:
            if item not in unique:
                unique.append(item)
        return unique
    if operation == "sort":
        try:
            return sorted(array)
        except TypeError:
            return sorted(array, key=str)
    if operation == "reverse":
        return list(reversed(array))
    if operation in ("sum", "average", "min", "max"):
        numbers = [float(item) for item in array]
        if operation == "sum":
            return sum(numbers)
        if not numbers:
            raise ToolExecutionError("array_operations", f"Cannot compute {operation} of an empty array")
        if operation == "average":
            return sum(numbers) / len(numbers)
        return min(numbers) if operation == "min" else max(numbers)
    if operation == "join":
        return (parameter or ",").join(str(item) for item in array)
    if operation == "filter":
        if not parameter:
            raise ToolExecutionError("array_operations", "Filter expression required")
        return [item for item in array if evaluate(parameter, {"item": item})]
    raise ToolExecutionError("array_operations", f"Unknown operation: {operation}")


class BuiltinTools:
    """内置工具集"""

    @staticmethod
    def create_web_search_tool(transport: Optional[httpx.AsyncBaseTransport] = None) -> ToolDefinition:
        """创建网页搜索工具"""
        async def handler(params: Dict[str, Any]):
            return await web_search(params, transport)

        return ToolDefinition(
            tool_id="web_search",
            name="Web Search",
            description="Search the web using DuckDuckGo API",
            category="web",
            parameters=[
                ToolParameter("query", ParameterType.STRING, "Search query", required=True,
                              validation=ParameterValidation(min_length=1, max_length=500)),
                ToolParameter("maxResults", ParameterType.NUMBER, "Maximum number of results",
                              default=5, validation=ParameterValidation(min=1, max=20)),
            ],
            return_type=ParameterType.ARRAY,
            tags=["search", "web", "internet"],
            handler=handler,
        )

    @staticmethod
    def create_http_tool(transport: Optional[httpx.AsyncBaseTransport] = None) -> ToolDefinition:
        """创建HTTP工具"""
        async def handler(params: Dict[str, Any]):
            return await http_request(params, transport)

        return ToolDefinition(
            tool_id="http_request",
            name="HTTP Request",
            description="Make HTTP requests to APIs",
            category="http",
            parameters=[
                ToolParameter("url", ParameterType.STRING, "Request URL", required=True,
                              validation=ParameterValidation(pattern=r"^https?://.+")),
                ToolParameter("method", ParameterType.STRING, "HTTP method", default="GET",
                              options=["GET", "POST", "PUT", "DELETE", "PATCH"]),
                ToolParameter("headers", ParameterType.OBJECT, "Request headers", default={}),
                ToolParameter("body", ParameterType.OBJECT, "Request body (for POST/PUT)"),
                ToolParameter("timeout", ParameterType.NUMBER, "Request timeout in milliseconds",
                              default=30000, validation=ParameterValidation(min=1000, max=120000)),
            ],
            tags=["http", "api", "request", "fetch"],
            handler=handler,
        )

    @staticmethod
    def create_calculator_tool() -> ToolDefinition:
        return ToolDefinition(
            tool_id="calculator",
            name="Calculator",
            description="Perform mathematical calculations",
            category="math",
            parameters=[
                ToolParameter("expression", ParameterType.STRING, "Mathematical expression to evaluate",
                              required=True, validation=ParameterValidation(min_length=1, max_length=1000)),
            ],
            return_type=ParameterType.NUMBER,
            tags=["math", "calculator", "arithmetic"],
            handler=calculator,
        )

    @staticmethod
    def create_text_transform_tool() -> ToolDefinition:
        return ToolDefinition(
            tool_id="text_transform",
            name="Text Transform",
            description="Transform text with various operations",
            category="text",
            parameters=[
                ToolParameter("text", ParameterType.STRING, "Input text", required=True),
                ToolParameter("operation", ParameterType.STRING, "Transform operation", required=True,
                              options=["uppercase", "lowercase", "titlecase", "reverse", "trim", "length", "words"]),
            ],
            return_type=ParameterType.STRING,
            tags=["text", "string", "transform"],
            handler=text_transform,
        )

    @staticmethod
    def create_json_parser_tool() -> ToolDefinition:
        return ToolDefinition(
            tool_id="json_parser",
            name="JSON Parser",
            description="Parse and manipulate JSON data",
            category="json",
            parameters=[
                ToolParameter("input", ParameterType.STRING, "JSON string", required=True),
                ToolParameter("operation", ParameterType.STRING, "Operation to perform", required=True,
                              options=["parse", "stringify", "validate", "extract", "format"]),
                ToolParameter("path", ParameterType.STRING, 'JSON path for extract operation (e.g., "user.name")'),
            ],
            tags=["json", "parse", "data"],
            handler=json_parser,
        )

    @staticmethod
    def create_date_time_tool() -> ToolDefinition:
        return ToolDefinition(
            tool_id="date_time",
            name="Date/Time",
            description="Work with dates and times",
            category="date",
            parameters=[
                ToolParameter("operation", ParameterType.STRING, "Date operation", required=True,
                              options=["now", "format", "parse", "add", "subtract", "diff"]),
                ToolParameter("date", ParameterType.STRING, "Date string (ISO format)"),
                ToolParameter("format", ParameterType.STRING, "Output format", default="ISO"),
                ToolParameter("amount", ParameterType.NUMBER, "Amount to add/subtract"),
                ToolParameter("unit", ParameterType.STRING, "Time unit",
                              options=list(_UNIT_SECONDS)),
            ],
            return_type=ParameterType.STRING,
            tags=["date", "time", "datetime", "timestamp"],
            handler=date_time,
        )

    @staticmethod
    def create_text_extraction_tool() -> ToolDefinition:
        return ToolDefinition(
            tool_id="text_extraction",
            name="Text Extraction",
            description="Extract text using regex patterns",
            category="text",
            parameters=[
                ToolParameter("text", ParameterType.STRING, "Input text", required=True),
                ToolParameter("pattern", ParameterType.STRING, "Regex pattern", required=True),
                ToolParameter("flags", ParameterType.STRING, "Regex flags (g, i, m, s)", default="g"),
            ],
            return_type=ParameterType.ARRAY,
            tags=["text", "regex", "extract", "pattern"],
            handler=text_extraction,
        )

    @staticmethod
    def create_array_operations_tool() -> ToolDefinition:
        return ToolDefinition(
            tool_id="array_operations",
            name="Array Operations",
            description="Perform operations on arrays",
            category="json",
            parameters=[
                ToolParameter("array", ParameterType.ARRAY, "Input array", required=True),
                ToolParameter("operation", ParameterType.STRING, "Operation to perform", required=True,
                              options=["length", "unique", "sort", "reverse", "sum", "average",
                                       "min", "max", "join", "filter"]),
                ToolParameter("parameter", ParameterType.STRING,
                              "Optional parameter for operation (join separator or filter expression over item)"),
            ],
            tags=["array", "list", "collection"],
            handler=array_operations,
        )

    @staticmethod
    def all_tools(transport: Optional[httpx.AsyncBaseTransport] = None) -> List[ToolDefinition]:
        """所有内置工具定义"""
        return [
            BuiltinTools.create_web_search_tool(transport),
            BuiltinTools.create_http_tool(transport),
            BuiltinTools.create_calculator_tool(),
            BuiltinTools.create_text_transform_tool(),
            BuiltinTools.create_json_parser_tool(),
            BuiltinTools.create_date_time_tool(),
            BuiltinTools.create_text_extraction_tool(),
            BuiltinTools.create_array_operations_tool(),
        ]

    @staticmethod
    async def register_all(registry: ToolRegistry, transport: Optional[httpx.AsyncBaseTransport] = None):
        """注册所有内置工具"""
        for tool in BuiltinTools.all_tools(transport):
            await registry.register_tool(tool)
